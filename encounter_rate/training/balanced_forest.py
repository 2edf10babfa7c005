#!/usr/bin/env python3
"""
Balanced Random Forest
======================

Random forest for rare detections. Every tree is grown on a bootstrap
resample that draws the same number of detections and non-detections, so
the rare class is not swamped by the common one.

With a detection rate ``f`` over ``N`` training checklists, each tree draws
``round(f * N)`` checklists with replacement from each class. Trees are
scikit-learn CART trees split on Gini impurity.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence

import numpy as np
from sklearn.tree import DecisionTreeClassifier
from tqdm import tqdm

from encounter_rate.errors import DegenerateClassError, InsufficientDataError

logger = logging.getLogger(__name__)

_MAX_SEED = 2 ** 31 - 1


def balanced_bootstrap(positive_idx: np.ndarray,
                       negative_idx: np.ndarray,
                       n_per_class: int,
                       rng: np.random.Generator) -> np.ndarray:
    """Row indices of one class-balanced bootstrap resample."""
    return np.concatenate([
        rng.choice(positive_idx, size=n_per_class, replace=True),
        rng.choice(negative_idx, size=n_per_class, replace=True),
    ])


class BalancedRandomForest:
    """
    Ensemble of Gini trees, each fit on a class-balanced bootstrap.

    Untrained until ``fit`` is called once; there is no incremental
    update. Prediction is deterministic: it averages the per-tree
    probabilities without any further sampling.
    """

    def __init__(self,
                 n_trees: int = 250,
                 max_features='sqrt',
                 min_samples_leaf: int = 1,
                 n_jobs: int = 1,
                 progress: bool = False):
        if n_trees < 1:
            raise ValueError(f"n_trees must be at least 1, got {n_trees}")

        self.n_trees = n_trees
        self.max_features = max_features
        self.min_samples_leaf = min_samples_leaf
        self.n_jobs = n_jobs
        self.progress = progress

        self.trees_: List[DecisionTreeClassifier] = []
        self.feature_names_: Optional[List[str]] = None
        self.feature_importances_: Optional[np.ndarray] = None
        self.positive_fraction_: Optional[float] = None
        self.n_per_class_: Optional[int] = None

    @property
    def is_fitted(self) -> bool:
        return len(self.trees_) > 0

    def _fit_tree(self, X, y, positive_idx, negative_idx, seed):
        tree_rng = np.random.default_rng(seed)
        idx = balanced_bootstrap(positive_idx, negative_idx,
                                 self.n_per_class_, tree_rng)

        tree = DecisionTreeClassifier(
            criterion='gini',
            max_features=self.max_features,
            min_samples_leaf=self.min_samples_leaf,
            random_state=int(seed),
        )
        tree.fit(X[idx], y[idx])

        # Total weighted impurity decrease per feature for this tree
        importance = tree.tree_.compute_feature_importances(normalize=False)
        return tree, importance

    def fit(self, X, y, rng: np.random.Generator,
            feature_names: Optional[Sequence[str]] = None):
        """
        Grow the forest.

        Args:
            X: (n_samples, n_features) covariate matrix
            y: Binary outcome
            rng: Random source; one seed per tree is drawn from it up
                front so results do not depend on ``n_jobs``
            feature_names: Covariate names, in column order

        Raises:
            InsufficientDataError: if X has no rows
            DegenerateClassError: if y is all detections or all
                non-detections
        """
        if self.is_fitted:
            raise RuntimeError("BalancedRandomForest is already fitted")

        X = np.asarray(X, dtype=float)
        y = np.asarray(y).astype(bool)
        if X.ndim != 2 or len(X) != len(y):
            raise ValueError(
                f"X must be 2-D with one row per outcome, got {X.shape} and {y.shape}")
        if len(y) == 0:
            raise InsufficientDataError("Cannot fit a forest on zero rows")

        f = float(y.mean())
        if f == 0.0 or f == 1.0:
            raise DegenerateClassError(
                f"Outcome has no variation (detection rate {f:.0f})")

        positive_idx = np.flatnonzero(y)
        negative_idx = np.flatnonzero(~y)
        self.positive_fraction_ = f
        self.n_per_class_ = max(1, int(round(f * len(y))))
        self.feature_names_ = (list(feature_names) if feature_names is not None
                               else [f'x{i}' for i in range(X.shape[1])])
        if len(self.feature_names_) != X.shape[1]:
            raise ValueError(
                f"{len(self.feature_names_)} feature names for {X.shape[1]} columns")

        logger.info(
            f"Fitting {self.n_trees} trees on {len(y):,} checklists "
            f"(detection rate {100 * f:.1f}%, {self.n_per_class_:,} draws per class)")

        seeds = rng.integers(0, _MAX_SEED, size=self.n_trees)
        y_int = y.astype(int)

        def fit_one(seed):
            return self._fit_tree(X, y_int, positive_idx, negative_idx, seed)

        with tqdm(total=self.n_trees, desc='Fitting trees',
                  disable=not self.progress) as pbar:
            if self.n_jobs is not None and self.n_jobs > 1:
                with ThreadPoolExecutor(max_workers=self.n_jobs) as executor:
                    results = []
                    for result in executor.map(fit_one, seeds):
                        results.append(result)
                        pbar.update(1)
            else:
                results = []
                for seed in seeds:
                    results.append(fit_one(seed))
                    pbar.update(1)

        self.trees_ = [tree for tree, _ in results]
        self.feature_importances_ = np.mean(
            [importance for _, importance in results], axis=0)
        return self

    def _check_fitted(self):
        if not self.is_fitted:
            raise RuntimeError(
                "BalancedRandomForest is not fitted; call fit() first")

    def predict_proba(self, X) -> np.ndarray:
        """Mean per-tree probability of detection, in [0, 1]."""
        self._check_fitted()
        X = np.asarray(X, dtype=float)
        if X.ndim == 1:
            X = X.reshape(1, -1)

        total = np.zeros(len(X))
        for tree in self.trees_:
            total += tree.predict_proba(X)[:, 1]
        return np.clip(total / len(self.trees_), 0.0, 1.0)

    def importance(self) -> Dict[str, float]:
        """Covariate name -> mean impurity decrease across trees."""
        self._check_fitted()
        return {name: float(score) for name, score
                in zip(self.feature_names_, self.feature_importances_)}
