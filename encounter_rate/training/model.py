#!/usr/bin/env python3
"""
Encounter Rate Model
====================

Pairs a balanced random forest with its monotonic calibration curve and the
ordered list of covariates both were trained on.

The calibration curve is fit in-sample, on the forest's predictions for
its own training checklists.
"""

import logging
from typing import Dict, List, Sequence

import numpy as np
import pandas as pd

from encounter_rate.config.settings import OUTCOME_COL
from encounter_rate.preprocessing.observations import covariate_matrix
from encounter_rate.training.balanced_forest import BalancedRandomForest
from encounter_rate.training.calibration import MonotonicCalibrator

logger = logging.getLogger(__name__)


class EncounterRateModel:
    """Trained forest composed with its calibration curve."""

    def __init__(self, forest: BalancedRandomForest,
                 calibrator: MonotonicCalibrator,
                 covariates: Sequence[str]):
        self.forest = forest
        self.calibrator = calibrator
        self.covariates: List[str] = list(covariates)

    def predict_raw(self, df: pd.DataFrame) -> np.ndarray:
        """Uncalibrated forest probability for each row."""
        return self.forest.predict_proba(covariate_matrix(df, self.covariates))

    def predict(self, df: pd.DataFrame) -> np.ndarray:
        """Calibrated encounter rate for each row, in [0, 1]."""
        return self.calibrator.predict(self.predict_raw(df))

    def importance(self) -> Dict[str, float]:
        return self.forest.importance()


def fit_encounter_model(train_df: pd.DataFrame,
                        covariates: Sequence[str],
                        rng: np.random.Generator,
                        outcome_col: str = OUTCOME_COL,
                        n_trees: int = 250,
                        max_features='sqrt',
                        min_samples_leaf: int = 1,
                        n_jobs: int = 1,
                        calibration_knots: int = 8,
                        calibration_smoothing: float = 1e-3,
                        progress: bool = False) -> EncounterRateModel:
    """
    Train the forest, then calibrate it on its training predictions.

    Args:
        train_df: Training checklists
        covariates: Covariate columns used as split candidates
        rng: Random source for the bootstrap resamples
        outcome_col: Detection flag column

    Returns:
        Fitted EncounterRateModel
    """
    X = covariate_matrix(train_df, covariates)
    y = train_df[outcome_col].to_numpy().astype(bool)

    forest = BalancedRandomForest(
        n_trees=n_trees,
        max_features=max_features,
        min_samples_leaf=min_samples_leaf,
        n_jobs=n_jobs,
        progress=progress,
    )
    forest.fit(X, y, rng, feature_names=covariates)

    train_pred = forest.predict_proba(X)
    calibrator = MonotonicCalibrator(n_knots=calibration_knots,
                                     smoothing=calibration_smoothing)
    calibrator.fit(train_pred, y)

    calibrated = np.clip(calibrator.predict_raw(train_pred), 0.0, 1.0)
    logger.info(
        f"Mean training prediction {train_pred.mean():.3f} raw, "
        f"{calibrated.mean():.3f} calibrated "
        f"(observed {y.mean():.3f})")

    return EncounterRateModel(forest, calibrator, covariates)
