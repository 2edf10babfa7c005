#!/usr/bin/env python3
"""
Habitat Associations: Importance and Partial Dependence
=======================================================

Importance is the mean Gini impurity decrease each covariate earns across
the forest. It ranks covariates by predictive contribution but says nothing
about the direction of the effect.

Partial dependence shows direction and shape. For each value on a grid the
covariate is set to that value in every row of a reference sample, every
other covariate keeps its observed value, and the predictions are averaged.
"""

import logging
from typing import Iterator, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from tqdm import tqdm

from encounter_rate.preprocessing.observations import require_columns

logger = logging.getLogger(__name__)


def importance_table(model) -> pd.DataFrame:
    """Covariates and their importance scores, most important first."""
    scores = model.importance()
    table = pd.DataFrame({
        'covariate': list(scores.keys()),
        'score': list(scores.values()),
    })
    return table.sort_values('score', ascending=False).reset_index(drop=True)


class PartialDependence:
    """
    Partial dependence curve of one covariate.

    Iterating yields ``(value, average_prediction)`` pairs, computed lazily
    one grid value at a time. The object can be iterated any number of
    times and always yields the same pairs.

    Args:
        model: Fitted model exposing ``predict(df)``
        reference: Checklists whose other covariates are held at their
            observed values
        covariate: Column to vary
        grid_size: Number of grid values
        grid: 'uniform' for evenly spaced values over the observed range,
            'quantile' for evenly spaced quantiles
        values: Explicit grid, overriding ``grid_size`` and ``grid``
        percentiles: Lower and upper quantiles bounding the grid. The
            default spans the full observed range; (0.05, 0.95) keeps the
            grid off sparsely sampled tails
        n_reference: Cap on the reference sample size
        rng: Random source used to draw the reference sample when the
            reference table is larger than ``n_reference``
        predict: Name of the model method to average
    """

    def __init__(self, model, reference: pd.DataFrame, covariate: str,
                 grid_size: int = 25, grid: str = 'uniform',
                 values: Optional[Sequence[float]] = None,
                 percentiles: Tuple[float, float] = (0.0, 1.0),
                 n_reference: Optional[int] = 1000,
                 rng: Optional[np.random.Generator] = None,
                 predict: str = 'predict',
                 progress: bool = False):
        require_columns(reference, [covariate])
        if len(reference) == 0:
            raise ValueError("Reference sample is empty")

        self.model = model
        self.covariate = covariate
        self.predict = predict
        self.progress = progress

        if n_reference is not None and len(reference) > n_reference:
            if rng is None:
                raise ValueError(
                    "rng is required to subsample the reference table")
            rows = np.sort(rng.choice(len(reference), size=n_reference,
                                      replace=False))
            reference = reference.iloc[rows]
        self.reference = reference.copy()

        if values is not None:
            self.values = np.asarray(values, dtype=float)
        else:
            self.values = self._grid(self.reference[covariate], grid_size, grid,
                                     percentiles)

    @staticmethod
    def _grid(observed: pd.Series, grid_size: int, grid: str,
              percentiles: Tuple[float, float]) -> np.ndarray:
        low, high = percentiles
        if not 0.0 <= low < high <= 1.0:
            raise ValueError(
                f"percentiles must satisfy 0 <= low < high <= 1, got {percentiles}")
        observed = observed.dropna().to_numpy(dtype=float)
        if len(observed) == 0:
            raise ValueError("Covariate has no observed values")
        if grid == 'uniform':
            lower, upper = np.quantile(observed, [low, high])
            return np.linspace(lower, upper, grid_size)
        if grid == 'quantile':
            return np.unique(np.quantile(observed,
                                         np.linspace(low, high, grid_size)))
        raise ValueError(f"grid must be 'uniform' or 'quantile', got {grid!r}")

    def __len__(self):
        return len(self.values)

    def __iter__(self) -> Iterator[Tuple[float, float]]:
        predict = getattr(self.model, self.predict)
        for value in tqdm(self.values, desc=f'PD {self.covariate}',
                          disable=not self.progress):
            modified = self.reference.copy()
            modified[self.covariate] = value
            yield float(value), float(np.mean(predict(modified)))

    def to_frame(self) -> pd.DataFrame:
        pairs = list(self)
        return pd.DataFrame({
            'covariate': self.covariate,
            'value': [v for v, _ in pairs],
            'average_response': [r for _, r in pairs],
        })


def partial_dependence_table(model, reference: pd.DataFrame,
                             covariates: Sequence[str],
                             grid_size: int = 25,
                             n_reference: Optional[int] = 1000,
                             percentiles: Tuple[float, float] = (0.0, 1.0),
                             rng: Optional[np.random.Generator] = None,
                             progress: bool = False) -> pd.DataFrame:
    """Long table (covariate, value, average_response) for several covariates."""
    frames = []
    for covariate in covariates:
        pdep = PartialDependence(model, reference, covariate,
                                 grid_size=grid_size,
                                 percentiles=tuple(percentiles),
                                 n_reference=n_reference, rng=rng,
                                 progress=progress)
        frames.append(pdep.to_frame())
        logger.debug(f"  Partial dependence computed for {covariate}")
    if not frames:
        return pd.DataFrame(columns=['covariate', 'value', 'average_response'])
    return pd.concat(frames, ignore_index=True)
