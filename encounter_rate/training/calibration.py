#!/usr/bin/env python3
"""
Monotonic Calibration
=====================

Corrects the absolute probabilities of the balanced forest. Balancing the
classes and subsampling both inflate predicted encounter rates, but the
ranking of checklists is still informative, so the correction must never
reverse it.

The calibration curve g is a cubic B-spline on [0, 1] fit by least squares
to (predicted probability, observed outcome) pairs. Its coefficients are
written as an intercept plus non-negative increments, and non-decreasing
B-spline coefficients give a non-decreasing curve. A small penalty on the
second differences of the coefficients keeps the curve smooth.
"""

import logging
import warnings

import numpy as np
import pandas as pd
from scipy.interpolate import BSpline
from scipy.optimize import lsq_linear

from encounter_rate.errors import InsufficientDataError, OutOfRangeError

logger = logging.getLogger(__name__)


class MonotonicCalibrator:
    """Non-decreasing spline mapping predicted to observed encounter rate."""

    def __init__(self, n_knots: int = 8, degree: int = 3,
                 smoothing: float = 1e-3):
        if n_knots < 0:
            raise ValueError(f"n_knots must be non-negative, got {n_knots}")
        if degree < 1:
            raise ValueError(f"degree must be at least 1, got {degree}")

        self.n_knots = n_knots
        self.degree = degree
        self.smoothing = smoothing

        self.spline_ = None
        self.n_clipped_ = 0

    def _knots(self):
        interior = np.linspace(0.0, 1.0, self.n_knots + 2)[1:-1]
        return np.concatenate([np.zeros(self.degree + 1), interior,
                               np.ones(self.degree + 1)])

    def fit(self, predicted, observed):
        """
        Fit the calibration curve.

        Args:
            predicted: Model probabilities (clamped to [0, 1])
            observed: Binary outcomes for the same checklists

        Raises:
            InsufficientDataError: with fewer than two pairs
        """
        x = np.clip(np.asarray(predicted, dtype=float), 0.0, 1.0)
        y = np.asarray(observed, dtype=float)
        if x.shape != y.shape:
            raise ValueError(
                f"predicted and observed differ in shape: {x.shape} vs {y.shape}")
        if len(x) < 2:
            raise InsufficientDataError(
                f"Need at least 2 points to calibrate, got {len(x)}")

        k = self.degree
        t = self._knots()
        n_basis = len(t) - k - 1

        basis = BSpline.design_matrix(x, t, k).toarray()

        # coef = cumsum(theta); theta[1:] >= 0 makes coef non-decreasing
        cumulative = np.tril(np.ones((n_basis, n_basis)))
        second_diff = np.diff(np.eye(n_basis), n=2, axis=0)

        A = np.vstack([
            basis @ cumulative,
            np.sqrt(self.smoothing * len(x)) * (second_diff @ cumulative),
        ])
        b = np.concatenate([y, np.zeros(second_diff.shape[0])])

        lower = np.concatenate([[-np.inf], np.zeros(n_basis - 1)])
        upper = np.full(n_basis, np.inf)
        result = lsq_linear(A, b, bounds=(lower, upper))

        theta = result.x.copy()
        theta[1:] = np.maximum(theta[1:], 0.0)
        self.spline_ = BSpline(t, np.cumsum(theta), k, extrapolate=True)

        logger.info(
            f"Fit monotonic calibration on {len(x):,} checklists "
            f"(status {result.status}, cost {result.cost:.4f})")
        return self

    def _check_fitted(self):
        if self.spline_ is None:
            raise RuntimeError(
                "MonotonicCalibrator is not fitted; call fit() first")

    def predict_raw(self, predicted) -> np.ndarray:
        """Unclipped g(p); inputs outside [0, 1] use the boundary value."""
        self._check_fitted()
        x = np.clip(np.asarray(predicted, dtype=float), 0.0, 1.0)
        return np.asarray(self.spline_(x), dtype=float)

    def predict(self, predicted) -> np.ndarray:
        """Calibrated encounter rate, clipped to [0, 1]."""
        raw = self.predict_raw(predicted)
        clipped = np.clip(raw, 0.0, 1.0)

        n_clipped = int(np.count_nonzero(clipped != raw) -
                        np.count_nonzero(np.isnan(raw)))
        if n_clipped:
            self.n_clipped_ += n_clipped
            warnings.warn(
                f"{n_clipped} calibrated value(s) outside [0, 1] were clipped",
                OutOfRangeError, stacklevel=2)
        return clipped

    @property
    def coefficients(self) -> np.ndarray:
        self._check_fitted()
        return self.spline_.c.copy()


def calibration_table(predicted, observed, n_bins: int = 10) -> pd.DataFrame:
    """
    Observed detection frequency within equal-width bins of prediction.

    Returns:
        DataFrame with bin_lower, bin_upper, mean_predicted,
        observed_frequency and n for every non-empty bin
    """
    df = pd.DataFrame({
        'predicted': np.asarray(predicted, dtype=float),
        'observed': np.asarray(observed, dtype=float),
    })
    edges = np.linspace(0.0, 1.0, n_bins + 1)
    df['bin'] = pd.cut(df['predicted'].clip(0.0, 1.0), edges,
                       include_lowest=True, labels=False)

    table = df.groupby('bin').agg(
        mean_predicted=('predicted', 'mean'),
        observed_frequency=('observed', 'mean'),
        n=('observed', 'size'),
    ).reset_index()
    table['bin_lower'] = edges[table['bin'].astype(int)]
    table['bin_upper'] = edges[table['bin'].astype(int) + 1]
    return table[['bin_lower', 'bin_upper', 'mean_predicted',
                  'observed_frequency', 'n']]
