#!/usr/bin/env python3
"""
Predict Encounter Rate on a Grid
================================

Applies the calibrated model to a prediction grid. Every grid point gets the
same "standard checklist": fixed duration, distance, party size, date and the
start time at which detection peaks. The estimate is therefore the expected
encounter rate for one such checklist at that location.

The peak start time is read off the partial dependence curve, restricted to
times of day that hold enough training checklists. Sparse bins (e.g. the
middle of the night) can produce spurious peaks and are skipped.
"""

import logging
from typing import Dict, Tuple

import numpy as np
import pandas as pd

from encounter_rate.config.settings import LAT_COL, LON_COL
from encounter_rate.errors import InsufficientDataError

logger = logging.getLogger(__name__)

GRID_ID_COL = 'grid_id'


def find_peak_time(pd_frame: pd.DataFrame, observed_values,
                   bin_width: float = 1.0,
                   min_fraction: float = 0.01) -> float:
    """
    Covariate value with the highest partial dependence, ignoring sparse bins.

    Args:
        pd_frame: Partial dependence table with value and average_response
        observed_values: Training values of the same covariate
        bin_width: Width of the bins used to measure coverage (1 hour)
        min_fraction: Minimum share of training checklists a bin must hold

    Returns:
        The peak value

    Raises:
        InsufficientDataError: if no grid value falls in a well-covered bin
    """
    observed = pd.Series(observed_values).dropna().to_numpy(dtype=float)
    if len(observed) == 0:
        raise InsufficientDataError("No observed values to measure coverage")

    observed_bins = np.floor(observed / bin_width).astype(np.int64)
    bins, counts = np.unique(observed_bins, return_counts=True)
    covered = set(bins[counts / len(observed) >= min_fraction].tolist())

    pd_bins = np.floor(pd_frame['value'].to_numpy(dtype=float) / bin_width)
    candidates = pd_frame[[int(b) in covered for b in pd_bins]]
    if len(candidates) == 0:
        raise InsufficientDataError(
            f"No partial dependence values in bins holding >= "
            f"{100 * min_fraction:.1f}% of checklists")

    best = candidates.loc[candidates['average_response'].idxmax()]
    logger.info(
        f"Peak at {best['value']:.2f} (response {best['average_response']:.3f}, "
        f"{len(covered)} of {len(bins)} bins covered)")
    return float(best['value'])


def standard_observation(grid_df: pd.DataFrame,
                         effort: Dict[str, float]) -> pd.DataFrame:
    """Attach the standard checklist effort to every grid point."""
    surface = grid_df.copy()
    for covariate, value in effort.items():
        surface[covariate] = value
    return surface


def predict_surface(model, surface_df: pd.DataFrame,
                    id_col: str = GRID_ID_COL) -> pd.DataFrame:
    """
    Calibrated encounter rate at every grid point.

    Args:
        model: Fitted EncounterRateModel
        surface_df: Grid points carrying habitat and standard effort
            covariates

    Returns:
        DataFrame with id, latitude, longitude and estimate in [0, 1]
    """
    estimate = model.predict(surface_df)
    predictions = pd.DataFrame({
        id_col: surface_df[id_col].to_numpy(),
        LAT_COL: surface_df[LAT_COL].to_numpy(),
        LON_COL: surface_df[LON_COL].to_numpy(),
        'estimate': np.clip(estimate, 0.0, 1.0),
    })

    logger.info(
        f"Predicted {len(predictions):,} grid points: "
        f"mean {predictions['estimate'].mean():.3f}, "
        f"max {predictions['estimate'].max():.3f}")
    return predictions


def surface_to_array(predictions: pd.DataFrame, value_col: str = 'estimate',
                     decimals: int = 6) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Dense 2-D field from point predictions on a regular grid.

    Rows run north to south, columns west to east; cells without a
    prediction are NaN.

    Returns:
        (array, latitudes, longitudes)
    """
    lat = predictions[LAT_COL].round(decimals)
    lon = predictions[LON_COL].round(decimals)
    field = (pd.DataFrame({'lat': lat, 'lon': lon,
                           'value': predictions[value_col]})
             .pivot_table(index='lat', columns='lon', values='value',
                          aggfunc='mean', dropna=False)
             .sort_index(ascending=False))
    return (field.to_numpy(dtype=float), field.index.to_numpy(),
            field.columns.to_numpy())
