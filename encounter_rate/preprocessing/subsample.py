#!/usr/bin/env python3
"""
Spatiotemporal Subsampling
==========================

Thins the checklist table to one record per stratum, where a stratum is
(detection status, time bucket, hexagonal grid cell).

Subsampling detections and non-detections separately keeps a larger share
of the rare class than thinning the pooled data. Grid cells reduce spatial
clustering around popular sites; weekly buckets reduce temporal bias.
"""

import logging
from typing import Dict, List

import numpy as np
import pandas as pd

from encounter_rate.config.settings import DATE_COL, OUTCOME_COL
from encounter_rate.preprocessing.hex_grid import HexGrid, assign_cells

logger = logging.getLogger(__name__)

STRATUM_COLUMNS = [OUTCOME_COL, 'week', 'cell']


def time_bucket(dates, include_year: bool = True) -> np.ndarray:
    """
    Week bucket for each timestamp.

    Week 1 covers days 1-7 of the year, week 53 holds the last day or two.
    With ``include_year`` the bucket is ``year * 100 + week`` so the same
    week in different years falls in different buckets.
    """
    dates = pd.to_datetime(pd.Series(dates))
    week = ((dates.dt.dayofyear - 1) // 7 + 1).to_numpy(dtype=np.int64)
    if include_year:
        return dates.dt.year.to_numpy(dtype=np.int64) * 100 + week
    return week


def stratum_keys(df: pd.DataFrame, grid: HexGrid,
                 include_year: bool = True,
                 date_col: str = DATE_COL) -> pd.DataFrame:
    """Return a copy of ``df`` with ``cell`` and ``week`` columns."""
    keyed = assign_cells(df, grid)
    keyed['week'] = time_bucket(keyed[date_col], include_year)
    return keyed


def spatiotemporal_subsample(df: pd.DataFrame,
                             grid: HexGrid,
                             rng: np.random.Generator,
                             include_year: bool = True,
                             outcome_col: str = OUTCOME_COL,
                             date_col: str = DATE_COL) -> pd.DataFrame:
    """
    Keep one uniformly chosen checklist per stratum.

    Args:
        df: Observation table with coordinates, timestamp and outcome
        grid: Hexagonal grid used for the spatial part of the key
        rng: Random source; the only source of randomness used
        include_year: Bucket by (year, week) rather than week of year
        outcome_col: Detection flag column
        date_col: Timestamp column

    Returns:
        Subset of ``df`` rows (original order and index) with ``cell`` and
        ``week`` columns added
    """
    if len(df) == 0:
        return stratum_keys(df, grid, include_year, date_col)

    keyed = stratum_keys(df, grid, include_year, date_col)
    keys = [outcome_col, 'week', 'cell']

    # Shuffle, then keep the first row of each stratum
    order = rng.permutation(len(keyed))
    shuffled = keyed.iloc[order]
    first = ~shuffled.duplicated(subset=keys, keep='first').to_numpy()

    # Restore input order
    sampled = keyed.iloc[np.sort(order[first])].copy()

    summary = summarize_subsample(df, sampled, outcome_col)
    logger.info(
        f"Subsampled {summary['n_before']:,} -> {summary['n_after']:,} "
        f"checklists; detection rate "
        f"{100 * summary['positive_fraction_before']:.1f}% -> "
        f"{100 * summary['positive_fraction_after']:.1f}%")
    return sampled


def summarize_subsample(before: pd.DataFrame, after: pd.DataFrame,
                        outcome_col: str = OUTCOME_COL) -> Dict[str, float]:
    """Counts and detection rates before and after subsampling."""
    def fraction(df):
        return float(df[outcome_col].mean()) if len(df) else float('nan')

    return {
        'n_before': int(len(before)),
        'n_after': int(len(after)),
        'positive_before': int(before[outcome_col].sum()),
        'positive_after': int(after[outcome_col].sum()),
        'positive_fraction_before': fraction(before),
        'positive_fraction_after': fraction(after),
    }


def count_strata(df: pd.DataFrame, keys: List[str] = None) -> int:
    """Number of distinct strata in a keyed table."""
    keys = keys or STRATUM_COLUMNS
    return int(len(df.drop_duplicates(subset=keys)))
