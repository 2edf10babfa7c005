#!/usr/bin/env python3
"""
Observation Table Preparation
=============================

Validates the checklist table once, derives the time-based effort
covariates and applies the standard effort filter.

Downstream stages assume the columns named by ``ObservationSchema`` exist,
so a missing column is reported here rather than deep inside model fitting.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np
import pandas as pd

from encounter_rate.config.settings import (
    ID_COL, LAT_COL, LON_COL, DATE_COL, OUTCOME_COL,
    RAW_EFFORT_COVARIATES, DERIVED_EFFORT_COVARIATES, HABITAT_COVARIATES,
    MAX_DURATION_MINUTES, MAX_DISTANCE_KM, MAX_OBSERVERS,
)
from encounter_rate.errors import InsufficientDataError, MissingCovariateError

logger = logging.getLogger(__name__)

_TRUE_STRINGS = {'true', 't', '1', 'yes', 'x'}


@dataclass(frozen=True)
class ObservationSchema:
    """Named columns of a checklist table."""

    id_col: str = ID_COL
    lat_col: str = LAT_COL
    lon_col: str = LON_COL
    date_col: str = DATE_COL
    outcome_col: str = OUTCOME_COL
    effort_covariates: List[str] = field(
        default_factory=lambda: list(RAW_EFFORT_COVARIATES))
    habitat_covariates: List[str] = field(
        default_factory=lambda: list(HABITAT_COVARIATES))

    @property
    def required_columns(self) -> List[str]:
        return ([self.id_col, self.lat_col, self.lon_col, self.date_col,
                 self.outcome_col]
                + self.effort_covariates + self.habitat_covariates)

    @property
    def covariates(self) -> List[str]:
        derived = [c for c in DERIVED_EFFORT_COVARIATES
                   if c not in self.effort_covariates]
        return self.effort_covariates + derived + self.habitat_covariates

    def validate(self, df: pd.DataFrame) -> pd.DataFrame:
        """
        Check that every schema column exists and coerce column types.

        Returns:
            New DataFrame; the input is left untouched

        Raises:
            MissingCovariateError: if any schema column is absent
        """
        missing = [c for c in self.required_columns if c not in df.columns]
        if missing:
            raise MissingCovariateError(missing)

        df = df.copy()
        df[self.date_col] = pd.to_datetime(df[self.date_col], errors='coerce')
        df[self.outcome_col] = coerce_outcome(df[self.outcome_col])
        for col in [self.lat_col, self.lon_col] + \
                self.effort_covariates + self.habitat_covariates:
            df[col] = pd.to_numeric(df[col], errors='coerce')
        return df


def coerce_outcome(values: pd.Series) -> pd.Series:
    """Map detection flags (bool, 0/1, 'TRUE'/'FALSE') to booleans."""
    if values.dtype == bool:
        return values
    if pd.api.types.is_numeric_dtype(values):
        return values.fillna(0).astype(float) > 0
    return values.astype(str).str.strip().str.lower().isin(_TRUE_STRINGS)


def derive_time_covariates(df: pd.DataFrame,
                           date_col: str = DATE_COL) -> pd.DataFrame:
    """Add year, day_of_year and decimal start hour from the timestamp."""
    df = df.copy()
    dates = pd.to_datetime(df[date_col])
    df['year'] = dates.dt.year
    df['day_of_year'] = dates.dt.dayofyear
    df['hours_of_day'] = (dates.dt.hour + dates.dt.minute / 60.0
                          + dates.dt.second / 3600.0)
    return df


def prepare_observations(df: pd.DataFrame,
                         schema: Optional[ObservationSchema] = None) -> pd.DataFrame:
    """Validate a raw checklist table and derive time covariates."""
    schema = schema or ObservationSchema()
    validated = schema.validate(df)

    # Unparsable coordinates or timestamps cannot be placed in a stratum
    located = validated.dropna(
        subset=[schema.lat_col, schema.lon_col, schema.date_col])
    n_dropped = len(validated) - len(located)
    if n_dropped:
        logger.warning(
            f"Dropped {n_dropped:,} checklists with missing or unparsable "
            f"coordinates or dates")
    if len(located) == 0:
        raise InsufficientDataError(
            "No checklists with valid coordinates and dates")

    prepared = derive_time_covariates(located, schema.date_col)

    n_detected = int(prepared[schema.outcome_col].sum())
    logger.info(
        f"Prepared {len(prepared):,} checklists "
        f"({n_detected:,} detections, "
        f"{100 * n_detected / max(len(prepared), 1):.1f}%)")
    return prepared


def filter_effort(df: pd.DataFrame,
                  max_duration_minutes: Optional[float] = MAX_DURATION_MINUTES,
                  max_distance_km: Optional[float] = MAX_DISTANCE_KM,
                  max_observers: Optional[int] = MAX_OBSERVERS,
                  start_year: Optional[int] = None) -> pd.DataFrame:
    """
    Remove checklists with extreme effort.

    Very long, far-travelling or large-party checklists detect species at
    rates that a standard checklist never reaches. A threshold of None
    disables that filter. Rows with missing effort values pass through;
    they are dropped later when required covariates are checked.

    Args:
        df: Prepared observation table
        max_duration_minutes: Longest checklist kept
        max_distance_km: Longest travelling distance kept
        max_observers: Largest party size kept
        start_year: Earliest year kept

    Returns:
        Filtered copy of ``df``
    """
    keep = pd.Series(True, index=df.index)

    limits = [
        ('duration_minutes', max_duration_minutes),
        ('effort_distance_km', max_distance_km),
        ('number_observers', max_observers),
    ]
    for col, limit in limits:
        if limit is None or col not in df.columns:
            continue
        too_high = df[col] > limit
        logger.debug(f"  {col} > {limit}: {int(too_high.sum())} removed")
        keep &= ~too_high

    if start_year is not None:
        years = df['year'] if 'year' in df.columns \
            else pd.to_datetime(df[DATE_COL]).dt.year
        keep &= years >= start_year

    filtered = df[keep].copy()
    logger.info(
        f"Effort filter kept {len(filtered):,} of {len(df):,} checklists "
        f"({100 * len(filtered) / max(len(df), 1):.1f}%)")
    return filtered


def require_columns(df: pd.DataFrame, columns) -> None:
    """Raise MissingCovariateError for any of ``columns`` absent from ``df``."""
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise MissingCovariateError(missing)


def covariate_matrix(df: pd.DataFrame, covariates) -> np.ndarray:
    """Float matrix of the requested covariates, in order."""
    require_columns(df, covariates)
    return df[list(covariates)].to_numpy(dtype=float)
