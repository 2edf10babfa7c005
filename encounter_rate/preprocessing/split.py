#!/usr/bin/env python3
"""
Train/Test Split
================

Each checklist goes to the training set independently with probability
``train_fraction``, so partition sizes vary around ``p * N`` from seed to
seed. Rows missing any required field are dropped first.
"""

import logging
from typing import Sequence, Tuple

import numpy as np
import pandas as pd

from encounter_rate.config.settings import OUTCOME_COL
from encounter_rate.errors import InsufficientDataError
from encounter_rate.preprocessing.observations import require_columns

logger = logging.getLogger(__name__)


def drop_incomplete(df: pd.DataFrame, required: Sequence[str]) -> pd.DataFrame:
    """Remove rows with a missing value in any required column."""
    require_columns(df, required)
    complete = df.dropna(subset=list(required))
    n_dropped = len(df) - len(complete)
    if n_dropped:
        logger.info(f"Dropped {n_dropped:,} checklists with missing covariates")
    return complete.copy()


def train_test_split(df: pd.DataFrame,
                     required: Sequence[str],
                     rng: np.random.Generator,
                     train_fraction: float = 0.8,
                     outcome_col: str = OUTCOME_COL) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """
    Randomly partition checklists into training and test sets.

    Args:
        df: Observation table
        required: Columns that must be present and non-missing
        rng: Random source for the per-row draws
        train_fraction: Probability that a row is assigned to training
        outcome_col: Detection flag column, used for logging only

    Returns:
        (train_df, test_df), disjoint and together equal to the complete rows

    Raises:
        InsufficientDataError: if no complete rows remain or either
            partition is empty
    """
    if not 0.0 < train_fraction < 1.0:
        raise ValueError(
            f"train_fraction must be in (0, 1), got {train_fraction}")

    complete = drop_incomplete(df, required)
    if len(complete) == 0:
        raise InsufficientDataError(
            "No checklists left after dropping rows with missing covariates")

    is_train = rng.random(len(complete)) < train_fraction
    train_df = complete[is_train].copy()
    test_df = complete[~is_train].copy()

    if len(train_df) == 0 or len(test_df) == 0:
        raise InsufficientDataError(
            f"Empty partition after split: {len(train_df)} train, "
            f"{len(test_df)} test from {len(complete)} checklists")

    if outcome_col in complete.columns:
        logger.info(
            f"Split {len(complete):,} checklists: "
            f"train {len(train_df):,} ({100 * train_df[outcome_col].mean():.1f}% detections), "
            f"test {len(test_df):,} ({100 * test_df[outcome_col].mean():.1f}% detections)")

    return train_df, test_df
