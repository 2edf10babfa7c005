#!/usr/bin/env python3
"""
Model Evaluation
================

Held-out accuracy of raw and calibrated encounter rates:

- Mean squared error of the probabilities
- Decision threshold maximising Cohen's Kappa
- Sensitivity and specificity at that threshold
- ROC AUC

Raw and calibrated predictions are scored independently and may settle on
different thresholds.
"""

import logging
from dataclasses import dataclass, asdict
from typing import Dict, Tuple

import numpy as np
import pandas as pd
from sklearn.metrics import (
    cohen_kappa_score, confusion_matrix, mean_squared_error, roc_auc_score
)

from encounter_rate.config.settings import OUTCOME_COL
from encounter_rate.errors import InsufficientDataError

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLDS = np.round(np.linspace(0.01, 0.99, 99), 2)


@dataclass(frozen=True)
class ModelMetrics:
    mse: float
    threshold: float
    kappa: float
    sensitivity: float
    specificity: float
    auc: float
    n: int
    n_positive: int


@dataclass(frozen=True)
class EvaluationReport:
    raw: ModelMetrics
    calibrated: ModelMetrics

    def to_record(self) -> Dict[str, float]:
        """
        Flat report record.

        Unsuffixed sensitivity, specificity, auc and kappa are the
        calibrated values; suffixed keys carry both variants.
        """
        record = {
            'mse_raw': self.raw.mse,
            'mse_calibrated': self.calibrated.mse,
            'sensitivity': self.calibrated.sensitivity,
            'specificity': self.calibrated.specificity,
            'auc': self.calibrated.auc,
            'kappa': self.calibrated.kappa,
            'threshold_raw': self.raw.threshold,
            'threshold_calibrated': self.calibrated.threshold,
        }
        for name, metrics in [('raw', self.raw), ('calibrated', self.calibrated)]:
            for key, value in asdict(metrics).items():
                record.setdefault(f'{key}_{name}', value)
        return record


def _binary_rates(y_true, y_pred) -> Tuple[float, float]:
    tn, fp, fn, tp = confusion_matrix(y_true, y_pred, labels=[0, 1]).ravel()
    sensitivity = tp / (tp + fn) if (tp + fn) else float('nan')
    specificity = tn / (tn + fp) if (tn + fp) else float('nan')
    return float(sensitivity), float(specificity)


def optimize_threshold(y_true, y_pred_proba, thresholds=None):
    """
    Find the threshold that maximizes Cohen's Kappa.

    A checklist is predicted as a detection when its probability is above
    the threshold. Ties go to the lowest threshold.

    Returns:
        (best_threshold, best_kappa, results DataFrame)
    """
    if thresholds is None:
        thresholds = DEFAULT_THRESHOLDS

    y_true = np.asarray(y_true).astype(int)
    y_pred_proba = np.asarray(y_pred_proba, dtype=float)

    best_kappa = -np.inf
    best_threshold = float(thresholds[0])
    results = []

    for threshold in thresholds:
        y_pred = (y_pred_proba > threshold).astype(int)
        # Kappa is undefined when truth and prediction share one class; score as chance
        kappa = float(np.nan_to_num(cohen_kappa_score(y_true, y_pred)))
        sensitivity, specificity = _binary_rates(y_true, y_pred)

        results.append({
            'threshold': float(threshold),
            'kappa': kappa,
            'sensitivity': sensitivity,
            'specificity': specificity,
        })

        if kappa > best_kappa:
            best_kappa = kappa
            best_threshold = float(threshold)

    return best_threshold, best_kappa, pd.DataFrame(results)


def evaluate_predictions(y_true, y_pred_proba, thresholds=None) -> ModelMetrics:
    """Score one set of held-out probabilities."""
    y_true = np.asarray(y_true).astype(int)
    y_pred_proba = np.asarray(y_pred_proba, dtype=float)

    if len(y_true) == 0:
        raise InsufficientDataError("No test checklists to evaluate")
    if np.unique(y_true).size < 2:
        raise InsufficientDataError(
            "Test set needs both detections and non-detections to evaluate")

    threshold, kappa, _ = optimize_threshold(y_true, y_pred_proba, thresholds)
    sensitivity, specificity = _binary_rates(
        y_true, (y_pred_proba > threshold).astype(int))

    return ModelMetrics(
        mse=float(mean_squared_error(y_true, y_pred_proba)),
        threshold=threshold,
        kappa=kappa,
        sensitivity=sensitivity,
        specificity=specificity,
        auc=float(roc_auc_score(y_true, y_pred_proba)),
        n=int(len(y_true)),
        n_positive=int(y_true.sum()),
    )


def evaluate_model(model, test_df: pd.DataFrame,
                   outcome_col: str = OUTCOME_COL,
                   thresholds=None) -> EvaluationReport:
    """
    Evaluate raw and calibrated predictions on held-out checklists.

    Args:
        model: Fitted EncounterRateModel
        test_df: Test checklists
        outcome_col: Detection flag column

    Returns:
        EvaluationReport
    """
    y_true = test_df[outcome_col].to_numpy().astype(int)
    raw = model.predict_raw(test_df)
    calibrated = model.calibrator.predict(raw)

    report = EvaluationReport(
        raw=evaluate_predictions(y_true, raw, thresholds),
        calibrated=evaluate_predictions(y_true, calibrated, thresholds),
    )

    print_report(report)
    return report


def print_report(report: EvaluationReport) -> None:
    """Log a side-by-side summary of raw and calibrated metrics."""
    logger.info("Test set performance (raw / calibrated):")
    for key in ['mse', 'threshold', 'kappa', 'sensitivity', 'specificity', 'auc']:
        logger.info(
            f"  {key:<12} {getattr(report.raw, key):.4f} / "
            f"{getattr(report.calibrated, key):.4f}")
