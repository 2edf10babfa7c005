#!/usr/bin/env python3
"""
Encounter Rate Pipeline
=======================

Runs every stage for one species and region:

1. Validate checklists and apply the effort filter
2. Subsample to one checklist per (detection, week, hexagon)
3. Split into training and test sets
4. Fit the balanced random forest and its calibration curve
5. Evaluate raw and calibrated predictions on the test set
6. Report covariate importance and partial dependence
7. Find the peak detection time and predict on the grid

A single seeded random generator is passed to every stochastic stage.

Usage:
    encounter-rate --observations data/checklists.csv \\
        --prediction-grid data/prediction_grid.csv \\
        --output-dir results/woothr --figures
"""

import argparse
import json
import logging
import sys
from dataclasses import dataclass, asdict
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

import numpy as np
import pandas as pd

from encounter_rate.analysis.evaluation import EvaluationReport, evaluate_model
from encounter_rate.analysis.importance import (
    PartialDependence, importance_table, partial_dependence_table
)
from encounter_rate.config.settings import (
    DERIVED_EFFORT_COVARIATES, OUTCOME_COL, PipelineConfig
)
from encounter_rate.errors import EncounterRateError
from encounter_rate.prediction.surface import (
    find_peak_time, predict_surface, standard_observation, surface_to_array
)
from encounter_rate.preprocessing.hex_grid import HexGrid
from encounter_rate.preprocessing.observations import (
    ObservationSchema, filter_effort, prepare_observations
)
from encounter_rate.preprocessing.split import train_test_split
from encounter_rate.preprocessing.subsample import (
    spatiotemporal_subsample, summarize_subsample
)
from encounter_rate.training.calibration import calibration_table
from encounter_rate.training.model import EncounterRateModel, fit_encounter_model

logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    model: EncounterRateModel
    report: EvaluationReport
    subsample_summary: Dict[str, float]
    importance: pd.DataFrame
    partial_dependence: pd.DataFrame
    calibration: pd.DataFrame
    peak_value: float
    standard_effort: Dict[str, float]
    clipped: Dict[str, int]
    predictions: Optional[pd.DataFrame] = None


def _count_clipped(calibrator, step):
    """Run ``step`` and return its result with the values it had clipped."""
    before = calibrator.n_clipped_
    result = step()
    return result, calibrator.n_clipped_ - before


def schema_for(config: PipelineConfig) -> ObservationSchema:
    raw_effort = [c for c in config.effort_covariates
                  if c not in DERIVED_EFFORT_COVARIATES]
    return ObservationSchema(effort_covariates=raw_effort,
                             habitat_covariates=list(config.habitat_covariates))


def run_pipeline(observations: pd.DataFrame,
                 prediction_grid: Optional[pd.DataFrame] = None,
                 config: Optional[PipelineConfig] = None) -> PipelineResult:
    """
    Fit, evaluate and apply an encounter rate model.

    Args:
        observations: Raw checklist table
        prediction_grid: Grid points with habitat covariates, or None to
            skip the surface prediction
        config: Pipeline settings (defaults if None)

    Returns:
        PipelineResult
    """
    config = config or PipelineConfig()
    rng = np.random.default_rng(config.seed)
    covariates = config.covariates

    # 1. Prepare
    checklists = prepare_observations(observations, schema_for(config))
    checklists = filter_effort(
        checklists,
        max_duration_minutes=config.max_duration_minutes,
        max_distance_km=config.max_distance_km,
        max_observers=config.max_observers,
    )

    # 2. Subsample
    grid = HexGrid.for_region(config.spacing_km,
                              float(checklists['latitude'].mean()),
                              float(checklists['longitude'].mean()))
    sampled = spatiotemporal_subsample(checklists, grid, rng,
                                       include_year=config.include_year)
    summary = summarize_subsample(checklists, sampled)

    # 3. Split
    train_df, test_df = train_test_split(
        sampled, covariates + [OUTCOME_COL], rng,
        train_fraction=config.train_fraction)

    # 4. Fit
    model = fit_encounter_model(
        train_df, covariates, rng,
        n_trees=config.n_trees,
        max_features=config.max_features,
        min_samples_leaf=config.min_samples_leaf,
        n_jobs=config.n_jobs,
        calibration_knots=config.calibration_knots,
        calibration_smoothing=config.calibration_smoothing,
        progress=config.progress,
    )
    calibration = calibration_table(model.predict_raw(train_df),
                                    train_df[OUTCOME_COL])

    # 5. Evaluate
    clipped = {}
    report, clipped['test'] = _count_clipped(
        model.calibrator, lambda: evaluate_model(model, test_df))

    # 6. Habitat associations
    importance = importance_table(model)
    logger.info("Top covariates:\n" + importance.head(10).to_string(index=False))
    pd_table = partial_dependence_table(
        model, train_df, covariates,
        grid_size=config.pd_grid_size,
        n_reference=config.pd_reference_size,
        percentiles=config.pd_percentiles,
        rng=rng, progress=config.progress)

    # 7. Standard checklist and prediction surface
    peak_curve = PartialDependence(
        model, train_df, config.peak_covariate,
        grid_size=4 * config.pd_grid_size,
        n_reference=config.pd_reference_size, rng=rng).to_frame()
    peak_value = find_peak_time(peak_curve, train_df[config.peak_covariate],
                                bin_width=config.peak_bin_width,
                                min_fraction=config.peak_min_fraction)

    effort = dict(config.standard_effort)
    if 'year' in covariates and 'year' not in effort:
        effort['year'] = int(train_df['year'].max())
    effort[config.peak_covariate] = peak_value

    predictions = None
    if prediction_grid is not None:
        surface = standard_observation(prediction_grid, effort)
        predictions, clipped['surface'] = _count_clipped(
            model.calibrator, lambda: predict_surface(model, surface))
    logger.info(f"Calibrated values clipped to [0, 1]: {clipped}")

    return PipelineResult(
        model=model,
        report=report,
        subsample_summary=summary,
        importance=importance,
        partial_dependence=pd_table,
        calibration=calibration,
        peak_value=peak_value,
        standard_effort=effort,
        clipped=clipped,
        predictions=predictions,
    )


def save_results(result: PipelineResult, config: PipelineConfig, output_dir):
    """Write tables, report and config to ``output_dir``."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    report = {
        'timestamp': datetime.now().isoformat(),
        'metrics': result.report.to_record(),
        'subsample': result.subsample_summary,
        'peak_value': result.peak_value,
        'standard_effort': result.standard_effort,
        'n_calibration_clipped': result.clipped,
    }
    with open(output_dir / 'report.json', 'w') as f:
        json.dump(report, f, indent=2, default=float)

    result.importance.to_csv(output_dir / 'importance.csv', index=False)
    result.partial_dependence.to_csv(output_dir / 'partial_dependence.csv',
                                     index=False)
    result.calibration.to_csv(output_dir / 'calibration.csv', index=False)
    config.to_json(output_dir / 'config.json')

    if result.predictions is not None:
        result.predictions.to_csv(output_dir / 'predictions.csv', index=False)
        field, _, _ = surface_to_array(result.predictions)
        np.save(output_dir / 'surface.npy', field)

    logger.info(f"Results saved to {output_dir}")


def save_figures(result: PipelineResult, output_dir):
    from encounter_rate.visualization import plots

    figures_dir = Path(output_dir) / 'figures'
    plots.plot_importance(result.importance, figures_dir / 'importance.png')
    plots.plot_partial_dependence(result.partial_dependence,
                                  figures_dir / 'partial_dependence.png')
    plots.plot_calibration(result.calibration, result.model.calibrator,
                           figures_dir / 'calibration.png')
    if result.predictions is not None:
        plots.plot_surface(result.predictions,
                           figures_dir / 'encounter_rate_map.png')


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description='Fit and map a species encounter rate model')
    p.add_argument('--observations', required=True,
                   help='Checklist CSV with covariates and detections')
    p.add_argument('--prediction-grid', default=None,
                   help='Grid CSV with grid_id, latitude, longitude and habitat covariates')
    p.add_argument('--config', default=None,
                   help='JSON file overriding pipeline settings')
    p.add_argument('--output-dir', default='results/encounter_rate')
    p.add_argument('--seed', type=int, default=None)
    p.add_argument('--spacing-km', type=float, default=None,
                   help='Hexagon centre spacing for subsampling')
    p.add_argument('--n-trees', type=int, default=None)
    p.add_argument('--n-jobs', type=int, default=None)
    p.add_argument('--figures', action='store_true',
                   help='Write diagnostic figures')
    p.add_argument('--no-progress', action='store_true',
                   help='Disable progress bars')
    p.add_argument('--verbose', action='store_true',
                   help='Enable verbose (DEBUG) logging')
    return p.parse_args(argv)


def load_config(args) -> PipelineConfig:
    overrides = {
        'seed': args.seed,
        'spacing_km': args.spacing_km,
        'n_trees': args.n_trees,
        'n_jobs': args.n_jobs,
        'progress': False if args.no_progress else None,
    }
    if args.config:
        return PipelineConfig.from_json(args.config, **overrides)
    return PipelineConfig(**{k: v for k, v in overrides.items() if v is not None})


def main(argv=None):
    args = parse_args(argv)
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level, format='%(asctime)s %(levelname)s %(message)s')
    logging.captureWarnings(True)

    config = load_config(args)
    logger.info(f"Loading checklists from {args.observations}")
    observations = pd.read_csv(args.observations)
    prediction_grid = None
    if args.prediction_grid:
        logger.info(f"Loading prediction grid from {args.prediction_grid}")
        prediction_grid = pd.read_csv(args.prediction_grid)

    try:
        result = run_pipeline(observations, prediction_grid, config)
    except EncounterRateError as e:
        logger.error(f"Pipeline aborted: {e}")
        return 1

    save_results(result, config, args.output_dir)
    if args.figures:
        save_figures(result, args.output_dir)
    return 0


if __name__ == '__main__':
    sys.exit(main())
