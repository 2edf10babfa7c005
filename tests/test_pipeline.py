import json

import pandas as pd
import pytest

from encounter_rate.config.settings import PipelineConfig
from encounter_rate.run_pipeline import main, run_pipeline

REPORT_KEYS = {'mse_raw', 'mse_calibrated', 'sensitivity', 'specificity',
               'auc', 'kappa', 'threshold_raw', 'threshold_calibrated'}


@pytest.fixture
def observations(make_checklists):
    return make_checklists(n=1500, seed=7)


@pytest.fixture
def prediction_grid(make_prediction_grid):
    return make_prediction_grid(seed=11)


def _small_config(**kwargs):
    return PipelineConfig(n_trees=20, pd_grid_size=5, pd_reference_size=200,
                          progress=False, **kwargs)


def test_run_pipeline_end_to_end(observations, prediction_grid):
    before = observations.copy()
    result = run_pipeline(observations, prediction_grid, _small_config())

    pd.testing.assert_frame_equal(observations, before)

    record = result.report.to_record()
    assert REPORT_KEYS <= set(record)
    assert 0.0 <= record['auc'] <= 1.0

    assert result.subsample_summary['n_after'] <= result.subsample_summary['n_before']
    assert 5.0 <= result.peak_value <= 20.0
    assert result.standard_effort['duration_minutes'] == 60
    assert result.standard_effort['year'] == 2022

    assert len(result.predictions) == len(prediction_grid)
    assert result.predictions['estimate'].between(0, 1).all()
    assert set(result.partial_dependence['covariate']) == set(
        _small_config().covariates)


def test_clip_counts_cover_only_reported_stages(observations, prediction_grid):
    result = run_pipeline(observations, prediction_grid, _small_config())

    assert set(result.clipped) == {'test', 'surface'}
    assert 0 <= result.clipped['test'] <= result.report.calibrated.n
    assert 0 <= result.clipped['surface'] <= len(result.predictions)


def test_same_seed_same_result(observations, prediction_grid):
    first = run_pipeline(observations, prediction_grid, _small_config(seed=3))
    second = run_pipeline(observations, prediction_grid, _small_config(seed=3))

    assert first.report.to_record() == second.report.to_record()
    pd.testing.assert_frame_equal(first.predictions, second.predictions)


def test_cli_writes_outputs(tmp_path, observations, prediction_grid):
    obs_path = tmp_path / 'checklists.csv'
    grid_path = tmp_path / 'grid.csv'
    config_path = tmp_path / 'config.json'
    out_dir = tmp_path / 'results'

    observations.to_csv(obs_path, index=False)
    prediction_grid.to_csv(grid_path, index=False)
    config_path.write_text(json.dumps({'pd_grid_size': 5,
                                       'pd_reference_size': 200}))

    status = main(['--observations', str(obs_path),
                   '--prediction-grid', str(grid_path),
                   '--config', str(config_path),
                   '--output-dir', str(out_dir),
                   '--n-trees', '20', '--figures', '--no-progress'])
    assert status == 0

    for name in ['report.json', 'importance.csv', 'partial_dependence.csv',
                 'calibration.csv', 'config.json', 'predictions.csv',
                 'surface.npy', 'figures/importance.png',
                 'figures/encounter_rate_map.png']:
        assert (out_dir / name).exists(), name

    report = json.loads((out_dir / 'report.json').read_text())
    assert REPORT_KEYS <= set(report['metrics'])
    saved = json.loads((out_dir / 'config.json').read_text())
    assert saved['n_trees'] == 20 and saved['pd_grid_size'] == 5


def test_cli_reports_missing_covariate(tmp_path, observations):
    obs_path = tmp_path / 'checklists.csv'
    observations.drop(columns=['elevation_sd']).to_csv(obs_path, index=False)

    status = main(['--observations', str(obs_path),
                   '--output-dir', str(tmp_path / 'out'), '--no-progress'])
    assert status == 1


def test_cli_drops_unparsable_coordinates(tmp_path, observations):
    obs_path = tmp_path / 'checklists.csv'
    out_dir = tmp_path / 'out'
    bad = observations.astype({'latitude': object})
    bad.loc[0, 'latitude'] = 'n/a'
    bad.to_csv(obs_path, index=False)

    status = main(['--observations', str(obs_path), '--output-dir', str(out_dir),
                   '--n-trees', '20', '--no-progress'])
    assert status == 0

    report = json.loads((out_dir / 'report.json').read_text())
    assert report['subsample']['n_before'] < len(observations)
    assert report['n_calibration_clipped']['test'] <= report['metrics']['n_calibrated']
