import numpy as np
import pandas as pd
import pytest

from encounter_rate.errors import InsufficientDataError
from encounter_rate.prediction.surface import (
    find_peak_time, predict_surface, standard_observation, surface_to_array
)


class _StubModel:
    """Returns the habitat column unchanged, including values outside [0, 1]."""

    def predict(self, df):
        return df['habitat'].to_numpy(dtype=float)


def _pd_frame(values, responses):
    return pd.DataFrame({'covariate': 'hours_of_day', 'value': values,
                         'average_response': responses})


def test_peak_skips_sparse_bins():
    # Hour 2 has the highest response but holds only 0.3% of checklists
    observed = np.concatenate([np.full(3, 2.5), np.full(600, 7.25),
                               np.full(397, 10.5)])
    frame = _pd_frame([2.0, 7.0, 10.0], [0.9, 0.5, 0.3])

    assert find_peak_time(frame, observed) == pytest.approx(7.0)
    assert find_peak_time(frame, observed, min_fraction=0.001) == pytest.approx(2.0)


def test_peak_without_covered_bins_raises():
    frame = _pd_frame([2.0, 3.0], [0.9, 0.5])
    with pytest.raises(InsufficientDataError):
        find_peak_time(frame, np.full(100, 12.0))
    with pytest.raises(InsufficientDataError):
        find_peak_time(frame, [])


def test_standard_observation_leaves_grid_untouched(make_prediction_grid):
    grid = make_prediction_grid()
    before = grid.copy()
    effort = {'duration_minutes': 60, 'effort_distance_km': 1,
              'number_observers': 1, 'hours_of_day': 7.0}

    surface = standard_observation(grid, effort)
    pd.testing.assert_frame_equal(grid, before)
    for col, value in effort.items():
        assert (surface[col] == value).all()


def test_predict_surface_clips_estimates():
    surface = pd.DataFrame({
        'grid_id': [10, 11, 12],
        'latitude': [42.0, 42.0, 42.1],
        'longitude': [-76.0, -75.9, -76.0],
        'habitat': [-0.2, 0.4, 1.3],
    })
    predictions = predict_surface(_StubModel(), surface)

    assert list(predictions.columns) == ['grid_id', 'latitude', 'longitude',
                                         'estimate']
    assert list(predictions['grid_id']) == [10, 11, 12]
    np.testing.assert_allclose(predictions['estimate'], [0.0, 0.4, 1.0])


def test_surface_array_runs_north_to_south():
    predictions = pd.DataFrame({
        'latitude': [1.0, 1.0, 2.0, 2.0, 3.0],
        'longitude': [10.0, 11.0, 10.0, 11.0, 10.0],
        'estimate': [0.1, 0.2, 0.3, 0.4, 0.5],
    })
    array, lats, lons = surface_to_array(predictions)

    assert array.shape == (3, 2)
    np.testing.assert_array_equal(lats, [3.0, 2.0, 1.0])
    np.testing.assert_array_equal(lons, [10.0, 11.0])
    np.testing.assert_allclose(array[1], [0.3, 0.4])
    assert array[0, 0] == pytest.approx(0.5)
    assert np.isnan(array[0, 1])
