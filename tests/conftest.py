import numpy as np
import pandas as pd
import pytest

from encounter_rate.config.settings import HABITAT_COVARIATES


def _make_checklists(n=1000, n_positive=None, seed=0, lat0=42.0, lon0=-76.0,
                     start='2022-06-01', n_days=28):
    """Synthetic checklists over a 1 x 1 degree box."""
    rng = np.random.default_rng(seed)

    day_offsets = rng.integers(0, n_days, n)
    minutes = rng.integers(5 * 60, 20 * 60, n)
    dates = (pd.Timestamp(start) + pd.to_timedelta(day_offsets, unit='D')
             + pd.to_timedelta(minutes, unit='m'))

    df = pd.DataFrame({
        'checklist_id': [f'S{i:06d}' for i in range(n)],
        'latitude': lat0 + rng.random(n),
        'longitude': lon0 + rng.random(n),
        'observation_date': dates,
        'duration_minutes': rng.integers(5, 300, n).astype(float),
        'effort_distance_km': rng.uniform(0, 8, n),
        'number_observers': rng.integers(1, 5, n).astype(float),
    })
    for col in HABITAT_COVARIATES:
        df[col] = rng.random(n)
    df['elevation_median'] = df['elevation_median'] * 500
    df['elevation_sd'] = df['elevation_sd'] * 50

    if n_positive is not None:
        observed = np.zeros(n, dtype=bool)
        observed[rng.choice(n, size=n_positive, replace=False)] = True
    else:
        logit = -2.5 + 4.0 * df['pland_04_deciduous_broadleaf'] \
            - 2.0 * df['pland_13_urban'] + 0.004 * df['duration_minutes']
        observed = rng.random(n) < 1 / (1 + np.exp(-logit))
    df['species_observed'] = observed
    return df


def _make_prediction_grid(lat_min=42.0, lat_max=42.3, lon_min=-76.0,
                          lon_max=-75.7, n_lat=6, n_lon=5, seed=0):
    """Regular lat/lon grid carrying random habitat covariates."""
    lon_grid, lat_grid = np.meshgrid(np.linspace(lon_min, lon_max, n_lon),
                                     np.linspace(lat_min, lat_max, n_lat))
    grid = pd.DataFrame({
        'grid_id': np.arange(lat_grid.size),
        'latitude': lat_grid.ravel(),
        'longitude': lon_grid.ravel(),
    })
    rng = np.random.default_rng(seed)
    for col in HABITAT_COVARIATES:
        grid[col] = rng.random(len(grid))
    return grid


@pytest.fixture
def make_checklists():
    return _make_checklists


@pytest.fixture
def checklists():
    return _make_checklists(n=1000, seed=1)


@pytest.fixture
def separable():
    """Outcome is positive exactly when x0 > 0."""
    def make(n, seed):
        rng = np.random.default_rng(seed)
        X = rng.normal(size=(n, 3))
        y = X[:, 0] > 0
        df = pd.DataFrame(X, columns=['x0', 'x1', 'x2'])
        df['species_observed'] = y
        return df
    return make


@pytest.fixture
def make_prediction_grid():
    return _make_prediction_grid
