import numpy as np
import pandas as pd
import pytest

from encounter_rate.preprocessing.hex_grid import HexGrid
from encounter_rate.preprocessing.subsample import (
    count_strata, spatiotemporal_subsample, stratum_keys, summarize_subsample,
    time_bucket
)

KEYS = ['species_observed', 'week', 'cell']


@pytest.fixture
def grid():
    return HexGrid.for_region(5.0, 42.5, -75.5)


def test_time_bucket_weeks():
    dates = pd.to_datetime(['2022-01-01', '2022-01-07', '2022-01-08',
                            '2022-12-31'])
    assert list(time_bucket(dates, include_year=False)) == [1, 1, 2, 53]
    assert list(time_bucket(dates)) == [202201, 202201, 202202, 202253]


def test_one_record_per_stratum(checklists, grid):
    sampled = spatiotemporal_subsample(checklists, grid,
                                       np.random.default_rng(0))
    keyed = stratum_keys(checklists, grid)

    assert not sampled.duplicated(subset=KEYS).any()
    assert len(sampled) == count_strata(keyed)
    assert set(map(tuple, sampled[KEYS].to_numpy())) == \
        set(map(tuple, keyed[KEYS].to_numpy()))


def test_output_is_subset_of_input(checklists, grid):
    sampled = spatiotemporal_subsample(checklists, grid,
                                       np.random.default_rng(0))
    original = checklists.set_index('checklist_id')
    for _, row in sampled.iterrows():
        source = original.loc[row['checklist_id']]
        assert source['latitude'] == row['latitude']
        assert source['species_observed'] == row['species_observed']


def test_input_not_modified(checklists, grid):
    before = checklists.copy()
    spatiotemporal_subsample(checklists, grid, np.random.default_rng(0))
    pd.testing.assert_frame_equal(checklists, before)


def test_seeded_runs_repeat(checklists, grid):
    a = spatiotemporal_subsample(checklists, grid, np.random.default_rng(42))
    b = spatiotemporal_subsample(checklists, grid, np.random.default_rng(42))
    pd.testing.assert_frame_equal(a, b)


def test_selection_is_random_within_stratum(grid):
    df = pd.DataFrame({
        'checklist_id': ['a', 'b', 'c', 'd'],
        'latitude': [42.5] * 4,
        'longitude': [-75.5] * 4,
        'observation_date': pd.to_datetime(['2022-06-01'] * 4),
        'species_observed': [False] * 4,
    })
    chosen = {spatiotemporal_subsample(df, grid, np.random.default_rng(s))
              ['checklist_id'].iloc[0] for s in range(40)}
    assert len(chosen) > 1


def test_unique_strata_pass_through(grid):
    df = pd.DataFrame({
        'checklist_id': ['a', 'b'],
        'latitude': [42.1, 42.9],
        'longitude': [-75.9, -75.1],
        'observation_date': pd.to_datetime(['2022-06-01', '2022-08-01']),
        'species_observed': [True, False],
    })
    sampled = spatiotemporal_subsample(df, grid, np.random.default_rng(0))
    assert list(sampled['checklist_id']) == ['a', 'b']


def test_rare_class_enriched(make_checklists):
    df = make_checklists(n=1000, n_positive=50, seed=11)
    grid = HexGrid.for_region(5.0, 42.5, -75.5)

    sampled = spatiotemporal_subsample(df, grid, np.random.default_rng(5))
    summary = summarize_subsample(df, sampled)

    assert summary['n_after'] <= count_strata(stratum_keys(df, grid))
    assert summary['positive_fraction_after'] >= summary['positive_fraction_before']
    assert summary['n_before'] == 1000
    assert summary['positive_before'] == 50


def test_empty_input(grid):
    df = pd.DataFrame({
        'checklist_id': pd.Series([], dtype=str),
        'latitude': pd.Series([], dtype=float),
        'longitude': pd.Series([], dtype=float),
        'observation_date': pd.to_datetime(pd.Series([], dtype=str)),
        'species_observed': pd.Series([], dtype=bool),
    })
    assert len(spatiotemporal_subsample(df, grid, np.random.default_rng(0))) == 0
