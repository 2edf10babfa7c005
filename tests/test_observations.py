import pandas as pd
import pytest

from encounter_rate.errors import (
    EncounterRateError, InsufficientDataError, MissingCovariateError
)
from encounter_rate.preprocessing.observations import (
    ObservationSchema, coerce_outcome, covariate_matrix,
    derive_time_covariates, filter_effort, prepare_observations
)


def test_missing_columns_are_all_named(checklists):
    broken = checklists.drop(columns=['elevation_sd', 'number_observers'])

    with pytest.raises(MissingCovariateError) as excinfo:
        prepare_observations(broken)

    assert set(excinfo.value.missing) == {'elevation_sd', 'number_observers'}
    assert isinstance(excinfo.value, KeyError)
    assert isinstance(excinfo.value, EncounterRateError)
    assert 'elevation_sd' in str(excinfo.value)


def test_outcome_coercion():
    strings = coerce_outcome(pd.Series(['TRUE', 'false', ' True', '0', 'X']))
    assert list(strings) == [True, False, True, False, True]

    numbers = coerce_outcome(pd.Series([0, 1, 3, None]))
    assert list(numbers) == [False, True, True, False]


def test_time_covariates():
    df = pd.DataFrame({'observation_date': ['2022-06-15 07:30:00']})
    derived = derive_time_covariates(df)

    assert derived.loc[0, 'year'] == 2022
    assert derived.loc[0, 'day_of_year'] == 166
    assert derived.loc[0, 'hours_of_day'] == pytest.approx(7.5)
    assert 'year' not in df.columns


def test_prepare_does_not_modify_input(checklists):
    raw = checklists.copy()
    raw['species_observed'] = raw['species_observed'].map({True: 'TRUE',
                                                           False: 'FALSE'})
    before = raw.copy()

    prepared = prepare_observations(raw)
    pd.testing.assert_frame_equal(raw, before)
    assert prepared['species_observed'].dtype == bool
    assert set(ObservationSchema().covariates) <= set(prepared.columns)


def test_effort_filter_limits():
    df = pd.DataFrame({
        'duration_minutes': [30, 400, 60, 60, None],
        'effort_distance_km': [1, 1, 12, 1, 1],
        'number_observers': [1, 1, 1, 15, 1],
        'year': [2021, 2022, 2022, 2022, 2019],
    })
    assert len(filter_effort(df)) == 2
    assert len(filter_effort(df, start_year=2020)) == 1
    assert len(filter_effort(df, max_duration_minutes=None,
                             max_distance_km=None, max_observers=None)) == 5


def test_covariate_matrix_order():
    df = pd.DataFrame({'a': [1, 2], 'b': [3, 4]})
    assert covariate_matrix(df, ['b', 'a']).tolist() == [[3.0, 1.0], [4.0, 2.0]]
    with pytest.raises(MissingCovariateError):
        covariate_matrix(df, ['c'])


def test_unlocatable_checklists_dropped(checklists):
    raw = checklists.astype({'latitude': object, 'observation_date': object})
    raw.loc[0, 'latitude'] = 'n/a'
    raw.loc[1, 'observation_date'] = 'not a date'

    prepared = prepare_observations(raw)
    assert len(prepared) == len(checklists) - 2
    assert not prepared[['latitude', 'longitude']].isna().any().any()

    raw['latitude'] = 'n/a'
    with pytest.raises(InsufficientDataError):
        prepare_observations(raw)
