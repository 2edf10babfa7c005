"""
Pipeline Settings
=================

Default column names, covariate lists and modelling parameters for the
encounter rate pipeline. A JSON file can override any field of
``PipelineConfig``; command line flags override the file.
"""

import json
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Dict, List, Optional


# Column names in the observation table
ID_COL = 'checklist_id'
LAT_COL = 'latitude'
LON_COL = 'longitude'
DATE_COL = 'observation_date'
OUTCOME_COL = 'species_observed'

# Effort covariates recorded on each checklist
RAW_EFFORT_COVARIATES = [
    'duration_minutes',
    'effort_distance_km',
    'number_observers',
]

# Derived from the observation timestamp
DERIVED_EFFORT_COVARIATES = [
    'year',
    'day_of_year',
    'hours_of_day',
]

EFFORT_COVARIATES = RAW_EFFORT_COVARIATES + DERIVED_EFFORT_COVARIATES

# Landcover proportions (PLAND) and elevation summaries
HABITAT_COVARIATES = [
    'pland_04_deciduous_broadleaf',
    'pland_05_mixed_forest',
    'pland_08_woody_savanna',
    'pland_10_grassland',
    'pland_12_cropland',
    'pland_13_urban',
    'pland_17_water',
    'elevation_median',
    'elevation_sd',
]

# Standard checklist used for the prediction surface. `year` defaults to the
# latest year in the data and `hours_of_day` to the peak detection time.
STANDARD_EFFORT = {
    'duration_minutes': 60.0,
    'effort_distance_km': 1.0,
    'number_observers': 1.0,
    'day_of_year': 166.0,
}

# Effort filter thresholds
MAX_DURATION_MINUTES = 6 * 60
MAX_DISTANCE_KM = 10.0
MAX_OBSERVERS = 10


@dataclass
class PipelineConfig:
    """All tunable parameters for a pipeline run."""

    seed: int = 1
    spacing_km: float = 3.0
    include_year: bool = True
    train_fraction: float = 0.8
    n_trees: int = 250
    max_features: str = 'sqrt'
    min_samples_leaf: int = 1
    n_jobs: int = 1
    calibration_knots: int = 8
    calibration_smoothing: float = 1e-3
    pd_grid_size: int = 25
    pd_reference_size: int = 1000
    # Quantiles bounding the reported partial dependence grids
    pd_percentiles: List[float] = field(default_factory=lambda: [0.05, 0.95])
    peak_covariate: str = 'hours_of_day'
    peak_bin_width: float = 1.0
    peak_min_fraction: float = 0.01
    effort_covariates: List[str] = field(
        default_factory=lambda: list(EFFORT_COVARIATES))
    habitat_covariates: List[str] = field(
        default_factory=lambda: list(HABITAT_COVARIATES))
    standard_effort: Dict[str, float] = field(
        default_factory=lambda: dict(STANDARD_EFFORT))
    max_duration_minutes: Optional[float] = MAX_DURATION_MINUTES
    max_distance_km: Optional[float] = MAX_DISTANCE_KM
    max_observers: Optional[int] = MAX_OBSERVERS
    progress: bool = True

    @property
    def covariates(self) -> List[str]:
        return self.effort_covariates + self.habitat_covariates

    @classmethod
    def from_json(cls, path, **overrides):
        """Load a config file, ignoring None-valued overrides."""
        with open(path) as f:
            values = json.load(f)

        known = {f.name for f in fields(cls)}
        unknown = set(values) - known
        if unknown:
            raise ValueError(
                f"Unknown config field(s) in {path}: {sorted(unknown)}")

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def to_json(self, path):
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(asdict(self), f, indent=2)
