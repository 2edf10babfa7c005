"""Exceptions raised by the encounter rate pipeline."""


class EncounterRateError(ValueError):
    """Base class for data problems that abort a run."""


class InsufficientDataError(EncounterRateError):
    """A partition, stratum or class is empty or too small to use."""


class DegenerateClassError(EncounterRateError):
    """The outcome has no variation within a training set."""


class MissingCovariateError(EncounterRateError, KeyError):
    """A requested covariate is absent from the table."""

    def __init__(self, missing):
        self.missing = list(missing)
        super().__init__(f"Missing covariate(s): {', '.join(self.missing)}")

    def __str__(self):
        return self.args[0]


class OutOfRangeError(UserWarning):
    """Calibrated values fell outside [0, 1] and were clipped.

    Issued through ``warnings.warn``; never raised.
    """
