# engine/errors.py
#
# Exception hierarchy for the simulation engine.
#
#   SimulationError
#   ├── SimulationConfigError      bad inputs; the whole batch is rejected
#   │   └── NotPositiveSemiDefinite
#   └── TrialNumericalError        one trial went non-finite; that trial is dropped
#
# Running out of money is NOT an error. It is the DEPLETED state of a trial.


class SimulationError(Exception):
    """Base class for every error raised by the engine."""


class SimulationConfigError(SimulationError, ValueError):
    """Raised before any trial runs when the supplied configuration is unusable."""


class NotPositiveSemiDefinite(SimulationConfigError):
    """The asset-class correlation / covariance matrix cannot be factored."""

    def __init__(self, message: str, min_eigenvalue: float = float("nan")):
        super().__init__(message)
        self.min_eigenvalue = min_eigenvalue


class TrialNumericalError(SimulationError, ArithmeticError):
    """A single trial produced NaN/inf (overflow, bad draw...)."""

    def __init__(self, message: str, trial_index: int = -1, year_index: int = -1):
        super().__init__(message)
        self.trial_index = trial_index
        self.year_index = year_index
