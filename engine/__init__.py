# engine/__init__.py

# Only the error types live at package level. Importing the engines here would
# pull models -> config -> engine.errors back through this file.
from .errors import (
    NotPositiveSemiDefinite,
    SimulationConfigError,
    SimulationError,
    TrialNumericalError,
)
