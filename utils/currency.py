# utils/currency.py
import math
from numbers import Real
from typing import Optional

from engine.errors import SimulationConfigError


# ----------------------------------------------------------------------
# Numeric boundary checks
# ----------------------------------------------------------------------

def _is_number(value) -> bool:
    # bool is an int subclass; "True" dollars is never what the caller meant
    return isinstance(value, Real) and not isinstance(value, bool)


def require_amount(name: str, value, minimum: float = 0.0) -> float:
    """
    Validates a dollar amount. Strings like "$140,000" are rejected, not
    cleaned: the caller is expected to hand over real numbers.
    """
    if not _is_number(value):
        raise SimulationConfigError(f"{name} must be a number, got {type(value).__name__}: {value!r}")
    value = float(value)
    if not math.isfinite(value):
        raise SimulationConfigError(f"{name} must be finite, got {value}")
    if value < minimum:
        raise SimulationConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def require_rate(name: str, value, low: float = -1.0, high: float = 1.0) -> float:
    """Validates a decimal rate (0.23 == 23%) within [low, high]."""
    if not _is_number(value):
        raise SimulationConfigError(f"{name} must be a number, got {type(value).__name__}: {value!r}")
    value = float(value)
    if not math.isfinite(value) or not (low <= value <= high):
        raise SimulationConfigError(f"{name} must be within [{low}, {high}], got {value}")
    return value


def require_age(name: str, value, low: int = 0, high: int = 120) -> int:
    if not isinstance(value, int) or isinstance(value, bool):
        raise SimulationConfigError(f"{name} must be an integer age, got {value!r}")
    if not (low <= value <= high):
        raise SimulationConfigError(f"{name} must be within [{low}, {high}], got {value}")
    return value


def require_choice(name: str, value, choices) -> str:
    if value not in choices:
        raise SimulationConfigError(f"{name} must be one of {sorted(choices)}, got {value!r}")
    return value


def format_currency_output(val: Optional[float], decimals: int = 0) -> str:
    """
    Formats a float/int into a clean currency string ($1,234,567.00).
    """
    if val is None:
        val = 0.0
    if val < 0:
        return f"-${abs(val):,.{decimals}f}"
    return f"${val:,.{decimals}f}"
