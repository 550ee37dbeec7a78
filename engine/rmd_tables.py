# engine/rmd_tables.py

"""
RMD divisor lookup and RMD amounts:
- Uniform Lifetime Table supplied by the policy-year tables
- SECURE Act 1.0/2.0 start ages (72 → 73 → 75)
"""

import logging
from typing import Mapping, Optional

from config.tax_tables import PolicyYearTables
from engine.errors import SimulationConfigError

logger = logging.getLogger(__name__)


def rmd_start_age(birth_year: Optional[int], tables: PolicyYearTables) -> int:
    """
    First age at which an RMD is due.

    Without a birth year the table vintage's default start age is used.
    """
    if birth_year is None:
        return tables.rmd_start_age
    if birth_year >= 1960:
        return 75
    if birth_year >= 1951:
        return 73
    return 72


def rmd_divisor(age: int, table: Mapping[int, float]) -> float:
    """
    Returns the IRS divisor for RMD calculations.

    Parameters
    ----------
    age : int
        Age in the distribution calendar year.
    table : Mapping[int, float]
        Uniform Lifetime Table, age -> divisor.

    Returns
    -------
    float
        The divisor at `age`. A missing age uses the nearest tabulated age
        (the younger one on a tie); ages past the end of the table use the
        last entry.
    """
    if not table:
        raise SimulationConfigError("Uniform Lifetime Table is empty")

    if age in table:
        return table[age]

    oldest = max(table)
    if age > oldest:
        return table[oldest]

    nearest = min(table, key=lambda tabulated: (abs(tabulated - age), tabulated))
    return table[nearest]


def required_minimum_distribution(
    prior_year_end_balance: float,
    age: int,
    tables: PolicyYearTables,
    birth_year: Optional[int] = None,
) -> float:
    """RMD for the year: prior year-end tax-deferred balance / divisor (0 before the start age)."""
    if prior_year_end_balance <= 0.0 or age < rmd_start_age(birth_year, tables):
        return 0.0

    divisor = rmd_divisor(age, tables.uniform_lifetime)
    if divisor <= 0.0:
        raise SimulationConfigError(f"RMD divisor for age {age} must be positive, got {divisor}")
    return prior_year_end_balance / divisor


__all__ = ["rmd_start_age", "rmd_divisor", "required_minimum_distribution"]
