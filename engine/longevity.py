# longevity.py
#
# Per-trial life expectancy.
#
#   fixed            every trial uses the entered life expectancy
#   banded           a quartile draw around the entered age (early / central / long tail),
#                    spouses' band picks correlated
#   mortality_table  year-by-year survival rolls against the SSA period life table
#

import math
from dataclasses import replace
from typing import Sequence, Tuple

import numpy as np

from config.mortality_tables import (
    COUPLE_LONGEVITY_CORRELATION,
    EARLY_BAND_MIN_YEARS_AHEAD,
    LONGEVITY_BANDS,
    LONGEVITY_GENDER_SHIFT,
    LONGEVITY_MODELS,
    MAX_DRAWN_LIFE_EXPECTANCY,
    MIN_DRAWN_LIFE_EXPECTANCY,
    MORTALITY_HEALTH_MULTIPLIER,
    PERIOD_LIFE_TABLE,
    TABLE_MAX_AGE,
    TABLE_MIN_AGE,
)
from models import PersonParams

FIXED, BANDED, MORTALITY_TABLE = LONGEVITY_MODELS


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def annual_mortality(person: PersonParams, age: int) -> float:
    """qx for `person` at `age`, health adjusted and capped at 1."""
    if age >= TABLE_MAX_AGE:
        return 1.0
    male, female = PERIOD_LIFE_TABLE[max(age, TABLE_MIN_AGE)]
    base = female if person.gender == "female" else male
    return min(1.0, base * MORTALITY_HEALTH_MULTIPLIER[person.health_status])


def survival_probability(person: PersonParams, target_age: int) -> float:
    """Chance of being alive at `target_age` from current age."""
    survival = 1.0
    for age in range(person.current_age, target_age):
        survival *= 1.0 - annual_mortality(person, age)
    return survival


def banded_life_expectancy(person: PersonParams, u_band: float, u_within: float) -> int:
    base = person.life_expectancy
    for upper, low_offset, high_offset in LONGEVITY_BANDS:
        if u_band < upper:
            break
    low = base + low_offset
    high = min(base + high_offset, MAX_DRAWN_LIFE_EXPECTANCY)
    if low_offset < 0 and high_offset < 0:
        low = max(person.current_age + EARLY_BAND_MIN_YEARS_AHEAD, low)

    drawn = low + u_within * (high - low)
    drawn += LONGEVITY_GENDER_SHIFT.get(person.gender, 0.0)

    floor = max(person.current_age + 1, MIN_DRAWN_LIFE_EXPECTANCY)
    return _round_half_up(max(floor, min(MAX_DRAWN_LIFE_EXPECTANCY, drawn)))


def mortality_table_life_expectancy(person: PersonParams, uniforms: Sequence[float]) -> int:
    """
    Last age the person is alive at: they die in the first year whose uniform
    falls below that age's qx. Always at least one year past current age.
    """
    age = person.current_age
    for u in uniforms:
        if u < annual_mortality(person, age):
            break
        age += 1
    return max(person.current_age + 1, min(age, TABLE_MAX_AGE))


class LongevityModel:
    """Draws each person's life expectancy for one trial."""

    def __init__(self, model: str = FIXED, couple_correlation: float = COUPLE_LONGEVITY_CORRELATION):
        self.model = model
        self.couple_correlation = couple_correlation

    def draw(self, persons: Tuple[PersonParams, ...], rng: np.random.Generator) -> Tuple[PersonParams, ...]:
        if self.model == FIXED:
            return persons

        if self.model == BANDED:
            picks = rng.random(2 * len(persons))
            band_u = [float(picks[0])]
            if len(persons) == 2:
                rho = self.couple_correlation
                band_u.append(rho * band_u[0] + (1 - rho) * float(picks[1]))
            drawn = [
                banded_life_expectancy(person, u, float(picks[len(persons) + i]))
                for i, (person, u) in enumerate(zip(persons, band_u))
            ]
        else:
            drawn = [
                mortality_table_life_expectancy(person, rng.random(max(1, TABLE_MAX_AGE - person.current_age + 1)))
                for person in persons
            ]

        return tuple(replace(person, life_expectancy=age) for person, age in zip(persons, drawn))


