# income_calculator.py
#
# Guaranteed income per plan year: Salary, Social Security, Pension,
# part-time work and other guaranteed income (annuities).
# Every function is stateless; `ages` holds each person's age in the plan year
# whether or not that person is still alive.
#

from dataclasses import dataclass
from datetime import date
from typing import Sequence, Tuple

from models import PersonParams, SimulationParams
from utils.ss_utils import get_claim_age_multiplier


@dataclass(frozen=True)
class GuaranteedIncome:
    wages: float = 0.0
    social_security: float = 0.0
    pension: float = 0.0
    part_time: float = 0.0
    other: float = 0.0

    @property
    def total(self) -> float:
        return self.wages + self.social_security + self.pension + self.part_time + self.other

    @property
    def ordinary(self) -> float:
        """Income taxed at ordinary rates (Social Security is handled separately)."""
        return self.wages + self.pension + self.part_time + self.other


def birth_year_of(person: PersonParams, as_of: date) -> int:
    if person.income.birth_year is not None:
        return person.income.birth_year
    return as_of.year - person.current_age


def _alive(persons: Sequence[PersonParams], ages: Sequence[int]) -> Tuple[bool, ...]:
    return tuple(p.alive_at(age) for p, age in zip(persons, ages))


def calculate_salary_income(
    persons: Sequence[PersonParams],
    ages: Sequence[int],
    inflation_index: float,
) -> float:
    """
    Total annual salary for everyone still working, adjusted for cumulative
    inflation. Salary stops at each person's retirement age.
    """
    total_salary = 0.0
    for person, age, alive in zip(persons, ages, _alive(persons, ages)):
        if alive and age < person.retirement_age:
            total_salary += person.income.salary * inflation_index
    return total_salary


def calculate_social_security(
    persons: Sequence[PersonParams],
    ages: Sequence[int],
    as_of: date,
    inflation_index: float,
) -> float:
    """
    Household Social Security benefits (COLA'd with inflation).

    A surviving spouse keeps the larger of their own benefit and the
    deceased spouse's benefit.
    """
    alive = _alive(persons, ages)

    own = []
    for person, age in zip(persons, ages):
        income = person.income
        if income.social_security_benefit <= 0 or age < income.social_security_claim_age:
            own.append(0.0)
            continue
        multiplier = get_claim_age_multiplier(birth_year_of(person, as_of), income.social_security_claim_age)
        own.append(income.social_security_benefit * multiplier * inflation_index)

    if len(persons) == 2 and alive.count(True) == 1:
        survivor = alive.index(True)
        deceased = 1 - survivor
        # survivor benefits are available from 60
        if ages[survivor] >= 60:
            return max(own[survivor], own[deceased])
        return own[survivor]

    return sum(benefit for benefit, is_alive in zip(own, alive) if is_alive)


def calculate_pension_income(
    persons: Sequence[PersonParams],
    ages: Sequence[int],
    inflation_rate: float,
) -> float:
    """
    Pension income. The stated amount is the nominal payment in the first
    pension year; with a COLA it then grows with inflation. When the holder
    has died, a spouse receives `pension_survivor_pct` of it.
    """
    alive = _alive(persons, ages)
    total_pension = 0.0

    for i, (person, age) in enumerate(zip(persons, ages)):
        income = person.income
        if income.pension <= 0 or age < income.pension_start_age:
            continue

        amount = income.pension
        if income.pension_cola:
            amount *= (1 + inflation_rate) ** (age - income.pension_start_age)

        if alive[i]:
            total_pension += amount
        elif len(persons) == 2 and alive[1 - i]:
            total_pension += amount * income.pension_survivor_pct

    return total_pension


def calculate_part_time_income(
    persons: Sequence[PersonParams],
    ages: Sequence[int],
    inflation_index: float,
) -> float:
    total = 0.0
    for person, age, alive in zip(persons, ages, _alive(persons, ages)):
        if alive and person.retirement_age <= age < person.income.part_time_end_age:
            total += person.income.part_time_income * inflation_index
    return total


def calculate_other_income(
    persons: Sequence[PersonParams],
    ages: Sequence[int],
    inflation_index: float,
) -> float:
    total = 0.0
    for person, age, alive in zip(persons, ages, _alive(persons, ages)):
        if alive and age >= person.retirement_age:
            total += person.income.other_guaranteed_income * inflation_index
    return total


def calculate_guaranteed_income(
    params: SimulationParams,
    ages: Sequence[int],
    inflation_index: float,
) -> GuaranteedIncome:
    persons = params.persons
    return GuaranteedIncome(
        wages=calculate_salary_income(persons, ages, inflation_index),
        social_security=calculate_social_security(persons, ages, params.as_of, inflation_index),
        pension=calculate_pension_income(persons, ages, params.inflation_rate),
        part_time=calculate_part_time_income(persons, ages, inflation_index),
        other=calculate_other_income(persons, ages, inflation_index),
    )
