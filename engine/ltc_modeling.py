# ltc_modeling.py
#
# Long-term-care cost shocks.
#
# Each living retiree rolls for a new care episode every year (age / gender /
# health adjusted hazard). An episode has a care setting, a log-normal length
# and an annual cost; insurance (elimination period, daily cap, benefit pool)
# pays first, the household pays the rest until a Medicaid spend-down.
#

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np

from config.expense_assumptions import (
    CARE_SETTINGS,
    DEFAULT_LTC_ASSUMPTIONS,
    LTC_INFLATION_RIDERS,
    LTC_REGIONAL_COST_FACTORS,
    MEDICAID_ASSET_LIMIT,
    LTCAssumptions,
)
from models import LTCEvent, LTCInsurancePolicy, PersonParams, SimulationParams

logger = logging.getLogger(__name__)

# Insurers stop billing premiums at this age
PREMIUM_END_AGE = 85


@dataclass(frozen=True)
class LTCYear:
    gross_cost: float = 0.0
    insurance_paid: float = 0.0
    out_of_pocket: float = 0.0
    premiums: float = 0.0
    new_events: Tuple[LTCEvent, ...] = ()


@dataclass
class PersonLTCState:
    event: Optional[LTCEvent] = None
    events_started: int = 0
    elimination_days_left: float = 0.0
    benefit_pool_used: float = 0.0
    history: List[LTCEvent] = field(default_factory=list)


def rider_factor(policy: LTCInsurancePolicy, years_since_purchase: int) -> float:
    """Growth of the daily benefit under the policy's inflation rider."""
    kind, rate = LTC_INFLATION_RIDERS[policy.inflation_protection]
    years = max(0, years_since_purchase)
    if kind == "compound":
        return (1 + rate) ** years
    if kind == "simple":
        return 1 + rate * years
    return 1.0


class LTCModeler:

    def __init__(self, params: SimulationParams, assumptions: LTCAssumptions = DEFAULT_LTC_ASSUMPTIONS):
        self.persons = params.persons
        self.assumptions = assumptions
        self.region_factor = LTC_REGIONAL_COST_FACTORS.get(params.state_of_residence, 1.0)
        self.spend_down_threshold = MEDICAID_ASSET_LIMIT["couple" if params.is_couple else "single"]

    def new_trial(self) -> List[PersonLTCState]:
        return [PersonLTCState() for _ in self.persons]

    # ------------------------------------------------------------------
    # Draw helpers
    # ------------------------------------------------------------------
    def annual_incidence(self, person: PersonParams, age: int) -> float:
        a = self.assumptions
        base = 0.0
        for low, high, prob in a.incidence_by_age:
            if low <= age <= high:
                base = prob
                break
        hazard = base * a.gender_multiplier[person.gender] * a.health_multiplier[person.health_status]
        return min(hazard, 1.0)

    def _care_setting(self, person: PersonParams, age: int, u: float) -> str:
        a = self.assumptions
        young = age < 75 and person.health_status != "poor"
        mix = a.setting_mix_young if young else a.setting_mix_old
        cumulative = np.cumsum(mix)
        index = int(np.searchsorted(cumulative, u * cumulative[-1], side="right"))
        return CARE_SETTINGS[min(index, len(CARE_SETTINGS) - 1)]

    def _duration(self, person: PersonParams, setting: str, z: float) -> float:
        a = self.assumptions
        mean = a.mean_duration_years[setting]
        if person.gender == "female":
            mean *= a.female_duration_multiplier
        # log-normal with the requested mean
        mu = math.log(mean) - 0.5 * a.duration_sigma ** 2
        duration = math.exp(mu + a.duration_sigma * z)
        return min(max(duration, a.min_duration_years), a.max_duration_years)

    def _annual_cost(self, setting: str, u: float) -> float:
        a = self.assumptions
        noise = 1.0 + a.cost_noise * (2.0 * u - 1.0)
        return a.base_annual_cost[setting] * self.region_factor * noise

    # ------------------------------------------------------------------
    # Insurance
    # ------------------------------------------------------------------
    def _insurance_benefit(
        self,
        person: PersonParams,
        state: PersonLTCState,
        age: int,
        cost: float,
        care_fraction: float,
    ) -> float:
        policy = person.ltc_insurance
        if policy is None or cost <= 0.0:
            return 0.0

        # elimination period is served before any benefit is paid
        care_days = 365.0 * care_fraction
        waiting = min(state.elimination_days_left, care_days)
        state.elimination_days_left -= waiting
        covered_days = care_days - waiting

        purchase_age = policy.purchase_age if policy.purchase_age is not None else person.current_age
        factor = rider_factor(policy, age - purchase_age)
        daily_cap = policy.daily_benefit * factor
        pool = policy.daily_benefit * 365.0 * policy.benefit_period_years * factor
        pool_left = max(0.0, pool - state.benefit_pool_used)

        benefit = min(cost, daily_cap * covered_days, pool_left)
        state.benefit_pool_used += benefit
        return benefit

    # ------------------------------------------------------------------
    # One plan year
    # ------------------------------------------------------------------
    def step(
        self,
        states: Sequence[PersonLTCState],
        ages: Sequence[int],
        ltc_index: float,
        household_assets: float,
        rng: np.random.Generator,
        persons: Optional[Sequence[PersonParams]] = None,
    ) -> LTCYear:
        """
        Advances every person's care state by one year.

        Args:
            states: per-person state from new_trial(), mutated in place.
            ages: each person's age this year.
            ltc_index: cumulative LTC-cost inflation since the as-of date.
            household_assets: start-of-year total assets (for the spend-down test).
            rng: the trial's LTC stream. Exactly three uniforms and one normal are
                drawn per person per call, whatever happens.
            persons: this trial's people when their life expectancy was drawn
                per trial; defaults to the configured ones.
        """
        a = self.assumptions
        gross = insurance = out_of_pocket = premiums = 0.0
        new_events = []
        assets = household_assets

        for p, (person, state, age) in enumerate(zip(persons or self.persons, states, ages)):
            u_onset, u_setting, u_cost = rng.random(3)
            z = float(rng.standard_normal())

            if not person.alive_at(age):
                if state.event is not None and state.event.active:
                    state.event.duration_years = state.event.years_elapsed
                state.event = None
                continue

            if state.event is not None and not state.event.active:
                state.event = None

            # --- onset ---
            if (state.event is None
                    and state.events_started < a.max_events_per_person
                    and age >= a.min_age
                    and u_onset < self.annual_incidence(person, age)):
                setting = self._care_setting(person, age, u_setting)
                event = LTCEvent(
                    person_index=p,
                    start_age=age,
                    duration_years=self._duration(person, setting, z),
                    care_setting=setting,
                    annual_cost=self._annual_cost(setting, u_cost),
                )
                state.event = event
                state.events_started += 1
                state.elimination_days_left = (
                    float(person.ltc_insurance.elimination_period_days) if person.ltc_insurance else 0.0
                )
                state.history.append(event)
                new_events.append(event)
                logger.debug(f"LTC onset: person {p} age {age}, {setting}, {event.duration_years:.1f} yrs")

            # --- costs ---
            if state.event is not None and state.event.active:
                event = state.event
                fraction = min(1.0, event.years_remaining)
                cost = event.annual_cost * ltc_index * fraction
                benefit = self._insurance_benefit(person, state, age, cost, fraction)
                owed = cost - benefit

                if event.medicaid_required:
                    owed = 0.0
                elif assets - owed < self.spend_down_threshold:
                    owed = max(0.0, assets - self.spend_down_threshold)
                    event.medicaid_required = True
                    logger.debug(f"Medicaid spend-down reached for person {p} at age {age}")

                assets -= owed
                event.insurance_benefit_paid += benefit
                event.out_of_pocket_paid += owed
                event.years_elapsed += fraction

                gross += cost
                insurance += benefit
                out_of_pocket += owed
            elif person.ltc_insurance is not None and age < PREMIUM_END_AGE:
                premiums += person.ltc_insurance.annual_premium

        return LTCYear(
            gross_cost=gross,
            insurance_paid=insurance,
            out_of_pocket=out_of_pocket,
            premiums=premiums,
            new_events=tuple(new_events),
        )

    def events(self, states: Sequence[PersonLTCState]) -> Tuple[LTCEvent, ...]:
        return tuple(event for state in states for event in state.history)
