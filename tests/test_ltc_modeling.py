from dataclasses import replace

import numpy as np
import pytest

from config.expense_assumptions import DEFAULT_LTC_ASSUMPTIONS, MEDICAID_ASSET_LIMIT
from engine.ltc_modeling import PREMIUM_END_AGE, LTCModeler, rider_factor
from models import LTCInsurancePolicy
from tests.helpers import make_params, make_person

# every year starts an episode, every episode costs 100k nationally (88k in TX) for exactly two years
ALWAYS_TWO_YEARS = replace(
    DEFAULT_LTC_ASSUMPTIONS,
    incidence_by_age=((0, 200, 2.0),),
    base_annual_cost={"home": 100_000, "assisted": 100_000, "nursing": 100_000},
    cost_noise=0.0,
    min_duration_years=2.0,
    max_duration_years=2.0,
)
NEVER = replace(DEFAULT_LTC_ASSUMPTIONS, incidence_by_age=((0, 200, 0.0),))
TX_COST = 88_000


def modeler_for(assumptions, policy=None, age=70, life_expectancy=95):
    person = make_person(current_age=age, retirement_age=65, life_expectancy=life_expectancy, ltc_insurance=policy)
    return LTCModeler(make_params(person=person, state_of_residence="TX"), assumptions)


def test_forced_onset_without_insurance_is_all_out_of_pocket():
    modeler = modeler_for(ALWAYS_TWO_YEARS)
    states = modeler.new_trial()
    year = modeler.step(states, (70,), 1.0, 1_000_000, np.random.default_rng(1))

    assert len(year.new_events) == 1
    assert year.gross_cost == pytest.approx(TX_COST)
    assert year.out_of_pocket == pytest.approx(TX_COST)
    assert year.insurance_paid == 0.0
    assert states[0].event.start_age == 70


def test_one_active_episode_and_bounded_count():
    modeler = modeler_for(ALWAYS_TWO_YEARS)
    states = modeler.new_trial()
    rng = np.random.default_rng(2)
    for age in range(70, 95):
        year = modeler.step(states, (age,), 1.0, 10_000_000, rng)
        assert len(year.new_events) <= 1
    history = modeler.events(states)
    assert len(history) == ALWAYS_TWO_YEARS.max_events_per_person
    # second episode starts only after the first has ended
    assert history[1].start_age >= history[0].start_age + 2


def test_duration_respects_bounds():
    modeler = modeler_for(replace(DEFAULT_LTC_ASSUMPTIONS, incidence_by_age=((0, 200, 2.0),)))
    rng = np.random.default_rng(3)
    for _ in range(200):
        states = modeler.new_trial()
        modeler.step(states, (80,), 1.0, 1_000_000, rng)
        duration = states[0].event.duration_years
        assert DEFAULT_LTC_ASSUMPTIONS.min_duration_years <= duration <= DEFAULT_LTC_ASSUMPTIONS.max_duration_years


def test_insurance_pays_up_to_daily_cap_then_pool_runs_out():
    policy = LTCInsurancePolicy(daily_benefit=200, benefit_period_years=1, elimination_period_days=0)
    modeler = modeler_for(ALWAYS_TWO_YEARS, policy)
    states = modeler.new_trial()
    rng = np.random.default_rng(4)

    first = modeler.step(states, (70,), 1.0, 1_000_000, rng)
    assert first.insurance_paid == pytest.approx(200 * 365)
    assert first.out_of_pocket == pytest.approx(TX_COST - 200 * 365)

    second = modeler.step(states, (71,), 1.0, 1_000_000, rng)
    assert second.insurance_paid == 0.0
    assert second.out_of_pocket == pytest.approx(TX_COST)


def test_elimination_period_delays_benefits():
    policy = LTCInsurancePolicy(daily_benefit=200, benefit_period_years=3, elimination_period_days=90)
    modeler = modeler_for(ALWAYS_TWO_YEARS, policy)
    states = modeler.new_trial()
    year = modeler.step(states, (70,), 1.0, 1_000_000, np.random.default_rng(5))
    assert year.insurance_paid == pytest.approx(200 * (365 - 90))


def test_medicaid_spend_down_caps_out_of_pocket():
    modeler = modeler_for(ALWAYS_TWO_YEARS)
    states = modeler.new_trial()
    rng = np.random.default_rng(6)
    limit = MEDICAID_ASSET_LIMIT["single"]

    first = modeler.step(states, (70,), 1.0, 50_000, rng)
    assert first.out_of_pocket == pytest.approx(50_000 - limit)
    assert states[0].event.medicaid_required

    second = modeler.step(states, (71,), 1.0, limit, rng)
    assert second.out_of_pocket == 0.0


def test_premiums_stop_at_end_age():
    policy = LTCInsurancePolicy(daily_benefit=150, benefit_period_years=3, annual_premium=3_000)
    modeler = modeler_for(NEVER, policy)
    states = modeler.new_trial()
    rng = np.random.default_rng(7)
    assert modeler.step(states, (70,), 1.0, 1_000_000, rng).premiums == pytest.approx(3_000)
    assert modeler.step(states, (PREMIUM_END_AGE,), 1.0, 1_000_000, rng).premiums == 0.0


def test_no_care_after_death():
    modeler = modeler_for(ALWAYS_TWO_YEARS, life_expectancy=75)
    states = modeler.new_trial()
    year = modeler.step(states, (76,), 1.0, 1_000_000, np.random.default_rng(8))
    assert year.gross_cost == 0.0
    assert not year.new_events


def test_step_draws_fixed_numbers_per_person():
    modeler = modeler_for(NEVER)
    a = np.random.default_rng(10)
    b = np.random.default_rng(10)
    modeler.step(modeler.new_trial(), (70,), 1.0, 1_000_000, a)
    b.random(3)
    b.standard_normal()
    assert a.random() == b.random()


def test_rider_factor():
    compound = LTCInsurancePolicy(daily_benefit=100, benefit_period_years=2, inflation_protection="3%_compound")
    simple = LTCInsurancePolicy(daily_benefit=100, benefit_period_years=2, inflation_protection="5%_simple")
    flat = LTCInsurancePolicy(daily_benefit=100, benefit_period_years=2)
    assert rider_factor(compound, 10) == pytest.approx(1.03 ** 10)
    assert rider_factor(simple, 10) == pytest.approx(1.5)
    assert rider_factor(flat, 10) == 1.0
