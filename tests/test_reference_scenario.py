import pytest

from engine.pool import run_monte_carlo
from tests.helpers import make_params

RISK_FREE = 0.02
INFLATION = 0.025


def sanity_floor(params) -> float:
    """Starting assets grown at the risk-free rate, less every year's nominal net draw."""
    person = params.persons[0]
    grown = params.buckets.total_assets * (1 + RISK_FREE) ** params.num_years
    draws = 0.0
    for year in range(params.num_years):
        if person.current_age + year >= person.retirement_age:
            draws += max(0.0, params.expenses.living * (1 + INFLATION) ** year - person.income.pension)
    return grown - draws


def test_reference_scenario_is_not_degenerate(reference_params):
    result = run_monte_carlo(reference_params, runs=1000, seed=20251101, workers=1)

    assert result.completed_trials == 1000
    assert result.dropped_trials == 0
    assert 0.0 < result.probability_of_success < 1.0
    assert result.median_ending_balance >= sanity_floor(reference_params)
    assert result.percentile_10 <= result.median_ending_balance <= result.percentile_90


def test_success_has_no_cliffs_across_small_expense_steps():
    # $200/month steps; same seed so every level sees the same markets
    levels = [60_000 + 2_400 * step for step in range(5)]
    probabilities = [
        run_monte_carlo(make_params(living=living), runs=300, seed=77, workers=1).probability_of_success
        for living in levels
    ]
    jumps = [abs(b - a) for a, b in zip(probabilities, probabilities[1:])]
    assert max(jumps) < 0.20
    assert probabilities[0] >= probabilities[-1]
