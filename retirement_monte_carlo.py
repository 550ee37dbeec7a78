import logging
import multiprocessing as mp

import pandas as pd

from engine.pool import BANDS, run_monte_carlo
from models import (
    AssetBuckets,
    ExpenseSchedule,
    IncomeStreams,
    PersonParams,
    SimulationParams,
)
from utils.currency import format_currency_output

# =============================================================================
# USER INPUT SECTION - EDIT THIS PART WITH YOUR DATA
# =============================================================================

current_age = 50
retirement_age = 65
end_age = 85
n_simulations = 1000
seed = 20251101

# Expected return / volatility of the invested portfolio; cash earns a fixed rate
portfolio_mu = 0.07
portfolio_sigma = 0.12
cash_mu = 0.02

starting_assets = {
    "tax_deferred": 700_000,
    "tax_free": 200_000,
    "capital_gains": 100_000,
    "cash_equivalents": 0,
}

living_expenses = 50_000          # today's dollars, grows with inflation
guaranteed_income = 20_000        # flat pension from retirement

use_guardrails = False
withdrawal_timing = "end"         # "start" | "mid" | "end"
longevity_model = "fixed"         # "fixed" | "banded" | "mortality_table"


def build_reference_params() -> SimulationParams:
    person = PersonParams(
        current_age=current_age,
        retirement_age=retirement_age,
        life_expectancy=end_age,
        income=IncomeStreams(pension=guaranteed_income, pension_start_age=retirement_age),
    )
    return SimulationParams(
        persons=(person,),
        buckets=AssetBuckets(**starting_assets),
        expenses=ExpenseSchedule(living=living_expenses),
        asset_classes={"portfolio": (portfolio_mu, portfolio_sigma), "cash": (cash_mu, 0.0)},
        correlation=((1.0, 0.0), (0.0, 1.0)),
        allocation={"portfolio": 1.0, "cash": 0.0},
        use_guardrails=use_guardrails,
        withdrawal_timing=withdrawal_timing,
        longevity_model=longevity_model,
        random_seed=seed,
    )


def bands_table(result) -> pd.DataFrame:
    frame = pd.DataFrame.from_dict({i: band.to_dict() for i, band in result.per_year.items()}, orient="index")
    frame.index.name = "year"
    return frame.set_index("age", append=True)


# =============================================================================
# RUN SIMULATIONS (parallel)
# =============================================================================

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    params = build_reference_params()
    result = run_monte_carlo(params, runs=n_simulations, mode=BANDS, workers=max(1, mp.cpu_count() - 1))

    print(f"\nTrials: {result.completed_trials:,} completed, {result.dropped_trials} dropped, "
          f"{result.cancelled_trials} cancelled")
    print(f"Success rate: {result.probability_of_success:.1%}")
    print(f"Median ending balance: {format_currency_output(result.median_ending_balance)}")
    print(f"10th percentile ending balance: {format_currency_output(result.percentile_10)}")
    print(f"90th percentile ending balance: {format_currency_output(result.percentile_90)}")
    if result.guardrail_stats:
        print(f"Guardrail firings: {result.guardrail_stats}")
    risk = result.risk
    print(f"CVaR 95% / 99%: {format_currency_output(risk.cvar_95)} / {format_currency_output(risk.cvar_99)}")
    print(f"Median-trial max drawdown: {risk.max_drawdown_pct:.1f}% over {risk.drawdown_years} years, "
          f"ulcer index {risk.ulcer_index:.1f}")
    print(f"Failures with early losses: {risk.sequence_risk_score:.0%}")

    table = bands_table(result)
    with pd.option_context("display.float_format", "{:,.0f}".format, "display.max_rows", None):
        print("\nPortfolio balance bands (nominal $):")
        print(table[["p05", "p25", "p50", "p75", "p95"]].iloc[::5])
