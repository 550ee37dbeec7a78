# engine/simulator.py

import logging
import math
from dataclasses import dataclass, fields, replace
from typing import Dict, List, Optional, Tuple

import numpy as np

from config.expense_assumptions import DEFAULT_LTC_ASSUMPTIONS, LTCAssumptions
from config.tax_tables import PolicyYearTables, get_policy_tables
from engine.errors import TrialNumericalError
from engine.guardrails import GuytonKlingerEngine
from engine.income_calculator import calculate_guaranteed_income
from engine.longevity import LongevityModel
from engine.ltc_modeling import LTCModeler, LTCYear, PersonLTCState
from engine.market_generator import ReturnGenerator, glide_path_allocation
from engine.rmd_tables import required_minimum_distribution, rmd_start_age
from engine.tax_engine import TaxInputs, calculate_taxes, irmaa_surcharge, marginal_rates
from engine.withdrawal_engine import SHORTFALL_EPSILON, WithdrawalEngine, WithdrawalResult
from models import AssetBuckets, PersonParams, Phase, ScenarioResult, SimulationParams, YearlyCashFlow

logger = logging.getLogger(__name__)


def trial_streams(base_seed: int, trial_index: int) -> Tuple[np.random.Generator, ...]:
    """
    Independent (returns, regimes, LTC, longevity) generators for one trial.

    Seeded from (base_seed, trial_index) only, so a trial draws the same
    numbers whichever worker runs it and in whatever order.
    """
    seq = np.random.SeedSequence([base_seed, trial_index])
    return tuple(np.random.default_rng(child) for child in seq.spawn(4))


@dataclass
class _TrialState:
    """Everything one trial mutates. Never shared across trials."""
    params: SimulationParams              # persons carry this trial's drawn life expectancy
    buckets: AssetBuckets
    magi_history: List[float]
    ltc_states: List[PersonLTCState]
    guardrails: Optional[GuytonKlingerEngine]
    ltc_rng: np.random.Generator
    phase: Phase = Phase.ACCUMULATION
    spending: float = 0.0
    retirement_inflation_index: float = 1.0
    prior_real_return: Optional[float] = None
    cumulative_shortfall: float = 0.0
    depleted_at_age: Optional[int] = None

    @property
    def persons(self) -> Tuple[PersonParams, ...]:
        return self.params.persons


class ScenarioSimulator:
    """
    Runs single Monte Carlo trials for one SimulationParams.

    A trial walks the plan year by year through the states
    ACCUMULATION -> RETIRED_PRE_RMD -> RETIRED_POST_RMD -> COMPLETED,
    dropping into DEPLETED (and staying there) the first year spending
    cannot be funded. The simulator itself holds only read-only, per
    configuration data, so one instance can run any number of trials.
    """

    def __init__(
        self,
        params: SimulationParams,
        generator: Optional[ReturnGenerator] = None,
        tables: Optional[PolicyYearTables] = None,
        ltc_assumptions: LTCAssumptions = DEFAULT_LTC_ASSUMPTIONS,
    ):
        # -----------------------
        # STEP 1: Inputs and configuration lookups
        # -----------------------
        self.params = params
        self.primary = params.persons[0]
        self.tables = tables if tables is not None else get_policy_tables(params.tax_policy_year)

        # -----------------------
        # STEP 2: Market model (Cholesky factored once here)
        # -----------------------
        self.generator = generator if generator is not None else ReturnGenerator(
            params.asset_classes,
            params.correlation,
            params.use_regimes,
            distribution=params.return_distribution,
            degrees_of_freedom=params.student_t_df,
        )

        # -----------------------
        # STEP 3: Collaborating engines
        # -----------------------
        self.withdrawal_engine = WithdrawalEngine()
        self.ltc_modeler = LTCModeler(params, ltc_assumptions) if params.ltc_modeling else None
        self.longevity = LongevityModel(params.longevity_model)
        # only an explicit birth year moves the RMD start age off the tables' default
        self.rmd_birth_years = tuple(p.income.birth_year for p in params.persons)

    # =========================================================================
    # 1. PUBLIC ENTRY
    # =========================================================================
    def run(self, trial_index: int, base_seed: int) -> ScenarioResult:
        """Runs one trial. Raises TrialNumericalError if anything goes non-finite."""
        try:
            with np.errstate(over="raise", divide="raise", invalid="raise"):
                return self._run(trial_index, base_seed)
        except FloatingPointError as exc:
            raise TrialNumericalError(str(exc), trial_index=trial_index) from exc

    def _trial_params(self, longevity_rng: np.random.Generator) -> SimulationParams:
        persons = self.longevity.draw(self.params.persons, longevity_rng)
        if persons is self.params.persons:
            return self.params
        return replace(self.params, persons=persons)

    def _run(self, trial_index: int, base_seed: int) -> ScenarioResult:
        returns_rng, regime_rng, ltc_rng, longevity_rng = trial_streams(base_seed, trial_index)
        p = self._trial_params(longevity_rng)

        trial = _TrialState(
            params=p,
            buckets=p.buckets.copy(),
            magi_history=list(p.magi_history),
            ltc_states=self.ltc_modeler.new_trial() if self.ltc_modeler else [],
            guardrails=GuytonKlingerEngine(p.guardrails) if p.use_guardrails else None,
            ltc_rng=ltc_rng,
        )
        regime = self.generator.initial_regime(regime_rng) if p.use_regimes else "normal"
        cash_flows: List[YearlyCashFlow] = []

        for year_idx in range(p.num_years):
            ages = tuple(person.current_age + year_idx for person in trial.persons)

            # returns are drawn every year, depleted or not, to keep streams aligned
            returns = self.generator.draw(returns_rng, regime)
            year_regime = regime
            if p.use_regimes:
                regime = self.generator.next_regime(regime, regime_rng)

            if trial.phase is Phase.DEPLETED:
                cash_flows.append(self._depleted_year(year_idx, ages, returns, year_regime))
                continue

            trial.phase = self._phase_for(trial, ages)
            if trial.phase is Phase.ACCUMULATION:
                record = self._accumulation_year(trial, year_idx, ages, returns, year_regime)
            else:
                record = self._retirement_year(trial, year_idx, ages, returns, year_regime)

            self._check_finite(record, trial_index, year_idx)
            trial.buckets.check_invariant()
            cash_flows.append(record)

            if record.shortfall > 0.0:
                trial.phase = Phase.DEPLETED
                trial.depleted_at_age = ages[0]
                logger.debug(f"Trial {trial_index} depleted at age {ages[0]}")

        success = trial.phase is not Phase.DEPLETED
        if success:
            trial.phase = Phase.COMPLETED

        return ScenarioResult(
            trial_index=trial_index,
            success=success,
            ending_balance=trial.buckets.total_assets - trial.cumulative_shortfall,
            depleted_at_age=trial.depleted_at_age,
            cash_flows=tuple(cash_flows),
            ltc_events=self.ltc_modeler.events(trial.ltc_states) if self.ltc_modeler else (),
            guardrail_counts=dict(trial.guardrails.counts) if trial.guardrails else {},
        )

    # =========================================================================
    # 2. STATE HELPERS
    # =========================================================================
    def _phase_for(self, trial: _TrialState, ages: Tuple[int, ...]) -> Phase:
        if ages[0] < self.primary.retirement_age:
            return Phase.ACCUMULATION

        # RMDs follow the oldest living member
        owner = self._rmd_owner(trial, ages)
        if ages[owner] >= rmd_start_age(self.rmd_birth_years[owner], self.tables):
            return Phase.RETIRED_POST_RMD
        return Phase.RETIRED_PRE_RMD

    def _rmd_owner(self, trial: _TrialState, ages: Tuple[int, ...]) -> int:
        living = [i for i, (person, age) in enumerate(zip(trial.persons, ages)) if person.alive_at(age)]
        return max(living, key=lambda i: ages[i])

    @staticmethod
    def _alive_ages(trial: _TrialState, ages: Tuple[int, ...]) -> Tuple[int, ...]:
        return tuple(age for person, age in zip(trial.persons, ages) if person.alive_at(age))

    def _tax_index(self, year_idx: int) -> float:
        """Cumulative inflation from the tax tables' base year to this plan year."""
        years = self.params.as_of.year + year_idx - self.tables.year
        return (1 + self.params.inflation_rate) ** max(0, years)

    def _allocation(self, ages: Tuple[int, ...]) -> Dict[str, float]:
        p = self.params
        return glide_path_allocation(p.allocation, p.glide_path, ages[0] - self.primary.retirement_age)

    def _ltc_year(self, trial: _TrialState, year_idx: int, ages: Tuple[int, ...], assets: float) -> LTCYear:
        if self.ltc_modeler is None:
            return LTCYear()
        ltc_index = (1 + self.params.ltc_inflation_rate) ** year_idx
        return self.ltc_modeler.step(trial.ltc_states, ages, ltc_index, assets, trial.ltc_rng, persons=trial.persons)

    def _check_finite(self, record: YearlyCashFlow, trial_index: int, year_idx: int) -> None:
        for f in fields(record):
            value = getattr(record, f.name)
            if isinstance(value, float) and not math.isfinite(value):
                raise TrialNumericalError(
                    f"{f.name} is {value} in year {year_idx}", trial_index=trial_index, year_index=year_idx
                )

    def _depleted_year(self, year_idx: int, ages: Tuple[int, ...], returns, regime: str) -> YearlyCashFlow:
        return YearlyCashFlow(
            year_index=year_idx,
            calendar_year=self.params.as_of.year + year_idx,
            ages=ages,
            phase=Phase.DEPLETED,
            investment_return=self.generator.portfolio_return(returns, self._allocation(ages)),
            regime=regime,
        )

    # =========================================================================
    # 3. ACCUMULATION YEAR
    # =========================================================================
    def _accumulation_year(self, trial: _TrialState, year_idx: int, ages, returns, regime: str) -> YearlyCashFlow:
        p = trial.params
        buckets = trial.buckets
        inflation_index = (1 + p.inflation_rate) ** year_idx
        start = buckets.snapshot()

        invested_r = self.generator.portfolio_return(returns, self._allocation(ages))
        cash_r = self.generator.cash_return(returns)

        # --- STEP 1: grow, then add this year's savings ---
        buckets.grow(1 + invested_r, 1 + cash_r)
        contributions = 0.0
        for bucket, amount in p.annual_contributions.items():
            buckets.deposit(bucket, amount * inflation_index)
            contributions += amount * inflation_index

        # --- STEP 2: care costs still hit a working household; premiums come out of wages ---
        income = calculate_guaranteed_income(p, ages, inflation_index)
        pre_tax_savings = p.annual_contributions.get("tax_deferred", 0.0) * inflation_index
        wage_inputs = TaxInputs(
            filing_status=p.filing_status,
            state_of_residence=p.state_of_residence,
            ages=self._alive_ages(trial, ages),
            ordinary_income=max(0.0, income.ordinary - pre_tax_savings),
            social_security=income.social_security,
            magi_two_years_ago=trial.magi_history[-2],
        )
        ltc = self._ltc_year(trial, year_idx, ages, start.total)
        withdrawals = WithdrawalResult()
        if ltc.out_of_pocket > 0.0:
            ordinary_rate, cap_gains_rate = marginal_rates(wage_inputs, self.tables, self._tax_index(year_idx))
            withdrawals = self.withdrawal_engine.execute(
                ltc.out_of_pocket, buckets, 0.0, ordinary_rate, cap_gains_rate
            )

        # --- STEP 3: taxes on earned income (paid out of wages, not the portfolio) ---
        taxes = calculate_taxes(
            replace(wage_inputs,
                    ordinary_income=wage_inputs.ordinary_income + withdrawals.ordinary_income,
                    capital_gains=withdrawals.realized_gains),
            self.tables,
            self._tax_index(year_idx),
        )

        trial.magi_history.append(taxes.magi)
        trial.prior_real_return = (1 + invested_r) / (1 + p.inflation_rate) - 1
        trial.cumulative_shortfall += withdrawals.shortfall

        return YearlyCashFlow(
            year_index=year_idx,
            calendar_year=p.as_of.year + year_idx,
            ages=ages,
            phase=Phase.ACCUMULATION,
            wages=income.wages,
            pension=income.pension,
            part_time=income.part_time,
            other_income=income.other,
            social_security=income.social_security,
            taxable_social_security=taxes.taxable_social_security,
            contributions=contributions,
            withdrawal_cash=withdrawals.from_cash,
            withdrawal_capital_gains=withdrawals.from_capital_gains,
            withdrawal_tax_deferred=withdrawals.from_tax_deferred,
            withdrawal_tax_free=withdrawals.from_tax_free,
            realized_gains=withdrawals.realized_gains,
            investment_return=invested_r,
            ltc_gross_cost=ltc.gross_cost,
            ltc_out_of_pocket=ltc.out_of_pocket,
            ltc_insurance_paid=ltc.insurance_paid,
            ltc_premiums=ltc.premiums,
            ltc_new_episodes=len(ltc.new_events),
            federal_tax=taxes.federal_ordinary,
            capital_gains_tax=taxes.capital_gains,
            state_tax=taxes.state,
            niit=taxes.niit,
            irmaa=taxes.irmaa,
            total_taxes=taxes.total,
            shortfall=withdrawals.shortfall,
            start=start,
            end=buckets.snapshot(),
            regime=regime,
        )

    # =========================================================================
    # 4. RETIREMENT YEAR
    # =========================================================================
    def _retirement_year(self, trial: _TrialState, year_idx: int, ages, returns, regime: str) -> YearlyCashFlow:
        p = trial.params
        buckets = trial.buckets
        inflation_index = (1 + p.inflation_rate) ** year_idx
        tax_index = self._tax_index(year_idx)
        alive_ages = self._alive_ages(trial, ages)
        start = buckets.snapshot()

        invested_r = self.generator.portfolio_return(returns, self._allocation(ages))
        cash_r = self.generator.cash_return(returns)
        growth, cash_growth = 1 + invested_r, 1 + cash_r

        # =========================================================================
        # --- STEP 1: GUARANTEED INCOME ---
        # =========================================================================
        income = calculate_guaranteed_income(p, ages, inflation_index)

        # =========================================================================
        # --- STEP 2: NON-DISCRETIONARY EXPENSES ---
        # =========================================================================
        healthcare = p.expenses.healthcare * (1 + p.healthcare_inflation_rate) ** year_idx
        housing = 0.0
        if p.expenses.housing_end_age is None or ages[0] < p.expenses.housing_end_age:
            housing = p.expenses.housing * inflation_index
        one_time = p.expenses.one_time_at(ages[0]) * inflation_index

        ltc = self._ltc_year(trial, year_idx, ages, start.total)

        # IRMAA looks back two years
        magi_lookback = trial.magi_history[-2]
        irmaa = irmaa_surcharge(magi_lookback, p.filing_status, alive_ages, self.tables, tax_index)

        # =========================================================================
        # --- STEP 3: TAX ON GUARANTEED INCOME ALONE ---
        # =========================================================================
        base_inputs = TaxInputs(
            filing_status=p.filing_status,
            state_of_residence=p.state_of_residence,
            ages=alive_ages,
            ordinary_income=income.ordinary,
            social_security=income.social_security,
            magi_two_years_ago=magi_lookback,
        )
        base_tax = calculate_taxes(base_inputs, self.tables, tax_index).income_tax_total

        other_net_need = (healthcare + housing + one_time + ltc.out_of_pocket + ltc.premiums
                          + irmaa + base_tax - income.total)

        # =========================================================================
        # --- STEP 4: LIVING EXPENSES (GUARDRAILS) ---
        # =========================================================================
        living, guardrail_rule = self._living_expenses(trial, year_idx, inflation_index, other_net_need, start.total)
        net = living + other_net_need
        need = max(0.0, net)

        # =========================================================================
        # --- STEP 5: TIMING, GROWTH BEFORE WITHDRAWALS ---
        # =========================================================================
        if p.withdrawal_timing == "end":
            buckets.grow(growth, cash_growth)
        elif p.withdrawal_timing == "mid":
            buckets.grow(math.sqrt(growth), math.sqrt(cash_growth))

        # =========================================================================
        # --- STEP 6: RMD AND WITHDRAWAL SEQUENCING ---
        # =========================================================================
        rmd_required = 0.0
        if trial.phase is Phase.RETIRED_POST_RMD:
            owner = self._rmd_owner(trial, ages)
            rmd_required = required_minimum_distribution(
                start.tax_deferred, ages[owner], self.tables, self.rmd_birth_years[owner]
            )

        ordinary_rate, cap_gains_rate = marginal_rates(
            replace(base_inputs, ordinary_income=income.ordinary + rmd_required), self.tables, tax_index
        )
        withdrawals = self.withdrawal_engine.execute(need, buckets, rmd_required, ordinary_rate, cap_gains_rate)

        # =========================================================================
        # --- STEP 7: FINAL TAXES, ONE TRUE-UP PASS ---
        # =========================================================================
        def _final_taxes(w):
            return calculate_taxes(
                replace(base_inputs,
                        ordinary_income=income.ordinary + w.ordinary_income,
                        capital_gains=w.realized_gains),
                self.tables,
                tax_index,
            )

        taxes = _final_taxes(withdrawals)
        true_up = taxes.income_tax_total - (base_tax + withdrawals.estimated_tax)
        if true_up > SHORTFALL_EPSILON and withdrawals.shortfall == 0.0:
            top_up = self.withdrawal_engine.execute(true_up, buckets, 0.0, ordinary_rate, cap_gains_rate)
            withdrawals = withdrawals.merge(top_up)
            taxes = _final_taxes(withdrawals)
        elif true_up < -SHORTFALL_EPSILON:
            buckets.deposit("cash_equivalents", -true_up)

        # income beyond spending is saved
        if net < 0.0:
            buckets.deposit("cash_equivalents", -net)

        # =========================================================================
        # --- STEP 8: TIMING, GROWTH AFTER WITHDRAWALS ---
        # =========================================================================
        if p.withdrawal_timing == "start":
            buckets.grow(growth, cash_growth)
        elif p.withdrawal_timing == "mid":
            buckets.grow(math.sqrt(growth), math.sqrt(cash_growth))

        # =========================================================================
        # --- STEP 9: CARRY STATE FORWARD ---
        # =========================================================================
        trial.magi_history.append(taxes.magi)
        trial.prior_real_return = growth / (1 + p.inflation_rate) - 1
        trial.cumulative_shortfall += withdrawals.shortfall

        return YearlyCashFlow(
            year_index=year_idx,
            calendar_year=p.as_of.year + year_idx,
            ages=ages,
            phase=trial.phase,
            wages=income.wages,
            pension=income.pension,
            part_time=income.part_time,
            other_income=income.other,
            social_security=income.social_security,
            taxable_social_security=taxes.taxable_social_security,
            rmd=withdrawals.rmd,
            withdrawal_cash=withdrawals.from_cash,
            withdrawal_capital_gains=withdrawals.from_capital_gains,
            withdrawal_tax_deferred=withdrawals.from_tax_deferred,
            withdrawal_tax_free=withdrawals.from_tax_free,
            realized_gains=withdrawals.realized_gains,
            investment_return=invested_r,
            living=living,
            healthcare=healthcare,
            housing=housing,
            one_time=one_time,
            ltc_gross_cost=ltc.gross_cost,
            ltc_out_of_pocket=ltc.out_of_pocket,
            ltc_insurance_paid=ltc.insurance_paid,
            ltc_premiums=ltc.premiums,
            ltc_new_episodes=len(ltc.new_events),
            federal_tax=taxes.federal_ordinary,
            capital_gains_tax=taxes.capital_gains,
            state_tax=taxes.state,
            niit=taxes.niit,
            irmaa=irmaa,
            total_taxes=taxes.income_tax_total + irmaa,
            shortfall=withdrawals.shortfall,
            start=start,
            end=buckets.snapshot(),
            guardrail_adjustment=guardrail_rule,
            regime=regime,
        )

    def _living_expenses(
        self,
        trial: _TrialState,
        year_idx: int,
        inflation_index: float,
        other_net_need: float,
        portfolio_value: float,
    ) -> Tuple[float, Optional[str]]:
        """Discretionary living expenses for the year and the guardrail rule that shaped them."""
        p = trial.params
        planned = p.expenses.living * inflation_index
        guardrails = trial.guardrails

        if guardrails is None:
            return planned, None

        if not guardrails.started:
            guardrails.start(planned, other_net_need, portfolio_value)
            trial.spending = planned
            trial.retirement_inflation_index = inflation_index
            return planned, None

        decision = guardrails.apply(
            prior_spending=trial.spending,
            inflation_rate=p.inflation_rate,
            prior_real_return=trial.prior_real_return,
            other_net_need=other_net_need,
            portfolio_value=portfolio_value,
            remaining_years=p.num_years - 1 - year_idx,
            inflation_since_start=inflation_index / trial.retirement_inflation_index,
        )
        trial.spending = decision.spending
        return decision.spending, decision.rule
