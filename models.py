# models.py
from dataclasses import dataclass, field, fields, replace
from datetime import date
from enum import Enum
import math
from typing import Any, Dict, Optional, Tuple

import pandas as pd

from config.expense_assumptions import CARE_SETTINGS, LTC_INFLATION_RIDERS
from config.market_assumptions import (
    DEFAULT_ALLOCATION,
    DEFAULT_ASSET_CLASSES,
    GLIDE_PATHS,
    RETURN_DISTRIBUTIONS,
    STUDENT_T_DF,
    corr_matrix,
    healthcare_inflation_mu,
    long_term_inflation_mu,
    ltc_inflation_mu,
)
from config.mortality_tables import LONGEVITY_MODELS
from config.tax_tables import FILING_STATUSES
from engine.errors import SimulationConfigError, TrialNumericalError
from utils.currency import require_age, require_amount, require_choice, require_rate

BUCKET_NAMES = ("tax_deferred", "tax_free", "capital_gains", "cash_equivalents")
GENDERS = ("male", "female")
HEALTH_STATUSES = ("excellent", "good", "fair", "poor")
WITHDRAWAL_TIMINGS = ("start", "mid", "end")


class Phase(str, Enum):
    ACCUMULATION = "accumulation"
    RETIRED_PRE_RMD = "retired_pre_rmd"
    RETIRED_POST_RMD = "retired_post_rmd"
    DEPLETED = "depleted"
    COMPLETED = "completed"


# =============================================================================
# People & income
# =============================================================================

@dataclass(frozen=True)
class IncomeStreams:
    """Annual amounts in today's dollars unless noted."""
    salary: float = 0.0
    social_security_benefit: float = 0.0      # benefit at full retirement age
    social_security_claim_age: float = 67
    birth_year: Optional[int] = None
    pension: float = 0.0                      # nominal at pension start unless pension_cola
    pension_start_age: int = 65
    pension_cola: bool = False
    pension_survivor_pct: float = 0.0
    part_time_income: float = 0.0
    part_time_end_age: int = 0
    other_guaranteed_income: float = 0.0      # annuities etc., from retirement, inflation-adjusted

    def __post_init__(self):
        for name in ("salary", "social_security_benefit", "pension", "part_time_income", "other_guaranteed_income"):
            require_amount(name, getattr(self, name))
        require_rate("social_security_claim_age", self.social_security_claim_age, 62, 70)
        require_age("pension_start_age", self.pension_start_age)
        require_age("part_time_end_age", self.part_time_end_age)
        require_rate("pension_survivor_pct", self.pension_survivor_pct, 0.0, 1.0)
        if self.birth_year is not None and (not isinstance(self.birth_year, int) or isinstance(self.birth_year, bool)):
            raise SimulationConfigError(f"birth_year must be an integer, got {self.birth_year!r}")


@dataclass(frozen=True)
class LTCInsurancePolicy:
    daily_benefit: float
    benefit_period_years: float
    elimination_period_days: int = 90
    inflation_protection: str = "none"
    annual_premium: float = 0.0
    purchase_age: Optional[int] = None        # rider growth starts here; defaults to current age

    def __post_init__(self):
        require_amount("daily_benefit", self.daily_benefit)
        require_amount("benefit_period_years", self.benefit_period_years)
        require_amount("elimination_period_days", self.elimination_period_days)
        require_amount("annual_premium", self.annual_premium)
        require_choice("inflation_protection", self.inflation_protection, LTC_INFLATION_RIDERS)
        if self.purchase_age is not None:
            require_age("purchase_age", self.purchase_age)


@dataclass(frozen=True)
class PersonParams:
    current_age: int
    retirement_age: int
    life_expectancy: int
    gender: str = "female"
    health_status: str = "good"
    income: IncomeStreams = field(default_factory=IncomeStreams)
    ltc_insurance: Optional[LTCInsurancePolicy] = None

    def __post_init__(self):
        require_age("current_age", self.current_age)
        require_age("retirement_age", self.retirement_age)
        require_age("life_expectancy", self.life_expectancy)
        require_choice("gender", self.gender, GENDERS)
        require_choice("health_status", self.health_status, HEALTH_STATUSES)
        if self.life_expectancy <= self.current_age:
            raise SimulationConfigError(
                f"life_expectancy ({self.life_expectancy}) must be greater than current_age ({self.current_age})"
            )

    def alive_at(self, age: int) -> bool:
        return age <= self.life_expectancy


# =============================================================================
# Money
# =============================================================================

@dataclass(frozen=True)
class BucketSnapshot:
    tax_deferred: float
    tax_free: float
    capital_gains: float
    cash_equivalents: float
    cost_basis: float
    total: float

    @classmethod
    def empty(cls) -> "BucketSnapshot":
        return cls(0.0, 0.0, 0.0, 0.0, 0.0, 0.0)


@dataclass
class AssetBuckets:
    """
    Balances per tax treatment. Each trial works on its own copy; all changes
    go through withdraw/deposit/grow so total_assets always equals the sum of
    the four buckets and no bucket goes negative.
    """
    tax_deferred: float = 0.0
    tax_free: float = 0.0
    capital_gains: float = 0.0
    cash_equivalents: float = 0.0
    cost_basis: Optional[float] = None        # None -> no embedded gain
    total_assets: float = field(init=False, default=0.0)

    def __post_init__(self):
        for name in BUCKET_NAMES:
            setattr(self, name, require_amount(name, getattr(self, name)))
        if self.cost_basis is None:
            self.cost_basis = self.capital_gains
        else:
            self.cost_basis = require_amount("cost_basis", self.cost_basis)
        self._refresh()

    def _refresh(self):
        for name in BUCKET_NAMES:
            if getattr(self, name) < 0.0:
                setattr(self, name, 0.0)
        if self.cost_basis < 0.0:
            self.cost_basis = 0.0
        self.total_assets = self.tax_deferred + self.tax_free + self.capital_gains + self.cash_equivalents

    def copy(self) -> "AssetBuckets":
        return replace(self)

    def gain_fraction(self) -> float:
        """Share of a capital_gains withdrawal that is taxable gain."""
        if self.capital_gains <= 0.0:
            return 0.0
        return min(1.0, max(0.0, 1.0 - self.cost_basis / self.capital_gains))

    def withdraw(self, bucket: str, amount: float) -> float:
        """Takes up to `amount` from `bucket`; returns what was actually taken."""
        if bucket not in BUCKET_NAMES:
            raise KeyError(bucket)
        balance = getattr(self, bucket)
        taken = min(balance, max(0.0, amount))
        if taken <= 0.0:
            return 0.0
        if bucket == "capital_gains":
            # basis leaves pro rata with the shares sold
            self.cost_basis -= self.cost_basis * (taken / balance)
        setattr(self, bucket, balance - taken)
        self._refresh()
        return taken

    def deposit(self, bucket: str, amount: float) -> None:
        if bucket not in BUCKET_NAMES:
            raise KeyError(bucket)
        if amount <= 0.0:
            return
        setattr(self, bucket, getattr(self, bucket) + amount)
        if bucket == "capital_gains":
            self.cost_basis += amount
        self._refresh()

    def grow(self, invested_factor: float, cash_factor: float) -> None:
        self.tax_deferred *= invested_factor
        self.tax_free *= invested_factor
        self.capital_gains *= invested_factor
        self.cash_equivalents *= cash_factor
        self._refresh()

    def snapshot(self) -> BucketSnapshot:
        return BucketSnapshot(
            tax_deferred=self.tax_deferred,
            tax_free=self.tax_free,
            capital_gains=self.capital_gains,
            cash_equivalents=self.cash_equivalents,
            cost_basis=self.cost_basis,
            total=self.total_assets,
        )

    def check_invariant(self) -> None:
        values = [getattr(self, name) for name in BUCKET_NAMES]
        if not all(math.isfinite(v) for v in values + [self.cost_basis, self.total_assets]):
            raise TrialNumericalError(f"non-finite bucket balance: {self.snapshot()}")
        if min(values) < 0.0 or abs(sum(values) - self.total_assets) > 1e-6 * max(1.0, self.total_assets):
            raise TrialNumericalError(f"bucket invariant violated: {self.snapshot()}")


# =============================================================================
# Expenses & strategy
# =============================================================================

@dataclass(frozen=True)
class ExpenseSchedule:
    living: float
    healthcare: float = 0.0
    housing: float = 0.0
    housing_end_age: Optional[int] = None
    one_time: Tuple[Tuple[int, float], ...] = ()

    def __post_init__(self):
        require_amount("living", self.living)
        require_amount("healthcare", self.healthcare)
        require_amount("housing", self.housing)
        if self.housing_end_age is not None:
            require_age("housing_end_age", self.housing_end_age)
        cleaned = []
        for entry in self.one_time:
            if len(entry) != 2:
                raise SimulationConfigError(f"one_time entries must be (age, amount), got {entry!r}")
            age, amount = entry
            cleaned.append((require_age("one_time age", age), require_amount("one_time amount", amount)))
        object.__setattr__(self, "one_time", tuple(cleaned))

    def one_time_at(self, age: int) -> float:
        return sum(amount for at_age, amount in self.one_time if at_age == age)


@dataclass(frozen=True)
class GuardrailConfig:
    guard_band: float = 0.20          # +/- 20% around the initial withdrawal rate
    cut_pct: float = 0.10
    raise_pct: float = 0.10
    pmr_cut_pct: float = 0.05         # portfolio-management rule
    floor_pct: float = 0.80
    ceiling_pct: float = 1.20
    min_remaining_years: int = 15

    def __post_init__(self):
        for name in ("guard_band", "cut_pct", "raise_pct", "pmr_cut_pct"):
            require_rate(name, getattr(self, name), 0.0, 1.0)
        require_rate("floor_pct", self.floor_pct, 0.0, 1.0)
        require_rate("ceiling_pct", self.ceiling_pct, 1.0, 10.0)
        require_age("min_remaining_years", self.min_remaining_years)


def _default_correlation() -> Tuple[Tuple[float, ...], ...]:
    return tuple(tuple(float(x) for x in row) for row in corr_matrix)


@dataclass(frozen=True)
class SimulationParams:
    """
    Everything one batch of trials needs. Built once by the caller and shared
    read-only with every worker.
    """
    persons: Tuple[PersonParams, ...]
    buckets: AssetBuckets
    expenses: ExpenseSchedule
    asset_classes: Dict[str, Tuple[float, float]] = field(default_factory=lambda: dict(DEFAULT_ASSET_CLASSES))
    correlation: Tuple[Tuple[float, ...], ...] = field(default_factory=_default_correlation)
    allocation: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_ALLOCATION))
    annual_contributions: Dict[str, float] = field(default_factory=dict)
    inflation_rate: float = long_term_inflation_mu
    healthcare_inflation_rate: float = healthcare_inflation_mu
    ltc_inflation_rate: float = ltc_inflation_mu
    filing_status: str = "single"
    state_of_residence: str = "TX"
    use_guardrails: bool = False
    guardrails: GuardrailConfig = field(default_factory=GuardrailConfig)
    withdrawal_timing: str = "end"
    use_regimes: bool = False
    return_distribution: str = "normal"
    student_t_df: int = STUDENT_T_DF
    glide_path: Optional[str] = None
    ltc_modeling: bool = True
    longevity_model: str = "fixed"
    random_seed: Optional[int] = None
    as_of: date = date(2026, 1, 1)
    policy_year: Optional[int] = None
    magi_history: Tuple[float, float] = (0.0, 0.0)   # (two years ago, last year)

    def __post_init__(self):
        persons = tuple(self.persons)
        if not 1 <= len(persons) <= 2:
            raise SimulationConfigError(f"persons must hold one or two people, got {len(persons)}")
        for person in persons:
            if not isinstance(person, PersonParams):
                raise SimulationConfigError(f"persons entries must be PersonParams, got {type(person).__name__}")
        object.__setattr__(self, "persons", persons)

        if not isinstance(self.buckets, AssetBuckets):
            raise SimulationConfigError("buckets must be an AssetBuckets instance")
        if not isinstance(self.expenses, ExpenseSchedule):
            raise SimulationConfigError("expenses must be an ExpenseSchedule instance")

        # --- market ---
        if not self.asset_classes:
            raise SimulationConfigError("asset_classes must not be empty")
        for name, pair in self.asset_classes.items():
            if len(pair) != 2:
                raise SimulationConfigError(f"asset class {name!r} needs (expected_return, volatility)")
            require_rate(f"{name} expected return", pair[0], -1.0, 1.0)
            require_amount(f"{name} volatility", pair[1])
        object.__setattr__(self, "correlation", tuple(tuple(row) for row in self.correlation))

        unknown = set(self.allocation) - set(self.asset_classes)
        if unknown:
            raise SimulationConfigError(f"allocation references unknown asset classes: {sorted(unknown)}")
        for name, weight in self.allocation.items():
            require_rate(f"allocation[{name}]", weight, 0.0, 1.0)
        if abs(sum(self.allocation.values()) - 1.0) > 1e-6:
            raise SimulationConfigError(f"allocation weights must sum to 1, got {sum(self.allocation.values())}")

        for bucket, amount in self.annual_contributions.items():
            require_choice("annual_contributions bucket", bucket, BUCKET_NAMES)
            require_amount(f"annual_contributions[{bucket}]", amount)

        # --- rates & choices ---
        require_rate("inflation_rate", self.inflation_rate, -0.5, 1.0)
        require_rate("healthcare_inflation_rate", self.healthcare_inflation_rate, -0.5, 1.0)
        require_rate("ltc_inflation_rate", self.ltc_inflation_rate, -0.5, 1.0)
        require_choice("filing_status", self.filing_status, FILING_STATUSES)
        require_choice("withdrawal_timing", self.withdrawal_timing, WITHDRAWAL_TIMINGS)
        require_choice("return_distribution", self.return_distribution, RETURN_DISTRIBUTIONS)
        require_choice("longevity_model", self.longevity_model, LONGEVITY_MODELS)
        if self.glide_path is not None:
            require_choice("glide_path", self.glide_path, tuple(GLIDE_PATHS))
        if not isinstance(self.student_t_df, int) or isinstance(self.student_t_df, bool) or self.student_t_df <= 2:
            raise SimulationConfigError(f"student_t_df must be an integer above 2, got {self.student_t_df!r}")
        if not isinstance(self.state_of_residence, str) or len(self.state_of_residence) != 2:
            raise SimulationConfigError(f"state_of_residence must be a two-letter code, got {self.state_of_residence!r}")
        object.__setattr__(self, "state_of_residence", self.state_of_residence.upper())
        if not isinstance(self.guardrails, GuardrailConfig):
            raise SimulationConfigError("guardrails must be a GuardrailConfig instance")

        if self.random_seed is not None and (
            not isinstance(self.random_seed, int) or isinstance(self.random_seed, bool) or self.random_seed < 0
        ):
            raise SimulationConfigError(f"random_seed must be a non-negative integer, got {self.random_seed!r}")
        if not isinstance(self.as_of, date):
            raise SimulationConfigError(f"as_of must be a date, got {self.as_of!r}")
        if self.policy_year is not None and (not isinstance(self.policy_year, int) or isinstance(self.policy_year, bool)):
            raise SimulationConfigError(f"policy_year must be an integer, got {self.policy_year!r}")
        if len(self.magi_history) != 2:
            raise SimulationConfigError("magi_history must hold exactly two prior years")
        object.__setattr__(
            self, "magi_history", tuple(require_amount("magi_history", m) for m in self.magi_history)
        )

    @property
    def num_years(self) -> int:
        """Plan years, inclusive of the last person's life-expectancy age."""
        return max(p.life_expectancy - p.current_age for p in self.persons) + 1

    @property
    def tax_policy_year(self) -> int:
        return self.policy_year if self.policy_year is not None else self.as_of.year

    @property
    def is_couple(self) -> bool:
        return len(self.persons) == 2


# =============================================================================
# Outputs
# =============================================================================

@dataclass
class LTCEvent:
    person_index: int
    start_age: int
    duration_years: float
    care_setting: str
    annual_cost: float                 # today's dollars at onset, before LTC inflation
    insurance_benefit_paid: float = 0.0
    out_of_pocket_paid: float = 0.0
    medicaid_required: bool = False
    years_elapsed: float = 0.0

    def __post_init__(self):
        require_choice("care_setting", self.care_setting, CARE_SETTINGS)

    @property
    def years_remaining(self) -> float:
        return max(0.0, self.duration_years - self.years_elapsed)

    @property
    def active(self) -> bool:
        return self.years_remaining > 1e-9


@dataclass(frozen=True)
class YearlyCashFlow:
    year_index: int
    calendar_year: int
    ages: Tuple[int, ...]
    phase: Phase
    # income
    wages: float = 0.0
    pension: float = 0.0
    part_time: float = 0.0
    other_income: float = 0.0
    social_security: float = 0.0
    taxable_social_security: float = 0.0
    # portfolio flows
    contributions: float = 0.0
    rmd: float = 0.0
    withdrawal_cash: float = 0.0
    withdrawal_capital_gains: float = 0.0
    withdrawal_tax_deferred: float = 0.0
    withdrawal_tax_free: float = 0.0
    realized_gains: float = 0.0
    investment_return: float = 0.0     # allocation-weighted return of the invested buckets
    # expenses
    living: float = 0.0
    healthcare: float = 0.0
    housing: float = 0.0
    one_time: float = 0.0
    ltc_gross_cost: float = 0.0
    ltc_out_of_pocket: float = 0.0
    ltc_insurance_paid: float = 0.0
    ltc_premiums: float = 0.0
    ltc_new_episodes: int = 0
    # taxes
    federal_tax: float = 0.0
    capital_gains_tax: float = 0.0
    state_tax: float = 0.0
    niit: float = 0.0
    irmaa: float = 0.0
    total_taxes: float = 0.0
    shortfall: float = 0.0
    start: BucketSnapshot = field(default_factory=BucketSnapshot.empty)
    end: BucketSnapshot = field(default_factory=BucketSnapshot.empty)
    guardrail_adjustment: Optional[str] = None
    regime: str = "normal"

    @property
    def portfolio_balance(self) -> float:
        return self.end.total

    @property
    def total_withdrawals(self) -> float:
        return (self.rmd + self.withdrawal_cash + self.withdrawal_capital_gains
                + self.withdrawal_tax_deferred + self.withdrawal_tax_free)

    def to_row(self) -> Dict[str, Any]:
        row = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, BucketSnapshot):
                for sub in fields(value):
                    row[f"{f.name}_{sub.name}"] = getattr(value, sub.name)
            elif isinstance(value, Phase):
                row[f.name] = value.value
            else:
                row[f.name] = value
        row["portfolio_balance"] = self.portfolio_balance
        return row


@dataclass(frozen=True)
class ScenarioResult:
    trial_index: int
    success: bool
    ending_balance: float          # total assets minus cumulative unmet need
    depleted_at_age: Optional[int]
    cash_flows: Tuple[YearlyCashFlow, ...]
    ltc_events: Tuple[LTCEvent, ...] = ()
    guardrail_counts: Dict[str, int] = field(default_factory=dict)

    def portfolio_path(self) -> Tuple[float, ...]:
        return tuple(cf.portfolio_balance for cf in self.cash_flows)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([cf.to_row() for cf in self.cash_flows])


@dataclass(frozen=True)
class YearBand:
    p05: float
    p25: float
    p50: float
    p75: float
    p95: float
    count: int
    age: int

    def to_dict(self) -> Dict[str, float]:
        return {
            "p05": self.p05, "p25": self.p25, "p50": self.p50, "p75": self.p75, "p95": self.p95,
            "count": self.count, "age": self.age,
        }


@dataclass(frozen=True)
class RiskMetrics:
    """
    Tail and path risk across a batch.

    cvar_95 / cvar_99: mean ending balance of the worst 5% / 1% of trials.
    max_drawdown_pct, ulcer_index, drawdown_years: peak-to-trough figures of
    the median trial's balance path (percent, percent, years).
    sequence_risk_score: share of failed trials that had at least two
    negative returns in their first five retirement years.
    """
    cvar_95: float = 0.0
    cvar_99: float = 0.0
    max_drawdown_pct: float = 0.0
    ulcer_index: float = 0.0
    drawdown_years: int = 0
    sequence_risk_score: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class AggregateResult:
    mode: str
    seed: int
    requested_trials: int
    completed_trials: int
    dropped_trials: int
    cancelled_trials: int
    successes: int
    probability_of_success: float
    median_ending_balance: float
    percentile_10: float
    percentile_90: float
    per_year: Dict[int, YearBand] = field(default_factory=dict)
    guardrail_stats: Dict[str, int] = field(default_factory=dict)
    dropped_reasons: Dict[str, int] = field(default_factory=dict)
    risk: RiskMetrics = field(default_factory=RiskMetrics)

    def to_envelope(self) -> Dict[str, Any]:
        if self.mode == "bands":
            return {
                "kind": "bands",
                "perYear": {i: band.to_dict() for i, band in sorted(self.per_year.items())},
                "probabilityOfSuccess": self.probability_of_success,
                "medianEndingBalance": self.median_ending_balance,
                "dropped": self.dropped_trials,
            }
        return {
            "kind": "score",
            "successes": self.successes,
            "total": self.completed_trials,
            "medianEndingBalance": self.median_ending_balance,
            "percentile10": self.percentile_10,
            "percentile90": self.percentile_90,
            "dropped": self.dropped_trials,
        }
