"""
U.S. tax and Medicare surcharge calculator for retirement planning.

Every function is pure and takes its constants from a PolicyYearTables
vintage (config.tax_tables). Indexed amounts (brackets, deductions, IRMAA
tiers) are handled by deflating income by the cumulative inflation index,
applying base-year tables, then re-inflating the result. Statutory amounts
(Social Security thresholds, NIIT thresholds) are never indexed.
"""
from dataclasses import dataclass
from functools import lru_cache
from typing import Sequence, Tuple
import logging

from config.tax_tables import Bracket, PolicyYearTables, TaxFilingStatus

logger = logging.getLogger(__name__)


# --- 1. Bracket helpers ---

def income_tax(taxable_income: float, brackets: Sequence[Bracket]) -> float:
    """Marginal-bracket integration over (low, high, rate) brackets."""
    tax = 0.0
    for low, high, rate in brackets:
        if taxable_income <= low:
            break
        tax += (min(taxable_income, high) - low) * rate
    return tax


def capital_gains_tax(gains: float, ordinary_taxable: float, brackets: Sequence[Bracket]) -> float:
    """Preferential-rate tax on gains stacked on top of ordinary taxable income."""
    if gains <= 0:
        return 0.0

    tax = 0.0
    stack_top = ordinary_taxable + gains
    for low, high, rate in brackets:
        # portion of the gains layer that falls into this bracket
        bracket_start = max(low, ordinary_taxable)
        bracket_end = min(high, stack_top)
        tax += max(0.0, bracket_end - bracket_start) * rate
    return tax


def _bracket_rate(income: float, brackets: Sequence[Bracket]) -> float:
    for low, high, rate in brackets:
        if income < high:
            return rate
    return brackets[-1][2] if brackets else 0.0


# --- 2. Social Security, NIIT, IRMAA ---

def taxable_social_security(
    gross_benefit: float,
    other_income: float,
    filing_status: TaxFilingStatus,
    tables: PolicyYearTables,
) -> float:
    """
    Two-tier provisional-income test (IRS Worksheet 1), statutory thresholds.
    The result never exceeds 85% of the gross benefit.
    """
    if gross_benefit <= 0:
        return 0.0

    first, second = tables.ss_thresholds[filing_status]
    provisional = other_income + 0.5 * gross_benefit

    if provisional <= first:
        return 0.0
    if provisional <= second:
        return min(0.5 * (provisional - first), 0.5 * gross_benefit)

    first_tier = min(0.5 * (second - first), 0.5 * gross_benefit)
    return min(0.85 * (provisional - second) + first_tier, 0.85 * gross_benefit)


def niit(
    total_income: float,
    investment_income: float,
    filing_status: TaxFilingStatus,
    tables: PolicyYearTables,
) -> float:
    """3.8% Net Investment Income Tax on min(NII, MAGI above threshold)."""
    excess = total_income - tables.niit_thresholds[filing_status]
    if excess <= 0 or investment_income <= 0:
        return 0.0
    return tables.niit_rate * min(investment_income, excess)


def irmaa_surcharge(
    magi_two_years_ago: float,
    filing_status: TaxFilingStatus,
    ages: Sequence[int],
    tables: PolicyYearTables,
    inflation_index: float = 1.0,
) -> float:
    """
    Annual Part B + Part D income-related surcharge for the household.

    Charged per Medicare-eligible person, tier picked from the MAGI two years
    back. Zero below the first tier or when nobody has reached Medicare age.
    """
    persons_covered = sum(1 for age in ages if age >= tables.medicare_age)
    if persons_covered == 0:
        return 0.0

    real_magi = magi_two_years_ago / inflation_index
    part_b_mo = part_d_mo = 0.0
    for threshold, part_b, part_d in tables.irmaa_tiers[filing_status]:
        if real_magi > threshold:
            part_b_mo, part_d_mo = part_b, part_d
        else:
            break

    return 12 * persons_covered * (part_b_mo + part_d_mo) * inflation_index


# --- 3. State ---

@lru_cache(maxsize=None)
def _warn_unknown_state(state: str) -> None:
    logger.warning(
        f"State Tax Calculations Not Available for '{state}'. "
        "Defaulting to $0 state income taxes for this simulation."
    )


def state_income_tax(agi_excluding_ss: float, state: str, tables: PolicyYearTables, inflation_index: float = 1.0) -> float:
    state = state.strip().upper()
    brackets = tables.state_brackets.get(state)
    if brackets is None:
        _warn_unknown_state(state)
        return 0.0
    return income_tax(max(0.0, agi_excluding_ss) / inflation_index, brackets) * inflation_index


def state_marginal_rate(agi_excluding_ss: float, state: str, tables: PolicyYearTables, inflation_index: float = 1.0) -> float:
    brackets = tables.state_brackets.get(state.strip().upper())
    if not brackets:
        return 0.0
    return _bracket_rate(max(0.0, agi_excluding_ss) / inflation_index, brackets)


# --- 4. Main Orchestrator ---

@dataclass(frozen=True)
class TaxInputs:
    filing_status: TaxFilingStatus
    state_of_residence: str
    ages: Tuple[int, ...]               # living household members
    ordinary_income: float = 0.0        # wages, pensions, RMDs, tax-deferred withdrawals
    capital_gains: float = 0.0          # realized long-term gains
    social_security: float = 0.0        # gross benefits
    magi_two_years_ago: float = 0.0


@dataclass(frozen=True)
class TaxBreakdown:
    federal_ordinary: float
    capital_gains: float
    state: float
    niit: float
    irmaa: float
    taxable_social_security: float
    agi: float
    magi: float
    taxable_income: float

    @property
    def income_tax_total(self) -> float:
        """Taxes proper, i.e. everything except the Medicare surcharge."""
        return self.federal_ordinary + self.capital_gains + self.state + self.niit

    @property
    def total(self) -> float:
        return self.income_tax_total + self.irmaa


def _deduction(inputs: TaxInputs, tables: PolicyYearTables) -> float:
    over_65 = sum(1 for age in inputs.ages if age >= 65)
    status = inputs.filing_status
    return tables.standard_deduction[status] + over_65 * tables.extra_deduction_65[status]


def marginal_rates(
    inputs: TaxInputs,
    tables: PolicyYearTables,
    inflation_index: float = 1.0,
) -> Tuple[float, float]:
    """
    (ordinary, capital gains) marginal rates at the income in `inputs`.
    Ordinary includes the state rate; used to gross up withdrawals.
    """
    status = inputs.filing_status
    non_ss = inputs.ordinary_income + inputs.capital_gains
    taxable_ss = taxable_social_security(inputs.social_security, non_ss, status, tables)
    real_ordinary = (inputs.ordinary_income + taxable_ss) / inflation_index
    real_taxable_ordinary = max(0.0, real_ordinary - _deduction(inputs, tables))

    federal = _bracket_rate(real_taxable_ordinary, tables.ordinary_brackets[status])
    state = state_marginal_rate(non_ss, inputs.state_of_residence, tables, inflation_index)
    cap_gains = _bracket_rate(real_taxable_ordinary, tables.capital_gains_brackets[status])
    return federal + state, cap_gains + state


def calculate_taxes(
    inputs: TaxInputs,
    tables: PolicyYearTables,
    inflation_index: float = 1.0,
) -> TaxBreakdown:
    """
    Calculates all annual taxes (Federal, State, NIIT) and the IRMAA surcharge.

    `inflation_index` is cumulative inflation since the tables' base year.
    """
    status = inputs.filing_status
    index = inflation_index

    # 1. Social Security taxability (statutory thresholds, not indexed)
    non_ss_income = inputs.ordinary_income + inputs.capital_gains
    taxable_ss = taxable_social_security(inputs.social_security, non_ss_income, status, tables)

    agi = non_ss_income + taxable_ss
    magi = agi

    # 2. Federal taxable income, in base-year dollars
    real_taxable = max(0.0, agi / index - _deduction(inputs, tables))
    real_gains = min(max(0.0, inputs.capital_gains) / index, real_taxable)
    real_ordinary = real_taxable - real_gains

    # 3. Federal tax (ordinary brackets, then gains stacked on top)
    federal = income_tax(real_ordinary, tables.ordinary_brackets[status]) * index
    cap_gains = capital_gains_tax(real_gains, real_ordinary, tables.capital_gains_brackets[status]) * index

    # 4. NIIT (statutory threshold)
    net_investment_tax = niit(magi, inputs.capital_gains, status, tables)

    # 5. State (most states exempt Social Security)
    state = state_income_tax(non_ss_income, inputs.state_of_residence, tables, index)

    # 6. Medicare IRMAA
    irmaa = irmaa_surcharge(inputs.magi_two_years_ago, status, inputs.ages, tables, index)

    return TaxBreakdown(
        federal_ordinary=federal,
        capital_gains=cap_gains,
        state=state,
        niit=net_investment_tax,
        irmaa=irmaa,
        taxable_social_security=taxable_ss,
        agi=agi,
        magi=magi,
        taxable_income=real_taxable * index,
    )
