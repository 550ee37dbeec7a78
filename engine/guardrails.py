# engine/guardrails.py
"""
Guyton-Klinger dynamic withdrawal rules (2004/2006).

The rules adjust the household's discretionary living-expense level once a
year, comparing the current withdrawal rate (portfolio draw / portfolio value)
with the rate in the first retirement year:

1. Inflation rule: no inflation raise in a year that follows a negative real
   portfolio return.
2. Capital preservation: rate more than `guard_band` above the initial rate,
   with more than `min_remaining_years` to go -> cut spending by `cut_pct`.
3. Prosperity: rate more than `guard_band` below the initial rate -> raise by
   `raise_pct`.
4. Portfolio management: negative prior real return and a rate above the
   initial one -> smaller cut of `pmr_cut_pct`.

Only the first of 2-4 that matches is applied. The result always stays within
[floor_pct, ceiling_pct] of the inflation-adjusted initial spending.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from models import GuardrailConfig

logger = logging.getLogger(__name__)

CAPITAL_PRESERVATION = "capital_preservation"
PROSPERITY = "prosperity"
PORTFOLIO_MANAGEMENT = "portfolio_management"
INFLATION = "inflation"

GUARDRAIL_RULES = (CAPITAL_PRESERVATION, PROSPERITY, PORTFOLIO_MANAGEMENT, INFLATION)


@dataclass(frozen=True)
class GuardrailDecision:
    spending: float
    rule: Optional[str]           # cut/raise rule that fired, else INFLATION if only the freeze did
    inflation_frozen: bool
    withdrawal_rate: float


def withdrawal_rate(spending: float, other_net_need: float, portfolio_value: float) -> float:
    """Portfolio draw as a share of the portfolio. `other_net_need` is every other expense minus income."""
    if portfolio_value <= 0.0:
        return float("inf")
    return max(0.0, spending + other_net_need) / portfolio_value


class GuytonKlingerEngine:
    """One instance per trial: holds the initial rate and the firing counts."""

    def __init__(self, config: GuardrailConfig):
        self.config = config
        self.initial_spending: Optional[float] = None
        self.initial_rate = 0.0
        self.counts: Dict[str, int] = {rule: 0 for rule in GUARDRAIL_RULES}

    @property
    def started(self) -> bool:
        return self.initial_spending is not None

    @property
    def enabled(self) -> bool:
        # a zero initial rate (income covers everything) gives nothing to guard
        return self.started and self.initial_rate > 0.0

    def start(self, spending: float, other_net_need: float, portfolio_value: float) -> float:
        """Records the first retirement year's spending and withdrawal rate."""
        self.initial_spending = spending
        rate = withdrawal_rate(spending, other_net_need, portfolio_value)
        self.initial_rate = rate if rate != float("inf") else 0.0
        logger.debug(f"Guardrails start: spending={spending:,.0f}, initial rate={self.initial_rate:.4f}")
        return self.initial_rate

    def apply(
        self,
        prior_spending: float,
        inflation_rate: float,
        prior_real_return: Optional[float],
        other_net_need: float,
        portfolio_value: float,
        remaining_years: int,
        inflation_since_start: float,
    ) -> GuardrailDecision:
        """
        Spending for this year.

        Args:
            prior_spending: last year's living-expense level (nominal).
            inflation_rate: this year's inflation step.
            prior_real_return: last year's real portfolio return, None if unknown.
            other_net_need: every other expense this year minus guaranteed income.
            portfolio_value: start-of-year total assets.
            remaining_years: plan years left after this one.
            inflation_since_start: cumulative inflation since the first retirement year.
        """
        cfg = self.config
        negative_year = prior_real_return is not None and prior_real_return < 0.0

        # --- 1. Inflation rule ---
        inflation_frozen = negative_year and self.enabled
        spending = prior_spending if inflation_frozen else prior_spending * (1 + inflation_rate)

        rate = withdrawal_rate(spending, other_net_need, portfolio_value)
        if not self.enabled or portfolio_value <= 0.0:
            return GuardrailDecision(spending, None, False, rate)

        if inflation_frozen:
            self.counts[INFLATION] += 1

        upper = self.initial_rate * (1 + cfg.guard_band)
        lower = self.initial_rate * (1 - cfg.guard_band)

        # --- 2-4. Cut / raise rules, first match wins ---
        rule = None
        if rate > upper and remaining_years > cfg.min_remaining_years:
            rule = CAPITAL_PRESERVATION
            spending *= 1 - cfg.cut_pct
        elif rate < lower:
            rule = PROSPERITY
            spending *= 1 + cfg.raise_pct
        elif negative_year and rate > self.initial_rate:
            rule = PORTFOLIO_MANAGEMENT
            spending *= 1 - cfg.pmr_cut_pct

        if rule is not None:
            self.counts[rule] += 1

        # --- Floor / ceiling around the inflation-adjusted initial level ---
        anchor = self.initial_spending * inflation_since_start
        spending = min(max(spending, anchor * cfg.floor_pct), anchor * cfg.ceiling_pct)

        if rule is None and inflation_frozen:
            rule = INFLATION

        return GuardrailDecision(spending, rule, inflation_frozen, withdrawal_rate(spending, other_net_need, portfolio_value))
