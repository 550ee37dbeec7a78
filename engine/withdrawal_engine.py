# withdrawal_engine.py

import logging
from dataclasses import dataclass

from models import AssetBuckets

logger = logging.getLogger(__name__)

# Below this a leftover need is float dust, not a shortfall
SHORTFALL_EPSILON = 0.01


@dataclass
class WithdrawalResult:
    rmd: float = 0.0
    from_cash: float = 0.0
    from_capital_gains: float = 0.0
    from_tax_deferred: float = 0.0
    from_tax_free: float = 0.0
    realized_gains: float = 0.0
    estimated_tax: float = 0.0       # tax withheld at the marginal rates used for gross-up
    excess_rmd: float = 0.0          # after-tax RMD not needed this year, parked in cash
    shortfall: float = 0.0

    @property
    def ordinary_income(self) -> float:
        return self.rmd + self.from_tax_deferred

    def merge(self, other: "WithdrawalResult") -> "WithdrawalResult":
        """Combines a top-up draw into this one (shortfall is the top-up's own)."""
        return WithdrawalResult(
            rmd=self.rmd + other.rmd,
            from_cash=self.from_cash + other.from_cash,
            from_capital_gains=self.from_capital_gains + other.from_capital_gains,
            from_tax_deferred=self.from_tax_deferred + other.from_tax_deferred,
            from_tax_free=self.from_tax_free + other.from_tax_free,
            realized_gains=self.realized_gains + other.realized_gains,
            estimated_tax=self.estimated_tax + other.estimated_tax,
            excess_rmd=self.excess_rmd + other.excess_rmd,
            shortfall=self.shortfall + other.shortfall,
        )


class WithdrawalEngine:
    """
    Handles logic for prioritizing bucket withdrawals.

    The RMD always comes out first. After that the need is met from
    cash_equivalents, then capital_gains (only the gain share is taxed),
    then tax_deferred (grossed up for ordinary tax), and tax_free last.
    """

    WITHDRAWAL_ORDER = ("cash_equivalents", "capital_gains", "tax_deferred", "tax_free")

    def _get_withdrawal_order(self) -> tuple:
        return self.WITHDRAWAL_ORDER

    def execute(
        self,
        need: float,
        buckets: AssetBuckets,
        rmd_required: float = 0.0,
        ordinary_rate: float = 0.0,
        capital_gains_rate: float = 0.0,
    ) -> WithdrawalResult:
        """
        Withdraws enough to deliver `need` after tax.

        Args:
            need: after-tax cash the household has to raise from the portfolio.
            buckets: the trial's buckets; mutated in place.
            rmd_required: this year's RMD, taken even when need is zero.
            ordinary_rate: marginal rate applied to RMD / tax-deferred money.
            capital_gains_rate: marginal rate applied to the gain share of sales.

        Returns:
            WithdrawalResult with per-bucket gross amounts and the unmet shortfall.
        """
        result = WithdrawalResult()
        remaining = max(0.0, need)
        ordinary_rate = min(max(ordinary_rate, 0.0), 0.95)
        capital_gains_rate = min(max(capital_gains_rate, 0.0), 0.95)

        # --- 1. RMD, unconditionally ---
        if rmd_required > 0.0:
            result.rmd = buckets.withdraw("tax_deferred", rmd_required)
            tax = result.rmd * ordinary_rate
            result.estimated_tax += tax
            net_rmd = result.rmd - tax

            covered = min(remaining, net_rmd)
            remaining -= covered
            result.excess_rmd = net_rmd - covered
            if result.excess_rmd > 0.0:
                buckets.deposit("cash_equivalents", result.excess_rmd)

        # --- 2. Hierarchy for whatever is left ---
        if remaining > 0.0:
            remaining = self._withdraw_from_hierarchy(remaining, buckets, result, ordinary_rate, capital_gains_rate)

        result.shortfall = remaining if remaining > SHORTFALL_EPSILON else 0.0
        if result.shortfall:
            logger.debug(f"Buckets exhausted: {result.shortfall:,.2f} of {need:,.2f} unmet")
        return result

    def _withdraw_from_hierarchy(
        self,
        cash_needed: float,
        buckets: AssetBuckets,
        result: WithdrawalResult,
        ordinary_rate: float,
        capital_gains_rate: float,
    ) -> float:
        """The core loop: walks the withdrawal order, returns the unmet remainder."""
        remaining = cash_needed

        for bucket in self._get_withdrawal_order():
            if remaining <= 0.0:
                break
            balance = getattr(buckets, bucket)
            if balance <= 0.0:
                continue

            if bucket == "cash_equivalents":
                taken = buckets.withdraw(bucket, remaining)
                result.from_cash += taken
                remaining -= taken

            elif bucket == "capital_gains":
                gain_pct = buckets.gain_fraction()
                keep = 1.0 - gain_pct * capital_gains_rate
                gross_needed = remaining / keep
                taken = buckets.withdraw(bucket, gross_needed)
                realized = taken * gain_pct
                result.from_capital_gains += taken
                result.realized_gains += realized
                result.estimated_tax += realized * capital_gains_rate
                remaining = 0.0 if taken >= gross_needed else remaining - taken * keep

            elif bucket == "tax_deferred":
                keep = 1.0 - ordinary_rate
                gross_needed = remaining / keep
                taken = buckets.withdraw(bucket, gross_needed)
                result.from_tax_deferred += taken
                result.estimated_tax += taken * ordinary_rate
                remaining = 0.0 if taken >= gross_needed else remaining - taken * keep

            else:  # tax_free
                taken = buckets.withdraw(bucket, remaining)
                result.from_tax_free += taken
                remaining -= taken

        return max(0.0, remaining)
