# engine/aggregator.py

import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from models import AggregateResult, Phase, RiskMetrics, ScenarioResult, YearBand

logger = logging.getLogger(__name__)

BAND_QUANTILES = (0.05, 0.25, 0.50, 0.75, 0.95)

# Sequence risk looks at this many years from retirement and flags
# a trial with at least EARLY_LOSS_YEARS negative returns among them
EARLY_RETIREMENT_YEARS = 5
EARLY_LOSS_YEARS = 2


def drawdown_metrics(balances: Sequence[float]) -> Tuple[float, float, int]:
    """
    (max drawdown %, ulcer index, longest drawdown in years) of a balance path.

    A path that never rises above zero has no drawdown.
    """
    if len(balances) == 0:
        return 0.0, 0.0, 0

    peak = balances[0]
    max_drawdown = 0.0
    squares = 0.0
    longest = current = 0
    for balance in balances:
        if balance > peak:
            peak = balance
            longest = max(longest, current)
            current = 0
            continue
        drawdown = min(1.0, (peak - balance) / peak) if peak > 0.0 else 0.0
        max_drawdown = max(max_drawdown, drawdown)
        squares += drawdown * drawdown
        current += 1
    longest = max(longest, current)

    return max_drawdown * 100.0, math.sqrt(squares / len(balances)) * 100.0, longest


def early_negative_years(result: ScenarioResult) -> int:
    """Negative portfolio returns in the first years after leaving ACCUMULATION."""
    retired = [cf for cf in result.cash_flows if cf.phase is not Phase.ACCUMULATION]
    return sum(1 for cf in retired[:EARLY_RETIREMENT_YEARS] if cf.investment_return < 0.0)


@dataclass(frozen=True)
class TrialOutcome:
    """What a worker sends back for one trial. The balance path is kept only in bands mode."""
    trial_index: int
    success: bool
    ending_balance: float
    guardrail_counts: Dict[str, int] = field(default_factory=dict)
    balances: Optional[Tuple[float, ...]] = None
    max_drawdown_pct: float = 0.0
    ulcer_index: float = 0.0
    drawdown_years: int = 0
    early_losses: int = 0

    @classmethod
    def from_scenario(cls, result: ScenarioResult, keep_path: bool = False) -> "TrialOutcome":
        path = result.portfolio_path()
        max_drawdown, ulcer, years = drawdown_metrics(path)
        return cls(
            trial_index=result.trial_index,
            success=result.success,
            ending_balance=result.ending_balance,
            guardrail_counts=dict(result.guardrail_counts),
            balances=path if keep_path else None,
            max_drawdown_pct=max_drawdown,
            ulcer_index=ulcer,
            drawdown_years=years,
            early_losses=early_negative_years(result),
        )


def percentile(values: Sequence[float], q: float) -> float:
    """Linear-interpolated percentile (q in 0-100); 0.0 for an empty sample."""
    if len(values) == 0:
        return 0.0
    return float(np.percentile(np.asarray(values, dtype=float), q))


def cvar(values: Sequence[float], confidence: float = 0.95) -> float:
    """Mean of the worst (1 - confidence) share of outcomes; the minimum when that share rounds to nothing."""
    if len(values) == 0:
        return 0.0
    ordered = np.sort(np.asarray(values, dtype=float))
    cutoff = int(math.floor(len(ordered) * (1 - confidence)))
    if cutoff == 0:
        return float(ordered[0])
    return float(ordered[:cutoff].mean())


def sequence_risk_score(outcomes: Sequence[TrialOutcome]) -> float:
    failed = [o for o in outcomes if not o.success]
    if not failed:
        return 0.0
    return sum(1 for o in failed if o.early_losses >= EARLY_LOSS_YEARS) / len(failed)


def risk_metrics(outcomes: Sequence[TrialOutcome]) -> RiskMetrics:
    if not outcomes:
        return RiskMetrics()
    endings = [o.ending_balance for o in outcomes]
    # drawdown figures come from the median trial by ending balance
    median_trial = sorted(outcomes, key=lambda o: (o.ending_balance, o.trial_index))[len(outcomes) // 2]
    return RiskMetrics(
        cvar_95=cvar(endings, 0.95),
        cvar_99=cvar(endings, 0.99),
        max_drawdown_pct=median_trial.max_drawdown_pct,
        ulcer_index=median_trial.ulcer_index,
        drawdown_years=median_trial.drawdown_years,
        sequence_risk_score=sequence_risk_score(outcomes),
    )


def year_bands(outcomes: Sequence[TrialOutcome], start_age: int) -> Dict[int, YearBand]:
    """One p05..p95 band per plan year over every trial's end-of-year balance."""
    paths = [o.balances for o in outcomes if o.balances is not None]
    if not paths:
        return {}

    # one column per plan year; shorter paths (drawn lifespans) leave NaN that quantile() skips
    frame = pd.DataFrame(paths)
    quantiles = frame.quantile(list(BAND_QUANTILES), interpolation="linear")
    counts = frame.count()

    bands = {}
    for year_idx in frame.columns:
        q = quantiles[year_idx].to_numpy()
        bands[int(year_idx)] = YearBand(
            p05=float(q[0]),
            p25=float(q[1]),
            p50=float(q[2]),
            p75=float(q[3]),
            p95=float(q[4]),
            count=int(counts[year_idx]),
            age=start_age + int(year_idx),
        )
    return bands


def sum_guardrail_stats(outcomes: Iterable[TrialOutcome]) -> Dict[str, int]:
    totals = Counter()
    for outcome in outcomes:
        totals.update(outcome.guardrail_counts)
    return dict(sorted(totals.items()))


def summarize(
    outcomes: Iterable[TrialOutcome],
    mode: str,
    seed: int,
    requested_trials: int,
    start_age: int,
    dropped_reasons: Optional[Mapping[str, int]] = None,
    cancelled_trials: int = 0,
) -> AggregateResult:
    """
    Folds trial outcomes into an AggregateResult.

    Outcomes are sorted by trial index first, so the result does not depend on
    the order workers finished in. Dropped and cancelled trials are reported
    separately and are never part of the success denominator.
    """
    ordered = sorted(outcomes, key=lambda o: o.trial_index)
    completed = len(ordered)
    successes = sum(1 for o in ordered if o.success)
    endings = [o.ending_balance for o in ordered]
    reasons = dict(sorted((dropped_reasons or {}).items()))

    if completed == 0:
        logger.warning(f"No trials completed out of {requested_trials} requested")

    return AggregateResult(
        mode=mode,
        seed=seed,
        requested_trials=requested_trials,
        completed_trials=completed,
        dropped_trials=sum(reasons.values()),
        cancelled_trials=cancelled_trials,
        successes=successes,
        probability_of_success=successes / completed if completed else 0.0,
        median_ending_balance=percentile(endings, 50),
        percentile_10=percentile(endings, 10),
        percentile_90=percentile(endings, 90),
        per_year=year_bands(ordered, start_age) if mode == "bands" else {},
        guardrail_stats=sum_guardrail_stats(ordered),
        dropped_reasons=reasons,
        risk=risk_metrics(ordered),
    )
