import pytest

from engine.withdrawal_engine import WithdrawalEngine
from models import AssetBuckets


def test_cash_is_used_first():
    buckets = AssetBuckets(tax_deferred=100_000, tax_free=100_000, capital_gains=100_000, cash_equivalents=30_000)
    result = WithdrawalEngine().execute(20_000, buckets, ordinary_rate=0.2, capital_gains_rate=0.15)

    assert result.from_cash == pytest.approx(20_000)
    assert result.from_capital_gains == result.from_tax_deferred == result.from_tax_free == 0.0
    assert buckets.cash_equivalents == pytest.approx(10_000)


def test_order_is_capital_gains_then_tax_deferred_then_tax_free():
    buckets = AssetBuckets(tax_deferred=10_000, tax_free=100_000, capital_gains=10_000, cash_equivalents=5_000)
    result = WithdrawalEngine().execute(50_000, buckets)

    assert result.from_cash == pytest.approx(5_000)
    assert result.from_capital_gains == pytest.approx(10_000)
    assert result.from_tax_deferred == pytest.approx(10_000)
    assert result.from_tax_free == pytest.approx(25_000)
    assert result.shortfall == 0.0


def test_tax_deferred_withdrawal_is_grossed_up():
    buckets = AssetBuckets(tax_deferred=100_000)
    result = WithdrawalEngine().execute(8_000, buckets, ordinary_rate=0.20)

    assert result.from_tax_deferred == pytest.approx(10_000)
    assert result.estimated_tax == pytest.approx(2_000)
    assert result.ordinary_income == pytest.approx(10_000)


def test_only_the_gain_share_of_a_sale_is_taxed():
    buckets = AssetBuckets(capital_gains=100_000, cost_basis=50_000)
    result = WithdrawalEngine().execute(10_000, buckets, capital_gains_rate=0.20)

    # half of every dollar sold is gain: keep 1 - 0.5 * 0.2 = 0.9
    assert result.from_capital_gains == pytest.approx(10_000 / 0.9)
    assert result.realized_gains == pytest.approx(10_000 / 0.9 / 2)
    assert buckets.cost_basis == pytest.approx(50_000 - 10_000 / 0.9 / 2)


def test_rmd_comes_first_and_excess_is_parked_in_cash():
    buckets = AssetBuckets(tax_deferred=200_000, tax_free=50_000)
    result = WithdrawalEngine().execute(5_000, buckets, rmd_required=10_000, ordinary_rate=0.10)

    assert result.rmd == pytest.approx(10_000)
    assert result.from_tax_deferred == 0.0
    assert result.from_tax_free == 0.0
    # 10,000 gross, 9,000 net, 5,000 spent
    assert result.excess_rmd == pytest.approx(4_000)
    assert buckets.cash_equivalents == pytest.approx(4_000)


def test_rmd_is_taken_even_with_no_need():
    buckets = AssetBuckets(tax_deferred=100_000)
    result = WithdrawalEngine().execute(0.0, buckets, rmd_required=4_000)
    assert result.rmd == pytest.approx(4_000)
    assert buckets.cash_equivalents == pytest.approx(4_000)


def test_shortfall_when_everything_is_empty():
    buckets = AssetBuckets(tax_deferred=1_000, tax_free=1_000, capital_gains=1_000, cash_equivalents=1_000)
    result = WithdrawalEngine().execute(10_000, buckets)

    assert result.shortfall == pytest.approx(6_000)
    assert buckets.total_assets == 0.0
    buckets.check_invariant()


def test_buckets_total_matches_sum_after_withdrawals():
    buckets = AssetBuckets(tax_deferred=123_456, tax_free=7_890, capital_gains=45_678, cash_equivalents=1_234)
    WithdrawalEngine().execute(60_000, buckets, rmd_required=5_000, ordinary_rate=0.24, capital_gains_rate=0.15)
    buckets.check_invariant()
    assert buckets.total_assets == pytest.approx(
        buckets.tax_deferred + buckets.tax_free + buckets.capital_gains + buckets.cash_equivalents
    )
