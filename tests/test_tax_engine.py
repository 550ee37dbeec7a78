import logging

import pytest

from config.tax_tables import TABLES_2025, TABLES_2026, get_policy_tables
from engine.errors import SimulationConfigError
from engine.tax_engine import (
    TaxInputs,
    calculate_taxes,
    capital_gains_tax,
    income_tax,
    irmaa_surcharge,
    marginal_rates,
    niit,
    state_income_tax,
    taxable_social_security,
)


def test_income_tax_integrates_brackets(tables_2026):
    brackets = tables_2026.ordinary_brackets["single"]
    assert income_tax(50_000, brackets) == pytest.approx(1_240 + 37_600 * 0.12)
    assert income_tax(0, brackets) == 0.0


def test_capital_gains_stack_on_top_of_ordinary_income(tables_2026):
    brackets = tables_2026.capital_gains_brackets["single"]
    # 40k ordinary: first 8,400 of gains at 0%, the remaining 11,600 at 15%
    assert capital_gains_tax(20_000, 40_000, brackets) == pytest.approx(11_600 * 0.15)
    assert capital_gains_tax(0, 40_000, brackets) == 0.0


def test_social_security_taxability_tiers(tables_2026):
    assert taxable_social_security(20_000, 10_000, "single", tables_2026) == 0.0
    assert taxable_social_security(30_000, 20_000, "single", tables_2026) == pytest.approx(5_350)
    # capped at 85% of the benefit
    assert taxable_social_security(40_000, 200_000, "single", tables_2026) == pytest.approx(34_000)


def test_social_security_thresholds_are_not_indexed(tables_2026):
    inputs = TaxInputs("single", "TX", (70,), ordinary_income=20_000, social_security=30_000)
    low_index = calculate_taxes(inputs, tables_2026, 1.0)
    high_index = calculate_taxes(inputs, tables_2026, 3.0)
    assert low_index.taxable_social_security == high_index.taxable_social_security


def test_niit_applies_to_lesser_of_investment_income_and_excess(tables_2026):
    assert niit(250_000, 80_000, "single", tables_2026) == pytest.approx(0.038 * 50_000)
    assert niit(250_000, 30_000, "single", tables_2026) == pytest.approx(0.038 * 30_000)
    assert niit(150_000, 80_000, "single", tables_2026) == 0.0


def test_irmaa_tier_is_per_medicare_person(tables_2026):
    assert irmaa_surcharge(150_000, "single", (70,), tables_2026) == pytest.approx(12 * (180 + 34))
    assert irmaa_surcharge(100_000, "single", (70,), tables_2026) == 0.0
    assert irmaa_surcharge(300_000, "married_filing_jointly", (70, 66), tables_2026) == pytest.approx(
        2 * 12 * (180 + 34)
    )


def test_irmaa_skips_people_under_medicare_age(tables_2026):
    assert irmaa_surcharge(500_000, "single", (60,), tables_2026) == 0.0
    assert irmaa_surcharge(300_000, "married_filing_jointly", (70, 60), tables_2026) == pytest.approx(
        12 * (180 + 34)
    )


def test_irmaa_thresholds_are_indexed(tables_2026):
    # 300k nominal at 2x cumulative inflation is 150k in table dollars
    assert irmaa_surcharge(300_000, "single", (70,), tables_2026, 2.0) == pytest.approx(2 * 12 * (180 + 34))


def test_state_tax_flat_and_none(tables_2026):
    assert state_income_tax(100_000, "PA", tables_2026) == pytest.approx(3_070)
    assert state_income_tax(100_000, "TX", tables_2026) == 0.0


def test_unknown_state_warns_and_taxes_nothing(tables_2026, caplog):
    with caplog.at_level(logging.WARNING, logger="engine.tax_engine"):
        assert state_income_tax(100_000, "ZZ", tables_2026) == 0.0
    assert "ZZ" in caplog.text


def test_calculate_taxes_single_retiree(tables_2026):
    inputs = TaxInputs("single", "TX", (70,), ordinary_income=60_000)
    taxes = calculate_taxes(inputs, tables_2026)

    # 60,000 - (16,100 + 2,050) = 41,850 taxable
    assert taxes.taxable_income == pytest.approx(41_850)
    assert taxes.federal_ordinary == pytest.approx(1_240 + 29_450 * 0.12)
    assert taxes.capital_gains == 0.0
    assert taxes.state == 0.0
    assert taxes.agi == taxes.magi == 60_000
    assert taxes.total == pytest.approx(taxes.income_tax_total + taxes.irmaa)


def test_calculate_taxes_scales_with_inflation_index(tables_2026):
    base = calculate_taxes(TaxInputs("single", "TX", (70,), ordinary_income=60_000), tables_2026, 1.0)
    doubled = calculate_taxes(TaxInputs("single", "TX", (70,), ordinary_income=120_000), tables_2026, 2.0)
    assert doubled.federal_ordinary == pytest.approx(2 * base.federal_ordinary)


def test_marginal_rates_include_state(tables_2026):
    ordinary, gains = marginal_rates(TaxInputs("single", "PA", (70,), ordinary_income=60_000), tables_2026)
    assert ordinary == pytest.approx(0.12 + 0.0307)
    assert gains == pytest.approx(0.0 + 0.0307)


def test_policy_tables_fall_back_to_latest_vintage():
    assert get_policy_tables(2025) is TABLES_2025
    assert get_policy_tables(2026) is TABLES_2026
    assert get_policy_tables(2031) is TABLES_2026


def test_policy_tables_before_first_vintage_raise():
    with pytest.raises(SimulationConfigError):
        get_policy_tables(2019)
