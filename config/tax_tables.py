# config/tax_tables.py
#
# Policy-year tax & benefit constants. The engine never hard-codes a bracket:
# everything it needs for one vintage lives in a PolicyYearTables instance,
# looked up by year with get_policy_tables().
#
# Values are illustrative planning constants, not tax-form-accurate law.

from dataclasses import dataclass, field
from typing import Dict, List, Literal, Tuple

import numpy as np

from engine.errors import SimulationConfigError

# Define the acceptable set of filing statuses for type hinting
TaxFilingStatus = Literal["single", "married_filing_jointly", "married_separate", "head_of_household"]
FILING_STATUSES = ("single", "married_filing_jointly", "married_separate", "head_of_household")

Bracket = Tuple[float, float, float]          # (low, high, rate)
IrmaaTier = Tuple[float, float, float]        # (MAGI threshold, Part B monthly surcharge, Part D monthly surcharge)


@dataclass(frozen=True)
class PolicyYearTables:
    year: int
    ordinary_brackets: Dict[str, List[Bracket]]
    capital_gains_brackets: Dict[str, List[Bracket]]
    standard_deduction: Dict[str, float]
    extra_deduction_65: Dict[str, float]
    irmaa_tiers: Dict[str, List[IrmaaTier]]
    base_part_b_monthly: float
    state_brackets: Dict[str, List[Bracket]]
    uniform_lifetime: Dict[int, float]
    # Statutory, never inflation-indexed
    ss_thresholds: Dict[str, Tuple[float, float]] = field(default_factory=lambda: dict(SS_TAX_THRESHOLDS))
    niit_thresholds: Dict[str, float] = field(default_factory=lambda: dict(NIIT_THRESHOLDS))
    niit_rate: float = 0.038
    rmd_start_age: int = 73
    medicare_age: int = 65


# =============================================================================
# Statutory (non-indexed) parameters shared by every vintage
# =============================================================================

# Provisional-income thresholds (first tier 50%, second tier 85%)
SS_TAX_THRESHOLDS: Dict[str, Tuple[float, float]] = {
    "single": (25_000, 34_000),
    "head_of_household": (25_000, 34_000),
    "married_filing_jointly": (32_000, 44_000),
    "married_separate": (0, 0),
}

NIIT_THRESHOLDS: Dict[str, float] = {
    "single": 200_000,
    "head_of_household": 200_000,
    "married_filing_jointly": 250_000,
    "married_separate": 125_000,
}

# 2022+ IRS Uniform Lifetime Table (ages 72-120)
UNIFORM_LIFETIME_TABLE_2022: Dict[int, float] = {
    72: 27.4, 73: 26.5, 74: 25.5, 75: 24.6, 76: 23.7, 77: 22.9,
    78: 22.0, 79: 21.1, 80: 20.2, 81: 19.4, 82: 18.5, 83: 17.7,
    84: 16.9, 85: 16.0, 86: 15.2, 87: 14.4, 88: 13.7, 89: 12.9,
    90: 12.2, 91: 11.5, 92: 10.8, 93: 10.1, 94: 9.5, 95: 8.9,
    96: 8.4, 97: 7.8, 98: 7.3, 99: 6.8, 100: 6.4, 101: 6.0,
    102: 5.6, 103: 5.2, 104: 4.9, 105: 4.6, 106: 4.3, 107: 4.1,
    108: 3.9, 109: 3.7, 110: 3.5, 111: 3.4, 112: 3.3, 113: 3.1,
    114: 3.0, 115: 2.9, 116: 2.8, 117: 2.7, 118: 2.5, 119: 2.3,
    120: 2.0,
}

# =============================================================================
# State income tax (applied to AGI excluding Social Security)
# =============================================================================
_NO_INCOME_TAX_STATES = ("AK", "FL", "NV", "NH", "SD", "TN", "TX", "WA", "WY")


def _flat(rate: float) -> List[Bracket]:
    return [(0, np.inf, rate)]


STATE_BRACKETS: Dict[str, List[Bracket]] = {
    **{state: [] for state in _NO_INCOME_TAX_STATES},
    "AZ": _flat(0.025),
    "CO": _flat(0.044),
    "GA": _flat(0.0539),
    "IL": _flat(0.0495),
    "IN": _flat(0.03),
    "KY": _flat(0.04),
    "MI": _flat(0.0425),
    "NC": _flat(0.0425),
    "PA": _flat(0.0307),
    "UT": _flat(0.0455),
    "MA": [(0, 1_053_750, 0.05), (1_053_750, np.inf, 0.09)],
    "VA": [(0, 3000, 0.02), (3000, 5000, 0.03), (5000, 17000, 0.05), (17000, np.inf, 0.0575)],
    "ME": [(0, 26_050, 0.058), (26_050, 61_600, 0.0675), (61_600, np.inf, 0.0715)],
    "NY": [
        (0, 8500, 0.04), (8500, 11_700, 0.045), (11_700, 13_900, 0.0525),
        (13_900, 80_650, 0.055), (80_650, 215_400, 0.06), (215_400, 1_077_550, 0.0685),
        (1_077_550, np.inf, 0.0965),
    ],
    "CA": [
        (0, 10_756, 0.01), (10_756, 25_499, 0.02), (25_499, 40_245, 0.04),
        (40_245, 55_866, 0.06), (55_866, 70_606, 0.08), (70_606, 360_659, 0.093),
        (360_659, 432_787, 0.103), (432_787, 721_314, 0.113), (721_314, np.inf, 0.123),
    ],
}

# =============================================================================
# 2025 vintage
# =============================================================================
TABLES_2025 = PolicyYearTables(
    year=2025,
    ordinary_brackets={
        "married_filing_jointly": [
            (0, 23_850, 0.10), (23_850, 96_950, 0.12), (96_950, 206_700, 0.22),
            (206_700, 394_600, 0.24), (394_600, 501_050, 0.32), (501_050, 751_600, 0.35),
            (751_600, np.inf, 0.37),
        ],
        "single": [
            (0, 11_925, 0.10), (11_925, 48_475, 0.12), (48_475, 103_350, 0.22),
            (103_350, 197_300, 0.24), (197_300, 250_525, 0.32), (250_525, 626_350, 0.35),
            (626_350, np.inf, 0.37),
        ],
        "head_of_household": [
            (0, 17_000, 0.10), (17_000, 64_850, 0.12), (64_850, 103_350, 0.22),
            (103_350, 197_300, 0.24), (197_300, 250_500, 0.32), (250_500, 626_350, 0.35),
            (626_350, np.inf, 0.37),
        ],
        "married_separate": [
            (0, 11_925, 0.10), (11_925, 48_475, 0.12), (48_475, 103_350, 0.22),
            (103_350, 197_300, 0.24), (197_300, 250_525, 0.32), (250_525, 375_800, 0.35),
            (375_800, np.inf, 0.37),
        ],
    },
    capital_gains_brackets={
        "single": [(0, 48_350, 0.0), (48_350, 533_400, 0.15), (533_400, np.inf, 0.20)],
        "married_filing_jointly": [(0, 96_700, 0.0), (96_700, 600_050, 0.15), (600_050, np.inf, 0.20)],
        "married_separate": [(0, 48_350, 0.0), (48_350, 300_000, 0.15), (300_000, np.inf, 0.20)],
        "head_of_household": [(0, 64_750, 0.0), (64_750, 566_700, 0.15), (566_700, np.inf, 0.20)],
    },
    standard_deduction={
        "single": 15_750,
        "married_filing_jointly": 31_500,
        "married_separate": 15_750,
        "head_of_household": 23_625,
    },
    extra_deduction_65={
        "single": 2000,
        "head_of_household": 2000,
        "married_filing_jointly": 1600,
        "married_separate": 1600,
    },
    irmaa_tiers={
        "single": [
            (106_000, 74.00, 13.70), (133_000, 185.00, 35.30), (167_000, 295.90, 57.00),
            (200_000, 406.90, 78.60), (500_000, 443.90, 85.80),
        ],
        "head_of_household": [
            (106_000, 74.00, 13.70), (133_000, 185.00, 35.30), (167_000, 295.90, 57.00),
            (200_000, 406.90, 78.60), (500_000, 443.90, 85.80),
        ],
        "married_filing_jointly": [
            (212_000, 74.00, 13.70), (266_000, 185.00, 35.30), (334_000, 295.90, 57.00),
            (400_000, 406.90, 78.60), (750_000, 443.90, 85.80),
        ],
        "married_separate": [
            (106_000, 406.90, 78.60), (394_000, 443.90, 85.80),
        ],
    },
    base_part_b_monthly=185.00,
    state_brackets=STATE_BRACKETS,
    uniform_lifetime=UNIFORM_LIFETIME_TABLE_2022,
)

# =============================================================================
# 2026 vintage (estimated)
# =============================================================================
TABLES_2026 = PolicyYearTables(
    year=2026,
    ordinary_brackets={
        "married_filing_jointly": [
            (0, 24_800, 0.10), (24_800, 100_800, 0.12), (100_800, 211_400, 0.22),
            (211_400, 403_550, 0.24), (403_550, 512_450, 0.32), (512_450, 768_700, 0.35),
            (768_700, np.inf, 0.37),
        ],
        "single": [
            (0, 12_400, 0.10), (12_400, 50_400, 0.12), (50_400, 110_650, 0.22),
            (110_650, 196_150, 0.24), (196_150, 250_000, 0.32), (250_000, 622_050, 0.35),
            (622_050, np.inf, 0.37),
        ],
        "head_of_household": [
            (0, 18_600, 0.10), (18_600, 72_000, 0.12), (72_000, 148_000, 0.22),
            (148_000, 258_000, 0.24), (258_000, 321_450, 0.32), (321_450, 622_050, 0.35),
            (622_050, np.inf, 0.37),
        ],
        "married_separate": [
            (0, 12_400, 0.10), (12_400, 50_400, 0.12), (50_400, 105_700, 0.22),
            (105_700, 201_775, 0.24), (201_775, 256_225, 0.32), (256_225, 384_350, 0.35),
            (384_350, np.inf, 0.37),
        ],
    },
    capital_gains_brackets={
        "single": [(0, 48_400, 0.0), (48_400, 535_000, 0.15), (535_000, np.inf, 0.20)],
        "married_filing_jointly": [(0, 96_900, 0.0), (96_900, 601_300, 0.15), (601_300, np.inf, 0.20)],
        "married_separate": [(0, 48_450, 0.0), (48_450, 300_650, 0.15), (300_650, np.inf, 0.20)],
        "head_of_household": [(0, 72_900, 0.0), (72_900, 568_300, 0.15), (568_300, np.inf, 0.20)],
    },
    standard_deduction={
        "single": 16_100,
        "married_filing_jointly": 32_200,
        "married_separate": 16_100,
        "head_of_household": 24_150,
    },
    extra_deduction_65={
        "single": 2050,
        "head_of_household": 2050,
        "married_filing_jointly": 1650,
        "married_separate": 1650,
    },
    irmaa_tiers={
        "single": [
            (109_000, 72.00, 13.00), (137_000, 180.00, 34.00), (171_000, 288.00, 54.00),
            (205_000, 396.00, 75.00), (500_000, 432.00, 82.00),
        ],
        "head_of_household": [
            (109_000, 72.00, 13.00), (137_000, 180.00, 34.00), (171_000, 288.00, 54.00),
            (205_000, 396.00, 75.00), (500_000, 432.00, 82.00),
        ],
        "married_filing_jointly": [
            (218_000, 72.00, 13.00), (274_000, 180.00, 34.00), (342_000, 288.00, 54.00),
            (410_000, 396.00, 75.00), (750_000, 432.00, 82.00),
        ],
        "married_separate": [
            (109_000, 396.00, 75.00), (391_000, 432.00, 82.00),
        ],
    },
    base_part_b_monthly=190.00,
    state_brackets=STATE_BRACKETS,
    uniform_lifetime=UNIFORM_LIFETIME_TABLE_2022,
)

POLICY_TABLES: Dict[int, PolicyYearTables] = {
    2025: TABLES_2025,
    2026: TABLES_2026,
}


def get_policy_tables(year: int) -> PolicyYearTables:
    """
    Returns the tables for `year`, or the latest vintage published before it.
    Years earlier than the first vintage are a configuration error.
    """
    if year in POLICY_TABLES:
        return POLICY_TABLES[year]

    earlier = [y for y in POLICY_TABLES if y < year]
    if not earlier:
        raise SimulationConfigError(
            f"No tax tables for policy year {year}; earliest available is {min(POLICY_TABLES)}"
        )
    return POLICY_TABLES[max(earlier)]
