# config/expense_assumptions.py
# Reasonable defaults for the cost side of the plan. Callers override via SimulationParams.

from dataclasses import dataclass, field
from typing import Dict, Tuple

# Healthcare
medicare_start_age = 65

# =============================================================================
# Long-term care
# =============================================================================
CARE_SETTINGS = ("home", "assisted", "nursing")

# Annual cost in today's dollars, national median
LTC_BASE_ANNUAL_COST = {
    "home": 61_776,        # home health aide, 44 hrs/week
    "assisted": 70_800,    # assisted living facility
    "nursing": 104_025,    # semi-private nursing home room
}

# Annual incidence of a new LTC episode: (min age, max age, probability)
LTC_INCIDENCE_BY_AGE = (
    (0, 64, 0.001),
    (65, 69, 0.003),
    (70, 74, 0.008),
    (75, 79, 0.018),
    (80, 84, 0.035),
    (85, 89, 0.065),
    (90, 94, 0.095),
    (95, 200, 0.120),
)

LTC_GENDER_MULTIPLIER = {"male": 1.0, "female": 1.15}

LTC_HEALTH_MULTIPLIER = {
    "excellent": 0.5,
    "good": 0.85,
    "fair": 1.3,
    "poor": 2.0,
}

# Mean duration in years by care setting; women stay in care longer on average
LTC_MEAN_DURATION_YEARS = {"home": 1.5, "assisted": 2.0, "nursing": 2.5}
LTC_FEMALE_DURATION_MULTIPLIER = 1.68
LTC_DURATION_SIGMA = 0.6          # log-normal shape

# Care-setting mix (home, assisted, nursing) at onset
LTC_SETTING_MIX_YOUNG = (0.55, 0.30, 0.15)      # under 75 and not in poor health
LTC_SETTING_MIX_OLD = (0.45, 0.30, 0.25)

# Regional multiplier on national-median care costs
LTC_REGIONAL_COST_FACTORS = {
    "AK": 1.45, "CA": 1.25, "CT": 1.30, "HI": 1.35, "MA": 1.30, "NJ": 1.20,
    "NY": 1.25, "WA": 1.20, "OR": 1.15, "MN": 1.10, "CO": 1.05, "VA": 1.00,
    "IL": 1.00, "PA": 1.00, "ME": 1.05, "NC": 0.92, "FL": 0.95, "AZ": 0.95,
    "GA": 0.90, "TN": 0.88, "TX": 0.88, "OK": 0.85, "AL": 0.85, "MS": 0.82,
    "LA": 0.82, "AR": 0.82,
}

# Uniform noise around the regional cost: cost *= 1 + U(-spread, +spread)
LTC_COST_NOISE = 0.15

# Daily-benefit inflation riders on LTC insurance
LTC_INFLATION_RIDERS = {
    "none": ("none", 0.0),
    "3%_compound": ("compound", 0.03),
    "5%_simple": ("simple", 0.05),
    "cpi": ("compound", 0.025),
}

# Medicaid spend-down: countable assets a household may keep
MEDICAID_ASSET_LIMIT = {"single": 2_000, "couple": 3_000}


@dataclass(frozen=True)
class LTCAssumptions:
    """Everything the LTC modeler draws from, bundled so tests can swap it."""
    incidence_by_age: Tuple[Tuple[int, int, float], ...] = LTC_INCIDENCE_BY_AGE
    gender_multiplier: Dict[str, float] = field(default_factory=lambda: dict(LTC_GENDER_MULTIPLIER))
    health_multiplier: Dict[str, float] = field(default_factory=lambda: dict(LTC_HEALTH_MULTIPLIER))
    base_annual_cost: Dict[str, float] = field(default_factory=lambda: dict(LTC_BASE_ANNUAL_COST))
    mean_duration_years: Dict[str, float] = field(default_factory=lambda: dict(LTC_MEAN_DURATION_YEARS))
    female_duration_multiplier: float = LTC_FEMALE_DURATION_MULTIPLIER
    duration_sigma: float = LTC_DURATION_SIGMA
    min_duration_years: float = 0.5
    max_duration_years: float = 5.0
    setting_mix_young: Tuple[float, float, float] = LTC_SETTING_MIX_YOUNG
    setting_mix_old: Tuple[float, float, float] = LTC_SETTING_MIX_OLD
    cost_noise: float = LTC_COST_NOISE
    max_events_per_person: int = 2
    min_age: int = 65


DEFAULT_LTC_ASSUMPTIONS = LTCAssumptions()
