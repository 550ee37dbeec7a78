# =============================================================================
# Market Info used in simulations
# =============================================================================
import numpy as np

# Long-run inflation assumptions (all expenses are entered in today's dollars)
long_term_inflation_mu = 0.025
healthcare_inflation_mu = 0.045
ltc_inflation_mu = 0.03

# Asset classes: name -> (expected annual return, annual volatility)
# Order matters: it fixes the row/column order of the correlation matrix.
DEFAULT_ASSET_CLASSES = {
    "equity":       (0.075, 0.165),
    "bonds":        (0.045, 0.09),
    "cash":         (0.03,  0.01),
    "alternatives": (0.06,  0.18),
}

corr_matrix = np.array([
    #  equity  bonds   cash   alts
    [ 1.00,   0.20,  0.00,  0.60],
    [ 0.20,   1.00,  0.10,  0.20],
    [ 0.00,   0.10,  1.00,  0.00],
    [ 0.60,   0.20,  0.00,  1.00],
])

DEFAULT_ALLOCATION = {
    "equity": 0.60,
    "bonds": 0.30,
    "cash": 0.05,
    "alternatives": 0.05,
}

# Name of the asset class that drives growth of the cash_equivalents bucket
CASH_ASSET_CLASS = "cash"

# No single-year loss worse than -95%: keeps every growth factor positive
RETURN_FLOOR = -0.95

# =============================================================================
# Market regimes (Markov chain, one chain per trial)
# =============================================================================
REGIME_NAMES = ("bull", "normal", "bear", "recession")

# P(next regime | current regime), rows sum to 1
REGIME_TRANSITIONS = {
    "bull":      {"bull": 0.70, "normal": 0.20, "bear": 0.08, "recession": 0.02},
    "normal":    {"bull": 0.25, "normal": 0.50, "bear": 0.20, "recession": 0.05},
    "bear":      {"bull": 0.20, "normal": 0.40, "bear": 0.30, "recession": 0.10},
    "recession": {"bull": 0.05, "normal": 0.25, "bear": 0.60, "recession": 0.10},
}

INITIAL_REGIME_PROBS = {"bull": 0.30, "normal": 0.50, "bear": 0.15, "recession": 0.05}

# Per-regime (mean multiplier, volatility multiplier) layered on the base draw.
# Classes missing from a regime use (1.0, 1.0).
REGIME_ADJUSTMENTS = {
    "bull": {
        "equity": (1.7, 0.9), "bonds": (0.8, 0.8), "alternatives": (1.4, 1.0),
    },
    "normal": {
        "equity": (1.2, 1.0), "bonds": (1.0, 1.0), "alternatives": (1.1, 1.0),
    },
    "bear": {
        "equity": (-0.4, 1.3), "bonds": (1.2, 0.9), "alternatives": (0.2, 1.4),
    },
    "recession": {
        "equity": (-1.5, 1.8), "bonds": (1.5, 0.7), "cash": (0.8, 1.0), "alternatives": (-1.0, 2.0),
    },
}

# =============================================================================
# Fat tails and glide paths
# =============================================================================
RETURN_DISTRIBUTIONS = ("normal", "student_t")

# Degrees of freedom for Student-t shocks; lower = fatter tails (must be > 2)
STUDENT_T_DF = 5

# Classes counted as "stocks" by a glide path; every other class is the defensive side
EQUITY_CLASSES = ("equity", "alternatives")

# strategy -> list of (years into retirement, equity share); linear in between,
# flat past the last point
GLIDE_PATHS = {
    "traditional":   [(0, 0.60), (20, 0.30)],
    "bond_tent":     [(0, 0.60), (5, 0.50), (15, 0.60)],
    "rising_equity": [(0, 0.30), (30, 0.60)],
}
