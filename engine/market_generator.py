# market_generator.py
#
# This code generates correlated annual asset-class returns.
# The covariance matrix and its Cholesky factor are built once per simulation
# configuration; every trial then draws its own standard normals and, when
# regimes are switched on, walks its own bull/normal/bear/recession chain.
#

import logging
from typing import Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
from numpy.typing import NDArray

from config.market_assumptions import (
    CASH_ASSET_CLASS,
    EQUITY_CLASSES,
    GLIDE_PATHS,
    INITIAL_REGIME_PROBS,
    REGIME_ADJUSTMENTS,
    REGIME_NAMES,
    REGIME_TRANSITIONS,
    RETURN_FLOOR,
    STUDENT_T_DF,
)
from engine.errors import NotPositiveSemiDefinite, SimulationConfigError

logger = logging.getLogger(__name__)

PSD_TOLERANCE = 1e-10


def build_covariance(volatilities: Sequence[float], corr_matrix: NDArray[np.float64]) -> NDArray[np.float64]:
    """Σ = D·C·D with D = diag(volatilities)."""
    D = np.diag(np.asarray(volatilities, dtype=float))
    return D @ corr_matrix @ D


def cholesky_factor(cov: NDArray[np.float64], tol: float = PSD_TOLERANCE) -> NDArray[np.float64]:
    """
    Lower-triangular L with L @ L.T == cov.

    Unlike np.linalg.cholesky this accepts positive SEMI-definite input
    (zero-volatility classes, perfectly correlated pairs): a pivot that
    rounds to zero gets a zero column instead of failing.

    Raises:
        NotPositiveSemiDefinite: if the smallest eigenvalue is below -tol.
    """
    min_eig = float(np.linalg.eigvalsh(cov).min())
    if min_eig < -tol:
        raise NotPositiveSemiDefinite(
            f"covariance matrix is not positive semi-definite (min eigenvalue {min_eig:.3e})",
            min_eigenvalue=min_eig,
        )

    n = cov.shape[0]
    L = np.zeros_like(cov)
    for j in range(n):
        pivot = cov[j, j] - L[j, :j] @ L[j, :j]
        if pivot <= tol:
            continue
        L[j, j] = np.sqrt(pivot)
        for i in range(j + 1, n):
            L[i, j] = (cov[i, j] - L[i, :j] @ L[j, :j]) / L[j, j]
    return L


def _validate_correlation(corr: NDArray[np.float64], n: int) -> None:
    if corr.shape != (n, n):
        raise NotPositiveSemiDefinite(f"correlation matrix must be {n}x{n}, got {corr.shape}")
    if not np.all(np.isfinite(corr)):
        raise NotPositiveSemiDefinite("correlation matrix contains non-finite entries")
    if not np.allclose(corr, corr.T, atol=1e-12):
        raise NotPositiveSemiDefinite("correlation matrix is not symmetric")
    if not np.allclose(np.diag(corr), 1.0, atol=1e-12):
        raise NotPositiveSemiDefinite("correlation matrix diagonal must be 1")
    if np.any(np.abs(corr) > 1.0 + 1e-12):
        raise NotPositiveSemiDefinite("correlation entries must lie in [-1, 1]")


def glide_path_equity_share(strategy: str, years_in_retirement: float) -> float:
    """Target equity share `years_in_retirement` years after retiring."""
    points = GLIDE_PATHS[strategy]
    years = max(0.0, years_in_retirement)
    xs = [x for x, _ in points]
    ys = [y for _, y in points]
    return float(np.interp(years, xs, ys))


def glide_path_allocation(
    allocation: Mapping[str, float],
    strategy: Optional[str],
    years_in_retirement: float,
) -> Dict[str, float]:
    """
    Re-weights `allocation` so EQUITY_CLASSES hold the glide path's equity share.

    Weights inside each side keep their proportions. An allocation with no
    equity or no defensive weight has nothing to shift and comes back as is.
    """
    if strategy is None:
        return dict(allocation)
    equity_weight = sum(w for name, w in allocation.items() if name in EQUITY_CLASSES)
    defensive_weight = sum(w for name, w in allocation.items() if name not in EQUITY_CLASSES)
    if equity_weight <= 0.0 or defensive_weight <= 0.0:
        return dict(allocation)

    share = glide_path_equity_share(strategy, years_in_retirement)
    return {
        name: w * (share / equity_weight if name in EQUITY_CLASSES else (1 - share) / defensive_weight)
        for name, w in allocation.items()
    }


class ReturnGenerator:
    """
    Draws one year of returns per call.

    Args:
        asset_classes: name -> (expected_return, volatility); the insertion order
            is the row/column order of `correlation`.
        correlation: square correlation matrix.
        use_regimes: layer per-regime mean/volatility multipliers on each draw.
        distribution: "normal", or "student_t" for fat-tailed shocks with the
            same covariance (one shared chi-square per year, so the classes
            stay correlated).
        degrees_of_freedom: Student-t degrees of freedom, must exceed 2.
    """

    def __init__(
        self,
        asset_classes: Mapping[str, Tuple[float, float]],
        correlation: Sequence[Sequence[float]],
        use_regimes: bool = False,
        distribution: str = "normal",
        degrees_of_freedom: int = STUDENT_T_DF,
    ):
        self.names = tuple(asset_classes)
        self.mu = np.array([asset_classes[name][0] for name in self.names], dtype=float)
        self.sigma = np.array([asset_classes[name][1] for name in self.names], dtype=float)
        self.use_regimes = use_regimes
        self.distribution = distribution
        self.df = degrees_of_freedom
        if distribution == "student_t" and degrees_of_freedom <= 2:
            raise SimulationConfigError(f"Student-t degrees of freedom must exceed 2, got {degrees_of_freedom}")

        corr = np.asarray(correlation, dtype=float)
        _validate_correlation(corr, len(self.names))
        self.covariance = build_covariance(self.sigma, corr)
        self.L = cholesky_factor(self.covariance)

        # regime multipliers as arrays aligned with self.names
        self._mean_mult = {}
        self._vol_mult = {}
        for regime in REGIME_NAMES:
            adjustments = REGIME_ADJUSTMENTS.get(regime, {})
            self._mean_mult[regime] = np.array([adjustments.get(n, (1.0, 1.0))[0] for n in self.names])
            self._vol_mult[regime] = np.array([adjustments.get(n, (1.0, 1.0))[1] for n in self.names])

        logger.debug(f"ReturnGenerator ready: classes={self.names}, regimes={use_regimes}, shocks={distribution}")

    # ------------------------------------------------------------------
    # Regime chain
    # ------------------------------------------------------------------
    def initial_regime(self, rng: np.random.Generator) -> str:
        probs = [INITIAL_REGIME_PROBS[r] for r in REGIME_NAMES]
        return REGIME_NAMES[int(rng.choice(len(REGIME_NAMES), p=probs))]

    def next_regime(self, regime: str, rng: np.random.Generator) -> str:
        row = REGIME_TRANSITIONS[regime]
        probs = [row[r] for r in REGIME_NAMES]
        return REGIME_NAMES[int(rng.choice(len(REGIME_NAMES), p=probs))]

    # ------------------------------------------------------------------
    # Returns
    # ------------------------------------------------------------------
    def draw(self, rng: np.random.Generator, regime: str = "normal") -> NDArray[np.float64]:
        """One year of correlated returns, one entry per asset class."""
        # a fixed number of draws per year (plus one chi-square for Student-t) keeps streams aligned
        shocks = self.L @ rng.standard_normal(len(self.names))
        if self.distribution == "student_t":
            # rescale to unit variance, then divide by sqrt(chi2 / df)
            chi2 = float(rng.chisquare(self.df))
            shocks = shocks * np.sqrt((self.df - 2) / self.df) / np.sqrt(chi2 / self.df)

        if self.use_regimes:
            returns = self.mu * self._mean_mult[regime] + shocks * self._vol_mult[regime]
        else:
            returns = self.mu + shocks

        return np.maximum(returns, RETURN_FLOOR)

    def portfolio_return(self, returns: NDArray[np.float64], allocation: Mapping[str, float]) -> float:
        """Allocation-weighted return of the invested buckets."""
        return float(sum(weight * returns[self.names.index(name)] for name, weight in allocation.items()))

    def cash_return(self, returns: NDArray[np.float64]) -> float:
        if CASH_ASSET_CLASS not in self.names:
            return 0.0
        return float(returns[self.names.index(CASH_ASSET_CLASS)])
