import numpy as np
import pytest

from config.market_assumptions import DEFAULT_ASSET_CLASSES, REGIME_NAMES, RETURN_FLOOR, corr_matrix
from engine.errors import NotPositiveSemiDefinite, SimulationConfigError
from engine.market_generator import (
    ReturnGenerator,
    build_covariance,
    cholesky_factor,
    glide_path_allocation,
    glide_path_equity_share,
)

NOT_PSD = [
    [1.0, 0.9, -0.9],
    [0.9, 1.0, 0.9],
    [-0.9, 0.9, 1.0],
]


def test_cholesky_reproduces_covariance():
    cov = build_covariance([0.165, 0.09, 0.01, 0.18], corr_matrix)
    L = cholesky_factor(cov)
    assert np.allclose(L @ L.T, cov)
    assert np.allclose(L, np.tril(L))


def test_cholesky_accepts_singular_psd_matrix():
    # perfectly correlated pair plus a zero-volatility class
    corr = np.array([[1.0, 1.0, 0.0], [1.0, 1.0, 0.0], [0.0, 0.0, 1.0]])
    cov = build_covariance([0.10, 0.20, 0.0], corr)
    L = cholesky_factor(cov)
    assert np.allclose(L @ L.T, cov)


def test_not_psd_matrix_is_rejected():
    cov = build_covariance([0.1, 0.1, 0.1], np.array(NOT_PSD))
    with pytest.raises(NotPositiveSemiDefinite) as excinfo:
        cholesky_factor(cov)
    assert excinfo.value.min_eigenvalue < 0


def test_generator_rejects_bad_correlation():
    classes = {"a": (0.05, 0.1), "b": (0.05, 0.1), "c": (0.05, 0.1)}
    with pytest.raises(NotPositiveSemiDefinite):
        ReturnGenerator(classes, NOT_PSD)
    with pytest.raises(SimulationConfigError):
        ReturnGenerator(classes, [[1.0, 0.0], [0.0, 1.0]])
    with pytest.raises(SimulationConfigError):
        ReturnGenerator(classes, [[1.0, 0.2, 0.0], [0.3, 1.0, 0.0], [0.0, 0.0, 1.0]])


def test_draws_match_means_and_correlation():
    gen = ReturnGenerator(DEFAULT_ASSET_CLASSES, corr_matrix)
    rng = np.random.default_rng(42)
    draws = np.array([gen.draw(rng) for _ in range(20_000)])

    assert np.allclose(draws.mean(axis=0), gen.mu, atol=0.01)
    assert np.allclose(draws.std(axis=0), gen.sigma, rtol=0.05)
    sample_corr = np.corrcoef(draws.T)
    assert sample_corr[0, 3] == pytest.approx(corr_matrix[0, 3], abs=0.05)
    assert sample_corr[0, 1] == pytest.approx(corr_matrix[0, 1], abs=0.05)


def test_zero_volatility_class_returns_its_mean():
    gen = ReturnGenerator({"portfolio": (0.07, 0.12), "cash": (0.02, 0.0)}, [[1.0, 0.0], [0.0, 1.0]])
    rng = np.random.default_rng(0)
    for _ in range(10):
        assert gen.cash_return(gen.draw(rng)) == pytest.approx(0.02)


def test_returns_are_floored():
    gen = ReturnGenerator({"wild": (0.0, 5.0)}, [[1.0]])
    rng = np.random.default_rng(3)
    draws = np.array([gen.draw(rng) for _ in range(500)])
    assert draws.min() >= RETURN_FLOOR


def test_draw_consumes_one_normal_per_class():
    gen = ReturnGenerator(DEFAULT_ASSET_CLASSES, corr_matrix, use_regimes=True)
    a = np.random.default_rng(9)
    b = np.random.default_rng(9)
    gen.draw(a, "recession")
    b.standard_normal(len(DEFAULT_ASSET_CLASSES))
    assert a.random() == b.random()


def test_portfolio_return_weights_classes():
    gen = ReturnGenerator({"x": (0.0, 0.0), "y": (0.0, 0.0)}, [[1.0, 0.0], [0.0, 1.0]])
    returns = np.array([0.10, -0.02])
    assert gen.portfolio_return(returns, {"x": 0.75, "y": 0.25}) == pytest.approx(0.07)


def test_regimes_shift_equity_mean():
    gen = ReturnGenerator(DEFAULT_ASSET_CLASSES, corr_matrix, use_regimes=True)
    rng = np.random.default_rng(11)
    bull = np.mean([gen.draw(rng, "bull")[0] for _ in range(5_000)])
    bear = np.mean([gen.draw(rng, "recession")[0] for _ in range(5_000)])
    assert bull > 0.10
    assert bear < 0.0


def test_regime_chain_stays_in_known_states():
    gen = ReturnGenerator(DEFAULT_ASSET_CLASSES, corr_matrix, use_regimes=True)
    rng = np.random.default_rng(5)
    regime = gen.initial_regime(rng)
    seen = {regime}
    for _ in range(500):
        regime = gen.next_regime(regime, rng)
        seen.add(regime)
    assert seen <= set(REGIME_NAMES)
    assert len(seen) == len(REGIME_NAMES)


def test_student_t_keeps_variance_and_fattens_tails():
    classes = {"steady": (0.05, 0.05)}
    normal = ReturnGenerator(classes, [[1.0]])
    fat = ReturnGenerator(classes, [[1.0]], distribution="student_t", degrees_of_freedom=5)
    rng_n, rng_t = np.random.default_rng(21), np.random.default_rng(21)
    n = np.array([normal.draw(rng_n)[0] for _ in range(50_000)])
    t = np.array([fat.draw(rng_t)[0] for _ in range(50_000)])

    assert t.mean() == pytest.approx(0.05, abs=0.002)
    assert t.std() == pytest.approx(0.05, rel=0.05)

    def kurtosis(x):
        z = (x - x.mean()) / x.std()
        return float(np.mean(z ** 4))

    assert kurtosis(n) == pytest.approx(3.0, abs=0.2)
    assert kurtosis(t) > 4.0


def test_student_t_draws_one_chi_square_per_year():
    gen = ReturnGenerator(DEFAULT_ASSET_CLASSES, corr_matrix, distribution="student_t")
    a = np.random.default_rng(4)
    b = np.random.default_rng(4)
    gen.draw(a)
    b.standard_normal(len(DEFAULT_ASSET_CLASSES))
    b.chisquare(gen.df)
    assert a.random() == b.random()


@pytest.mark.parametrize("df", [1, 2])
def test_student_t_needs_finite_variance(df):
    with pytest.raises(SimulationConfigError):
        ReturnGenerator({"x": (0.05, 0.1)}, [[1.0]], distribution="student_t", degrees_of_freedom=df)


def test_glide_path_interpolates_and_holds_ends():
    assert glide_path_equity_share("traditional", 0) == pytest.approx(0.60)
    assert glide_path_equity_share("traditional", 10) == pytest.approx(0.45)
    assert glide_path_equity_share("traditional", 35) == pytest.approx(0.30)
    # still working: the starting share
    assert glide_path_equity_share("traditional", -4) == pytest.approx(0.60)
    assert glide_path_equity_share("bond_tent", 5) == pytest.approx(0.50)
    assert glide_path_equity_share("rising_equity", 15) == pytest.approx(0.45)


def test_glide_path_allocation_keeps_proportions_within_each_side():
    allocation = {"equity": 0.5, "alternatives": 0.1, "bonds": 0.3, "cash": 0.1}
    shifted = glide_path_allocation(allocation, "traditional", 10)

    assert sum(shifted.values()) == pytest.approx(1.0)
    assert shifted["equity"] + shifted["alternatives"] == pytest.approx(0.45)
    assert shifted["equity"] / shifted["alternatives"] == pytest.approx(5.0)
    assert shifted["bonds"] / shifted["cash"] == pytest.approx(3.0)


def test_glide_path_leaves_one_sided_allocations_alone():
    assert glide_path_allocation({"portfolio": 1.0, "cash": 0.0}, "traditional", 10) == {"portfolio": 1.0, "cash": 0.0}
    assert glide_path_allocation({"equity": 1.0}, "traditional", 10) == {"equity": 1.0}
    assert glide_path_allocation({"equity": 0.6, "bonds": 0.4}, None, 10) == {"equity": 0.6, "bonds": 0.4}
