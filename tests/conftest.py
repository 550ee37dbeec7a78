import pytest

from config.tax_tables import get_policy_tables
from tests.helpers import make_params


@pytest.fixture
def tables_2026():
    return get_policy_tables(2026)


@pytest.fixture
def reference_params():
    return make_params()


@pytest.fixture
def quiet_params():
    """Reference household with LTC shocks switched off, for exact-value checks."""
    return make_params(ltc_modeling=False)
