from models import (
    AssetBuckets,
    ExpenseSchedule,
    IncomeStreams,
    PersonParams,
    SimulationParams,
)

# one invested class plus riskless cash, uncorrelated
PORTFOLIO_AND_CASH = {"portfolio": (0.07, 0.12), "cash": (0.02, 0.0)}
IDENTITY_2 = ((1.0, 0.0), (0.0, 1.0))
ALL_IN_PORTFOLIO = {"portfolio": 1.0, "cash": 0.0}


def make_person(**overrides) -> PersonParams:
    values = dict(
        current_age=50,
        retirement_age=65,
        life_expectancy=85,
        income=IncomeStreams(pension=20_000, pension_start_age=65),
    )
    values.update(overrides)
    return PersonParams(**values)


def make_buckets(**overrides) -> AssetBuckets:
    values = dict(tax_deferred=700_000, tax_free=200_000, capital_gains=100_000, cash_equivalents=0)
    values.update(overrides)
    return AssetBuckets(**values)


def make_params(person=None, buckets=None, living=50_000, **overrides) -> SimulationParams:
    """The 50 -> 65 -> 85 reference household, 7% / 12% returns, $50k spending, $20k pension."""
    values = dict(
        persons=(person if person is not None else make_person(),),
        buckets=buckets if buckets is not None else make_buckets(),
        expenses=ExpenseSchedule(living=living),
        asset_classes=dict(PORTFOLIO_AND_CASH),
        correlation=IDENTITY_2,
        allocation=dict(ALL_IN_PORTFOLIO),
        random_seed=1234,
    )
    values.update(overrides)
    return SimulationParams(**values)


def reference_dict() -> dict:
    """The same household as make_params(), in wire (camelCase JSON) form."""
    return {
        "persons": [
            {
                "currentAge": 50,
                "retirementAge": 65,
                "lifeExpectancy": 85,
                "income": {"pension": 20000, "pensionStartAge": 65},
            }
        ],
        "buckets": {"taxDeferred": 700000, "taxFree": 200000, "capitalGains": 100000, "cashEquivalents": 0},
        "expenses": {"living": 50000},
        "assetClasses": {"portfolio": [0.07, 0.12], "cash": [0.02, 0.0]},
        "correlation": [[1.0, 0.0], [0.0, 1.0]],
        "allocation": {"portfolio": 1.0, "cash": 0.0},
        "randomSeed": 1234,
    }
