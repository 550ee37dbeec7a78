import numpy as np
import pytest

from config.mortality_tables import MAX_DRAWN_LIFE_EXPECTANCY, PERIOD_LIFE_TABLE, TABLE_MAX_AGE
from engine.longevity import (
    LongevityModel,
    annual_mortality,
    banded_life_expectancy,
    mortality_table_life_expectancy,
    survival_probability,
)
from tests.helpers import make_person


def test_mortality_reads_gender_column_and_health():
    woman = make_person(current_age=70, gender="female")
    man = make_person(current_age=70, gender="male")
    frail = make_person(current_age=70, gender="male", health_status="poor")

    assert annual_mortality(woman, 80) == pytest.approx(PERIOD_LIFE_TABLE[80][1])
    assert annual_mortality(man, 80) == pytest.approx(PERIOD_LIFE_TABLE[80][0])
    assert annual_mortality(frail, 80) == pytest.approx(PERIOD_LIFE_TABLE[80][0] * 2.2)
    # below the table: the age-50 row
    assert annual_mortality(man, 40) == pytest.approx(PERIOD_LIFE_TABLE[50][0])
    assert annual_mortality(frail, 119) == 1.0
    assert annual_mortality(woman, TABLE_MAX_AGE) == 1.0


def test_survival_probability_compounds_and_falls():
    person = make_person(current_age=65, gender="male")
    one_year = survival_probability(person, 66)
    assert one_year == pytest.approx(1 - PERIOD_LIFE_TABLE[65][0])
    assert survival_probability(person, 65) == 1.0
    assert 0.0 < survival_probability(person, 95) < survival_probability(person, 85) < one_year


@pytest.mark.parametrize(
    "u_band, low, high",
    [
        (0.10, 76, 81),     # early band, 77..82
        (0.50, 82, 86),     # central band, 83..87
        (0.90, 87, 91),     # long tail, 88..92
    ],
)
def test_banded_draw_lands_in_its_band(u_band, low, high):
    # male: 1.5 years off each band, rounded half up
    person = make_person(current_age=60, life_expectancy=85, gender="male")
    drawn = [banded_life_expectancy(person, u_band, u) for u in np.linspace(0.0, 1.0, 11)]
    assert min(drawn) == low
    assert max(drawn) == high
    assert drawn == sorted(drawn)


def test_banded_draw_respects_floor_and_cap():
    old = make_person(current_age=80, retirement_age=65, life_expectancy=84, gender="male")
    # early band lifted to five years ahead (85), then the male shift
    assert banded_life_expectancy(old, 0.0, 0.0) == 84
    # never before next year
    assert banded_life_expectancy(old, 0.0, 1.0) == 81

    long_lived = make_person(current_age=60, life_expectancy=104, gender="female")
    assert banded_life_expectancy(long_lived, 0.99, 1.0) == MAX_DRAWN_LIFE_EXPECTANCY


def test_mortality_table_draw_stops_at_first_death():
    person = make_person(current_age=70, gender="male")
    # survive three rolls, die on the fourth
    uniforms = [0.99, 0.99, 0.99, 0.0, 0.99]
    assert mortality_table_life_expectancy(person, uniforms) == 73
    # dying in the first year still leaves one plan year
    assert mortality_table_life_expectancy(person, [0.0]) == 71
    assert mortality_table_life_expectancy(person, [0.999999] * 80) == TABLE_MAX_AGE


def test_fixed_model_returns_the_same_persons():
    persons = (make_person(),)
    assert LongevityModel("fixed").draw(persons, np.random.default_rng(0)) is persons


def test_drawn_persons_only_change_life_expectancy():
    persons = (make_person(current_age=62, life_expectancy=88), make_person(current_age=60, gender="male"))
    for model in ("banded", "mortality_table"):
        drawn = LongevityModel(model).draw(persons, np.random.default_rng(7))
        assert len(drawn) == 2
        for before, after in zip(persons, drawn):
            assert after.current_age == before.current_age
            assert after.income == before.income
            assert after.current_age < after.life_expectancy <= TABLE_MAX_AGE


def test_same_stream_same_draw():
    persons = (make_person(),)
    model = LongevityModel("mortality_table")
    a = model.draw(persons, np.random.default_rng(3))
    b = model.draw(persons, np.random.default_rng(3))
    assert a == b


def test_couple_band_picks_are_correlated():
    persons = (make_person(current_age=60, life_expectancy=85), make_person(current_age=60, life_expectancy=85))
    rng = np.random.default_rng(11)
    draws = np.array([[p.life_expectancy for p in LongevityModel("banded").draw(persons, rng)] for _ in range(3_000)])
    independent = np.array(
        [[p.life_expectancy for p in LongevityModel("banded", couple_correlation=0.0).draw(persons, rng)]
         for _ in range(3_000)]
    )

    assert np.corrcoef(draws.T)[0, 1] > 0.2
    assert abs(np.corrcoef(independent.T)[0, 1]) < 0.1
