# utils/ss_utils.py

EARLIEST_CLAIM_AGE = 62
LATEST_CLAIM_AGE = 70


def get_full_retirement_age(birth_year: int, birth_month: int = 1) -> float:
    """
    Calculates the Full Retirement Age (FRA) in years based on the birth year
    and birth month according to US Social Security Administration rules.
    """

    # SSA Rule: Persons born on January 1st refer to the FRA of the previous year.
    if birth_month == 1:
        year_for_fra_calc = birth_year - 1
    else:
        year_for_fra_calc = birth_year

    if year_for_fra_calc <= 1937:
        return 65.0
    elif year_for_fra_calc <= 1942:
        # 65 plus 2 months for each year after 1937
        return 65.0 + (year_for_fra_calc - 1937) * 2 / 12.0
    elif year_for_fra_calc <= 1954:
        return 66.0
    elif year_for_fra_calc <= 1959:
        # 66 plus 2 months for each year after 1954
        return 66.0 + (year_for_fra_calc - 1954) * 2 / 12.0
    else:  # 1960 and later
        return 67.0


def get_claim_age_multiplier(birth_year: int, claim_age: float) -> float:
    """
    Fraction of the FRA benefit paid when claiming at `claim_age`.

    Early: 5/9 of 1% per month for the first 36 months before FRA, 5/12 of 1%
    per month beyond that. Delayed: 8% per year (2/3 of 1% per month) up to 70.
    """
    claim_age = min(max(float(claim_age), EARLIEST_CLAIM_AGE), LATEST_CLAIM_AGE)
    fra = get_full_retirement_age(birth_year)
    months = round((claim_age - fra) * 12)

    if months >= 0:
        return 1.0 + months * (2.0 / 3.0) / 100.0

    early = -months
    first = min(early, 36)
    beyond = early - first
    return 1.0 - first * (5.0 / 9.0) / 100.0 - beyond * (5.0 / 12.0) / 100.0
