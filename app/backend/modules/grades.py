from typing import Optional

from ..config.config import settings


def cohort_to_grade(cohort: int, year: int, base_year: Optional[int] = None, base_cohort: Optional[int] = None) -> int:
    """
    School year of a cohort in the given calendar year.

    In the base year the base cohort is in its first year; every older cohort
    is one year further along and every calendar year moves all cohorts up by one.
    The result is not clamped.
    """
    base_year = settings.GRADE_BASE_YEAR if base_year is None else base_year
    base_cohort = settings.GRADE_BASE_COHORT if base_cohort is None else base_cohort
    return (base_cohort - cohort) + 1 + (year - base_year)


def grade_label(cohort: int, year: int) -> str:
    """
    Human-facing label of a cohort, e.g. grade_label(9, 2025) -> "2年生 (9期生)".
    Cohorts outside the first to third year are shown by cohort number only.
    """
    grade = cohort_to_grade(cohort, year)
    if 1 <= grade <= 3:
        return f"{grade}年生 ({cohort}期生)"
    return f"{cohort}期生"
