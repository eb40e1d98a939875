"""HIV care quality indicators. All indicators expect ``startDate`` and ``endDate``."""

from typing import Mapping

from cohortcalc.constants.cohort import NO, YES
from cohortcalc.library.registry import register_indicator, require_concept
from cohortcalc.modules.calculation.derived import (
    ImprovementCalculation,
    NearestObservationCalculation,
    ValueDeltaCalculation,
)
from cohortcalc.modules.calculation.observations import (
    LastObservationCalculation,
    ObservationDateCalculation,
)
from cohortcalc.modules.cohort_handling.builders import all_of, any_of, mapped
from cohortcalc.modules.cohort_handling.definitions import (
    CalculationCohortDefinition,
    CohortDefinition,
    ObservationCohortDefinition,
)
from cohortcalc.modules.indicator.indicator import CohortIndicator

# Logical concept names
CD4_COUNT = "CD4_COUNT"
CD4_PERCENT = "CD4_PERCENT"
HIV_ENROLLMENT = "HIV_ENROLLMENT"
HIV_VISIT = "HIV_VISIT"
NUTRITIONAL_ASSESSMENT = "NUTRITIONAL_ASSESSMENT"

LAST_6_MONTHS = "onOrAfter=${endDate-6m},onOrBefore=${endDate}"
REPORTING_PERIOD = "onOrAfter=${startDate},onOrBefore=${endDate}"


# === Calculations ===
def initial_cd4_percent(concepts: Mapping[str, str]) -> NearestObservationCalculation:
    """CD4% nearest to, and at most 91 days before, HIV enrollment."""
    enrollment = ObservationDateCalculation(require_concept(concepts, HIV_ENROLLMENT))
    return NearestObservationCalculation(require_concept(concepts, CD4_PERCENT), anchor=enrollment)


def cd4_percent_improvement(concepts: Mapping[str, str]) -> ImprovementCalculation:
    """Whether CD4% rose from the initial to the latest value; absent without both values."""
    delta = ValueDeltaCalculation(
        earlier=initial_cd4_percent(concepts),
        later=LastObservationCalculation(require_concept(concepts, CD4_PERCENT)),
    )
    return ImprovementCalculation(delta)


# === Cohorts ===
def has_cd4_result(concepts: Mapping[str, str]) -> CohortDefinition:
    return any_of(
        ObservationCohortDefinition(require_concept(concepts, CD4_COUNT)),
        ObservationCohortDefinition(require_concept(concepts, CD4_PERCENT)),
    )


def has_hiv_visit(concepts: Mapping[str, str]) -> CohortDefinition:
    return ObservationCohortDefinition(require_concept(concepts, HIV_VISIT))


def in_care_on_date(concepts: Mapping[str, str]) -> CohortDefinition:
    """Enrolled in HIV care on or before ``onDate``."""
    enrolled = ObservationCohortDefinition(require_concept(concepts, HIV_ENROLLMENT))
    return all_of(mapped(enrolled, "onOrBefore=${onDate}"))


# === Indicators ===
@register_indicator("hiv", "monitoring_cd4")
def monitoring_cd4(concepts: Mapping[str, str]) -> CohortIndicator:
    visited = mapped(has_hiv_visit(concepts), LAST_6_MONTHS)
    return CohortIndicator(
        "hiv.monitoring_cd4",
        cohorts=(mapped(has_cd4_result(concepts), LAST_6_MONTHS), visited),
        denominator=visited,
        description="HIV monitoring - CD4",
    )


@register_indicator("hiv", "nutritional_assessment")
def nutritional_assessment(concepts: Mapping[str, str]) -> CohortIndicator:
    visited = mapped(has_hiv_visit(concepts), LAST_6_MONTHS)
    assessed = ObservationCohortDefinition(require_concept(concepts, NUTRITIONAL_ASSESSMENT))
    return CohortIndicator(
        "hiv.nutritional_assessment",
        cohorts=(mapped(assessed, "onOrBefore=${endDate}"), visited),
        denominator=visited,
        description="Nutritional assessment",
    )


@register_indicator("hiv", "clinical_visit")
def clinical_visit(concepts: Mapping[str, str]) -> CohortIndicator:
    in_care = mapped(in_care_on_date(concepts), "onDate=${endDate-6m}")
    return CohortIndicator(
        "hiv.clinical_visit",
        cohorts=(in_care, mapped(has_hiv_visit(concepts), REPORTING_PERIOD)),
        denominator=in_care,
        description="Clinical visit",
    )


@register_indicator("hiv", "cd4_improvement")
def cd4_improvement(concepts: Mapping[str, str]) -> CohortIndicator:
    improvement = cd4_percent_improvement(concepts)
    return CohortIndicator(
        "hiv.cd4_improvement",
        cohorts=CalculationCohortDefinition(improvement, values=(YES,)),
        denominator=CalculationCohortDefinition(improvement, values=(YES, NO)),
        description="CD4% improved since enrollment",
    )
