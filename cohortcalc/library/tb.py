"""TB and TB/HIV indicators. All indicators expect ``startDate`` and ``endDate``."""

from typing import Mapping

from cohortcalc.library.registry import register_indicator, require_concept
from cohortcalc.modules.cohort_handling.builders import all_of, expression, mapped
from cohortcalc.modules.cohort_handling.definitions import (
    CohortDefinition,
    ObservationCohortDefinition,
)
from cohortcalc.modules.indicator.indicator import CohortIndicator

# Logical concept names
TB_SCREENING = "TB_SCREENING"
TB_ENROLLMENT = "TB_ENROLLMENT"
TB_VISIT = "TB_VISIT"
TB_PATIENT_CLASSIFICATION = "TB_PATIENT_CLASSIFICATION"
TB_NEW_CASE = "TB_NEW_CASE"
HIV_TEST = "HIV_TEST"
HIV_POSITIVE = "HIV_POSITIVE"

REPORTING_PERIOD = "onOrAfter=${startDate},onOrBefore=${endDate}"
# Days without a TB visit after which an enrolled patient counts as defaulted
DEFAULTER_DAYS = 30


# === Cohorts ===
def screened_for_tb(concepts: Mapping[str, str]) -> CohortDefinition:
    return ObservationCohortDefinition(require_concept(concepts, TB_SCREENING))


def tested_for_hiv(concepts: Mapping[str, str]) -> CohortDefinition:
    return ObservationCohortDefinition(require_concept(concepts, HIV_TEST))


def hiv_positive(concepts: Mapping[str, str]) -> CohortDefinition:
    return ObservationCohortDefinition(
        require_concept(concepts, HIV_TEST),
        values=(require_concept(concepts, HIV_POSITIVE),),
    )


def in_tb_program(concepts: Mapping[str, str]) -> CohortDefinition:
    return ObservationCohortDefinition(require_concept(concepts, TB_ENROLLMENT))


def screened_for_tb_and_hiv_positive(concepts: Mapping[str, str]) -> CohortDefinition:
    return all_of(screened_for_tb(concepts), hiv_positive(concepts))


def defaulted_on_date(concepts: Mapping[str, str]) -> CohortDefinition:
    """Enrolled on or before ``onDate`` without a TB visit in the preceding days."""
    enrolled = mapped(in_tb_program(concepts), "onOrBefore=${onDate}")
    visit = ObservationCohortDefinition(require_concept(concepts, TB_VISIT))
    return expression(
        "enrolled & ~visited",
        {
            "enrolled": enrolled,
            "visited": mapped(
                visit, f"onOrAfter=${{onDate-{DEFAULTER_DAYS}d}},onOrBefore=${{onDate}}"
            ),
        },
        universe=enrolled,
    )


# === Indicators ===
@register_indicator("tb", "screened_and_hiv_positive")
def screened_and_hiv_positive(concepts: Mapping[str, str]) -> CohortIndicator:
    return CohortIndicator(
        "tb.screened_and_hiv_positive",
        cohorts=mapped(screened_for_tb_and_hiv_positive(concepts), REPORTING_PERIOD),
        description="Patients screened for TB and HIV positive",
    )


@register_indicator("tb", "tested_for_hiv")
def in_tb_and_tested_for_hiv(concepts: Mapping[str, str]) -> CohortIndicator:
    return CohortIndicator(
        "tb.tested_for_hiv",
        cohorts=(
            mapped(in_tb_program(concepts), REPORTING_PERIOD),
            mapped(tested_for_hiv(concepts), REPORTING_PERIOD),
        ),
        description="In TB program and tested for HIV",
    )


@register_indicator("tb", "new_cases")
def new_detected_cases(concepts: Mapping[str, str]) -> CohortIndicator:
    new_case = ObservationCohortDefinition(
        require_concept(concepts, TB_PATIENT_CLASSIFICATION),
        values=(require_concept(concepts, TB_NEW_CASE),),
    )
    return CohortIndicator(
        "tb.new_cases",
        cohorts=mapped(new_case, REPORTING_PERIOD),
        description="New TB cases detected",
    )


@register_indicator("tb", "defaulted")
def defaulted(concepts: Mapping[str, str]) -> CohortIndicator:
    return CohortIndicator(
        "tb.defaulted",
        cohorts=mapped(defaulted_on_date(concepts), "onDate=${endDate}"),
        description="Patients who defaulted",
    )
