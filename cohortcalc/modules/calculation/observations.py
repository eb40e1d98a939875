"""
Calculations that read a single concept from the observation source.

Each calculation issues one batch query for the whole cohort and reduces the
per-subject chronological observation list in a vectorised way.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import pandas as pd

from cohortcalc.constants.cohort import ON_OR_AFTER, ON_OR_BEFORE
from cohortcalc.constants.data import PID_COL, TIMESTAMP_COL
from cohortcalc.functional.calculation.results import (
    observation_lists,
    observed_values,
    result_from_mapping,
)
from cohortcalc.functional.calculation.window import (
    compute_period_mask,
    compute_value_mask,
    select_first,
    select_last,
)
from cohortcalc.modules.calculation.base import Calculation, register_calculation

FIRST = "first"
LAST = "last"


@register_calculation("observations")
@dataclass(frozen=True)
class ObservationsCalculation(Calculation):
    """List-valued: every observation of ``concept`` in chronological order."""

    concept: str

    def evaluate(self, cohort, parameters, context, engine) -> pd.Series:
        observations = engine.fetch(self.concept, cohort, context)
        return result_from_mapping(
            observation_lists(observations), cohort, self.calculation_name
        )


@register_calculation("first_observation")
@dataclass(frozen=True)
class FirstObservationCalculation(Calculation):
    """Earliest observation of ``concept`` as an ObservedValue."""

    concept: str

    def evaluate(self, cohort, parameters, context, engine) -> pd.Series:
        observations = engine.fetch(self.concept, cohort, context)
        return observed_values(select_first(observations, PID_COL))


@register_calculation("last_observation")
@dataclass(frozen=True)
class LastObservationCalculation(Calculation):
    """Latest observation of ``concept`` as an ObservedValue."""

    concept: str

    def evaluate(self, cohort, parameters, context, engine) -> pd.Series:
        observations = engine.fetch(self.concept, cohort, context)
        return observed_values(select_last(observations, PID_COL))


@register_calculation("observation_date")
@dataclass(frozen=True)
class ObservationDateCalculation(Calculation):
    """
    Date of the first or last observation of ``concept``, e.g. an enrollment date.

    Subjects without an observation get NaT.
    """

    concept: str
    which: str = FIRST

    def __post_init__(self):
        if self.which not in (FIRST, LAST):
            raise ValueError(f"which must be '{FIRST}' or '{LAST}', got '{self.which}'.")

    def evaluate(self, cohort, parameters, context, engine) -> pd.Series:
        observations = engine.fetch(self.concept, cohort, context)
        select = select_first if self.which == FIRST else select_last
        chosen = select(observations, PID_COL)
        return pd.Series(
            chosen[TIMESTAMP_COL].values,
            index=pd.Index(chosen[PID_COL].values, name=PID_COL),
            dtype="datetime64[ns]",
        )


@register_calculation("has_observation")
@dataclass(frozen=True)
class HasObservationCalculation(Calculation):
    """
    Whether a subject has a qualifying observation of ``concept``.

    Optional parameters ``onOrAfter`` and ``onOrBefore`` bound the period, both
    inclusive (an ``onOrBefore`` at midnight covers the whole day). ``values``
    restricts coded values; ``min_value``/``max_value`` are inclusive numeric
    bounds. Never absent: subjects without data are False.
    """

    concept: str
    values: Tuple = ()
    min_value: Optional[float] = None
    max_value: Optional[float] = None

    def __post_init__(self):
        object.__setattr__(self, "values", tuple(self.values))

    def evaluate(self, cohort, parameters, context, engine) -> pd.Series:
        observations = engine.fetch(self.concept, cohort, context)
        mask = compute_period_mask(
            observations[TIMESTAMP_COL],
            parameters.get(ON_OR_AFTER),
            parameters.get(ON_OR_BEFORE),
        )
        mask &= compute_value_mask(
            observations, self.values, self.min_value, self.max_value
        )
        found = set(observations.loc[mask, PID_COL])
        return pd.Series(
            [pid in found for pid in cohort],
            index=pd.Index(cohort, name=PID_COL),
            dtype=bool,
        )
