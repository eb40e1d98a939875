"""
Calculations derived from other calculations.

Example usage:
```python
enrollment = ObservationDateCalculation("HIV_ENROLLMENT")
initial_cd4 = NearestObservationCalculation("CD4_PERCENT", anchor=enrollment)
change = ValueDeltaCalculation(earlier=FirstObservationCalculation("CD4_PERCENT"),
                               later=initial_cd4)
improved = ImprovementCalculation(delta=change)  # "Yes" / "No" / None
```
"""

from dataclasses import dataclass

import pandas as pd

from cohortcalc.constants.cohort import (
    BEFORE_OR_EQUAL,
    DEFAULT_WINDOW_DAYS,
    NO,
    WINDOW_BOUNDARIES,
    YES,
)
from cohortcalc.constants.data import PID_COL, TIMESTAMP_COL
from cohortcalc.functional.calculation.results import (
    date_value,
    numeric_value,
    observed_values,
)
from cohortcalc.functional.calculation.window import (
    compute_anchor_window_mask,
    select_last,
)
from cohortcalc.modules.calculation.base import Calculation, register_calculation


@register_calculation("nearest_observation")
@dataclass(frozen=True)
class NearestObservationCalculation(Calculation):
    """
    Observation of ``concept`` closest to, and not after, an anchor date.

    The anchor comes from a dependency calculation (a date, or an
    ObservedValue whose time is used). Candidate observations are filtered
    with the ``boundary`` rule (see ``compute_anchor_window_mask``) over a
    window of ``window_days``; the last candidate in chronological order wins,
    ties on the timestamp going to the one the source returned last.
    Subjects without an anchor or without a candidate are absent.
    """

    concept: str
    anchor: Calculation
    window_days: int = DEFAULT_WINDOW_DAYS
    boundary: str = BEFORE_OR_EQUAL

    def __post_init__(self):
        if self.boundary not in WINDOW_BOUNDARIES:
            raise ValueError(
                f"Unknown window boundary '{self.boundary}'. Expected one of {WINDOW_BOUNDARIES}."
            )
        if self.window_days < 0:
            raise ValueError("window_days must be non-negative.")

    def evaluate(self, cohort, parameters, context, engine) -> pd.Series:
        anchors = engine.calculate(self.anchor, cohort, context)
        anchor_dates = pd.Series(
            [date_value(v) for v in anchors], index=anchors.index, dtype="datetime64[ns]"
        ).dropna()
        if anchor_dates.empty:
            return pd.Series([], dtype=object)

        observations = engine.fetch(self.concept, anchor_dates.index, context)
        if observations.empty:
            return pd.Series([], dtype=object)
        mask = compute_anchor_window_mask(
            observations[TIMESTAMP_COL],
            observations[PID_COL].map(anchor_dates),
            self.window_days,
            self.boundary,
        )
        return observed_values(select_last(observations[mask], PID_COL))


@register_calculation("value_delta")
@dataclass(frozen=True)
class ValueDeltaCalculation(Calculation):
    """Signed change ``later - earlier`` of two numeric results; NaN when either is absent."""

    earlier: Calculation
    later: Calculation

    def evaluate(self, cohort, parameters, context, engine) -> pd.Series:
        earlier = engine.calculate(self.earlier, cohort, context)
        later = engine.calculate(self.later, cohort, context)
        deltas = []
        for pid in cohort:
            a, b = numeric_value(earlier[pid]), numeric_value(later[pid])
            deltas.append(float("nan") if a is None or b is None else b - a)
        return pd.Series(deltas, index=pd.Index(cohort, name=PID_COL), dtype=float)


@register_calculation("improvement")
@dataclass(frozen=True)
class ImprovementCalculation(Calculation):
    """
    Tri-state classification of a delta: "Yes" when positive, "No" when zero or
    negative, None when the delta is absent. Missing data is never reported as "No".
    """

    delta: Calculation

    def evaluate(self, cohort, parameters, context, engine) -> pd.Series:
        deltas = engine.calculate(self.delta, cohort, context)
        classes = {}
        for pid, value in deltas.items():
            value = numeric_value(value)
            if value is None:
                continue
            classes[pid] = YES if value > 0 else NO
        return pd.Series(classes, dtype=object)
