"""Vectorised time-window and value masks over observation frames.

Boundary semantics differ per use and are fixed here:

- ``compute_anchor_window_mask`` with ``before_or_equal``:
  ``(anchor - W < t < anchor) or t == anchor``. Observations exactly W days
  before the anchor are excluded; the anchor day itself is included only by
  exact equality.
- ``compute_anchor_window_mask`` with ``on_or_before``:
  ``anchor - W <= t <= anchor``.
- ``compute_period_mask``: ``on_or_after <= t`` and ``t <= on_or_before``, where an
  ``on_or_before`` at midnight covers the whole day.
"""

from typing import Iterable, Optional

import pandas as pd

from cohortcalc.constants.cohort import (
    BEFORE_OR_EQUAL,
    ON_OR_BEFORE_ANCHOR,
    WINDOW_BOUNDARIES,
)
from cohortcalc.constants.data import TEXT_VALUE_COL, TIMESTAMP_COL, VALUE_COL


def compute_anchor_window_mask(
    times: pd.Series,
    anchors: pd.Series,
    window_days: float,
    boundary: str = BEFORE_OR_EQUAL,
) -> pd.Series:
    """
    Boolean mask of observation times falling in the window that ends at the anchor.

    Rows without an anchor (NaT) never match.
    """
    lower = anchors - pd.Timedelta(days=window_days)
    if boundary == BEFORE_OR_EQUAL:
        return ((times < anchors) & (times > lower)) | (times == anchors)
    if boundary == ON_OR_BEFORE_ANCHOR:
        return (times >= lower) & (times <= anchors)
    raise ValueError(
        f"Unknown window boundary '{boundary}'. Expected one of {WINDOW_BOUNDARIES}."
    )


def end_of_period(date: pd.Timestamp) -> pd.Timestamp:
    """Exclusive upper bound for an inclusive date: midnight dates cover the whole day."""
    date = pd.Timestamp(date)
    if date == date.normalize():
        return date + pd.Timedelta(days=1)
    return date + pd.Timedelta(microseconds=1)


def compute_period_mask(
    times: pd.Series,
    on_or_after: Optional[pd.Timestamp] = None,
    on_or_before: Optional[pd.Timestamp] = None,
) -> pd.Series:
    """Mask of times inside the inclusive period; open ends are unbounded."""
    mask = pd.Series(True, index=times.index)
    if on_or_after is not None:
        mask &= times >= pd.Timestamp(on_or_after)
    if on_or_before is not None:
        mask &= times < end_of_period(on_or_before)
    return mask


def compute_value_mask(
    observations: pd.DataFrame,
    values: Iterable = (),
    min_value: Optional[float] = None,
    max_value: Optional[float] = None,
) -> pd.Series:
    """
    Mask of observations whose value qualifies.

    ``values`` matches coded values (or numeric values equal to one of them);
    ``min_value``/``max_value`` are inclusive bounds on the numeric value.
    """
    mask = pd.Series(True, index=observations.index)
    values = list(values)
    if values:
        coded = observations[TEXT_VALUE_COL].isin(values)
        numeric = observations[VALUE_COL].isin(
            [v for v in values if isinstance(v, (int, float))]
        )
        mask &= coded | numeric
    if min_value is not None:
        mask &= observations[VALUE_COL] >= min_value
    if max_value is not None:
        mask &= observations[VALUE_COL] <= max_value
    return mask


def select_last(observations: pd.DataFrame, group_col: str) -> pd.DataFrame:
    """Last row per group in the frame's order (ties keep source order)."""
    return observations.groupby(group_col, sort=False).tail(1)


def select_first(observations: pd.DataFrame, group_col: str) -> pd.DataFrame:
    """First row per group in the frame's order."""
    return observations.groupby(group_col, sort=False).head(1)


def sort_observations(observations: pd.DataFrame, group_col: str) -> pd.DataFrame:
    """Stable chronological sort per group; equal timestamps keep their order."""
    return observations.sort_values(
        [group_col, TIMESTAMP_COL], kind="mergesort"
    ).reset_index(drop=True)
