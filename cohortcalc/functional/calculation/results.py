"""Helpers for building and reading per-subject calculation results.

A calculation result is a ``pd.Series`` indexed by subject id with exactly one
row per subject of the requested cohort. Absent values are ``None`` in object
series and ``NaN``/``NaT`` in numeric or datetime series.
"""

from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional

import pandas as pd

from cohortcalc.constants.data import (
    PID_COL,
    TEXT_VALUE_COL,
    TIMESTAMP_COL,
    VALUE_COL,
)


@dataclass(frozen=True)
class ObservedValue:
    """A single observation value together with the time it was recorded."""

    value: Any
    time: pd.Timestamp


def cohort_index(cohort: Iterable) -> List:
    """Unique subject ids of a cohort in a deterministic order."""
    return sorted(set(cohort))


def is_absent(value: Any) -> bool:
    """True for None, NaN, NaT and pd.NA."""
    if value is None:
        return True
    if isinstance(value, (str, ObservedValue)) or not pd.api.types.is_scalar(value):
        return False
    return bool(pd.isna(value))


def numeric_value(value: Any) -> Optional[float]:
    """Numeric content of a result, unwrapping ObservedValue. None when absent."""
    if isinstance(value, ObservedValue):
        value = value.value
    if is_absent(value):
        return None
    return float(value)


def date_value(value: Any) -> Optional[pd.Timestamp]:
    """Date content of a result: the time of an ObservedValue or the value itself."""
    if isinstance(value, ObservedValue):
        value = value.time
    if is_absent(value):
        return None
    return pd.Timestamp(value)


def empty_result(name: str) -> pd.Series:
    return pd.Series([], index=pd.Index([], name=PID_COL), dtype=object, name=name)


def result_from_mapping(values: Mapping, cohort: List, name: str) -> pd.Series:
    """Object result with one row per subject, None where the mapping has no entry."""
    return pd.Series(
        [values.get(pid) for pid in cohort],
        index=pd.Index(cohort, name=PID_COL),
        dtype=object,
        name=name,
    )


def align_to_cohort(result: pd.Series, cohort: List, name: str) -> pd.Series:
    """
    Re-index a result onto the cohort so every subject has exactly one row.

    Subjects missing from the result become absent. Subjects that were not
    requested, or duplicated subjects, indicate a broken calculation.
    """
    if not isinstance(result, pd.Series):
        raise TypeError(
            f"Calculation '{name}' must return a pd.Series, got {type(result).__name__}."
        )
    if result.index.has_duplicates:
        raise ValueError(f"Calculation '{name}' returned duplicated subject ids.")
    unknown = result.index.difference(pd.Index(cohort))
    if len(unknown) > 0:
        raise ValueError(
            f"Calculation '{name}' returned subjects outside the cohort: {list(unknown)[:10]}"
        )
    if result.dtype == object:
        return result_from_mapping(result.to_dict(), cohort, name)
    aligned = result.reindex(cohort)
    aligned.index.name = PID_COL
    aligned.name = name
    return aligned


def observed_values(observations: pd.DataFrame) -> pd.Series:
    """
    Convert observation rows to ObservedValue objects indexed by subject id.

    The numeric value is used when present, otherwise the coded (text) value.
    """
    numeric = observations[VALUE_COL]
    if TEXT_VALUE_COL in observations.columns:
        text = observations[TEXT_VALUE_COL]
    else:
        text = pd.Series(None, index=observations.index, dtype=object)
    records = [
        ObservedValue(num if pd.notna(num) else (None if is_absent(txt) else txt), time)
        for num, txt, time in zip(numeric, text, observations[TIMESTAMP_COL])
    ]
    return pd.Series(
        records,
        index=pd.Index(observations[PID_COL].values, name=PID_COL),
        dtype=object,
    )


def observation_lists(observations: pd.DataFrame) -> dict:
    """Chronological tuple of ObservedValue per subject."""
    values = observed_values(observations)
    return {
        pid: tuple(group.tolist())
        for pid, group in values.groupby(level=0, sort=False)
    }


def members(result: pd.Series, values: Optional[Iterable] = None) -> frozenset:
    """
    Subjects whose result counts as membership.

    Without ``values`` any truthy, non-absent result qualifies; with ``values``
    the result (or the value of an ObservedValue) must be one of them.
    """
    accepted = None if values is None else set(values)
    selected = []
    for pid, value in result.items():
        if is_absent(value):
            continue
        if isinstance(value, ObservedValue):
            value = value.value
        if accepted is None:
            if value:
                selected.append(pid)
        elif value in accepted:
            selected.append(pid)
    return frozenset(selected)
