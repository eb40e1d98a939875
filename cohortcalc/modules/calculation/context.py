from dataclasses import dataclass, replace
from typing import Any, FrozenSet, Iterable, Mapping, Optional, Tuple

import pandas as pd

from cohortcalc.functional.cohort_handling.parameters import coerce_parameter_value


def freeze_value(value: Any) -> Any:
    """Hashable version of a parameter value."""
    if isinstance(value, Mapping):
        return tuple(sorted((k, freeze_value(v)) for k, v in value.items()))
    if isinstance(value, (list, tuple)):
        return tuple(freeze_value(v) for v in value)
    if isinstance(value, set):
        return frozenset(freeze_value(v) for v in value)
    return coerce_parameter_value(value)


def freeze_parameters(parameters: Optional[Mapping[str, Any]]) -> Tuple:
    if not parameters:
        return ()
    return tuple(sorted((name, freeze_value(v)) for name, v in parameters.items()))


@dataclass(frozen=True)
class EvaluationContext:
    """
    Immutable snapshot shared by every calculation of one evaluation pass.

    Holds the "as of" date, ambient parameters (the report binding) and an
    optional base cohort that acts as the universe for primitive cohorts and
    complements. Derived contexts are new instances; the context is hashable
    so it can take part in cache keys.
    """

    as_of_date: pd.Timestamp
    parameters: Tuple[Tuple[str, Any], ...] = ()
    base_cohort: Optional[FrozenSet] = None

    def __post_init__(self):
        object.__setattr__(self, "as_of_date", pd.Timestamp(self.as_of_date))
        if not isinstance(self.parameters, tuple):
            object.__setattr__(self, "parameters", freeze_parameters(self.parameters))
        if self.base_cohort is not None and not isinstance(self.base_cohort, frozenset):
            object.__setattr__(self, "base_cohort", frozenset(self.base_cohort))

    @classmethod
    def create(
        cls,
        as_of_date,
        parameters: Optional[Mapping[str, Any]] = None,
        base_cohort: Optional[Iterable] = None,
    ) -> "EvaluationContext":
        return cls(
            as_of_date=as_of_date,
            parameters=freeze_parameters(parameters),
            base_cohort=None if base_cohort is None else frozenset(base_cohort),
        )

    @property
    def parameter_values(self) -> dict:
        return dict(self.parameters)

    def parameter(self, name: str, default: Any = None) -> Any:
        return self.parameter_values.get(name, default)

    def with_parameters(self, **parameters) -> "EvaluationContext":
        merged = {**self.parameter_values, **parameters}
        return replace(self, parameters=freeze_parameters(merged))

    def with_base_cohort(self, cohort: Optional[Iterable]) -> "EvaluationContext":
        return replace(
            self, base_cohort=None if cohort is None else frozenset(cohort)
        )

    def shift(self, days: int = 0, months: int = 0, years: int = 0) -> "EvaluationContext":
        """Context with the as-of date moved; negative values go back in time."""
        date = self.as_of_date + pd.DateOffset(years=years, months=months, days=days)
        return replace(self, as_of_date=date)
