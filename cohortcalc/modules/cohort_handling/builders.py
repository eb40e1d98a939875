"""
Shorthand constructors for composing cohort definitions.

Example usage:
```python
screened = ObservationCohortDefinition("TB_SCREENING")
on_art = ObservationCohortDefinition("ART_START")
cohort = all_of(
    mapped(screened, "onOrAfter=${startDate},onOrBefore=${endDate}"),
    mapped(on_art, "onOrBefore=${endDate}"),
)
```
"""

from typing import Any, Mapping, Optional, Sequence, Union

from cohortcalc.modules.cohort_handling.definitions import (
    AndCohortDefinition,
    CohortDefinition,
    ExpressionCohortDefinition,
    Mapped,
    NotCohortDefinition,
    OrCohortDefinition,
    Search,
)
from cohortcalc.modules.cohort_handling.parameters import ParameterMapping


def mapped(
    definition: CohortDefinition,
    mapping: Union[None, str, Mapping[str, Any], ParameterMapping] = None,
) -> Mapped:
    if mapping is None:
        return Mapped(definition)
    return Mapped(definition, ParameterMapping.parse(mapping))


def all_of(*searches: Search, parameters: Optional[Sequence[str]] = None) -> AndCohortDefinition:
    return AndCohortDefinition(
        tuple(searches), None if parameters is None else tuple(parameters)
    )


def any_of(*searches: Search, parameters: Optional[Sequence[str]] = None) -> OrCohortDefinition:
    return OrCohortDefinition(
        tuple(searches), None if parameters is None else tuple(parameters)
    )


def negate(
    search: Search,
    universe: Optional[Search] = None,
    parameters: Optional[Sequence[str]] = None,
) -> NotCohortDefinition:
    return NotCohortDefinition(
        search, universe, None if parameters is None else tuple(parameters)
    )


def expression(
    expression: str,
    searches: Mapping[str, Search],
    universe: Optional[Search] = None,
    parameters: Optional[Sequence[str]] = None,
) -> ExpressionCohortDefinition:
    return ExpressionCohortDefinition(
        tuple(searches.items()),
        expression,
        universe,
        None if parameters is None else tuple(parameters),
    )
