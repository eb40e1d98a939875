"""
Cohort definitions and their composition.

Definitions are immutable values built once and reused across evaluations.
Evaluation happens in two phases:

1. ``bind``: parameter mappings are resolved top-down against the binding,
   producing a tree of ``BoundCohort`` nodes. Any missing or malformed
   placeholder raises ``BindingError`` here, before any data is read.
2. ``BoundCohort.evaluate``: the bound tree is evaluated against an
   ``EvaluationContext`` with a ``CalculationEngine``, yielding a frozenset of
   subject ids.

Primitive definitions filter the universe (the context's base cohort, or
every subject known to the source). Complements need an explicit universe:
their own universe search or the context's base cohort.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    ClassVar,
    Dict,
    FrozenSet,
    Iterable,
    Mapping,
    Optional,
    Tuple,
    Union,
)

import numpy as np
import pandas as pd

from cohortcalc.constants.cohort import PERIOD_PARAMETERS
from cohortcalc.errors import BindingError, UniverseError
from cohortcalc.functional.calculation.results import cohort_index, members
from cohortcalc.functional.cohort_handling.parameters import (
    expression_has_negation,
    extract_search_names_from_expression,
    is_valid_search_name,
)
from cohortcalc.modules.calculation.base import Calculation
from cohortcalc.modules.calculation.context import EvaluationContext
from cohortcalc.modules.calculation.observations import HasObservationCalculation
from cohortcalc.modules.cohort_handling.parameters import ParameterMapping

if TYPE_CHECKING:
    from cohortcalc.modules.calculation.engine import CalculationEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class BoundCohort:
    """A definition with concrete parameter values, ready to evaluate."""

    definition: "CohortDefinition"
    parameters: Dict[str, Any] = field(default_factory=dict)
    children: Tuple["BoundCohort", ...] = ()
    universe: Optional["BoundCohort"] = None

    def evaluate(
        self, context: EvaluationContext, engine: "CalculationEngine"
    ) -> FrozenSet:
        return frozenset(self.definition.evaluate(self, context, engine))


class CohortDefinition(ABC):
    """Named predicate over subjects with declared formal parameters."""

    evaluation_cost: ClassVar[int] = 1

    def declared_parameters(self) -> Tuple[str, ...]:
        return tuple(self.parameters or ())

    def bind(self, parameters: Mapping[str, Any]) -> BoundCohort:
        return BoundCohort(self, dict(parameters))

    @abstractmethod
    def evaluate(
        self, bound: BoundCohort, context: EvaluationContext, engine: "CalculationEngine"
    ) -> FrozenSet:
        """Members of the cohort for the bound parameters."""


@dataclass(frozen=True)
class Mapped:
    """A definition together with the mapping that feeds its parameters.

    Without a mapping, the definition receives the caller's values for the
    parameters it declares; declared names the caller did not bind stay unset.
    """

    definition: CohortDefinition
    mapping: Optional[ParameterMapping] = None

    def __post_init__(self):
        if self.mapping is not None and not isinstance(self.mapping, ParameterMapping):
            object.__setattr__(self, "mapping", ParameterMapping.parse(self.mapping))

    def placeholders(self) -> FrozenSet[str]:
        if self.mapping is None:
            return frozenset(self.definition.declared_parameters())
        return self.mapping.placeholders()


Search = Union[Mapped, CohortDefinition]


def as_search(search: Search) -> Mapped:
    if isinstance(search, Mapped):
        return search
    if isinstance(search, CohortDefinition):
        return Mapped(search)
    raise TypeError(f"Expected a cohort definition or Mapped, got {type(search).__name__}.")


def bind(search: Search, binding: Mapping[str, Any]) -> BoundCohort:
    """
    Resolve a search's mapping against ``binding`` and bind its definition.

    Without a mapping, declared parameters missing from ``binding`` are left
    unset; an unset ``onOrAfter``/``onOrBefore`` leaves that end of the period open.
    """
    search = as_search(search)
    definition = search.definition
    declared = definition.declared_parameters()
    if search.mapping is None:
        parameters = {name: binding[name] for name in declared if name in binding}
        unset = [name for name in declared if name not in parameters]
        if unset:
            logger.debug(
                f"{type(definition).__name__} bound without parameters {unset}; "
                f"binding has {sorted(binding)}"
            )
    else:
        parameters = search.mapping.resolve(binding)
        undeclared = sorted(set(parameters) - set(declared))
        if undeclared:
            raise BindingError(
                f"{type(definition).__name__} does not declare parameters {undeclared}. "
                f"Declared: {list(declared)}"
            )
    return definition.bind(parameters)


def _derived_parameters(searches: Iterable[Mapped]) -> Tuple[str, ...]:
    names = set()
    for search in searches:
        names |= search.placeholders()
    return tuple(sorted(names))


# ---------------------------------------------------------------------------
# Primitives
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ObservationCohortDefinition(CohortDefinition):
    """Subjects with a qualifying observation of ``concept`` in [onOrAfter, onOrBefore]."""

    concept: str
    values: Tuple = ()
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    parameters: Tuple[str, ...] = PERIOD_PARAMETERS

    def __post_init__(self):
        object.__setattr__(self, "values", tuple(self.values))
        object.__setattr__(self, "parameters", tuple(self.parameters))

    def calculation(self) -> HasObservationCalculation:
        return HasObservationCalculation(
            self.concept, self.values, self.min_value, self.max_value
        )

    def evaluate(self, bound, context, engine) -> FrozenSet:
        universe = engine.universe(context)
        result = engine.calculate(self.calculation(), universe, context, bound.parameters)
        return members(result)


@dataclass(frozen=True)
class CalculationCohortDefinition(CohortDefinition):
    """
    Subjects whose calculation result qualifies: truthy when ``values`` is None,
    otherwise one of ``values``. Absent results never qualify.
    """

    calculation: Calculation
    values: Optional[Tuple] = None
    parameters: Tuple[str, ...] = ()

    def __post_init__(self):
        if self.values is not None:
            object.__setattr__(self, "values", tuple(self.values))
        object.__setattr__(self, "parameters", tuple(self.parameters))

    def evaluate(self, bound, context, engine) -> FrozenSet:
        universe = engine.universe(context)
        result = engine.calculate(self.calculation, universe, context, bound.parameters)
        return members(result, self.values)


@dataclass(frozen=True)
class StaticCohortDefinition(CohortDefinition):
    """A fixed set of subject ids, e.g. an explicit universe."""

    ids: FrozenSet = frozenset()
    parameters: Tuple[str, ...] = ()
    evaluation_cost: ClassVar[int] = 0

    def __post_init__(self):
        object.__setattr__(self, "ids", frozenset(self.ids))

    def evaluate(self, bound, context, engine) -> FrozenSet:
        return self.ids


# ---------------------------------------------------------------------------
# Combinators
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AndCohortDefinition(CohortDefinition):
    """Intersection of the searches; stops as soon as the intersection is empty."""

    searches: Tuple[Mapped, ...]
    parameters: Optional[Tuple[str, ...]] = None
    evaluation_cost: ClassVar[int] = 2

    def __post_init__(self):
        if not self.searches:
            raise ValueError("AND needs at least one search.")
        object.__setattr__(self, "searches", tuple(as_search(s) for s in self.searches))

    def declared_parameters(self) -> Tuple[str, ...]:
        if self.parameters is None:
            return _derived_parameters(self.searches)
        return tuple(self.parameters)

    def bind(self, parameters) -> BoundCohort:
        children = tuple(bind(search, parameters) for search in self.searches)
        return BoundCohort(self, dict(parameters), children)

    def evaluate(self, bound, context, engine) -> FrozenSet:
        # Cheaper definitions first; stable for equal cost.
        ordered = sorted(bound.children, key=lambda c: c.definition.evaluation_cost)
        result = None
        for child in ordered:
            found = child.evaluate(context, engine)
            result = found if result is None else result & found
            if not result:
                logger.debug("Intersection empty, skipping remaining searches")
                break
        return frozenset(result)


@dataclass(frozen=True)
class OrCohortDefinition(CohortDefinition):
    """Union of the searches."""

    searches: Tuple[Mapped, ...]
    parameters: Optional[Tuple[str, ...]] = None
    evaluation_cost: ClassVar[int] = 2

    def __post_init__(self):
        if not self.searches:
            raise ValueError("OR needs at least one search.")
        object.__setattr__(self, "searches", tuple(as_search(s) for s in self.searches))

    def declared_parameters(self) -> Tuple[str, ...]:
        if self.parameters is None:
            return _derived_parameters(self.searches)
        return tuple(self.parameters)

    def bind(self, parameters) -> BoundCohort:
        children = tuple(bind(search, parameters) for search in self.searches)
        return BoundCohort(self, dict(parameters), children)

    def evaluate(self, bound, context, engine) -> FrozenSet:
        result = set()
        for child in bound.children:
            result |= child.evaluate(context, engine)
        return frozenset(result)


@dataclass(frozen=True)
class NotCohortDefinition(CohortDefinition):
    """
    Complement of ``search`` relative to ``universe``, or to the context's base
    cohort when no universe search is given.

    Raises:
        UniverseError: at evaluation when neither universe is available.
    """

    search: Mapped
    universe: Optional[Mapped] = None
    parameters: Optional[Tuple[str, ...]] = None
    evaluation_cost: ClassVar[int] = 2

    def __post_init__(self):
        object.__setattr__(self, "search", as_search(self.search))
        if self.universe is not None:
            object.__setattr__(self, "universe", as_search(self.universe))

    def declared_parameters(self) -> Tuple[str, ...]:
        if self.parameters is None:
            searches = [self.search] + ([self.universe] if self.universe else [])
            return _derived_parameters(searches)
        return tuple(self.parameters)

    def bind(self, parameters) -> BoundCohort:
        universe = None if self.universe is None else bind(self.universe, parameters)
        return BoundCohort(
            self, dict(parameters), (bind(self.search, parameters),), universe
        )

    def evaluate(self, bound, context, engine) -> FrozenSet:
        if bound.universe is not None:
            universe = bound.universe.evaluate(context, engine)
        elif context.base_cohort is not None:
            universe = context.base_cohort
        else:
            raise UniverseError(
                "NOT needs a universe: give the definition a universe search or "
                "evaluate with a base cohort."
            )
        if not universe:
            return frozenset()
        return frozenset(universe - bound.children[0].evaluate(context, engine))


@dataclass(frozen=True)
class ExpressionCohortDefinition(CohortDefinition):
    """
    Boolean composition of named searches, e.g. ``"tb_screened & (hiv_positive | ~died)"``.

    Supports ``&``, ``|``, ``~``, ``and``, ``or``, ``not`` and parentheses and is
    evaluated with ``pd.eval`` over membership flags. Expressions with a
    negation are evaluated over ``universe`` (or the context's base cohort);
    others over the union of the referenced searches.
    """

    searches: Tuple[Tuple[str, Mapped], ...]
    expression: str
    universe: Optional[Mapped] = None
    parameters: Optional[Tuple[str, ...]] = None
    evaluation_cost: ClassVar[int] = 2

    def __post_init__(self):
        searches = self.searches
        if isinstance(searches, Mapping):
            searches = searches.items()
        searches = tuple((name, as_search(search)) for name, search in searches)
        object.__setattr__(self, "searches", searches)
        if self.universe is not None:
            object.__setattr__(self, "universe", as_search(self.universe))

        names = [name for name, _ in searches]
        for name in names:
            if not is_valid_search_name(name):
                raise ValueError(f"Invalid search name '{name}' in expression cohort.")
        referenced = extract_search_names_from_expression(self.expression)
        if not referenced:
            raise ValueError(f"Expression '{self.expression}' references no searches.")
        unknown = [name for name in referenced if name not in names]
        if unknown:
            raise ValueError(
                f"Unknown searches in expression '{self.expression}': {unknown}"
            )

    def declared_parameters(self) -> Tuple[str, ...]:
        if self.parameters is None:
            searches = [search for _, search in self.searches]
            if self.universe is not None:
                searches.append(self.universe)
            return _derived_parameters(searches)
        return tuple(self.parameters)

    def bind(self, parameters) -> BoundCohort:
        children = tuple(bind(search, parameters) for _, search in self.searches)
        universe = None if self.universe is None else bind(self.universe, parameters)
        return BoundCohort(self, dict(parameters), children, universe)

    def evaluate(self, bound, context, engine) -> FrozenSet:
        referenced = set(extract_search_names_from_expression(self.expression))
        results = {
            name: child.evaluate(context, engine)
            for (name, _), child in zip(self.searches, bound.children)
            if name in referenced
        }
        if expression_has_negation(self.expression):
            if bound.universe is not None:
                universe = bound.universe.evaluate(context, engine)
            elif context.base_cohort is not None:
                universe = context.base_cohort
            else:
                raise UniverseError(
                    f"Expression '{self.expression}' negates a search and needs a universe."
                )
        else:
            universe = frozenset().union(*results.values())
        if not universe:
            return frozenset()

        index = pd.Index(cohort_index(universe))
        local_dict = {
            name: pd.Series(index.isin(list(ids)), index=index)
            for name, ids in results.items()
        }
        flags = pd.eval(self.expression, local_dict=local_dict)
        return frozenset(index[np.asarray(flags, dtype=bool)])
