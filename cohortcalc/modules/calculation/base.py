"""
Calculation interface and registry.

Every calculation is a frozen dataclass: its identity is the registered name
plus all of its field values, so two instances of the same class with
different configuration are different computations. Dependencies are held as
fields (other calculation instances) and invoked through the engine, which
routes them through the pass cache.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, fields
from typing import TYPE_CHECKING, Any, ClassVar, Dict, List, Type

import pandas as pd

if TYPE_CHECKING:
    from cohortcalc.modules.calculation.context import EvaluationContext
    from cohortcalc.modules.calculation.engine import CalculationEngine

CALCULATIONS: Dict[str, Type["Calculation"]] = {}


def register_calculation(name: str):
    """Class decorator registering a calculation implementation under ``name``."""

    def decorator(cls):
        if name in CALCULATIONS and CALCULATIONS[name] is not cls:
            raise ValueError(f"Calculation '{name}' is already registered.")
        cls.calculation_name = name
        CALCULATIONS[name] = cls
        return cls

    return decorator


def build_calculation(name: str, **config) -> "Calculation":
    """Instantiate a registered calculation from its name and configuration."""
    if name not in CALCULATIONS:
        raise ValueError(
            f"Unknown calculation '{name}'. Registered: {sorted(CALCULATIONS)}"
        )
    return CALCULATIONS[name](**config)


def _identity(value: Any) -> Any:
    if isinstance(value, Calculation):
        return value.identity()
    if isinstance(value, (list, tuple)):
        return tuple(_identity(v) for v in value)
    if isinstance(value, dict):
        return tuple(sorted((k, _identity(v)) for k, v in value.items()))
    return value


@dataclass(frozen=True)
class Calculation(ABC):
    calculation_name: ClassVar[str] = "calculation"

    def identity(self) -> tuple:
        """Registered name and resolved configuration; part of every cache key."""
        return (self.calculation_name,) + tuple(
            (f.name, _identity(getattr(self, f.name))) for f in fields(self)
        )

    @abstractmethod
    def evaluate(
        self,
        cohort: List,
        parameters: Dict[str, Any],
        context: "EvaluationContext",
        engine: "CalculationEngine",
    ) -> pd.Series:
        """
        Compute the result for every subject of ``cohort``.

        Implementations return a series indexed by subject id; subjects left
        out are filled in as absent by the engine. Data is read through
        ``engine.fetch`` and dependencies through ``engine.calculate``.
        """
