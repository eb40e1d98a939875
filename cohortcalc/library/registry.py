"""
Registry of named indicator factories.

Factories take a concept dictionary (logical name -> concept id in the
observation source) and return a ``CohortIndicator``. Indicators are
addressed as ``"<namespace>.<name>"``.

Example usage:
```python
@register_indicator("tb", "defaulted")
def defaulted(concepts):
    ...

indicator = INDICATOR_LIBRARY.build("tb.defaulted", {"TB_ENROLLMENT": "LOINC/..."})
```
"""

from typing import Callable, Dict, List, Mapping, Optional

from cohortcalc.modules.indicator.indicator import CohortIndicator

IndicatorFactory = Callable[[Mapping[str, str]], CohortIndicator]


def require_concept(concepts: Mapping[str, str], name: str) -> str:
    """Concept id for a logical name; KeyError naming the missing concept."""
    if name not in concepts:
        raise KeyError(f"Concept '{name}' is not defined. Known concepts: {sorted(concepts)}")
    return concepts[name]


class IndicatorLibrary:
    def __init__(self) -> None:
        self._factories: Dict[str, IndicatorFactory] = {}

    def register(self, namespace: str, name: str) -> Callable[[IndicatorFactory], IndicatorFactory]:
        full_name = f"{namespace}.{name}"

        def decorator(factory: IndicatorFactory) -> IndicatorFactory:
            if full_name in self._factories and self._factories[full_name] is not factory:
                raise ValueError(f"Indicator '{full_name}' is already registered.")
            self._factories[full_name] = factory
            return factory

        return decorator

    def get(self, name: str) -> IndicatorFactory:
        if name not in self._factories:
            raise KeyError(f"Unknown indicator '{name}'. Available: {self.names()}")
        return self._factories[name]

    def names(self, namespace: Optional[str] = None) -> List[str]:
        if namespace is None:
            return sorted(self._factories)
        prefix = f"{namespace}."
        return sorted(name for name in self._factories if name.startswith(prefix))

    def build(self, name: str, concepts: Mapping[str, str]) -> CohortIndicator:
        return self.get(name)(concepts)

    def __contains__(self, name: str) -> bool:
        return name in self._factories


INDICATOR_LIBRARY = IndicatorLibrary()
register_indicator = INDICATOR_LIBRARY.register
