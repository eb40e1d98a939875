"""
Parameter expressions and mappings.

A mapping such as ``"onOrAfter=${endDate-6m},onOrBefore=${endDate}"`` is parsed
once into immutable ``ParameterExpression`` objects. Resolution against a
binding either produces every concrete value or raises a ``BindingError``
naming all missing placeholders; there is no partial binding.

Example usage:
```python
mapping = ParameterMapping.parse("onOrAfter=${endDate-6m},onOrBefore=${endDate}")
mapping.resolve({"endDate": pd.Timestamp("2020-06-30")})
# {'onOrAfter': Timestamp('2019-12-30'), 'onOrBefore': Timestamp('2020-06-30')}
```
"""

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple, Union

from cohortcalc.errors import BindingError
from cohortcalc.functional.calculation.results import is_absent
from cohortcalc.functional.cohort_handling.parameters import (
    NAME_PATTERN,
    coerce_parameter_value,
    format_parameter_value,
    shift_date,
    split_tokens,
)


@dataclass(frozen=True)
class Placeholder:
    """Reference to a bound name with an optional signed day/month/year offset."""

    name: str
    offset: int = 0
    unit: Optional[str] = None

    def resolve(self, binding: Mapping[str, Any]) -> Any:
        value = binding.get(self.name)
        if is_absent(value):
            raise BindingError(f"Parameter '{self.name}' is not bound.")
        if self.unit is None:
            return coerce_parameter_value(value)
        return shift_date(value, self.offset, self.unit)

    def __str__(self) -> str:
        if self.unit is None:
            return f"${{{self.name}}}"
        sign = "+" if self.offset >= 0 else "-"
        return f"${{{self.name}{sign}{abs(self.offset)}{self.unit}}}"


@dataclass(frozen=True)
class ParameterExpression:
    """A mapping value: literal text and placeholders."""

    parts: Tuple[Union[str, Placeholder], ...]
    literal: Any = None

    @classmethod
    def parse(cls, value: Any) -> "ParameterExpression":
        if not isinstance(value, str):
            return cls(parts=(), literal=coerce_parameter_value(value))
        parts = tuple(
            part if isinstance(part, str) else Placeholder(*part)
            for part in split_tokens(value)
        )
        if not any(isinstance(part, Placeholder) for part in parts):
            return cls(parts=(), literal=coerce_parameter_value(value.strip()))
        return cls(parts=parts)

    def placeholders(self) -> FrozenSet[str]:
        return frozenset(p.name for p in self.parts if isinstance(p, Placeholder))

    def resolve(self, binding: Mapping[str, Any]) -> Any:
        if not self.parts:
            return self.literal
        if len(self.parts) == 1:
            return self.parts[0].resolve(binding)
        # Mixed text and placeholders resolves to a string.
        return "".join(
            part if isinstance(part, str) else format_parameter_value(part.resolve(binding))
            for part in self.parts
        )

    def __str__(self) -> str:
        if not self.parts:
            return format_parameter_value(self.literal)
        return "".join(str(part) for part in self.parts)


@dataclass(frozen=True)
class ParameterMapping:
    """Immutable mapping from formal parameter names to expressions."""

    entries: Tuple[Tuple[str, ParameterExpression], ...] = ()

    @classmethod
    def parse(
        cls, mapping: Union[None, str, Mapping[str, Any], "ParameterMapping"]
    ) -> "ParameterMapping":
        """Parse ``"a=${x},b=${y-1m}"`` or a dict of name -> value/expression."""
        if mapping is None:
            return cls()
        if isinstance(mapping, ParameterMapping):
            return mapping
        if isinstance(mapping, str):
            items = []
            for entry in mapping.split(","):
                if not entry.strip():
                    continue
                if "=" not in entry:
                    raise BindingError(
                        f"Mapping entry '{entry.strip()}' must have the form name=value."
                    )
                name, value = entry.split("=", 1)
                items.append((name.strip(), value.strip()))
        else:
            items = list(mapping.items())

        entries = []
        seen = set()
        for name, value in items:
            if not NAME_PATTERN.match(name):
                raise BindingError(f"Invalid parameter name '{name}' in mapping.")
            if name in seen:
                raise BindingError(f"Parameter '{name}' is mapped more than once.")
            seen.add(name)
            entries.append((name, ParameterExpression.parse(value)))
        return cls(entries=tuple(entries))

    def names(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self.entries)

    def placeholders(self) -> FrozenSet[str]:
        names = set()
        for _, expression in self.entries:
            names |= expression.placeholders()
        return frozenset(names)

    def resolve(self, binding: Mapping[str, Any]) -> Dict[str, Any]:
        # A name bound to None or NaT counts as unbound.
        missing = sorted(
            name for name in self.placeholders() if is_absent(binding.get(name))
        )
        if missing:
            raise BindingError(
                f"Mapping '{self}' references unbound parameters: {missing}. "
                f"Bound: {sorted(binding)}"
            )
        return {name: expression.resolve(binding) for name, expression in self.entries}

    def __str__(self) -> str:
        return ",".join(f"{name}={expression}" for name, expression in self.entries)

    def __bool__(self) -> bool:
        return bool(self.entries)
