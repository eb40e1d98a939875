"""Parsing and date arithmetic for parameter placeholders such as ``${endDate-6m}``."""

import datetime
import keyword
import re
from functools import lru_cache
from typing import Any, List, Optional, Tuple, Union

import pandas as pd

from cohortcalc.constants.cohort import (
    ALLOWED_OPERATORS,
    DAYS,
    MONTHS,
    OFFSET_UNITS,
    YEARS,
)
from cohortcalc.errors import BindingError

TOKEN_PATTERN = re.compile(r"\$\{([^}]*)\}")
PLACEHOLDER_PATTERN = re.compile(
    r"^\s*([A-Za-z_][A-Za-z0-9_]*)\s*(?:([+-])\s*(\d+)\s*([A-Za-z]+))?\s*$"
)
ISO_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}([ T]\d{2}:\d{2}(:\d{2})?)?$")
NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def is_valid_search_name(name: str) -> bool:
    """
    Returns True if ``name`` can be used as a variable in a composition expression:
    an identifier that is neither a Python keyword nor an operator word.
    """
    return (
        bool(NAME_PATTERN.match(str(name)))
        and not keyword.iskeyword(name)
        and name.lower() not in ALLOWED_OPERATORS
    )


def parse_placeholder(body: str) -> Tuple[str, int, Optional[str]]:
    """
    Parse the inside of a ``${...}`` token.

    Returns (name, signed offset, unit); unit is None when there is no offset.
    """
    match = PLACEHOLDER_PATTERN.match(body)
    if match is None:
        raise BindingError(f"Malformed parameter placeholder '${{{body}}}'.")
    name, sign, amount, unit = match.groups()
    if sign is None:
        return name, 0, None
    if unit not in OFFSET_UNITS:
        raise BindingError(
            f"Unknown unit '{unit}' in '${{{body}}}'. Expected one of {OFFSET_UNITS}."
        )
    offset = int(amount) if sign == "+" else -int(amount)
    return name, offset, unit


def split_tokens(text: str) -> List[Union[str, Tuple[str, int, Optional[str]]]]:
    """
    Split a mapping value into literal text and parsed placeholders.

    Unbalanced or stray ``${`` is rejected.
    """
    parts = []
    position = 0
    for match in TOKEN_PATTERN.finditer(text):
        literal = text[position : match.start()]
        if literal:
            parts.append(literal)
        parts.append(parse_placeholder(match.group(1)))
        position = match.end()
    rest = text[position:]
    if rest:
        parts.append(rest)
    for part in parts:
        if isinstance(part, str) and "${" in part:
            raise BindingError(f"Unterminated parameter placeholder in '{text}'.")
    return parts


def coerce_parameter_value(value: Any) -> Any:
    """Dates and ISO date strings become timestamps, everything else is kept."""
    if isinstance(value, (pd.Timestamp, datetime.date)):
        return pd.Timestamp(value)
    if isinstance(value, str) and ISO_DATE_PATTERN.match(value.strip()):
        return pd.Timestamp(value.strip())
    return value


def shift_date(value: Any, offset: int, unit: Optional[str]) -> pd.Timestamp:
    """Apply a signed day/month/year offset to a date value."""
    try:
        date = pd.Timestamp(coerce_parameter_value(value))
    except (TypeError, ValueError) as e:
        raise BindingError(f"Cannot apply a date offset to value {value!r}.") from e
    if pd.isna(date):
        raise BindingError(f"Cannot apply a date offset to missing value {value!r}.")
    if unit is None or offset == 0:
        return date
    if unit == DAYS:
        return date + pd.Timedelta(days=offset)
    if unit == MONTHS:
        return date + pd.DateOffset(months=offset)
    if unit == YEARS:
        return date + pd.DateOffset(years=offset)
    raise BindingError(f"Unknown offset unit '{unit}'.")


def format_parameter_value(value: Any) -> str:
    if isinstance(value, pd.Timestamp):
        if value == value.normalize():
            return value.strftime("%Y-%m-%d")
        return value.isoformat()
    return str(value)


@lru_cache(maxsize=256)
def extract_search_names_from_expression(expression: str) -> tuple:
    """Names of the searches referenced by a boolean composition expression."""
    expression = expression.replace("~", " ~ ")
    expression = expression.replace("(", " ( ")
    expression = expression.replace(")", " ) ")

    tokens = expression.split()
    return tuple(token for token in tokens if token.lower() not in ALLOWED_OPERATORS)


def expression_has_negation(expression: str) -> bool:
    tokens = expression.replace("~", " ~ ").replace("(", " ( ").replace(")", " ) ")
    return any(token.lower() in ("~", "not") for token in tokens.split())
