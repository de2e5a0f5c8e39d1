"""Canonical identifier parsing and validation for document entities."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import Final


class IdCategory(StrEnum):
    FUNCTIONAL = "functional"
    NON_FUNCTIONAL = "non_functional"
    USER_SCENARIO = "user_scenario"
    PLAN_ITEM = "plan_item"
    TASK = "task"
    TEST = "test"


# Stable identifier prefixes.
FUNCTIONAL_PREFIX: Final[str] = "F"
NON_FUNCTIONAL_PREFIX: Final[str] = "NF"
USER_SCENARIO_PREFIX: Final[str] = "US"
PLAN_ITEM_PREFIX: Final[str] = "P"
TASK_PREFIX: Final[str] = "T"
TEST_PREFIX: Final[str] = "TS"

PREFIX_CATEGORY: Final[dict[str, IdCategory]] = {
    FUNCTIONAL_PREFIX: IdCategory.FUNCTIONAL,
    NON_FUNCTIONAL_PREFIX: IdCategory.NON_FUNCTIONAL,
    USER_SCENARIO_PREFIX: IdCategory.USER_SCENARIO,
    PLAN_ITEM_PREFIX: IdCategory.PLAN_ITEM,
    TASK_PREFIX: IdCategory.TASK,
    TEST_PREFIX: IdCategory.TEST,
}
CATEGORY_PREFIX: Final[dict[IdCategory, str]] = {
    category: prefix for prefix, category in PREFIX_CATEGORY.items()
}

REQUIREMENT_CATEGORIES: Final[frozenset[IdCategory]] = frozenset(
    {IdCategory.FUNCTIONAL, IdCategory.NON_FUNCTIONAL}
)
SPECIFICATION_CATEGORIES: Final[frozenset[IdCategory]] = REQUIREMENT_CATEGORIES | {
    IdCategory.USER_SCENARIO
}

ID_PATTERN_DESCRIPTION: Final[str] = "<prefix><3 digits>, e.g. F001, NF001, US001, P001, T001"
RULE_ID_PATTERN_DESCRIPTION: Final[str] = "C001"
MAX_NUMBER: Final[int] = 999

_IDENTIFIER_RE: Final[re.Pattern[str]] = re.compile(r"^(?P<prefix>[A-Z]{1,2})(?P<number>\d{3})$")
_RULE_ID_RE: Final[re.Pattern[str]] = re.compile(r"^C\d{3}$")


@dataclass(frozen=True, slots=True, order=True)
class Identifier:
    """Parsed ``<prefix><3-digit-number>`` identifier."""

    prefix: str
    number: int

    @property
    def category(self) -> IdCategory:
        return PREFIX_CATEGORY[self.prefix]

    def __str__(self) -> str:
        return format_identifier(self.prefix, self.number)


def parse_identifier(text: str) -> Identifier:
    """Parse an identifier and raise ``ValueError`` with precise context on failure."""
    if not isinstance(text, str):
        raise ValueError(f"identifier must be a string, got {type(text).__name__}")
    match = _IDENTIFIER_RE.match(text)
    if match is None:
        raise ValueError(f"identifier {text!r} does not match {ID_PATTERN_DESCRIPTION}")
    prefix = match.group("prefix")
    if prefix not in PREFIX_CATEGORY:
        known = ", ".join(sorted(PREFIX_CATEGORY))
        raise ValueError(f"identifier {text!r} has unknown prefix {prefix!r} (known: {known})")
    return Identifier(prefix=prefix, number=int(match.group("number")))


def is_identifier(text: object) -> bool:
    if not isinstance(text, str):
        return False
    try:
        parse_identifier(text)
    except ValueError:
        return False
    return True


def category_of(text: str) -> IdCategory:
    return parse_identifier(text).category


def format_identifier(prefix: str, number: int) -> str:
    if prefix not in PREFIX_CATEGORY:
        raise ValueError(f"unknown identifier prefix {prefix!r}")
    if not 0 <= number <= MAX_NUMBER:
        raise ValueError(f"identifier number out of range: expected 0..{MAX_NUMBER}, got {number}")
    return f"{prefix}{number:03d}"


def next_identifier(prefix: str, existing: Iterable[str]) -> str:
    """Return the identifier after the highest one already using ``prefix``."""
    highest = 0
    for candidate in existing:
        try:
            parsed = parse_identifier(candidate)
        except ValueError:
            continue
        if parsed.prefix == prefix and parsed.number > highest:
            highest = parsed.number
    return format_identifier(prefix, highest + 1)


def validate_rule_id(text: str) -> None:
    if not isinstance(text, str) or _RULE_ID_RE.match(text) is None:
        raise ValueError(f"rule id {text!r} does not match {RULE_ID_PATTERN_DESCRIPTION}")


__all__ = [
    "CATEGORY_PREFIX",
    "FUNCTIONAL_PREFIX",
    "ID_PATTERN_DESCRIPTION",
    "IdCategory",
    "Identifier",
    "MAX_NUMBER",
    "NON_FUNCTIONAL_PREFIX",
    "PLAN_ITEM_PREFIX",
    "PREFIX_CATEGORY",
    "REQUIREMENT_CATEGORIES",
    "RULE_ID_PATTERN_DESCRIPTION",
    "SPECIFICATION_CATEGORIES",
    "TASK_PREFIX",
    "TEST_PREFIX",
    "USER_SCENARIO_PREFIX",
    "category_of",
    "format_identifier",
    "is_identifier",
    "next_identifier",
    "parse_identifier",
    "validate_rule_id",
]
