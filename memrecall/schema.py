"""
Predicate schemas for memory cards.

A predicate schema declares, for a card slot, the value type (string,
number, datetime, boolean, enum, any) and cardinality (single/multiple).
The registry validates every card before it is persisted:

- registered slot + value fails the type predicate  -> InvalidRange
- unregistered slot in strict mode                  -> UnknownPredicate
- unregistered slot in lenient mode                 -> accepted

Schemas can also be inferred from observed sample values.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Literal, Optional, Sequence

from memrecall.errors import InvalidRange, UnknownPredicate
from memrecall.types import MemoryCard

logger = logging.getLogger(__name__)

ValueKind = Literal["string", "number", "datetime", "boolean", "enum", "any"]
VALID_VALUE_KINDS: set = {"string", "number", "datetime", "boolean", "enum", "any"}

Cardinality = Literal["single", "multiple"]

BOOLEAN_TOKENS = frozenset({
    "true", "false", "yes", "no", "1", "0", "是", "否", "对", "错",
})

# Markers of ISO-8601 or localized (Chinese) dates
_DATE_MARKERS = ("T", "-", "年", "月", "日")


def _is_number(value: str) -> bool:
    try:
        float(value)
    except ValueError:
        return False
    return True


def _is_epoch(value: str) -> bool:
    try:
        int(value)
    except ValueError:
        return False
    return True


def _looks_like_datetime(value: str) -> bool:
    """Epoch integer, ISO-8601-ish, or localized date tokens."""
    return _is_epoch(value) or any(m in value for m in _DATE_MARKERS)


@dataclass
class ValueType:
    """Declared value type of a predicate (enum carries its allowed values)."""

    kind: ValueKind = "string"
    values: List[str] = field(default_factory=list)

    def __post_init__(self):
        if self.kind not in VALID_VALUE_KINDS:
            raise ValueError(f"Invalid value type: {self.kind!r}")

    @classmethod
    def enum(cls, values: Iterable[str]) -> ValueType:
        return cls(kind="enum", values=list(values))

    def matches(self, value: str) -> bool:
        if self.kind in ("string", "any"):
            return True
        if self.kind == "number":
            return _is_number(value)
        if self.kind == "datetime":
            return _looks_like_datetime(value)
        if self.kind == "boolean":
            return value.lower() in BOOLEAN_TOKENS
        folded = value.casefold()
        return any(v.casefold() == folded for v in self.values)

    def describe(self) -> str:
        if self.kind == "enum":
            return f"enum[{', '.join(self.values)}]"
        return self.kind


@dataclass
class PredicateSchema:
    """Schema for one card slot."""

    id: str
    name: str = ""
    description: Optional[str] = None
    range: ValueType = field(default_factory=ValueType)
    cardinality: Cardinality = "single"
    builtin: bool = False

    def __post_init__(self):
        if not self.name:
            self.name = self.id
        if isinstance(self.range, dict):
            self.range = ValueType(**self.range)
        elif isinstance(self.range, str):
            self.range = ValueType(kind=self.range)
        if self.cardinality not in ("single", "multiple"):
            raise ValueError(f"Invalid cardinality: {self.cardinality!r}")

    def validate_value(self, value: str) -> None:
        """Raise InvalidRange if *value* does not satisfy the range."""
        if not self.range.matches(value):
            raise InvalidRange(self.id, self.range.describe(), value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "range": {"kind": self.range.kind, "values": list(self.range.values)},
            "cardinality": self.cardinality,
            "builtin": self.builtin,
        }


def builtin_schemas() -> List[PredicateSchema]:
    """Predicates registered in every new registry."""
    return [
        PredicateSchema("location", "Location", builtin=True),
        PredicateSchema("user_type", "User Type", builtin=True),
        PredicateSchema("age", "Age", range=ValueType("number"), builtin=True),
        PredicateSchema("birthday", "Birthday", range=ValueType("datetime"), builtin=True),
        PredicateSchema("preference", "Preference", cardinality="multiple", builtin=True),
        PredicateSchema("hobby", "Hobby", cardinality="multiple", builtin=True),
        PredicateSchema("verified", "Verified", range=ValueType("boolean"), builtin=True),
    ]


class SchemaRegistry:
    """Slot name -> predicate schema, consulted on every card write."""

    def __init__(
        self,
        schemas: Optional[Iterable[PredicateSchema]] = None,
        *,
        strict: bool = False,
        include_builtins: bool = True,
    ):
        self.strict = strict
        self._schemas: Dict[str, PredicateSchema] = {}
        if include_builtins:
            for s in builtin_schemas():
                self.register(s)
        for s in schemas or ():
            self.register(s)

    def register(self, schema: PredicateSchema) -> None:
        self._schemas[schema.id] = schema

    def get(self, predicate: str) -> Optional[PredicateSchema]:
        return self._schemas.get(predicate)

    def __contains__(self, predicate: str) -> bool:
        return predicate in self._schemas

    def contains(self, predicate: str) -> bool:
        return predicate in self._schemas

    def __len__(self) -> int:
        return len(self._schemas)

    def validate_card(self, card: MemoryCard) -> None:
        """Validate *card* against its slot's schema.

        Raises:
            InvalidRange: value fails the registered type.
            UnknownPredicate: strict mode and the slot is unregistered.
        """
        schema = self._schemas.get(card.slot)
        if schema is not None:
            schema.validate_value(card.value)
        elif self.strict:
            raise UnknownPredicate(card.slot)

    def is_valid(self, card: MemoryCard) -> bool:
        try:
            self.validate_card(card)
        except (InvalidRange, UnknownPredicate):
            return False
        return True

    def infer(self, slot: str, values: Sequence[str]) -> PredicateSchema:
        """Propose a schema for *slot* from observed values (not registered)."""
        return infer_schema(slot, values)


def infer_schema(slot: str, values: Sequence[str]) -> PredicateSchema:
    """Infer value type and cardinality from sample values.

    Type: number if all samples parse as numbers, else datetime if all look
    like dates, else boolean if all are boolean tokens, else string.
    Cardinality is multiple when more than one distinct value is observed.
    """
    schema = PredicateSchema(slot, slot)
    if values:
        if all(_is_number(v) for v in values):
            schema.range = ValueType("number")
        elif all(_looks_like_datetime(v) for v in values):
            schema.range = ValueType("datetime")
        elif all(v.lower() in BOOLEAN_TOKENS for v in values):
            schema.range = ValueType("boolean")
    if len(set(values)) > 1:
        schema.cardinality = "multiple"
    return schema


def load_schemas(path: str) -> List[PredicateSchema]:
    """Load a predicate set from JSON (``{"predicates": [...]}``)."""
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    schemas = [PredicateSchema(**p) for p in data.get("predicates", [])]
    logger.info(f"Loaded {len(schemas)} predicate schemas from {path}")
    return schemas
