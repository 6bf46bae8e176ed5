"""
Error taxonomy for memrecall.

- Validation: InvalidRange / UnknownPredicate (card values vs. schema),
  ValidationError (configuration values).
- Build: BuildError (extraction pattern set fails to compile).
- Concurrency: EnrichmentError (manifest cache poisoned).
- Store: NotFoundError; sqlite3 errors propagate unchanged.
"""

from __future__ import annotations

from typing import Literal


class MemrecallError(Exception):
    """Base class for all memrecall errors."""


class ValidationError(MemrecallError, ValueError):
    """Raised when config values are out of valid range."""


# ---------------------------------------------------------------------------
# Schema validation
# ---------------------------------------------------------------------------


class SchemaError(MemrecallError):
    """A card value was rejected by the schema registry."""


class InvalidRange(SchemaError):
    """The card value does not satisfy the predicate's declared value type."""

    def __init__(self, predicate: str, expected: str, got: str):
        self.predicate = predicate
        self.expected = expected
        self.got = got
        super().__init__(
            f"Invalid value for predicate '{predicate}': "
            f"expected {expected}, got {got!r}"
        )


class UnknownPredicate(SchemaError):
    """Strict mode: the card's slot has no registered predicate schema."""

    def __init__(self, slot: str):
        self.slot = slot
        super().__init__(f"Unknown predicate: '{slot}'")


# ---------------------------------------------------------------------------
# Pattern set build
# ---------------------------------------------------------------------------

BuildErrorKind = Literal["regex", "kind", "polarity"]


class BuildError(MemrecallError):
    """An extraction pattern could not be compiled."""

    def __init__(self, kind: BuildErrorKind, pattern_name: str, detail: str):
        self.kind = kind
        self.pattern_name = pattern_name
        self.detail = detail
        labels = {
            "regex": "Invalid regex",
            "kind": "Invalid kind",
            "polarity": "Invalid polarity",
        }
        super().__init__(f"{labels[kind]} in pattern '{pattern_name}': {detail}")


# ---------------------------------------------------------------------------
# Enrichment / store
# ---------------------------------------------------------------------------


class EnrichmentError(MemrecallError):
    """The enrichment manifest cache is unusable until reloaded."""


class NotFoundError(MemrecallError, KeyError):
    """A store row addressed by id does not exist."""

    def __init__(self, table: str, row_id: str):
        self.table = table
        self.row_id = row_id
        super().__init__(f"{table}: no row with id {row_id!r}")

    def __str__(self) -> str:
        return self.args[0]
