"""Identifier grammar checks and class-name normalization."""

from __future__ import annotations

from jello.constants import ID_COLUMN, IDENTIFIER_RE, RESERVED_TABLE_PREFIX
from jello.errors import InvalidNameError


def is_identifier(value: object) -> bool:
    return isinstance(value, str) and IDENTIFIER_RE.fullmatch(value) is not None


def validate_identifier(value: object, *, kind: str = "name") -> str:
    """Return ``value`` unchanged or raise ``InvalidNameError``."""
    if not isinstance(value, str):
        raise InvalidNameError(f"{kind} must be a string, got {type(value).__name__}")
    if IDENTIFIER_RE.fullmatch(value) is None:
        raise InvalidNameError(f"bad {kind} {value!r}: must match [A-Za-z0-9_]+")
    return value


def normalize_class_name(name: object) -> str:
    """Upper-case the first character of a validated class name.

    ``myClass`` becomes ``MyClass``; the rest of the name keeps its case.
    """
    validated = validate_identifier(name, kind="class name")
    if validated.lower().startswith(RESERVED_TABLE_PREFIX):
        raise InvalidNameError(
            f"bad class name {validated!r}: the {RESERVED_TABLE_PREFIX!r} prefix is reserved"
        )
    return validated[0].upper() + validated[1:]


def table_name_for(class_name: str) -> str:
    return class_name.lower()


def validate_attribute_name(name: object) -> str:
    """Validate a settable attribute name; the identifier column is read-only."""
    validated = validate_identifier(name, kind="attribute name")
    if validated.lower() == ID_COLUMN:
        raise InvalidNameError(f"attribute {validated!r} is the read-only identifier")
    return validated


__all__ = [
    "is_identifier",
    "normalize_class_name",
    "table_name_for",
    "validate_attribute_name",
    "validate_identifier",
]
