"""Identifier grammar and class-name normalization."""

from __future__ import annotations

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from jello.domain.models import ClassDescriptor
from jello.domain.names import (
    is_identifier,
    normalize_class_name,
    table_name_for,
    validate_attribute_name,
    validate_identifier,
)
from jello.errors import InvalidNameError

_IDENTIFIER = st.from_regex(r"[A-Za-z0-9_]+", fullmatch=True)


@pytest.mark.parametrize("name", ["a", "A1", "_private", "snake_case", "123", "CamelCase"])
def test_valid_identifiers(name: str) -> None:
    assert is_identifier(name)
    assert validate_identifier(name) == name


@pytest.mark.parametrize(
    "name",
    ["", "has space", "semi;colon", "dash-ed", "quote\"d", "dot.ted", "é", "a\n", None, 7],
)
def test_invalid_identifiers_raise_invalid_name(name: object) -> None:
    assert not is_identifier(name)
    with pytest.raises(InvalidNameError):
        validate_identifier(name)


def test_invalid_name_error_is_a_value_error() -> None:
    with pytest.raises(ValueError, match="bad class name"):
        validate_identifier("no way", kind="class name")


def test_normalize_class_name_upper_cases_first_character_only() -> None:
    assert normalize_class_name("myClass") == "MyClass"
    assert normalize_class_name("person") == "Person"
    assert normalize_class_name("_hidden") == "_hidden"
    assert normalize_class_name("9lives") == "9lives"


def test_reserved_prefix_is_rejected() -> None:
    with pytest.raises(InvalidNameError, match="reserved"):
        normalize_class_name("sqlite_master")
    with pytest.raises(InvalidNameError, match="reserved"):
        normalize_class_name("SQLITE_stat1")


def test_id_is_not_a_settable_attribute() -> None:
    for name in ("id", "ID", "Id"):
        with pytest.raises(InvalidNameError, match="read-only"):
            validate_attribute_name(name)
    assert validate_attribute_name("identity") == "identity"


def test_descriptor_equality_is_by_table() -> None:
    registered = ClassDescriptor.for_name("myClass")
    rediscovered = ClassDescriptor(table="myclass", name="Myclass")

    assert registered == rediscovered
    assert hash(registered) == hash(rediscovered)
    assert registered.table == table_name_for(registered.name) == "myclass"
    assert str(registered) == "MyClass"


@given(name=_IDENTIFIER.filter(lambda value: not value.lower().startswith("sqlite_")))
@settings(max_examples=50, derandomize=True, deadline=None)
def test_property_normalization_is_idempotent(name: str) -> None:
    normalized = normalize_class_name(name)
    assert normalize_class_name(normalized) == normalized
    assert normalized[0] == name[0].upper()
    assert normalized[1:] == name[1:]
