"""Value types describing registered classes."""

from __future__ import annotations

from dataclasses import dataclass, field

from jello.domain.names import normalize_class_name, table_name_for


@dataclass(frozen=True, slots=True)
class ClassDescriptor:
    """Logical class name plus the physical table backing it.

    Descriptors compare and hash by table, so ``MyClass`` registered by name and
    ``Myclass`` rediscovered from the table list are the same class.
    """

    table: str
    name: str = field(compare=False)

    @classmethod
    def for_name(cls, name: object) -> ClassDescriptor:
        normalized = normalize_class_name(name)
        return cls(table=table_name_for(normalized), name=normalized)

    def __str__(self) -> str:
        return self.name


__all__ = ["ClassDescriptor"]
