from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

from docbatch.validation import validate_number

if TYPE_CHECKING:
    from docbatch.field_path import FieldPath
    from docbatch.serializer import Serializer


class LeafKind(str, Enum):
    PLAIN = "PLAIN"
    DELETE = "DELETE"
    TRANSFORM = "TRANSFORM"


class FieldValue:
    """Sentinel values that can be written in place of plain field values."""

    method_name: ClassVar[str] = "FieldValue"

    @staticmethod
    def delete() -> DeleteField:
        """Remove the field. Only valid in update() and merging set() calls."""
        return DELETE_FIELD

    @staticmethod
    def server_timestamp() -> ServerTimestampTransform:
        """Replace the field with the commit time of the batch."""
        return SERVER_TIMESTAMP

    @staticmethod
    def array_union(*elements: Any) -> ArrayUnionTransform:
        """Append the elements not yet present in the stored array."""
        return ArrayUnionTransform(elements=tuple(elements))

    @staticmethod
    def array_remove(*elements: Any) -> ArrayRemoveTransform:
        """Remove all instances of the elements from the stored array."""
        return ArrayRemoveTransform(elements=tuple(elements))

    @staticmethod
    def increment(operand: int | float) -> NumericIncrementTransform:
        """Add ``operand`` to the stored numeric value (missing fields count as 0)."""
        return NumericIncrementTransform(operand=operand)


@dataclass(frozen=True)
class DeleteField(FieldValue):
    method_name: ClassVar[str] = "FieldValue.delete"


class FieldTransform(FieldValue, ABC):
    """Server-side transform, sent in a separate wire entry after the plain write."""

    @abstractmethod
    def to_proto(self, serializer: Serializer, field_path: FieldPath) -> dict[str, Any]:
        """Serialize to a FieldTransform wire message."""


@dataclass(frozen=True)
class ServerTimestampTransform(FieldTransform):
    method_name: ClassVar[str] = "FieldValue.server_timestamp"

    def to_proto(self, serializer: Serializer, field_path: FieldPath) -> dict[str, Any]:
        return {"fieldPath": field_path.format_string(), "setToServerValue": "REQUEST_TIME"}


@dataclass(frozen=True)
class ArrayUnionTransform(FieldTransform):
    method_name: ClassVar[str] = "FieldValue.array_union"

    elements: tuple[Any, ...]

    def to_proto(self, serializer: Serializer, field_path: FieldPath) -> dict[str, Any]:
        return {
            "fieldPath": field_path.format_string(),
            "appendMissingElements": serializer.encode_array(self.elements),
        }


@dataclass(frozen=True)
class ArrayRemoveTransform(FieldTransform):
    method_name: ClassVar[str] = "FieldValue.array_remove"

    elements: tuple[Any, ...]

    def to_proto(self, serializer: Serializer, field_path: FieldPath) -> dict[str, Any]:
        return {
            "fieldPath": field_path.format_string(),
            "removeAllFromArray": serializer.encode_array(self.elements),
        }


@dataclass(frozen=True)
class NumericIncrementTransform(FieldTransform):
    method_name: ClassVar[str] = "FieldValue.increment"

    operand: int | float

    def __post_init__(self) -> None:
        validate_number("operand", self.operand)

    def to_proto(self, serializer: Serializer, field_path: FieldPath) -> dict[str, Any]:
        return {
            "fieldPath": field_path.format_string(),
            "increment": serializer.encode_value(self.operand),
        }


DELETE_FIELD = DeleteField()
SERVER_TIMESTAMP = ServerTimestampTransform()


def classify_value(value: Any) -> LeafKind:
    if isinstance(value, DeleteField):
        return LeafKind.DELETE
    if isinstance(value, FieldTransform):
        return LeafKind.TRANSFORM
    return LeafKind.PLAIN
