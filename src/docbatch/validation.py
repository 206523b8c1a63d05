"""Argument validation shared by every public entry point.

Validators raise :class:`InvalidArgumentError` with a message naming the
argument either by name (``Argument "data"``) or by position
(``Argument at index 2``). Each validator accepts ``optional=True`` to skip
all checks when the value is ``None``.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Iterable, Union
import math

from docbatch.errors import InvalidArgumentError

if TYPE_CHECKING:
    from docbatch.field_path import FieldPath


ArgumentId = Union[str, int]

# Public value types of this package. An object carrying one of these names
# that fails the isinstance check was created by another copy of the package.
DOMAIN_TYPE_NAMES = frozenset(
    {
        "DocumentReference",
        "FieldPath",
        "FieldValue",
        "DeleteField",
        "ServerTimestampTransform",
        "ArrayUnionTransform",
        "ArrayRemoveTransform",
        "NumericIncrementTransform",
        "GeoPoint",
        "Timestamp",
    }
)

_PRIMITIVE_TYPES = (type(None), bool, int, float, str, bytes)


class ValueKind(str, Enum):
    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    FUNCTION = "function"
    OBJECT = "object"
    PLAIN_OBJECT = "plain object"


def format_plural(count: int, noun: str) -> str:
    return f"{count} {noun}" + ("" if count == 1 else "s")


def format_argument_name(arg: ArgumentId) -> str:
    if isinstance(arg, str):
        return f'"{arg}"'
    return f"at index {arg}"


def create_error_description(arg: ArgumentId, expected_type: str) -> str:
    return f"Argument {format_argument_name(arg)} is not a valid {expected_type}."


def is_plain_object(value: Any) -> bool:
    return isinstance(value, Mapping)


def is_object(value: Any) -> bool:
    return not isinstance(value, _PRIMITIVE_TYPES + (list, tuple))


def _is_optional(value: Any, optional: bool) -> bool:
    return value is None and optional


def validate_string(arg: ArgumentId, value: Any, *, optional: bool = False) -> None:
    if _is_optional(value, optional):
        return
    if not isinstance(value, str):
        raise InvalidArgumentError(create_error_description(arg, ValueKind.STRING.value))


def validate_boolean(arg: ArgumentId, value: Any, *, optional: bool = False) -> None:
    if _is_optional(value, optional):
        return
    if not isinstance(value, bool):
        raise InvalidArgumentError(create_error_description(arg, ValueKind.BOOLEAN.value))


def validate_function(arg: ArgumentId, value: Any, *, optional: bool = False) -> None:
    if _is_optional(value, optional):
        return
    if not callable(value):
        raise InvalidArgumentError(create_error_description(arg, ValueKind.FUNCTION.value))


def validate_object(arg: ArgumentId, value: Any, *, optional: bool = False) -> None:
    if _is_optional(value, optional):
        return
    if not is_object(value):
        raise InvalidArgumentError(create_error_description(arg, ValueKind.OBJECT.value))


def validate_plain_object(arg: ArgumentId, value: Any, *, optional: bool = False) -> None:
    if _is_optional(value, optional):
        return
    if not is_plain_object(value):
        raise InvalidArgumentError(create_error_description(arg, ValueKind.PLAIN_OBJECT.value))


def validate_range(
    arg: ArgumentId,
    value: int | float,
    min_value: int | float | None = None,
    max_value: int | float | None = None,
) -> None:
    lower = -math.inf if min_value is None else min_value
    upper = math.inf if max_value is None else max_value
    if value < lower or value > upper:
        raise InvalidArgumentError(
            f"Value for argument {format_argument_name(arg)} must be within "
            f"[{lower}, {upper}] inclusive, but was: {value}"
        )


def _is_number(value: Any) -> bool:
    # bool is an int subclass but never a number argument.
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_number(
    arg: ArgumentId,
    value: Any,
    *,
    optional: bool = False,
    min_value: int | float | None = None,
    max_value: int | float | None = None,
) -> None:
    if _is_optional(value, optional):
        return
    if not _is_number(value) or not math.isfinite(value):
        raise InvalidArgumentError(create_error_description(arg, ValueKind.NUMBER.value))
    validate_range(arg, value, min_value, max_value)


def validate_integer(
    arg: ArgumentId,
    value: Any,
    *,
    optional: bool = False,
    min_value: int | None = None,
    max_value: int | None = None,
) -> None:
    if _is_optional(value, optional):
        return
    if not _is_number(value) or not math.isfinite(value):
        raise InvalidArgumentError(create_error_description(arg, ValueKind.INTEGER.value))
    if isinstance(value, float) and not value.is_integer():
        raise InvalidArgumentError(create_error_description(arg, ValueKind.INTEGER.value))
    validate_range(arg, value, min_value, max_value)


_TYPE_VALIDATORS: dict[ValueKind, Callable[..., None]] = {
    ValueKind.STRING: validate_string,
    ValueKind.BOOLEAN: validate_boolean,
    ValueKind.FUNCTION: validate_function,
    ValueKind.OBJECT: validate_object,
    ValueKind.PLAIN_OBJECT: validate_plain_object,
}


def validate_type(
    arg: ArgumentId,
    value: Any,
    kind: ValueKind | str,
    *,
    optional: bool = False,
    min_value: int | float | None = None,
    max_value: int | float | None = None,
) -> None:
    """Validate ``value`` against one of the supported :class:`ValueKind` values."""
    expected = ValueKind(kind)
    if expected is ValueKind.NUMBER:
        validate_number(arg, value, optional=optional, min_value=min_value, max_value=max_value)
        return
    if expected is ValueKind.INTEGER:
        validate_integer(arg, value, optional=optional, min_value=min_value, max_value=max_value)
        return
    _TYPE_VALIDATORS[expected](arg, value, optional=optional)


def validate_enum(
    arg: ArgumentId,
    value: Any,
    allowed_values: Iterable[str],
    *,
    optional: bool = False,
) -> None:
    if _is_optional(value, optional):
        return
    expected: list[str] = []
    for allowed in allowed_values:
        if allowed == value:
            return
        expected.append(allowed)
    raise InvalidArgumentError(
        f"Invalid value for argument {format_argument_name(arg)}. "
        f"Acceptable values are: {', '.join(expected)}"
    )


def validate_argument_count(
    function_name: str,
    provided_count: int,
    *,
    min_count: int | None = None,
    max_count: int | None = None,
) -> None:
    if min_count is not None and provided_count < min_count:
        raise InvalidArgumentError(
            f'Function "{function_name}()" requires at least {format_plural(min_count, "argument")}.'
        )
    if max_count is not None and provided_count > max_count:
        raise InvalidArgumentError(
            f'Function "{function_name}()" accepts at most {format_plural(max_count, "argument")}.'
        )


def custom_object_message(arg: ArgumentId, value: Any, path: FieldPath | None = None) -> str:
    """Describe why ``value`` cannot be used where a document is expected."""
    field_path_message = f" (found in field {path})" if path is not None else ""
    description = create_error_description(arg, "document")

    if is_object(value) and not is_plain_object(value):
        type_name = type(value).__name__
        if type_name in DOMAIN_TYPE_NAMES:
            return (
                f'{description} Detected an object of type "{type_name}" that doesn\'t match the '
                f"expected instance{field_path_message}. Please ensure that the docbatch types "
                "you are using are from the same installed package."
            )
        return (
            f'{description} Couldn\'t serialize object of type "{type_name}"{field_path_message}. '
            "Instances of custom classes are not supported; convert them to plain mappings first."
        )
    if not is_object(value):
        return f"{description} Input is not a plain mapping{field_path_message}."
    return f'{description} Invalid use of type "{type(value).__name__}" as a document argument{field_path_message}.'
