from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping
import logging

from docbatch.document import (
    DocumentMask,
    DocumentSnapshot,
    DocumentTransform,
    Precondition,
    validate_document_data,
    validate_field_value,
    validate_update,
    validate_update_map,
)
from docbatch.errors import BatchStateError, InvalidArgumentError, ProtocolViolationError
from docbatch.field_path import FieldPath, validate_field_path
from docbatch.reference import DocumentReference, validate_document_reference
from docbatch.serializer import Serializer
from docbatch.timestamp import Timestamp
from docbatch.util import request_tag as new_request_tag
from docbatch.validation import (
    ArgumentId,
    create_error_description,
    is_plain_object,
    validate_argument_count,
)

if TYPE_CHECKING:
    from docbatch.client import DocumentClient


LOGGER = logging.getLogger(__name__)

SET_OPTION_KEYS = ("merge", "merge_fields")

UPDATE_ARGUMENT_ERROR = (
    "update() requires a single mapping optionally followed by a precondition, and "
    "update_fields() requires an alternating list of field/value pairs that can be "
    "followed by an optional precondition."
)


@dataclass(frozen=True)
class WriteResult:
    """Write time assigned by the backend to one logical operation."""

    write_time: Timestamp


class BatchState(str, Enum):
    OPEN = "OPEN"
    COMMITTED = "COMMITTED"


@dataclass(frozen=True)
class _WriteOp:
    write: dict[str, Any] | None
    transform: dict[str, Any] | None
    precondition: dict[str, Any] | None = None

    @property
    def entry_count(self) -> int:
        return int(self.write is not None) + int(self.transform is not None)

    def wire_entries(self) -> list[dict[str, Any]]:
        if self.entry_count == 0:
            raise ProtocolViolationError("Either a write or transform must be set.")
        write = dict(self.write) if self.write is not None else None
        transform = dict(self.transform) if self.transform is not None else None
        if self.precondition is not None:
            guarded = write if write is not None else transform
            guarded["currentDocument"] = dict(self.precondition)
        # The transform goes last: its result carries the final update time.
        return [entry for entry in (write, transform) if entry is not None]


class WriteBatch:
    """Accumulates writes and commits them atomically.

    A batch is owned by a single caller. After ``commit()`` has been called
    no further operations can be added, even if the commit failed.
    """

    def __init__(self, client: DocumentClient, *, serializer: Serializer | None = None) -> None:
        self._client = client
        self._serializer = serializer or Serializer()
        self._writes: list[_WriteOp] = []
        self._state = BatchState.OPEN

    @property
    def is_empty(self) -> bool:
        return len(self._writes) == 0

    @property
    def committed(self) -> bool:
        return self._state is BatchState.COMMITTED

    def _verify_not_committed(self) -> None:
        if self._state is BatchState.COMMITTED:
            raise BatchStateError("Cannot modify a WriteBatch that has been committed.")

    def create(self, document_ref: DocumentReference, data: Mapping[str, Any]) -> WriteBatch:
        """Create a document; the whole batch fails if the document already exists."""
        validate_document_reference("document_ref", document_ref)
        validate_document_data("data", data, allow_deletes=False)

        self._verify_not_committed()

        document = DocumentSnapshot.from_object(document_ref, data, self._serializer)
        transform = DocumentTransform.from_object(document_ref, data)
        transform.validate()
        precondition = Precondition(exists=False)

        self._writes.append(
            _WriteOp(
                write=document.to_proto(),
                transform=transform.to_proto(self._serializer),
                precondition=precondition.to_proto(),
            )
        )
        return self

    def delete(
        self,
        document_ref: DocumentReference,
        precondition: Precondition | Mapping[str, Any] | None = None,
    ) -> WriteBatch:
        """Delete a document, optionally guarded by ``exists`` or ``last_update_time``."""
        validate_document_reference("document_ref", document_ref)
        validate_delete_precondition("precondition", precondition)

        self._verify_not_committed()

        conditions = Precondition.from_argument(precondition)
        self._writes.append(
            _WriteOp(
                write={"delete": document_ref.formatted_name},
                transform=None,
                precondition=conditions.to_proto(),
            )
        )
        return self

    def set(
        self,
        document_ref: DocumentReference,
        data: Mapping[str, Any],
        options: Mapping[str, Any] | None = None,
    ) -> WriteBatch:
        """Overwrite a document, or merge into it.

        ``options`` accepts ``merge=True`` (merge every provided leaf) or
        ``merge_fields=[...]`` (only replace the listed paths). The two are
        mutually exclusive.
        """
        validate_set_options("options", options)
        merge_leaves = options is not None and options.get("merge") is True
        merge_paths = options.get("merge_fields") if options is not None else None
        merging = merge_leaves or merge_paths is not None

        validate_document_reference("document_ref", document_ref)
        validate_document_data("data", data, allow_deletes=merging)

        self._verify_not_committed()

        field_mask: DocumentMask | None = None
        if merge_paths is not None:
            field_mask = DocumentMask.from_field_mask(merge_paths)
            data = field_mask.apply_to(data)

        transform = DocumentTransform.from_object(document_ref, data)
        transform.validate()

        document = DocumentSnapshot.from_object(document_ref, data, self._serializer)
        if field_mask is not None:
            document_mask = field_mask.remove_fields(transform.fields)
        elif merge_leaves:
            document_mask = DocumentMask.from_object(data)
        else:
            # Full replace: the top-level mask is implied by the write and not sent.
            document_mask = DocumentMask.from_top_level_keys(data)

        has_document_data = not document.is_empty or not document_mask.is_empty

        write: dict[str, Any] | None = None
        if not merging:
            write = document.to_proto()
        elif has_document_data or transform.is_empty:
            write = document.to_proto()
            write["updateMask"] = document_mask.to_proto()

        self._writes.append(_WriteOp(write=write, transform=transform.to_proto(self._serializer)))
        return self

    def update(
        self,
        document_ref: DocumentReference,
        data: Mapping[str | FieldPath, Any],
        *precondition: Precondition | Mapping[str, Any],
    ) -> WriteBatch:
        """Update fields of an existing document from a flat mapping.

        Keys are dotted field paths or FieldPath objects. A precondition on
        ``last_update_time`` may follow the mapping; otherwise the document
        only has to exist.
        """
        validate_document_reference("document_ref", document_ref)

        self._verify_not_committed()

        conditions = Precondition(exists=True)
        try:
            validate_update_map("data", data)
            validate_argument_count("update", 2 + len(precondition), max_count=3)
            entries = [(FieldPath.from_argument(key), value) for key, value in data.items()]
            if precondition and precondition[0] is not None:
                validate_update_precondition("precondition", precondition[0])
                conditions = Precondition.from_argument(precondition[0])
        except InvalidArgumentError as exc:
            LOGGER.debug("update()の引数検証に失敗: ref=%s error=%s", document_ref.path, exc)
            raise InvalidArgumentError(f"{UPDATE_ARGUMENT_ERROR} {exc}") from exc

        return self._append_update("data", document_ref, entries, conditions)

    def update_fields(
        self,
        document_ref: DocumentReference,
        field_path: str | FieldPath,
        value: Any,
        *more_fields_and_values: Any,
    ) -> WriteBatch:
        """Update fields of an existing document from alternating field/value arguments.

        An odd trailing argument is taken as the precondition.
        """
        validate_document_reference("document_ref", document_ref)

        self._verify_not_committed()

        arguments = (field_path, value, *more_fields_and_values)
        conditions = Precondition(exists=True)
        entries: list[tuple[FieldPath, Any]] = []
        try:
            for index in range(0, len(arguments), 2):
                # Positions are reported counting document_ref as argument 0.
                position = index + 1
                if index == len(arguments) - 1:
                    if arguments[index] is not None:
                        validate_update_precondition(position, arguments[index])
                        conditions = Precondition.from_argument(arguments[index])
                else:
                    validate_field_path(position, arguments[index])
                    path = FieldPath.from_argument(arguments[index])
                    validate_field_value(position + 1, arguments[index + 1], path)
                    entries.append((path, arguments[index + 1]))
        except InvalidArgumentError as exc:
            LOGGER.debug("update_fields()の引数検証に失敗: ref=%s error=%s", document_ref.path, exc)
            raise InvalidArgumentError(f"{UPDATE_ARGUMENT_ERROR} {exc}") from exc

        return self._append_update("field_path", document_ref, entries, conditions)

    def _append_update(
        self,
        arg: ArgumentId,
        document_ref: DocumentReference,
        entries: list[tuple[FieldPath, Any]],
        conditions: Precondition,
    ) -> WriteBatch:
        validate_update(arg, [path for path, _ in entries])
        update_map = dict(entries)

        document = DocumentSnapshot.from_update_map(document_ref, update_map, self._serializer)
        document_mask = DocumentMask.from_update_map(update_map)

        write: dict[str, Any] | None = None
        if not document.is_empty or not document_mask.is_empty:
            write = document.to_proto()
            write["updateMask"] = document_mask.to_proto()

        transform = DocumentTransform.from_update_map(document_ref, update_map)
        transform.validate()

        self._writes.append(
            _WriteOp(
                write=write,
                transform=transform.to_proto(self._serializer),
                precondition=conditions.to_proto(),
            )
        )
        return self

    def commit(self) -> list[WriteResult]:
        """Send all operations in one atomic commit.

        Returns one WriteResult per operation, in the order they were added.
        """
        return self._commit()

    def _commit(
        self,
        *,
        transaction_id: str | None = None,
        request_tag: str | None = None,
    ) -> list[WriteResult]:
        # No _verify_not_committed() here: the transactional retry re-enters.
        tag = request_tag or new_request_tag()
        request: dict[str, Any] = {"database": self._client.formatted_name}

        if transaction_id is None and self._should_create_transaction():
            LOGGER.info("アイドル時間超過のためトランザクションでコミット: tag=%s", tag)
            response = self._client.request("beginTransaction", request, tag, True)
            return self._commit(transaction_id=response["transaction"], request_tag=tag)

        writes: list[dict[str, Any]] = []
        for op in self._writes:
            writes.extend(op.wire_entries())
        request["writes"] = writes
        if transaction_id is not None:
            request["transaction"] = transaction_id

        LOGGER.debug("コミット送信: tag=%s writes=%d", tag, len(writes))

        self._state = BatchState.COMMITTED
        response = self._client.request("commit", request, tag, False)
        return self._to_write_results(response, sent_count=len(writes))

    def _to_write_results(self, response: Mapping[str, Any], *, sent_count: int) -> list[WriteResult]:
        if sent_count == 0:
            return []

        write_results = list(response.get("writeResults") or [])
        if len(write_results) != sent_count:
            raise ProtocolViolationError(
                f"Expected one write result per operation, but got {len(write_results)} "
                f"results for {sent_count} operations."
            )

        commit_time = Timestamp.from_proto(response["commitTime"])
        results: list[WriteResult] = []
        offset = 0
        for op in self._writes:
            # A write split into write + transform reports only the transform's result.
            offset += op.entry_count
            update_time = write_results[offset - 1].get("updateTime")
            results.append(WriteResult(Timestamp.from_proto(update_time) if update_time else commit_time))
        return results

    def _should_create_transaction(self) -> bool:
        """Whether the commit should be wrapped in a transaction after client idleness."""
        if not self._client.prefer_transactions:
            return False
        last_request = self._client.last_successful_request
        if last_request is None:
            return True
        return self._client.now() - last_request > self._client.idle_timeout_seconds


def _validate_precondition(arg: ArgumentId, value: Any, *, allow_exists: bool) -> None:
    description = create_error_description(arg, "precondition")
    if isinstance(value, Precondition):
        if value.exists is not None and not allow_exists:
            raise InvalidArgumentError(f'{description} "exists" is not an allowed condition.')
        return
    if not is_plain_object(value):
        raise InvalidArgumentError(f"{description} Input is not a mapping.")

    conditions = 0
    exists = value.get("exists")
    if exists is not None:
        conditions += 1
        if not allow_exists:
            raise InvalidArgumentError(f'{description} "exists" is not an allowed condition.')
        if not isinstance(exists, bool):
            raise InvalidArgumentError(f'{description} "exists" is not a boolean.')

    last_update_time = value.get("last_update_time")
    if last_update_time is not None:
        conditions += 1
        if not isinstance(last_update_time, Timestamp):
            raise InvalidArgumentError(f'{description} "last_update_time" is not a Timestamp.')

    if conditions > 1:
        raise InvalidArgumentError(f"{description} Input contains more than one condition.")


def validate_update_precondition(arg: ArgumentId, precondition: Any = None) -> None:
    if precondition is not None:
        _validate_precondition(arg, precondition, allow_exists=False)


def validate_delete_precondition(arg: ArgumentId, precondition: Any = None) -> None:
    if precondition is not None:
        _validate_precondition(arg, precondition, allow_exists=True)


def validate_set_options(arg: ArgumentId, options: Any) -> None:
    if options is None:
        return

    description = create_error_description(arg, "set() option")
    if not is_plain_object(options):
        raise InvalidArgumentError(f"{description} Input is not a mapping.")

    for key in options:
        if key not in SET_OPTION_KEYS:
            raise InvalidArgumentError(f'{description} "{key}" is not a supported option.')

    merge = options.get("merge")
    if merge is not None and not isinstance(merge, bool):
        raise InvalidArgumentError(f'{description} "merge" is not a boolean.')

    merge_fields = options.get("merge_fields")
    if merge_fields is not None:
        if not isinstance(merge_fields, (list, tuple)):
            raise InvalidArgumentError(f'{description} "merge_fields" is not a list.')
        for index, path in enumerate(merge_fields):
            try:
                validate_field_path(index, path)
            except InvalidArgumentError as exc:
                raise InvalidArgumentError(f'{description} "merge_fields" is not valid: {exc}') from exc
        validate_update(arg, [FieldPath.from_argument(path) for path in merge_fields], description="set() option")

    if merge is not None and merge_fields is not None:
        raise InvalidArgumentError(f'{description} You cannot specify both "merge" and "merge_fields".')
