from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
import unittest

from docbatch.client import DocumentClient
from docbatch.document import Precondition
from docbatch.errors import BatchStateError, InvalidArgumentError, ProtocolViolationError
from docbatch.field_path import FieldPath
from docbatch.field_value import FieldValue
from docbatch.timestamp import Timestamp
from docbatch.write_batch import UPDATE_ARGUMENT_ERROR, WriteBatch, WriteResult


DATABASE = "projects/test-project/databases/(default)"
DOC_NAME = f"{DATABASE}/documents/col/doc"
COMMIT_TIME = "2026-02-12T00:00:09Z"
UPDATE_TIME = Timestamp(1_770_854_400)


@dataclass
class FakeCall:
    method: str
    payload: dict[str, Any]
    request_tag: str
    allow_retries: bool


@dataclass
class FakeTransport:
    responses: list[Any] = field(default_factory=list)
    calls: list[FakeCall] = field(default_factory=list)

    def request(self, method: str, payload: Any, request_tag: str, allow_retries: bool) -> Any:
        self.calls.append(FakeCall(method, dict(payload), request_tag, allow_retries))
        if not self.responses:
            raise AssertionError(f"unexpected request: {method}")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@dataclass
class FakeClock:
    now: float = 1_000.0

    def __call__(self) -> float:
        return self.now


def commit_response(*update_times: str | None, commit_time: str = COMMIT_TIME) -> dict[str, Any]:
    return {
        "commitTime": commit_time,
        "writeResults": [{"updateTime": value} if value else {} for value in update_times],
    }


def make_client(
    transport: FakeTransport,
    *,
    prefer_transactions: bool = False,
    clock: FakeClock | None = None,
) -> DocumentClient:
    return DocumentClient(
        transport,
        project_id="test-project",
        prefer_transactions=prefer_transactions,
        clock=clock or FakeClock(),
    )


class WriteBatchTestBase(unittest.TestCase):
    def setUp(self) -> None:
        self.transport = FakeTransport()
        self.client = make_client(self.transport)
        self.ref = self.client.document("col/doc")
        self.batch = self.client.batch()

    def commit_writes(self, *update_times: str | None) -> tuple[list[dict[str, Any]], list[WriteResult]]:
        self.transport.responses.append(commit_response(*update_times))
        results = self.batch.commit()
        return self.transport.calls[-1].payload["writes"], results


class CreateTest(WriteBatchTestBase):
    def test_plain_create_sends_single_entry(self) -> None:
        self.batch.create(self.ref, {"a": 1})

        writes, results = self.commit_writes("2026-02-12T00:00:01Z")

        self.assertEqual(
            writes,
            [
                {
                    "update": {"name": DOC_NAME, "fields": {"a": {"integerValue": "1"}}},
                    "currentDocument": {"exists": False},
                }
            ],
        )
        self.assertEqual(results, [WriteResult(Timestamp.from_proto("2026-02-12T00:00:01Z"))])

    def test_transform_only_create_still_writes_document(self) -> None:
        self.batch.create(self.ref, {"t": FieldValue.server_timestamp()})

        writes, results = self.commit_writes("2026-02-12T00:00:01Z", "2026-02-12T00:00:02Z")

        self.assertEqual(
            writes,
            [
                {"update": {"name": DOC_NAME, "fields": {}}, "currentDocument": {"exists": False}},
                {
                    "transform": {
                        "document": DOC_NAME,
                        "fieldTransforms": [{"fieldPath": "t", "setToServerValue": "REQUEST_TIME"}],
                    }
                },
            ],
        )
        self.assertEqual(results[0].write_time, Timestamp.from_proto("2026-02-12T00:00:02Z"))

    def test_delete_sentinel_rejected_before_queueing(self) -> None:
        with self.assertRaisesRegex(InvalidArgumentError, r"FieldValue\.delete\(\) must appear at the top-level"):
            self.batch.create(self.ref, {"a": FieldValue.delete()})

        self.assertTrue(self.batch.is_empty)

    def test_rejects_non_reference(self) -> None:
        with self.assertRaisesRegex(InvalidArgumentError, "DocumentReference"):
            self.batch.create("col/doc", {"a": 1})


class SetTest(WriteBatchTestBase):
    def test_transform_result_carries_write_time(self) -> None:
        self.batch.set(self.ref, {"a": 1, "b": FieldValue.server_timestamp()})

        writes, results = self.commit_writes("2026-02-12T00:00:01Z", "2026-02-12T00:00:03Z")

        self.assertEqual(len(writes), 2)
        self.assertEqual(writes[0], {"update": {"name": DOC_NAME, "fields": {"a": {"integerValue": "1"}}}})
        self.assertIn("transform", writes[1])
        self.assertEqual(results, [WriteResult(Timestamp.from_proto("2026-02-12T00:00:03Z"))])

    def test_merge_masks_every_leaf(self) -> None:
        self.batch.set(
            self.ref,
            {"a": {"b": 1, "c": FieldValue.delete()}, "n": FieldValue.increment(2)},
            {"merge": True},
        )

        writes, _ = self.commit_writes(None, None)

        self.assertEqual(
            writes[0],
            {
                "update": {
                    "name": DOC_NAME,
                    "fields": {"a": {"mapValue": {"fields": {"b": {"integerValue": "1"}}}}},
                },
                "updateMask": {"fieldPaths": ["a.b", "a.c"]},
            },
        )
        self.assertEqual(
            writes[1]["transform"]["fieldTransforms"],
            [{"fieldPath": "n", "increment": {"integerValue": "2"}}],
        )

    def test_merge_fields_projects_data(self) -> None:
        self.batch.set(
            self.ref,
            {"a": 1, "b": 2, "c": {"d": 3, "e": 4}, "t": FieldValue.server_timestamp()},
            {"merge_fields": ["a", "c.d", "t"]},
        )

        writes, _ = self.commit_writes(None, None)

        self.assertEqual(
            writes[0],
            {
                "update": {
                    "name": DOC_NAME,
                    "fields": {
                        "a": {"integerValue": "1"},
                        "c": {"mapValue": {"fields": {"d": {"integerValue": "3"}}}},
                    },
                },
                "updateMask": {"fieldPaths": ["a", "c.d"]},
            },
        )
        self.assertEqual(writes[1]["transform"]["fieldTransforms"][0]["fieldPath"], "t")

    def test_merge_fields_must_exist_in_data(self) -> None:
        with self.assertRaisesRegex(InvalidArgumentError, 'Input data is missing for field "x".'):
            self.batch.set(self.ref, {"a": 1}, {"merge_fields": ["a", "x"]})

        self.assertTrue(self.batch.is_empty)

    def test_merge_fields_prefix_conflict(self) -> None:
        with self.assertRaisesRegex(InvalidArgumentError, 'Field "a" was specified multiple times.'):
            self.batch.set(self.ref, {"a": {"b": 1}}, {"merge_fields": ["a", "a.b"]})

    def test_merge_with_only_transforms_sends_transform_only(self) -> None:
        self.batch.set(self.ref, {"t": FieldValue.server_timestamp()}, {"merge": True})

        writes, results = self.commit_writes("2026-02-12T00:00:04Z")

        self.assertEqual(len(writes), 1)
        self.assertIn("transform", writes[0])
        self.assertEqual(results[0].write_time, Timestamp.from_proto("2026-02-12T00:00:04Z"))

    def test_empty_merge_still_sends_write(self) -> None:
        self.batch.set(self.ref, {}, {"merge": True})

        writes, _ = self.commit_writes(None)

        self.assertEqual(
            writes,
            [{"update": {"name": DOC_NAME, "fields": {}}, "updateMask": {"fieldPaths": []}}],
        )

    def test_merge_and_merge_fields_are_exclusive(self) -> None:
        with self.assertRaises(InvalidArgumentError) as ctx:
            self.batch.set(self.ref, {"a": 1}, {"merge": True, "merge_fields": ["a"]})

        self.assertEqual(
            str(ctx.exception),
            'Argument "options" is not a valid set() option. You cannot specify both "merge" and "merge_fields".',
        )

    def test_invalid_options(self) -> None:
        cases = [
            ("yes", "Input is not a mapping."),
            ({"merge": "yes"}, '"merge" is not a boolean.'),
            ({"merge_fields": "a"}, '"merge_fields" is not a list.'),
            ({"merge_fields": ["a..b"]}, '"merge_fields" is not valid:'),
            ({"mergeFields": ["a"]}, '"mergeFields" is not a supported option.'),
        ]
        for options, message in cases:
            with self.subTest(options=options):
                with self.assertRaises(InvalidArgumentError) as ctx:
                    self.batch.set(self.ref, {"a": 1}, options)
                self.assertIn(message, str(ctx.exception))

    def test_full_replace_rejects_delete(self) -> None:
        with self.assertRaises(InvalidArgumentError):
            self.batch.set(self.ref, {"a": FieldValue.delete()})


class UpdateTest(WriteBatchTestBase):
    def test_update_mapping(self) -> None:
        self.batch.update(
            self.ref,
            {"a.b": 1, "c": FieldValue.delete(), "t": FieldValue.server_timestamp()},
        )

        writes, _ = self.commit_writes(None, None)

        self.assertEqual(
            writes,
            [
                {
                    "update": {
                        "name": DOC_NAME,
                        "fields": {"a": {"mapValue": {"fields": {"b": {"integerValue": "1"}}}}},
                    },
                    "updateMask": {"fieldPaths": ["a.b", "c"]},
                    "currentDocument": {"exists": True},
                },
                {
                    "transform": {
                        "document": DOC_NAME,
                        "fieldTransforms": [{"fieldPath": "t", "setToServerValue": "REQUEST_TIME"}],
                    }
                },
            ],
        )

    def test_transform_only_update_guards_transform(self) -> None:
        self.batch.update(self.ref, {"n": FieldValue.increment(1)})

        writes, _ = self.commit_writes(None)

        self.assertEqual(len(writes), 1)
        self.assertEqual(writes[0]["currentDocument"], {"exists": True})
        self.assertIn("transform", writes[0])

    def test_last_update_time_replaces_exists(self) -> None:
        self.batch.update(self.ref, {"a": 1}, {"last_update_time": UPDATE_TIME})

        writes, _ = self.commit_writes(None)

        self.assertEqual(writes[0]["currentDocument"], {"updateTime": "2026-02-12T00:00:00Z"})

    def test_none_precondition_keeps_exists_check(self) -> None:
        self.batch.update(self.ref, {"a": 1}, None)
        self.batch.update_fields(self.ref, "b", 2, None)

        writes, _ = self.commit_writes(None, None)

        self.assertEqual(writes[0]["currentDocument"], {"exists": True})
        self.assertEqual(writes[1]["currentDocument"], {"exists": True})

    def test_exists_precondition_not_allowed(self) -> None:
        with self.assertRaises(InvalidArgumentError) as ctx:
            self.batch.update(self.ref, {"a": 1}, Precondition(exists=False))

        message = str(ctx.exception)
        self.assertTrue(message.startswith(UPDATE_ARGUMENT_ERROR))
        self.assertIn('"exists" is not an allowed condition.', message)

    def test_empty_mapping(self) -> None:
        with self.assertRaisesRegex(InvalidArgumentError, "At least one field must be updated."):
            self.batch.update(self.ref, {})

    def test_too_many_arguments(self) -> None:
        with self.assertRaisesRegex(InvalidArgumentError, 'Function "update\\(\\)" accepts at most 3 arguments.'):
            self.batch.update(self.ref, {"a": 1}, {"last_update_time": UPDATE_TIME}, "extra")

    def test_field_path_keys_and_string_keys_conflict(self) -> None:
        with self.assertRaisesRegex(InvalidArgumentError, 'Field "a" was specified multiple times.'):
            self.batch.update(self.ref, {"a": 1, FieldPath("a", "b"): 2})

    def test_update_fields_rejects_prefix_conflict(self) -> None:
        with self.assertRaisesRegex(InvalidArgumentError, 'Field "a" was specified multiple times.'):
            self.batch.update_fields(self.ref, "a.b", 1, "a", 2)

        self.assertTrue(self.batch.is_empty)

    def test_update_fields_with_trailing_precondition(self) -> None:
        self.batch.update_fields(
            self.ref,
            FieldPath("x.y"),
            1,
            "z",
            FieldValue.delete(),
            {"last_update_time": UPDATE_TIME},
        )

        writes, _ = self.commit_writes(None)

        self.assertEqual(
            writes,
            [
                {
                    "update": {"name": DOC_NAME, "fields": {"x.y": {"integerValue": "1"}}},
                    "updateMask": {"fieldPaths": ["`x.y`", "z"]},
                    "currentDocument": {"updateTime": "2026-02-12T00:00:00Z"},
                }
            ],
        )

    def test_update_fields_wraps_invalid_path(self) -> None:
        with self.assertRaises(InvalidArgumentError) as ctx:
            self.batch.update_fields(self.ref, "a..b", 1)

        message = str(ctx.exception)
        self.assertTrue(message.startswith(UPDATE_ARGUMENT_ERROR))
        self.assertIn("Argument at index 1 is not a valid field path.", message)

    def test_update_fields_rejects_nested_delete(self) -> None:
        with self.assertRaises(InvalidArgumentError):
            self.batch.update_fields(self.ref, "a", {"b": FieldValue.delete()})


class DeleteTest(WriteBatchTestBase):
    def test_delete_without_precondition(self) -> None:
        self.batch.delete(self.ref)

        writes, results = self.commit_writes(None)

        self.assertEqual(writes, [{"delete": DOC_NAME}])
        self.assertEqual(results, [WriteResult(Timestamp.from_proto(COMMIT_TIME))])

    def test_delete_with_preconditions(self) -> None:
        self.batch.delete(self.ref, {"exists": True})
        self.batch.delete(self.ref, Precondition(last_update_time=UPDATE_TIME))

        writes, _ = self.commit_writes(None, None)

        self.assertEqual(writes[0], {"delete": DOC_NAME, "currentDocument": {"exists": True}})
        self.assertEqual(writes[1], {"delete": DOC_NAME, "currentDocument": {"updateTime": "2026-02-12T00:00:00Z"}})

    def test_invalid_preconditions(self) -> None:
        cases = [
            ({"exists": True, "last_update_time": UPDATE_TIME}, "Input contains more than one condition."),
            ({"exists": "yes"}, '"exists" is not a boolean.'),
            ({"last_update_time": "2026-02-12T00:00:00Z"}, '"last_update_time" is not a Timestamp.'),
            (5, "Input is not a mapping."),
        ]
        for precondition, message in cases:
            with self.subTest(precondition=precondition):
                with self.assertRaises(InvalidArgumentError) as ctx:
                    self.batch.delete(self.ref, precondition)
                self.assertIn(message, str(ctx.exception))


class CommitTest(WriteBatchTestBase):
    def test_results_follow_operation_order(self) -> None:
        other = self.client.document("col/other")
        self.batch.create(self.ref, {"a": 1})
        self.batch.set(other, {"b": 2, "t": FieldValue.server_timestamp()})
        self.batch.delete(other)

        writes, results = self.commit_writes(
            "2026-02-12T00:00:01Z",
            "2026-02-12T00:00:02Z",
            "2026-02-12T00:00:03Z",
            None,
        )

        self.assertEqual(len(writes), 4)
        self.assertEqual(
            [result.write_time.to_proto() for result in results],
            ["2026-02-12T00:00:01Z", "2026-02-12T00:00:03Z", COMMIT_TIME],
        )

    def test_commit_request_shape(self) -> None:
        self.batch.delete(self.ref)

        self.commit_writes(None)

        call = self.transport.calls[0]
        self.assertEqual(call.method, "commit")
        self.assertFalse(call.allow_retries)
        self.assertEqual(call.payload["database"], DATABASE)
        self.assertNotIn("transaction", call.payload)
        self.assertEqual(len(call.request_tag), 5)

    def test_empty_batch_still_commits(self) -> None:
        self.transport.responses.append({"commitTime": COMMIT_TIME})

        results = self.batch.commit()

        self.assertEqual(results, [])
        self.assertEqual(self.transport.calls[0].payload, {"database": DATABASE, "writes": []})

    def test_result_count_mismatch_is_protocol_violation(self) -> None:
        self.batch.set(self.ref, {"a": 1, "t": FieldValue.server_timestamp()})
        self.transport.responses.append(commit_response("2026-02-12T00:00:01Z"))

        with self.assertRaises(ProtocolViolationError):
            self.batch.commit()

    def test_append_after_commit_fails(self) -> None:
        self.batch.delete(self.ref)
        self.commit_writes(None)

        self.assertTrue(self.batch.committed)
        with self.assertRaises(BatchStateError) as ctx:
            self.batch.delete(self.ref)
        self.assertEqual(str(ctx.exception), "Cannot modify a WriteBatch that has been committed.")

    def test_failed_commit_still_marks_committed(self) -> None:
        self.batch.delete(self.ref)
        self.transport.responses.append(ConnectionError("unavailable"))

        with self.assertRaises(ConnectionError):
            self.batch.commit()

        self.assertTrue(self.batch.committed)
        with self.assertRaises(BatchStateError):
            self.batch.update(self.ref, {"a": 1})

    def test_write_result_equality(self) -> None:
        self.assertEqual(WriteResult(Timestamp(1, 2)), WriteResult(Timestamp(1, 2)))
        self.assertNotEqual(WriteResult(Timestamp(1, 2)), WriteResult(Timestamp(1, 3)))


class TransactionUpgradeTest(unittest.TestCase):
    def setUp(self) -> None:
        self.transport = FakeTransport()
        self.clock = FakeClock()
        self.client = make_client(self.transport, prefer_transactions=True, clock=self.clock)

    def commit_empty_batch(self) -> list[str]:
        start = len(self.transport.calls)
        self.client.batch().commit()
        return [call.method for call in self.transport.calls[start:]]

    def test_first_commit_begins_transaction(self) -> None:
        self.transport.responses.extend([{"transaction": "dHgtMQ=="}, commit_response()])

        self.assertEqual(self.commit_empty_batch(), ["beginTransaction", "commit"])

        begin, commit = self.transport.calls
        self.assertEqual(begin.payload, {"database": DATABASE})
        self.assertTrue(begin.allow_retries)
        self.assertFalse(commit.allow_retries)
        self.assertEqual(commit.payload["transaction"], "dHgtMQ==")
        self.assertEqual(begin.request_tag, commit.request_tag)

    def test_idle_heuristic(self) -> None:
        self.transport.responses.extend([{"transaction": "dHgx"}, commit_response()])
        self.commit_empty_batch()

        self.clock.now += 111
        self.transport.responses.extend([{"transaction": "dHgy"}, commit_response()])
        self.assertEqual(self.commit_empty_batch(), ["beginTransaction", "commit"])

        self.clock.now += 10
        self.transport.responses.append(commit_response())
        self.assertEqual(self.commit_empty_batch(), ["commit"])

        self.clock.now += 110
        self.transport.responses.append(commit_response())
        self.assertEqual(self.commit_empty_batch(), ["commit"])

    def test_disabled_preference_never_begins(self) -> None:
        transport = FakeTransport(responses=[commit_response()])
        client = make_client(transport, prefer_transactions=False, clock=self.clock)

        client.batch().commit()

        self.assertEqual([call.method for call in transport.calls], ["commit"])


if __name__ == "__main__":
    unittest.main()
