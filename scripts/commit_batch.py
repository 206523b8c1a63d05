#!/usr/bin/env python3
from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Any, Mapping, Sequence
import argparse
import json
import logging
import sys

from docbatch.client import DocumentClient, create_client
from docbatch.settings import load_settings
from docbatch.timestamp import Timestamp
from docbatch.write_batch import WriteBatch, WriteResult


LOGGER = logging.getLogger(__name__)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Commit a JSON list of document writes as one batch.")
    parser.add_argument("--ops", required=True, help="Path to a JSON file holding a list of operations.")
    parser.add_argument(
        "--project-id",
        default=None,
        help="Project id. If omitted, DOCBATCH_PROJECT_ID from settings is used.",
    )
    return parser.parse_args(argv)


def load_operations(path: str | Path) -> list[dict[str, Any]]:
    operations = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(operations, list):
        raise ValueError(f"Operations file must contain a JSON list: {path}")
    return operations


def _precondition(operation: Mapping[str, Any]) -> dict[str, Any] | None:
    if operation.get("last_update_time") is not None:
        return {"last_update_time": Timestamp.from_proto(operation["last_update_time"])}
    if operation.get("exists") is not None:
        return {"exists": operation["exists"]}
    return None


def apply_operations(batch: WriteBatch, client: DocumentClient, operations: Sequence[Mapping[str, Any]]) -> None:
    for index, operation in enumerate(operations):
        kind = operation.get("op")
        ref = client.document(operation.get("path", ""))
        if kind == "create":
            batch.create(ref, operation.get("data", {}))
        elif kind == "set":
            options = {key: operation[key] for key in ("merge", "merge_fields") if key in operation}
            batch.set(ref, operation.get("data", {}), options or None)
        elif kind == "update":
            precondition = _precondition(operation)
            if precondition is None:
                batch.update(ref, operation.get("data", {}))
            else:
                batch.update(ref, operation.get("data", {}), precondition)
        elif kind == "delete":
            batch.delete(ref, _precondition(operation))
        else:
            raise ValueError(f"Unsupported op at index {index}: {kind!r}")


def _result_payload(results: Sequence[WriteResult]) -> dict[str, Any]:
    return {
        "writes": len(results),
        "write_times": [result.write_time.to_proto() for result in results],
    }


def main(argv: Sequence[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    args = parse_args(argv)
    settings = load_settings()
    project_id = (args.project_id or settings.project_id).strip()
    if not project_id:
        print(
            "Project id is required. Set --project-id or DOCBATCH_PROJECT_ID.",
            file=sys.stderr,
        )
        return 2

    operations = load_operations(args.ops)
    client = create_client(replace(settings, project_id=project_id))
    batch = client.batch()
    apply_operations(batch, client, operations)

    LOGGER.info("バッチコミット開始: database=%s operations=%s", client.formatted_name, len(operations))
    payload = _result_payload(batch.commit())
    print(json.dumps(payload, ensure_ascii=False))
    LOGGER.info("バッチコミット完了: writes=%s", payload["writes"])
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except Exception as exc:
        LOGGER.exception("batch commit failed: %s", exc)
        raise SystemExit(1) from exc
