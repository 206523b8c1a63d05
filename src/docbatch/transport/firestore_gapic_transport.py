from __future__ import annotations

from typing import Any, Mapping
import json
import logging

from google.api_core import gapic_v1
from google.cloud.firestore_v1.types import firestore as firestore_types


LOGGER = logging.getLogger(__name__)

_METHODS = {
    "beginTransaction": (
        "begin_transaction",
        firestore_types.BeginTransactionRequest,
        firestore_types.BeginTransactionResponse,
    ),
    "commit": (
        "commit",
        firestore_types.CommitRequest,
        firestore_types.CommitResponse,
    ),
}


class FirestoreGapicTransport:
    """RpcTransport backed by the generated Firestore API client."""

    def __init__(self, api: Any) -> None:
        self._api = api

    def request(
        self,
        method: str,
        payload: Mapping[str, Any],
        request_tag: str,
        allow_retries: bool,
    ) -> Mapping[str, Any]:
        if method not in _METHODS:
            raise ValueError(f"Unsupported RPC method: {method}")
        attribute, request_type, response_type = _METHODS[method]

        request = request_type.from_json(json.dumps(dict(payload)))
        retry = gapic_v1.method.DEFAULT if allow_retries else None
        LOGGER.debug("RPC送信: method=%s tag=%s retries=%s", method, request_tag, allow_retries)

        response = getattr(self._api, attribute)(request=request, retry=retry)
        return json.loads(response_type.to_json(response))
