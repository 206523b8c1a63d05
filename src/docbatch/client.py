from __future__ import annotations

from typing import Any, Callable, Mapping, Protocol
import logging
import threading
import time

from docbatch.reference import DocumentReference, database_name
from docbatch.settings import (
    DEFAULT_DATABASE_ID,
    DEFAULT_IDLE_TIMEOUT_SECONDS,
    ClientSettings,
    SettingsError,
    load_settings,
)
from docbatch.write_batch import WriteBatch


LOGGER = logging.getLogger(__name__)


class RpcTransport(Protocol):
    def request(
        self,
        method: str,
        payload: Mapping[str, Any],
        request_tag: str,
        allow_retries: bool,
    ) -> Mapping[str, Any]:
        """Send one RPC and return the response as a proto3 JSON mapping."""


class DocumentClient:
    """Entry point for batches against one database.

    Tracks when the last request succeeded so that batches can switch to a
    transactional commit after the connection has been idle for too long.
    """

    def __init__(
        self,
        transport: RpcTransport,
        *,
        project_id: str,
        database_id: str = DEFAULT_DATABASE_ID,
        prefer_transactions: bool = False,
        idle_timeout_seconds: float = DEFAULT_IDLE_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._transport = transport
        self._formatted_name = database_name(project_id, database_id)
        self._prefer_transactions = prefer_transactions
        self._idle_timeout_seconds = idle_timeout_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._last_successful_request: float | None = None

    @classmethod
    def from_settings(
        cls,
        settings: ClientSettings,
        transport: RpcTransport,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> DocumentClient:
        return cls(
            transport,
            project_id=settings.project_id,
            database_id=settings.database_id,
            prefer_transactions=settings.prefer_transactions,
            idle_timeout_seconds=settings.idle_timeout_seconds,
            clock=clock,
        )

    @property
    def formatted_name(self) -> str:
        return self._formatted_name

    @property
    def prefer_transactions(self) -> bool:
        return self._prefer_transactions

    @property
    def idle_timeout_seconds(self) -> float:
        return self._idle_timeout_seconds

    @property
    def last_successful_request(self) -> float | None:
        with self._lock:
            return self._last_successful_request

    def now(self) -> float:
        return self._clock()

    def document(self, path: str) -> DocumentReference:
        return DocumentReference(database=self._formatted_name, path=path)

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    def request(
        self,
        method: str,
        payload: Mapping[str, Any],
        request_tag: str,
        allow_retries: bool,
    ) -> Mapping[str, Any]:
        try:
            response = self._transport.request(method, payload, request_tag, allow_retries)
        except Exception:
            LOGGER.debug("リクエスト失敗: method=%s tag=%s", method, request_tag)
            raise
        with self._lock:
            self._last_successful_request = self._clock()
        return response


def create_client(settings: ClientSettings | None = None) -> DocumentClient:
    """Build a client backed by the google-cloud-firestore generated API."""
    resolved = settings or load_settings()
    if not resolved.project_id:
        raise SettingsError("DOCBATCH_PROJECT_ID must not be empty.")

    try:
        from google.cloud.firestore_v1.services.firestore import FirestoreClient
    except ModuleNotFoundError as exc:
        raise RuntimeError(
            "google-cloud-firestore が未インストールです。`pip install -e '.[gcp]'` を実行してください。"
        ) from exc

    from docbatch.transport.firestore_gapic_transport import FirestoreGapicTransport

    return DocumentClient.from_settings(resolved, FirestoreGapicTransport(FirestoreClient()))
