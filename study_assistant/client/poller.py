"""Client-side polling of a document until it reaches a terminal status."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

from study_assistant.logging_config import log_event

from .http import auth_headers, request_json

STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_TIMEOUT = "timeout"
STATUS_CANCELLED = "cancelled"
TERMINAL_STATUSES = {STATUS_COMPLETED, STATUS_FAILED}
DEFAULT_INTERVAL_SECONDS = 5.0

FetchFn = Callable[[str], Tuple[int, Any]]


@dataclass(frozen=True)
class PollResult:
    status: str
    attempts: int
    payload: Any = None

    @property
    def ok(self) -> bool:
        return self.status == STATUS_COMPLETED


def extract_status(payload: Any) -> str:
    if not isinstance(payload, dict):
        return ""
    document = payload.get("document")
    if isinstance(document, dict) and document.get("status"):
        return str(document["status"])
    return str(payload.get("status", "") or "")


def build_document_fetcher(base_url: str, bearer_token: str = "", timeout: float = 10.0) -> FetchFn:
    root = base_url.rstrip("/")
    headers = auth_headers(bearer_token)

    def fetch(document_id: str) -> Tuple[int, Any]:
        return request_json("GET", f"{root}/api/documents/{document_id}", headers=headers, timeout=timeout)

    return fetch


class StatusPoller:
    """Polls ``fetch(document_id)`` every ``interval_seconds`` until a terminal status.

    Each attempt waits one interval first, then fetches. Transport errors and
    non-2xx responses are logged and polling continues; ``completed`` and
    ``failed`` stop the loop. ``cancel()`` (from any thread) stops it at the
    next wait. With ``max_attempts`` set, the poller gives up with ``timeout``.
    """

    def __init__(
        self,
        fetch: FetchFn,
        *,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        max_attempts: Optional[int] = None,
        wait: Optional[Callable[[float], bool]] = None,
    ) -> None:
        self._fetch = fetch
        self.interval_seconds = interval_seconds
        self.max_attempts = max_attempts
        self._cancelled = threading.Event()
        self._wait = wait or self._cancelled.wait

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    def poll(self, document_id: str) -> PollResult:
        attempts = 0
        last_payload = None
        while True:
            if self._wait(self.interval_seconds) or self.cancelled:
                return PollResult(STATUS_CANCELLED, attempts, last_payload)
            attempts += 1
            try:
                http_status, payload = self._fetch(document_id)
            except Exception as exc:
                log_event(logging.WARNING, "poll_transport_error", document_id=document_id, attempt=attempts, error=str(exc)[:200])
            else:
                if 200 <= http_status < 300:
                    last_payload = payload
                    status = extract_status(payload)
                    if status in TERMINAL_STATUSES:
                        log_event(logging.INFO, "poll_finished", document_id=document_id, status=status, attempts=attempts)
                        return PollResult(status, attempts, payload)
                else:
                    log_event(logging.WARNING, "poll_http_error", document_id=document_id, attempt=attempts, http_status=http_status)
            if self.max_attempts and attempts >= self.max_attempts:
                return PollResult(STATUS_TIMEOUT, attempts, last_payload)
