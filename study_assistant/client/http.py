"""Minimal stdlib HTTP helpers for talking to the study assistant API."""

from __future__ import annotations

import json
import mimetypes
import os
import urllib.error
import urllib.request
import uuid
from typing import Any, Dict, Optional, Tuple


def request_json(
    method: str,
    url: str,
    *,
    json_body: Optional[Dict[str, Any]] = None,
    data: Optional[bytes] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = 10.0,
) -> Tuple[int, Any]:
    """Send a request and return ``(status_code, decoded_json_or_text)``.

    HTTP error statuses are returned, not raised. Transport failures
    (DNS, refused connections, timeouts) propagate as ``OSError``.
    """
    request_headers: Dict[str, str] = dict(headers or {})
    if json_body is not None:
        data = json.dumps(json_body).encode("utf-8")
        request_headers.setdefault("Content-Type", "application/json")
    req = urllib.request.Request(url=url, data=data, method=method.upper(), headers=request_headers)
    try:
        with urllib.request.urlopen(req, timeout=timeout) as response:
            status = int(response.getcode())
            body = response.read().decode("utf-8", errors="replace")
    except urllib.error.HTTPError as exc:
        status = int(exc.code)
        body = exc.read().decode("utf-8", errors="replace")
    try:
        return status, json.loads(body) if body else None
    except json.JSONDecodeError:
        return status, body


def encode_multipart_file(field_name: str, file_path: str) -> Tuple[bytes, str]:
    boundary = f"----study-assistant-{uuid.uuid4().hex}"
    file_name = os.path.basename(file_path)
    content_type = mimetypes.guess_type(file_name)[0] or "application/octet-stream"
    with open(file_path, "rb") as handle:
        file_bytes = handle.read()
    head = (
        f"--{boundary}\r\n"
        f'Content-Disposition: form-data; name="{field_name}"; filename="{file_name}"\r\n'
        f"Content-Type: {content_type}\r\n\r\n"
    ).encode("utf-8")
    tail = f"\r\n--{boundary}--\r\n".encode("utf-8")
    return head + file_bytes + tail, f"multipart/form-data; boundary={boundary}"


def auth_headers(bearer_token: str = "") -> Dict[str, str]:
    token = (bearer_token or "").strip()
    return {"Authorization": f"Bearer {token}"} if token else {}
