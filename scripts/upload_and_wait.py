#!/usr/bin/env python3
"""Upload a document and wait until its study materials are ready.

Usage:
  ./venv/bin/python scripts/upload_and_wait.py lecture.pdf --token "$ID_TOKEN"
  ./venv/bin/python scripts/upload_and_wait.py notes.docx --base-url https://your-domain.com --max-attempts 60
"""

from __future__ import annotations

import argparse
import json
import os

from study_assistant.client import StatusPoller, build_document_fetcher
from study_assistant.client.http import auth_headers, encode_multipart_file, request_json


def upload(base_url: str, file_path: str, bearer_token: str, timeout: float):
    body, content_type = encode_multipart_file("file", file_path)
    headers = dict(auth_headers(bearer_token), **{"Content-Type": content_type})
    return request_json("POST", f"{base_url.rstrip('/')}/api/documents", data=body, headers=headers, timeout=timeout)


def main() -> int:
    parser = argparse.ArgumentParser(description="Upload a PDF/DOCX and poll until processing finishes.")
    parser.add_argument("file", help="Path to a .pdf or .docx file")
    parser.add_argument("--base-url", default=os.getenv("STUDY_ASSISTANT_BASE_URL", "http://127.0.0.1:5000"))
    parser.add_argument("--token", default=os.getenv("STUDY_ASSISTANT_BEARER_TOKEN", ""), help="Firebase ID token")
    parser.add_argument("--interval", type=float, default=5.0, help="Seconds between status checks")
    parser.add_argument("--max-attempts", type=int, default=0, help="Give up after this many checks (0 = never)")
    parser.add_argument("--timeout", type=float, default=30.0, help="Per-request timeout in seconds")
    args = parser.parse_args()

    if not os.path.isfile(args.file):
        print(f"File not found: {args.file}")
        return 2

    status, payload = upload(args.base_url, args.file, args.token, args.timeout)
    if status != 201 or not isinstance(payload, dict):
        print(f"Upload failed ({status}): {payload}")
        return 1
    document_id = payload["document"]["id"]
    print(f"Uploaded {args.file} as document {document_id}; waiting for processing...")

    poller = StatusPoller(
        build_document_fetcher(args.base_url, args.token, args.timeout),
        interval_seconds=args.interval,
        max_attempts=args.max_attempts or None,
    )
    try:
        result = poller.poll(document_id)
    except KeyboardInterrupt:
        poller.cancel()
        print("Cancelled.")
        return 130

    print(f"Finished with status '{result.status}' after {result.attempts} check(s).")
    if result.ok and isinstance(result.payload, dict):
        document = result.payload.get("document", {})
        print(json.dumps({
            "summary": bool(result.payload.get("summary")),
            "notes": bool(result.payload.get("notes")),
            "flashcards": len(result.payload.get("flashcards") or []),
            "quiz_questions": len(result.payload.get("quiz_questions") or []),
            "generation_summary": document.get("generation_summary", []),
        }, indent=2))
        return 0
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
