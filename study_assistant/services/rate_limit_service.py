"""Rate limiting with a Firestore-first strategy.

Fixed-window counters in Firestore are shared by every worker and survive
restarts. When Firestore is disabled or a transaction fails, an in-process
sliding window takes over for that check.
"""

import hashlib
import logging
import re
import threading
import time

from flask import jsonify

from study_assistant.logging_config import log_event
from study_assistant.repositories import rate_limit_repo

SWEEP_EVERY_CHECKS = 256


def window_counter_id(key, window_seconds, window_start):
    raw = f"{key}|{window_seconds}|{int(window_start)}".encode('utf-8')
    return hashlib.sha256(raw).hexdigest()


def check_rate_limit_firestore(key, limit, window_seconds, now_ts, *, db, firestore_module,
                               counter_collection=rate_limit_repo.COUNTER_COLLECTION):
    """Return ``(allowed, retry_after)``, or ``None`` when Firestore cannot decide."""
    if db is None or firestore_module is None:
        return None
    try:
        window_start = int(now_ts // window_seconds) * int(window_seconds)
        retry_after = max(1, int((window_start + window_seconds) - now_ts))
        counter_id = window_counter_id(key, window_seconds, window_start)
        counter_ref = rate_limit_repo.counter_doc_ref(db, counter_id, counter_collection)
        transaction = db.transaction()

        @firestore_module.transactional
        def _txn(txn):
            snapshot = counter_ref.get(transaction=txn)
            count = 0
            if snapshot.exists:
                count = int((snapshot.to_dict() or {}).get('count', 0) or 0)
            if count >= limit:
                return False, retry_after
            txn.set(counter_ref, {
                'key': key,
                'count': count + 1,
                'window_start': window_start,
                'window_seconds': int(window_seconds),
                'updated_at': now_ts,
                'expires_at': window_start + (window_seconds * 3),
            }, merge=True)
            return True, 0

        return _txn(transaction)
    except Exception as exc:
        log_event(logging.WARNING, 'rate_limit_firestore_unavailable', error=str(exc)[:200])
        return None


class RateLimiter:
    def __init__(self, db=None, firestore_module=None, *, counter_collection=rate_limit_repo.COUNTER_COLLECTION,
                 time_module=time, sweep_every=SWEEP_EVERY_CHECKS):
        self.db = db
        self.firestore_module = firestore_module
        self.counter_collection = counter_collection
        self.sweep_every = max(1, int(sweep_every))
        self._events = {}
        self._checks = 0
        self._lock = threading.Lock()
        self._time = time_module

    @property
    def tracked_keys(self):
        with self._lock:
            return len(self._events)

    def check(self, key, limit, window_seconds):
        """Record one hit for ``key``; return ``(allowed, retry_after_seconds)``."""
        now_ts = self._time.time()
        firestore_result = check_rate_limit_firestore(
            key,
            limit,
            window_seconds,
            now_ts,
            db=self.db,
            firestore_module=self.firestore_module,
            counter_collection=self.counter_collection,
        )
        if firestore_result is not None:
            return firestore_result
        return self._check_in_memory(key, limit, window_seconds, now_ts)

    def _check_in_memory(self, key, limit, window_seconds, now_ts):
        with self._lock:
            self._checks += 1
            if self._checks % self.sweep_every == 0:
                self._sweep(now_ts)
            cutoff = now_ts - window_seconds
            _window, timestamps = self._events.get(key, (window_seconds, []))
            kept = [ts for ts in timestamps if ts >= cutoff]
            if len(kept) >= limit:
                retry_after = max(1, int((kept[0] + window_seconds) - now_ts))
                self._events[key] = (window_seconds, kept)
                return False, retry_after
            kept.append(now_ts)
            self._events[key] = (window_seconds, kept)
        return True, 0

    def _sweep(self, now_ts):
        # caller holds self._lock
        expired = [
            key for key, (window_seconds, timestamps) in self._events.items()
            if not timestamps or timestamps[-1] < now_ts - window_seconds
        ]
        for key in expired:
            del self._events[key]


def normalize_rate_limit_key_part(value, fallback='anon', max_len=120):
    raw = str(value or '').strip().lower()
    if not raw:
        return fallback
    safe = re.sub(r'[^a-z0-9_.:@-]+', '_', raw)
    return safe[:max_len] if safe else fallback


def build_rate_limited_response(message, retry_after):
    response = jsonify({
        'error': message,
        'retry_after_seconds': int(max(1, retry_after)),
    })
    response.status_code = 429
    response.headers['Retry-After'] = str(int(max(1, retry_after)))
    return response
