"""Thread-safe in-memory registry of pipeline jobs."""

import threading
import time

JOB_QUEUED = 'queued'
JOB_RUNNING = 'running'
JOB_FINISHED = 'finished'
JOB_ERROR = 'error'
ACTIVE_JOB_STATES = {JOB_QUEUED, JOB_RUNNING}


class JobRegistry:
    def __init__(self, time_module=time):
        self._jobs = {}
        self._lock = threading.RLock()
        self._time = time_module

    def create(self, job_id, **fields):
        job = {
            'job_id': job_id,
            'status': JOB_QUEUED,
            'created_at': self._time.time(),
            'started_at': None,
            'finished_at': None,
            'outcomes': [],
            'error': None,
        }
        job.update(fields)
        with self._lock:
            self._jobs[job_id] = job
            return dict(job)

    def snapshot(self, job_id):
        with self._lock:
            job = self._jobs.get(job_id)
            return dict(job) if isinstance(job, dict) else None

    def update(self, job_id, **fields):
        with self._lock:
            job = self._jobs.get(job_id)
            if not isinstance(job, dict):
                return None
            job.update(fields)
            return dict(job)

    def count_active_for_user(self, uid):
        if not uid:
            return 0
        with self._lock:
            return sum(
                1 for job in self._jobs.values()
                if job.get('uid') == uid and job.get('status') in ACTIVE_JOB_STATES
            )

    def evict_finished(self, ttl_seconds):
        """Drop finished/errored jobs older than ``ttl_seconds``."""
        now_ts = self._time.time()
        with self._lock:
            expired = [
                job_id for job_id, job in self._jobs.items()
                if job.get('status') not in ACTIVE_JOB_STATES
                and now_ts - (job.get('finished_at') or job.get('created_at') or now_ts) > ttl_seconds
            ]
            for job_id in expired:
                self._jobs.pop(job_id, None)
        return len(expired)
