"""Generation orchestrator and supervised background runner.

A document run resolves the inference model once, then launches the four
generators as independent asyncio tasks and waits for every one of them to
settle. Each generator's inference step is bounded by its own timeout; the
artifact write that follows a successful generation is not, so a branch is
reported as succeeded exactly when its artifact was persisted. The document
status is then written exactly once: ``completed`` when at least one
generator persisted its artifact, ``failed`` when none did. Artifacts may
become visible before the status flips.
"""

import asyncio
import logging
import threading
import time
import uuid
from dataclasses import asdict, dataclass
from functools import partial
from typing import Awaitable, Callable, Optional

from study_assistant import models
from study_assistant.errors import ConflictError, GenerationError
from study_assistant.logging_config import log_event
from study_assistant.repositories import artifacts_repo, documents_repo, job_logs_repo
from study_assistant.services import ai_cost_service, generation_service, job_state_service

GENERATOR_SUMMARY = 'summary'
GENERATOR_NOTES = 'notes'
GENERATOR_FLASHCARDS = 'flashcards'
GENERATOR_QUIZ = 'quiz_questions'


@dataclass
class GeneratorOutcome:
    name: str
    ok: bool
    error: str = ''
    item_count: int = 0
    elapsed_ms: int = 0

    def to_dict(self):
        return asdict(self)


@dataclass(frozen=True)
class GeneratorBranch:
    """``generate()`` produces the artifact; ``persist(result)`` stores it and returns the item count."""

    name: str
    generate: Callable[[], Awaitable[object]]
    persist: Optional[Callable[[object], Awaitable[int]]] = None


def decide_status(outcomes):
    successes = sum(1 for outcome in outcomes if outcome.ok)
    return models.STATUS_COMPLETED if successes >= 1 else models.STATUS_FAILED


def _error_text(exc):
    return str(exc)[:500] or exc.__class__.__name__


def _log_outcome(outcome, document_id):
    if outcome.ok:
        log_event(logging.INFO, 'generator_succeeded', operation=outcome.name, document_id=document_id,
                  item_count=outcome.item_count, elapsed_ms=outcome.elapsed_ms)
    else:
        log_event(logging.WARNING, 'generator_failed', operation=outcome.name, document_id=document_id,
                  error=outcome.error, elapsed_ms=outcome.elapsed_ms)


async def settle_branch(branch, timeout_seconds, *, document_id=''):
    """Run one generator branch to a success/failure outcome. Never raises."""
    started = time.monotonic()
    outcome = None
    try:
        result = await asyncio.wait_for(branch.generate(), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        outcome = GeneratorOutcome(name=branch.name, ok=False, error=f'timed out after {timeout_seconds:g}s')
    except Exception as exc:
        outcome = GeneratorOutcome(name=branch.name, ok=False, error=_error_text(exc))
    if outcome is None:
        try:
            item_count = await branch.persist(result) if branch.persist is not None else result
            outcome = GeneratorOutcome(name=branch.name, ok=True, item_count=int(item_count or 0))
        except Exception as exc:
            outcome = GeneratorOutcome(name=branch.name, ok=False, error=f'could not save artifact: {_error_text(exc)}')
    outcome.elapsed_ms = int((time.monotonic() - started) * 1000)
    _log_outcome(outcome, document_id)
    return outcome


async def settle_all(branches, timeout_seconds, *, document_id=''):
    """Wait for every branch; order of outcomes follows ``branches``."""
    results = await asyncio.gather(
        *(settle_branch(branch, timeout_seconds, document_id=document_id) for branch in branches),
        return_exceptions=True,
    )
    outcomes = []
    for branch, result in zip(branches, results):
        if isinstance(result, GeneratorOutcome):
            outcomes.append(result)
        else:
            outcomes.append(GeneratorOutcome(name=branch.name, ok=False, error=str(result)[:500]))
    return outcomes


def fail_all(branches, error, *, document_id=''):
    outcomes = [GeneratorOutcome(name=branch.name, ok=False, error=error) for branch in branches]
    for outcome in outcomes:
        _log_outcome(outcome, document_id)
    return outcomes


def run_async(coro):
    """Run ``coro`` on a fresh event loop and close it.

    The loop's default executor is shut down without joining its threads, so a
    worker thread still blocked in a timed-out call does not hold up the caller.
    """
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        try:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.run_until_complete(loop.shutdown_asyncgens())
        finally:
            loop.close()


def build_item_records(items, document_id, uid, now_ts):
    return [
        dict(item, document_id=document_id, uid=uid, position=position, created_at=now_ts)
        for position, item in enumerate(items)
    ]


class DocumentPipeline:
    def __init__(self, *, db, inference, config, time_module=time):
        self.db = db
        self.inference = inference
        self.config = config
        self._time = time_module
        self._regenerating = set()
        self._regenerating_lock = threading.Lock()

    def _cost_hook(self, uid, document_id):
        return partial(self._record_cost, uid, document_id)

    def _record_cost(self, uid, document_id, operation, result, prompt):
        ai_cost_service.record_ai_cost(self.db, operation, result, prompt, uid=uid, document_id=document_id)

    async def _persist(self, fn, *args):
        return await asyncio.to_thread(fn, self.db, *args)

    def build_branches(self, document_id, uid, source):
        hook = self._cost_hook(uid, document_id)
        inference = self.inference
        config = self.config

        async def persist_summary(content):
            await self._persist(artifacts_repo.set_summary, document_id, {
                'document_id': document_id, 'uid': uid, 'content': content, 'created_at': self._time.time(),
            })
            return 1

        async def persist_notes(notes):
            await self._persist(artifacts_repo.set_notes, document_id, dict(
                notes, document_id=document_id, uid=uid, created_at=self._time.time(),
            ))
            return 1

        async def generate_flashcards():
            cards = await generation_service.generate_flashcards(inference, source, config.flashcard_count, cost_hook=hook)
            if not cards:
                raise GenerationError('Flashcard generation produced no usable items', operation='generate_flashcards')
            return cards

        async def generate_quiz():
            questions = await generation_service.generate_quiz_questions(
                inference, source, config.quiz_question_count, cost_hook=hook,
            )
            if not questions:
                raise GenerationError('Quiz generation produced no usable items', operation='generate_quiz_questions')
            return questions

        def persist_items(collection_name):
            async def persist(items):
                records = build_item_records(items, document_id, uid, self._time.time())
                await self._persist(artifacts_repo.add_items, collection_name, records)
                return len(records)
            return persist

        return [
            GeneratorBranch(GENERATOR_SUMMARY, partial(generation_service.generate_summary, inference, source, cost_hook=hook), persist_summary),
            GeneratorBranch(GENERATOR_NOTES, partial(generation_service.generate_notes, inference, source, cost_hook=hook), persist_notes),
            GeneratorBranch(GENERATOR_FLASHCARDS, generate_flashcards, persist_items(artifacts_repo.FLASHCARDS)),
            GeneratorBranch(GENERATOR_QUIZ, generate_quiz, persist_items(artifacts_repo.QUIZ_QUESTIONS)),
        ]

    async def run_generators(self, document_id, uid, source):
        timeout = self.config.generator_timeout_seconds
        branches = self.build_branches(document_id, uid, source)
        try:
            model_name = await asyncio.wait_for(self.inference.resolve_model(), timeout=timeout)
        except asyncio.TimeoutError:
            return fail_all(branches, f'model resolution timed out after {timeout:g}s', document_id=document_id)
        except Exception as exc:
            return fail_all(branches, _error_text(exc), document_id=document_id)
        log_event(logging.INFO, 'generators_started', document_id=document_id, model=model_name, count=len(branches))
        return await settle_all(branches, timeout, document_id=document_id)

    def apply_status(self, document_id, status, outcomes):
        """The single status write for a run, retried with exponential backoff.

        Returns ``None`` once the write lands, or the last error text when
        every attempt failed.
        """
        now_ts = self._time.time()
        payload = {
            'status': status,
            'generation_summary': [outcome.to_dict() for outcome in outcomes],
            'updated_at': now_ts,
            'processed_at': now_ts,
        }
        attempts = max(1, int(self.config.status_write_attempts))
        backoff = float(self.config.status_write_backoff_seconds)
        last_error = ''
        for attempt in range(1, attempts + 1):
            try:
                documents_repo.update_doc(self.db, document_id, payload)
            except Exception as exc:
                last_error = str(exc)[:300] or exc.__class__.__name__
                log_event(logging.WARNING, 'document_status_write_failed', document_id=document_id, status=status,
                          attempt=attempt, attempts=attempts, error=last_error)
                if attempt < attempts and backoff > 0:
                    self._time.sleep(backoff * (2 ** (attempt - 1)))
                continue
            log_event(logging.INFO, 'document_status_changed', document_id=document_id, status=status,
                      successes=sum(1 for outcome in outcomes if outcome.ok), attempted=len(outcomes))
            return None
        log_event(logging.ERROR, 'document_status_not_recorded', document_id=document_id, status=status, error=last_error)
        return last_error

    def process_document(self, document_id, uid, source):
        """Run all generators and settle the document. Returns ``(status, outcomes, error)``."""
        log_event(logging.INFO, 'pipeline_started', document_id=document_id, media=bool(source.media_url))
        error = None
        try:
            outcomes = run_async(self.run_generators(document_id, uid, source))
        except Exception as exc:
            error = str(exc)[:500]
            outcomes = []
            log_event(logging.ERROR, 'pipeline_crashed', document_id=document_id, error=error)
        status = decide_status(outcomes)
        write_error = self.apply_status(document_id, status, outcomes)
        if write_error:
            error = error or f'Could not record document status: {write_error}'
        return status, outcomes, error

    def _claim_regeneration(self, document_id):
        with self._regenerating_lock:
            if document_id in self._regenerating:
                raise ConflictError(
                    'Quiz questions are already being regenerated for this document.',
                    error_code='REGENERATION_IN_PROGRESS',
                )
            self._regenerating.add(document_id)

    def _release_regeneration(self, document_id):
        with self._regenerating_lock:
            self._regenerating.discard(document_id)

    async def regenerate_quiz(self, document_id, uid, source, count):
        """Replace a document's quiz questions. Document status is left untouched.

        Prior questions feed the prompt as a repeat-avoidance hint. They are
        swapped for the new set in one batch, only once a non-empty
        replacement exists. One regeneration per document runs at a time.
        """
        self._claim_regeneration(document_id)
        try:
            existing = await asyncio.to_thread(artifacts_repo.list_items, self.db, artifacts_repo.QUIZ_QUESTIONS, document_id, uid)
            previous = generation_service.format_previous_questions(existing)
            questions = await generation_service.generate_quiz_questions(
                self.inference, source, count, previous, cost_hook=self._cost_hook(uid, document_id),
            )
            if not questions:
                raise GenerationError('Failed to generate quiz questions. Please try again.', operation='regenerate_quiz')
            records = build_item_records(questions, document_id, uid, self._time.time())
            replaced = await asyncio.to_thread(
                artifacts_repo.replace_items, self.db, artifacts_repo.QUIZ_QUESTIONS, document_id, uid, records,
            )
        finally:
            self._release_regeneration(document_id)
        log_event(logging.INFO, 'quiz_regenerated', document_id=document_id, replaced=replaced, created=len(records))
        return await asyncio.to_thread(artifacts_repo.list_items, self.db, artifacts_repo.QUIZ_QUESTIONS, document_id, uid)


class PipelineRunner:
    """Starts one worker thread per document run and keeps its job record."""

    def __init__(self, pipeline, jobs, *, thread_factory=threading.Thread, job_ttl_seconds=None, time_module=time):
        self.pipeline = pipeline
        self.jobs = jobs
        self.job_ttl_seconds = job_ttl_seconds
        self._thread_factory = thread_factory
        self._time = time_module

    def new_job_id(self):
        return str(uuid.uuid4())

    def submit(self, job_id, document_id, uid, source):
        if self.job_ttl_seconds:
            self.jobs.evict_finished(self.job_ttl_seconds)
        self.jobs.create(job_id, document_id=document_id, uid=uid)
        thread = self._thread_factory(
            target=self._run_job,
            args=(job_id, document_id, uid, source),
            name=f'pipeline-{job_id[:8]}',
            daemon=True,
        )
        thread.start()
        return job_id

    def _run_job(self, job_id, document_id, uid, source):
        self.jobs.update(job_id, status=job_state_service.JOB_RUNNING, started_at=self._time.time())
        try:
            status, outcomes, error = self.pipeline.process_document(document_id, uid, source)
            self.jobs.update(
                job_id,
                status=job_state_service.JOB_ERROR if error else job_state_service.JOB_FINISHED,
                document_status=status,
                outcomes=[outcome.to_dict() for outcome in outcomes],
                error=error,
            )
        except Exception as exc:
            log_event(logging.ERROR, 'pipeline_job_failed', job_id=job_id, document_id=document_id, error=str(exc)[:300])
            self.jobs.update(job_id, status=job_state_service.JOB_ERROR, error=str(exc)[:500])
        finally:
            job = self.jobs.update(job_id, finished_at=self._time.time())
            self.save_job_log(job_id, job)

    def save_job_log(self, job_id, job):
        if self.pipeline.db is None or not job:
            return
        try:
            started = job.get('started_at') or job.get('created_at') or 0
            job_logs_repo.set_job_log(self.pipeline.db, job_id, {
                'job_id': job_id,
                'document_id': job.get('document_id', ''),
                'uid': job.get('uid', ''),
                'status': job.get('status'),
                'document_status': job.get('document_status'),
                'outcomes': job.get('outcomes', []),
                'error': job.get('error'),
                'started_at': started,
                'finished_at': job.get('finished_at'),
                'duration_seconds': round((job.get('finished_at') or started) - started, 2),
            })
        except Exception as exc:
            log_event(logging.WARNING, 'job_log_write_failed', job_id=job_id, error=str(exc)[:300])
