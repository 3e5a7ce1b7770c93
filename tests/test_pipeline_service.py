import asyncio
import itertools
import time
from types import SimpleNamespace

import pytest

from conftest import FakeInference, InlineThread, generation_error, make_config, quiz_json
from study_assistant import models
from study_assistant.errors import ConflictError, GenerationError
from study_assistant.repositories import artifacts_repo, documents_repo, job_logs_repo
from study_assistant.services import pipeline_service
from study_assistant.services.generation_service import GenerationSource
from study_assistant.services.inference_service import PROBE_PROMPT, InferenceClient
from study_assistant.services.job_state_service import JOB_ERROR, JOB_FINISHED, JobRegistry

SOURCE = GenerationSource(text="Cells are the basic unit of life.")
GENERATORS = ("summary", "notes", "flashcards", "quiz")


def _seed_document(db, document_id="doc-1", uid="user-1", **extra):
    record = models.build_document_record(document_id, uid, file_name="bio.pdf", file_type="pdf", now_ts=1000.0, **extra)
    documents_repo.set_doc(db, document_id, record)
    return record


def _pipeline(db, inference, tmp_path, **config_overrides):
    return pipeline_service.DocumentPipeline(db=db, inference=inference, config=make_config(tmp_path, **config_overrides))


def test_decide_status_counts_successes():
    ok = pipeline_service.GeneratorOutcome(name="summary", ok=True)
    bad = pipeline_service.GeneratorOutcome(name="notes", ok=False, error="boom")

    assert pipeline_service.decide_status([]) == models.STATUS_FAILED
    assert pipeline_service.decide_status([bad, bad]) == models.STATUS_FAILED
    assert pipeline_service.decide_status([bad, ok]) == models.STATUS_COMPLETED


@pytest.mark.parametrize(
    "failing",
    [set(combo) for size in range(5) for combo in itertools.combinations(GENERATORS, size)],
)
def test_status_is_failed_only_when_every_generator_fails(failing, fake_db, tmp_path):
    _seed_document(fake_db)
    inference = FakeInference({name: generation_error(name) for name in failing})
    pipeline = _pipeline(fake_db, inference, tmp_path)

    status, outcomes, error = pipeline.process_document("doc-1", "user-1", SOURCE)

    successes = len(GENERATORS) - len(failing)
    expected = models.STATUS_FAILED if successes == 0 else models.STATUS_COMPLETED
    assert error is None
    assert status == expected
    assert sum(1 for outcome in outcomes if outcome.ok) == successes
    stored = fake_db.rows("documents")["doc-1"]
    assert stored["status"] == expected
    assert len(stored["generation_summary"]) == 4


def test_status_ignores_completion_order(fake_db, tmp_path):
    _seed_document(fake_db)

    def delayed(seconds, payload):
        async def respond():
            await asyncio.sleep(seconds)
            return payload
        return respond

    inference = FakeInference({
        "summary": delayed(0.05, "A late summary."),
        "notes": generation_error("notes"),
        "flashcards": generation_error("flashcards"),
        "quiz": delayed(0.0, "not json"),
    })
    pipeline = _pipeline(fake_db, inference, tmp_path)

    status, outcomes, _error = pipeline.process_document("doc-1", "user-1", SOURCE)

    assert status == models.STATUS_COMPLETED
    assert [outcome.name for outcome in outcomes] == ["summary", "notes", "flashcards", "quiz_questions"]
    assert [outcome.ok for outcome in outcomes] == [True, False, False, False]
    assert artifacts_repo.get_summary(fake_db, "doc-1")["content"] == "A late summary."


def test_hung_generator_times_out_without_blocking_siblings(fake_db, tmp_path):
    _seed_document(fake_db)

    async def hang():
        await asyncio.sleep(30)
        return "never"

    inference = FakeInference({"summary": hang})
    pipeline = _pipeline(fake_db, inference, tmp_path, generator_timeout_seconds=0.2)

    started = time.monotonic()
    status, outcomes, _error = pipeline.process_document("doc-1", "user-1", SOURCE)

    assert time.monotonic() - started < 5
    assert status == models.STATUS_COMPLETED
    summary_outcome = outcomes[0]
    assert summary_outcome.ok is False
    assert "timed out" in summary_outcome.error
    assert artifacts_repo.get_summary(fake_db, "doc-1") is None
    assert len(artifacts_repo.list_items(fake_db, artifacts_repo.FLASHCARDS, "doc-1")) == 10


def test_successful_run_persists_all_artifacts(fake_db, tmp_path):
    _seed_document(fake_db)
    pipeline = _pipeline(fake_db, FakeInference(), tmp_path)

    status, outcomes, _error = pipeline.process_document("doc-1", "user-1", SOURCE)

    assert status == models.STATUS_COMPLETED
    assert [outcome.item_count for outcome in outcomes] == [1, 1, 10, 10]
    assert artifacts_repo.get_notes(fake_db, "doc-1")["title"] == "Photosynthesis"
    cards = artifacts_repo.list_items(fake_db, artifacts_repo.FLASHCARDS, "doc-1", "user-1")
    assert [card["position"] for card in cards] == list(range(10))
    questions = artifacts_repo.list_items(fake_db, artifacts_repo.QUIZ_QUESTIONS, "doc-1", "user-1")
    assert len(questions) == 10
    assert len(fake_db.rows("ai_costs")) == 4


def test_empty_flashcard_list_counts_as_failure_and_persists_nothing(fake_db, tmp_path):
    _seed_document(fake_db)
    inference = FakeInference({"flashcards": '{"flashcards": []}'})
    pipeline = _pipeline(fake_db, inference, tmp_path)

    _status, outcomes, _error = pipeline.process_document("doc-1", "user-1", SOURCE)

    flashcard_outcome = [outcome for outcome in outcomes if outcome.name == "flashcards"][0]
    assert flashcard_outcome.ok is False
    assert "no usable items" in flashcard_outcome.error
    assert artifacts_repo.list_items(fake_db, artifacts_repo.FLASHCARDS, "doc-1") == []


def test_regenerate_quiz_replaces_previous_questions(fake_db, tmp_path):
    _seed_document(fake_db, status=models.STATUS_COMPLETED)
    old = pipeline_service.build_item_records(
        [{"question": f"Old {i}?", "options": ["a", "b", "c", "d"], "correct_answer": 0, "explanation": ""} for i in range(3)],
        "doc-1", "user-1", 1000.0,
    )
    artifacts_repo.add_items(fake_db, artifacts_repo.QUIZ_QUESTIONS, old)
    inference = FakeInference({"quiz": quiz_json(5, prefix="New")})
    pipeline = _pipeline(fake_db, inference, tmp_path)

    questions = asyncio.run(pipeline.regenerate_quiz("doc-1", "user-1", SOURCE, 5))

    stored = artifacts_repo.list_items(fake_db, artifacts_repo.QUIZ_QUESTIONS, "doc-1", "user-1")
    assert [question["question"] for question in stored] == [f"New {i}?" for i in range(5)]
    assert [question["id"] for question in questions] == [question["id"] for question in stored]
    assert "1. Old 0?\n2. Old 1?\n3. Old 2?" in inference.calls[-1]["prompt"]
    assert fake_db.rows("documents")["doc-1"]["status"] == models.STATUS_COMPLETED


def test_regenerate_quiz_failure_keeps_old_questions_and_status(fake_db, tmp_path):
    _seed_document(fake_db, status=models.STATUS_COMPLETED)
    old = pipeline_service.build_item_records(
        [{"question": "Old?", "options": ["a", "b", "c", "d"], "correct_answer": 1, "explanation": ""}],
        "doc-1", "user-1", 1000.0,
    )
    artifacts_repo.add_items(fake_db, artifacts_repo.QUIZ_QUESTIONS, old)
    pipeline = _pipeline(fake_db, FakeInference({"quiz": "garbage"}), tmp_path)

    with pytest.raises(GenerationError):
        asyncio.run(pipeline.regenerate_quiz("doc-1", "user-1", SOURCE, 5))

    stored = artifacts_repo.list_items(fake_db, artifacts_repo.QUIZ_QUESTIONS, "doc-1", "user-1")
    assert [question["question"] for question in stored] == ["Old?"]
    assert fake_db.rows("documents")["doc-1"]["status"] == models.STATUS_COMPLETED


def test_runner_tracks_job_and_writes_job_log(fake_db, tmp_path):
    _seed_document(fake_db)
    jobs = JobRegistry()
    pipeline = _pipeline(fake_db, FakeInference(), tmp_path)
    runner = pipeline_service.PipelineRunner(pipeline, jobs, thread_factory=InlineThread)

    job_id = runner.submit("job-1", "doc-1", "user-1", SOURCE)

    job = jobs.snapshot(job_id)
    assert job["status"] == JOB_FINISHED
    assert job["document_status"] == models.STATUS_COMPLETED
    assert len(job["outcomes"]) == 4
    assert job["finished_at"] is not None
    log = job_logs_repo.get_job_log(fake_db, "job-1")
    assert log["document_id"] == "doc-1"
    assert log["status"] == JOB_FINISHED


def test_runner_without_inference_credentials_fails_document(fake_db, tmp_path):
    _seed_document(fake_db)
    jobs = JobRegistry()
    pipeline = _pipeline(fake_db, InferenceClient(api_key=""), tmp_path)
    runner = pipeline_service.PipelineRunner(pipeline, jobs, thread_factory=InlineThread)

    runner.submit("job-2", "doc-1", "user-1", SOURCE)

    assert fake_db.rows("documents")["doc-1"]["status"] == models.STATUS_FAILED
    outcomes = jobs.snapshot("job-2")["outcomes"]
    assert all("GEMINI_API_KEY" in outcome["error"] for outcome in outcomes)


class _ThreadBoundModels:
    """``aio.models`` whose calls park a worker thread, like a blocking HTTP call with no deadline."""

    def __init__(self, check_seconds=0.0, generate_seconds=0.0):
        self.check_seconds = check_seconds
        self.generate_seconds = generate_seconds

    async def generate_content(self, **kwargs):
        is_model_check = kwargs["contents"] == PROBE_PROMPT
        seconds = self.check_seconds if is_model_check else self.generate_seconds
        if seconds:
            await asyncio.to_thread(time.sleep, seconds)
        if is_model_check:
            return SimpleNamespace(text="hello", usage_metadata=None)
        raise RuntimeError("backend unavailable")


def _thread_bound_client(**delays):
    genai_client = SimpleNamespace(aio=SimpleNamespace(models=_ThreadBoundModels(**delays)))
    return InferenceClient(candidates=["model-a", "model-b"], genai_client=genai_client)


def test_stuck_model_check_fails_run_within_timeout(fake_db, tmp_path):
    _seed_document(fake_db)
    pipeline = _pipeline(fake_db, _thread_bound_client(check_seconds=2.0), tmp_path, generator_timeout_seconds=0.2)

    started = time.monotonic()
    status, outcomes, error = pipeline.process_document("doc-1", "user-1", SOURCE)

    assert time.monotonic() - started < 1.5
    assert error is None
    assert status == models.STATUS_FAILED
    assert all("model resolution timed out" in outcome.error for outcome in outcomes)
    assert fake_db.rows("documents")["doc-1"]["status"] == models.STATUS_FAILED


def test_stuck_inference_threads_do_not_delay_status(fake_db, tmp_path):
    _seed_document(fake_db)
    pipeline = _pipeline(fake_db, _thread_bound_client(generate_seconds=2.0), tmp_path, generator_timeout_seconds=0.2)

    started = time.monotonic()
    status, outcomes, _error = pipeline.process_document("doc-1", "user-1", SOURCE)

    assert time.monotonic() - started < 1.5
    assert status == models.STATUS_FAILED
    assert [outcome.error for outcome in outcomes] == ["timed out after 0.2s"] * 4
    assert fake_db.rows("documents")["doc-1"]["status"] == models.STATUS_FAILED


def test_slow_artifact_write_is_not_cut_off_by_generator_timeout(fake_db, tmp_path, monkeypatch):
    _seed_document(fake_db)
    original_set_summary = artifacts_repo.set_summary

    def slow_set_summary(db, document_id, payload):
        time.sleep(0.5)
        return original_set_summary(db, document_id, payload)

    monkeypatch.setattr(artifacts_repo, "set_summary", slow_set_summary)
    inference = FakeInference({name: generation_error(name) for name in ("notes", "flashcards", "quiz")})
    pipeline = _pipeline(fake_db, inference, tmp_path, generator_timeout_seconds=0.2)

    status, outcomes, _error = pipeline.process_document("doc-1", "user-1", SOURCE)

    assert status == models.STATUS_COMPLETED
    assert outcomes[0].ok is True
    assert artifacts_repo.get_summary(fake_db, "doc-1")["content"]


def test_failed_artifact_write_counts_as_generator_failure(fake_db, tmp_path, monkeypatch):
    _seed_document(fake_db)

    def broken_set_notes(db, document_id, payload):
        raise RuntimeError("permission denied")

    monkeypatch.setattr(artifacts_repo, "set_notes", broken_set_notes)
    pipeline = _pipeline(fake_db, FakeInference(), tmp_path)

    status, outcomes, _error = pipeline.process_document("doc-1", "user-1", SOURCE)

    notes_outcome = outcomes[1]
    assert notes_outcome.ok is False
    assert notes_outcome.error == "could not save artifact: permission denied"
    assert status == models.STATUS_COMPLETED


class _SleepRecorder:
    def __init__(self):
        self.sleeps = []

    def time(self):
        return time.time()

    def sleep(self, seconds):
        self.sleeps.append(seconds)


def test_status_write_is_retried_with_backoff(fake_db, tmp_path, monkeypatch):
    _seed_document(fake_db)
    original_update = documents_repo.update_doc
    failures = {"left": 2}

    def flaky_update(db, document_id, updates):
        if failures["left"]:
            failures["left"] -= 1
            raise RuntimeError("deadline exceeded")
        return original_update(db, document_id, updates)

    monkeypatch.setattr(documents_repo, "update_doc", flaky_update)
    clock = _SleepRecorder()
    pipeline = pipeline_service.DocumentPipeline(
        db=fake_db,
        inference=FakeInference(),
        config=make_config(tmp_path, status_write_backoff_seconds=0.5),
        time_module=clock,
    )

    status, _outcomes, error = pipeline.process_document("doc-1", "user-1", SOURCE)

    assert error is None
    assert fake_db.rows("documents")["doc-1"]["status"] == status == models.STATUS_COMPLETED
    assert clock.sleeps == [0.5, 1.0]


def test_unrecorded_status_marks_job_as_error(fake_db, tmp_path, monkeypatch):
    _seed_document(fake_db)

    def failing_update(db, document_id, updates):
        raise RuntimeError("firestore unavailable")

    monkeypatch.setattr(documents_repo, "update_doc", failing_update)
    jobs = JobRegistry()
    runner = pipeline_service.PipelineRunner(_pipeline(fake_db, FakeInference(), tmp_path), jobs, thread_factory=InlineThread)

    runner.submit("job-3", "doc-1", "user-1", SOURCE)

    job = jobs.snapshot("job-3")
    assert job["status"] == JOB_ERROR
    assert job["error"] == "Could not record document status: firestore unavailable"
    assert fake_db.rows("documents")["doc-1"]["status"] == models.STATUS_PROCESSING
    assert job_logs_repo.get_job_log(fake_db, "job-3")["status"] == JOB_ERROR


def test_overlapping_regeneration_is_rejected(fake_db, tmp_path):
    _seed_document(fake_db, status=models.STATUS_COMPLETED)
    rejected = []

    async def first_response():
        try:
            await pipeline.regenerate_quiz("doc-1", "user-1", SOURCE, 5)
        except ConflictError as exc:
            rejected.append(exc.status_code)
        return quiz_json(5, prefix="First")

    inference = FakeInference({"quiz": first_response})
    pipeline = _pipeline(fake_db, inference, tmp_path)

    asyncio.run(pipeline.regenerate_quiz("doc-1", "user-1", SOURCE, 5))

    assert rejected == [409]
    stored = artifacts_repo.list_items(fake_db, artifacts_repo.QUIZ_QUESTIONS, "doc-1", "user-1")
    assert [question["question"] for question in stored] == [f"First {i}?" for i in range(5)]

    inference.responses["quiz"] = quiz_json(5, prefix="Second")
    asyncio.run(pipeline.regenerate_quiz("doc-1", "user-1", SOURCE, 5))

    stored = artifacts_repo.list_items(fake_db, artifacts_repo.QUIZ_QUESTIONS, "doc-1", "user-1")
    assert [question["question"] for question in stored] == [f"Second {i}?" for i in range(5)]


def test_replace_items_swaps_items_in_one_commit(fake_db, monkeypatch):
    old = pipeline_service.build_item_records([{"question": "Old?"}], "doc-1", "user-1", 1000.0)
    artifacts_repo.add_items(fake_db, artifacts_repo.QUIZ_QUESTIONS, old)
    batches = []
    original_batch = fake_db.batch

    def recording_batch():
        batch = original_batch()
        batches.append(batch)
        return batch

    monkeypatch.setattr(fake_db, "batch", recording_batch)
    new = pipeline_service.build_item_records([{"question": "A?"}, {"question": "B?"}], "doc-1", "user-1", 2000.0)

    replaced = artifacts_repo.replace_items(fake_db, artifacts_repo.QUIZ_QUESTIONS, "doc-1", "user-1", new)

    assert replaced == 1
    assert len(batches) == 1
    stored = artifacts_repo.list_items(fake_db, artifacts_repo.QUIZ_QUESTIONS, "doc-1", "user-1")
    assert [question["question"] for question in stored] == ["A?", "B?"]
