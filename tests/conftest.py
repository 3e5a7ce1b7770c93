import io
import json
import threading
import uuid

import pytest
from docx import Document

from study_assistant import create_app
from study_assistant.config import AppConfig
from study_assistant.errors import GenerationError
from study_assistant.services import prompt_registry
from study_assistant.services.blob_storage import LocalBlobStore
from study_assistant.services.inference_service import InferenceResult, ModelResolver


class FakeSnapshot:
    def __init__(self, ref, data):
        self.reference = ref
        self.id = ref.id
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return dict(self._data) if self._data is not None else None


class FakeDocRef:
    def __init__(self, db, collection_name, doc_id):
        self._db = db
        self.collection_name = collection_name
        self.id = doc_id

    def _rows(self):
        return self._db.data.setdefault(self.collection_name, {})

    def get(self, transaction=None):
        with self._db.lock:
            data = self._rows().get(self.id)
            return FakeSnapshot(self, dict(data) if data is not None else None)

    def set(self, data, merge=False):
        with self._db.lock:
            rows = self._rows()
            if merge and self.id in rows:
                rows[self.id].update(data)
            else:
                rows[self.id] = dict(data)

    def update(self, updates):
        with self._db.lock:
            rows = self._rows()
            if self.id not in rows:
                raise KeyError(f"No document to update: {self.collection_name}/{self.id}")
            rows[self.id].update(updates)

    def delete(self):
        with self._db.lock:
            self._rows().pop(self.id, None)


class FakeQuery:
    """Positional-only ``where`` so repository filters take the fallback path."""

    def __init__(self, db, collection_name, filters=(), limit=None):
        self._db = db
        self.collection_name = collection_name
        self._filters = list(filters)
        self._limit = limit

    def where(self, *args, **kwargs):
        if "filter" in kwargs:
            raise TypeError("filter keyword unsupported")
        return FakeQuery(self._db, self.collection_name, self._filters + [args], self._limit)

    def limit(self, count):
        return FakeQuery(self._db, self.collection_name, self._filters, count)

    def _matches(self, row):
        for field_path, op_string, value in self._filters:
            current = row.get(field_path)
            if op_string == "==" and current != value:
                return False
            if op_string == ">=" and (current is None or current < value):
                return False
        return True

    def stream(self):
        with self._db.lock:
            rows = list(self._db.data.get(self.collection_name, {}).items())
        snapshots = [
            FakeSnapshot(FakeDocRef(self._db, self.collection_name, doc_id), dict(row))
            for doc_id, row in rows
            if self._matches(row)
        ]
        if self._limit:
            snapshots = snapshots[:self._limit]
        return iter(snapshots)


class FakeCollection(FakeQuery):
    def __init__(self, db, collection_name):
        super().__init__(db, collection_name)

    def document(self, doc_id=None):
        return FakeDocRef(self._db, self.collection_name, doc_id or uuid.uuid4().hex[:20])

    def add(self, data):
        ref = self.document()
        ref.set(data)
        return None, ref


class FakeBatch:
    def __init__(self):
        self._ops = []

    def set(self, ref, data, merge=False):
        self._ops.append(lambda: ref.set(data, merge=merge))

    def delete(self, ref):
        self._ops.append(ref.delete)

    def commit(self):
        for op in self._ops:
            op()
        self._ops = []


class FakeTransaction(FakeBatch):
    """Applies writes when the transactional function returns."""


class FakeFirestoreModule:
    """Stands in for ``firebase_admin.firestore``: runs the function, then commits."""

    @staticmethod
    def transactional(fn):
        def run(transaction, *args, **kwargs):
            result = fn(transaction, *args, **kwargs)
            transaction.commit()
            return result
        return run


class FakeFirestore:
    def __init__(self):
        self.data = {}
        self.lock = threading.RLock()

    def collection(self, name):
        return FakeCollection(self, name)

    def batch(self):
        return FakeBatch()

    def transaction(self):
        return FakeTransaction()

    def rows(self, collection_name):
        with self.lock:
            return {doc_id: dict(row) for doc_id, row in self.data.get(collection_name, {}).items()}


class FakeAuth:
    """Accepts any bearer token of the form ``user-<id>``; uid is the token itself."""

    def verify_id_token(self, token):
        if not token.startswith("user-"):
            raise ValueError("invalid token")
        return {"uid": token, "email": f"{token}@example.com"}


GENERATOR_BY_SYSTEM = {
    prompt_registry.SYSTEM_SUMMARY: "summary",
    prompt_registry.SYSTEM_NOTES: "notes",
    prompt_registry.SYSTEM_FLASHCARDS: "flashcards",
    prompt_registry.SYSTEM_QUIZ: "quiz",
    prompt_registry.SYSTEM_QA: "qa",
    prompt_registry.SYSTEM_ANSWER_CHECK: "answer_check",
}


def flashcards_json(count, prefix="Term"):
    return json.dumps({
        "flashcards": [{"question": f"What is {prefix} {i}?", "answer": f"{prefix} {i} is a concept."} for i in range(count)]
    })


def quiz_json(count, prefix="Question"):
    return json.dumps({
        "questions": [
            {
                "question": f"{prefix} {i}?",
                "options": [f"{prefix} {i} option {letter}" for letter in "ABCD"],
                "correctAnswer": i % 4,
                "explanation": f"Because of reason {i}.",
            }
            for i in range(count)
        ]
    })


def default_responses():
    return {
        "summary": "This lecture covers photosynthesis and cellular respiration.",
        "notes": "# Photosynthesis\n\n## Light reactions\n- Chlorophyll absorbs **light**\n\n## Key Takeaways\n- Plants make sugar",
        "flashcards": flashcards_json(10),
        "quiz": quiz_json(10),
        "qa": "Chlorophyll absorbs light.",
        "answer_check": '{"isCorrect": true, "feedback": "Nice work."}',
    }


async def _available(_model_name):
    return None


class FakeInference:
    """Scripted stand-in for ``InferenceClient``.

    ``responses`` maps a generator name to a string, an exception instance
    (raised), or an ``async`` callable returning a string.
    """

    def __init__(self, responses=None, model="gemini-2.5-flash"):
        self.responses = dict(default_responses())
        self.responses.update(responses or {})
        self.model = model
        self.calls = []
        self.resolver = ModelResolver(_available, [model])
        self.ready = True

    async def resolve_model(self):
        return await self.resolver.resolve()

    async def generate(self, prompt, *, media_url="", media_mime_type="video/*", system_instruction=None, max_output_tokens=8192):
        name = GENERATOR_BY_SYSTEM.get(system_instruction, "unknown")
        self.calls.append({"name": name, "prompt": prompt, "media_url": media_url})
        response = self.responses.get(name, "")
        if isinstance(response, Exception):
            raise response
        if callable(response):
            response = await response()
        return InferenceResult(text=response, model=self.model)


class InlineThread:
    """Thread stand-in that runs its target synchronously on ``start()``."""

    def __init__(self, target=None, args=(), kwargs=None, name=None, daemon=None):
        self._target = target
        self._args = args
        self._kwargs = kwargs or {}
        self.name = name

    def start(self):
        self._target(*self._args, **self._kwargs)


def build_text_pdf(page_texts):
    """Assemble a minimal PDF with one Helvetica text line per page."""
    page_ids = [4 + 2 * index for index in range(len(page_texts))]
    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        f"<< /Type /Pages /Kids [{' '.join(f'{pid} 0 R' for pid in page_ids)}] /Count {len(page_texts)} >>".encode(),
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]
    for page_id, text in zip(page_ids, page_texts):
        objects.append(
            f"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
            f"/Resources << /Font << /F1 3 0 R >> >> /Contents {page_id + 1} 0 R >>".encode()
        )
        escaped = text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")
        stream = f"BT /F1 12 Tf 72 720 Td ({escaped}) Tj ET".encode()
        objects.append(f"<< /Length {len(stream)} >>\nstream\n".encode() + stream + b"\nendstream")

    out = bytearray(b"%PDF-1.4\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += f"{number} 0 obj\n".encode() + body + b"\nendobj\n"
    xref_pos = len(out)
    out += f"xref\n0 {len(objects) + 1}\n".encode()
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += f"{offset:010d} 00000 n \n".encode()
    out += f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\nstartxref\n{xref_pos}\n%%EOF\n".encode()
    return bytes(out)


def build_docx(paragraphs):
    doc = Document()
    for text in paragraphs:
        doc.add_paragraph(text)
    buffer = io.BytesIO()
    doc.save(buffer)
    return buffer.getvalue()


def make_config(tmp_path, **overrides):
    values = dict(
        flask_secret_key="test-secret",
        runtime_env="test",
        gemini_api_key="",
        model_candidates=("gemini-2.5-flash",),
        upload_folder=str(tmp_path / "uploads"),
        blob_backend="local",
        generator_timeout_seconds=5.0,
        sentry_dsn="",
        youtube_daily_limit=3,
        upload_rate_limit_max_requests=10,
        qa_rate_limit_max_requests=20,
        rate_limit_firestore_enabled=False,
        status_write_backoff_seconds=0.0,
    )
    values.update(overrides)
    return AppConfig(**values)


@pytest.fixture()
def fake_db():
    return FakeFirestore()


@pytest.fixture()
def fake_inference():
    return FakeInference()


@pytest.fixture()
def config(tmp_path):
    return make_config(tmp_path)


@pytest.fixture()
def app(config, fake_db, fake_inference):
    flask_app = create_app(
        config,
        db=fake_db,
        auth_module=FakeAuth(),
        blob_store=LocalBlobStore(config.upload_folder),
        inference=fake_inference,
        thread_factory=InlineThread,
    )
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture()
def client(app):
    with app.test_client() as test_client:
        yield test_client


def auth_header(uid="user-1"):
    return {"Authorization": f"Bearer {uid}"}


def generation_error(name):
    return GenerationError(f"{name} backend unavailable", operation=name)
