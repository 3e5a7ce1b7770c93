"""Gemini inference client and model resolution."""

import logging
import threading
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, Optional

from google import genai
from google.genai import types

from study_assistant.errors import ConfigurationError, ModelUnavailableError
from study_assistant.logging_config import log_event

PROBE_PROMPT = 'Say hello'
DEFAULT_MEDIA_MIME_TYPE = 'video/*'


@dataclass(frozen=True)
class InferenceResult:
    text: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    usage_reported: bool = False


class ModelResolver:
    """Finds the first usable model among ``candidates`` and remembers it.

    Candidates are probed in preference order with the coroutine
    ``probe_fn(model_name)``, which raises when the model cannot serve
    requests. The first success is memoized until ``reset()``; when every
    candidate fails the resolver raises ``ModelUnavailableError`` and stays
    unresolved so a later call retries. Probes run on the caller's event loop,
    so a caller-side timeout cancels an in-flight probe.
    """

    def __init__(self, probe_fn: Callable[[str], Awaitable[object]], candidates: Iterable[str]):
        self._probe_fn = probe_fn
        self.candidates = tuple(candidates)
        self._resolved: Optional[str] = None
        self._lock = threading.Lock()
        self.last_errors: Dict[str, str] = {}

    @property
    def resolved_model(self) -> Optional[str]:
        return self._resolved

    async def resolve(self) -> str:
        resolved = self._resolved
        if resolved:
            return resolved
        errors = {}
        for model_name in self.candidates:
            try:
                await self._probe_fn(model_name)
            except Exception as exc:
                errors[model_name] = str(exc)[:300] or exc.__class__.__name__
                log_event(logging.WARNING, 'model_probe_failed', model=model_name, error=errors[model_name])
                continue
            with self._lock:
                self._resolved = model_name
                self.last_errors = errors
            log_event(logging.INFO, 'model_resolved', model=model_name, skipped=list(errors))
            return model_name
        with self._lock:
            self.last_errors = errors
        raise ModelUnavailableError(
            'No inference model is currently available.',
            context={'candidates': list(self.candidates), 'errors': errors},
        )

    def reset(self) -> None:
        with self._lock:
            self._resolved = None
            self.last_errors = {}


class InferenceClient:
    def __init__(
        self,
        api_key: str = '',
        candidates: Iterable[str] = (),
        *,
        genai_client=None,
        temperature: float = 0.7,
        request_timeout_seconds: Optional[float] = None,
    ):
        if genai_client is None and api_key:
            http_options = None
            if request_timeout_seconds:
                # HttpOptions.timeout is in milliseconds
                http_options = types.HttpOptions(timeout=int(request_timeout_seconds * 1000))
            genai_client = genai.Client(api_key=api_key, http_options=http_options)
        self._client = genai_client
        self.temperature = temperature
        self.resolver = ModelResolver(self._probe_model, candidates)

    @property
    def ready(self) -> bool:
        return self._client is not None

    def _require_client(self):
        if self._client is None:
            raise ConfigurationError('GEMINI_API_KEY is not set; AI processing is disabled.')
        return self._client

    async def _probe_model(self, model_name: str):
        client = self._require_client()
        return await client.aio.models.generate_content(
            model=model_name,
            contents=PROBE_PROMPT,
            config=types.GenerateContentConfig(max_output_tokens=32),
        )

    async def resolve_model(self) -> str:
        self._require_client()
        return await self.resolver.resolve()

    async def generate(
        self,
        prompt: str,
        *,
        media_url: str = '',
        media_mime_type: str = DEFAULT_MEDIA_MIME_TYPE,
        system_instruction: Optional[str] = None,
        max_output_tokens: int = 8192,
    ) -> InferenceResult:
        client = self._require_client()
        model_name = await self.resolve_model()
        parts = []
        if media_url:
            parts.append(types.Part.from_uri(file_uri=media_url, mime_type=media_mime_type))
        parts.append(types.Part.from_text(text=prompt))
        response = await client.aio.models.generate_content(
            model=model_name,
            contents=[types.Content(role='user', parts=parts)],
            config=types.GenerateContentConfig(
                max_output_tokens=max_output_tokens,
                temperature=self.temperature,
                system_instruction=system_instruction,
            ),
        )
        usage = getattr(response, 'usage_metadata', None)
        input_tokens = int(getattr(usage, 'prompt_token_count', 0) or 0) if usage else 0
        output_tokens = int(getattr(usage, 'candidates_token_count', 0) or 0) if usage else 0
        if usage and not output_tokens:
            total = int(getattr(usage, 'total_token_count', 0) or 0)
            output_tokens = max(0, total - input_tokens)
        return InferenceResult(
            text=response.text or '',
            model=model_name,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            usage_reported=usage is not None,
        )
