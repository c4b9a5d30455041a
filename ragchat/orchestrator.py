from __future__ import annotations

import asyncio
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

from ragchat.backend import FileSearchBackend
from ragchat.diagnostics import DiagnosticKind, classify, diagnostic_stream, message_for
from ragchat.errors import NoCandidateModelsError, error_text, status_code_of
from ragchat.logs import QUERY_LOGGER
from ragchat.normalizer import close_stream, normalize_stream
from ragchat.polling import Sleep
from ragchat.records import ProcessingRecordTable
from ragchat.registry import StoreRegistry


NEXT_CANDIDATE_CODES = (400, 404)
RATE_LIMIT_CODE = 429


@dataclass
class GenerationAttempt:
    models: list[str]
    index: int = 0
    stream: AsyncIterator[Any] | None = None
    error: BaseException | None = None
    tried: list[str] = field(default_factory=list)

    @property
    def current_model(self) -> str | None:
        return self.models[self.index] if self.index < len(self.models) else None


async def _empty() -> AsyncIterator[Any]:
    return
    yield


async def _chain(first: Any, rest: AsyncIterator[Any]) -> AsyncIterator[Any]:
    try:
        yield first
        async for chunk in rest:
            yield chunk
    finally:
        await close_stream(rest)


async def prime_stream(stream: Any) -> AsyncIterator[Any]:
    """Pull the first chunk so errors the backend raises lazily surface here."""
    iterator = stream.__aiter__()
    try:
        first = await iterator.__anext__()
    except StopAsyncIteration:
        return _empty()
    return _chain(first, iterator)


class QueryOrchestrator:
    def __init__(
        self,
        backend: FileSearchBackend,
        registry: StoreRegistry,
        records: ProcessingRecordTable,
        models: list[str],
        *,
        mock_mode: bool = False,
        diagnostic_delay_sec: float = 0.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.backend = backend
        self.registry = registry
        self.records = records
        self.models = list(models)
        self.mock_mode = mock_mode
        self.diagnostic_delay_sec = diagnostic_delay_sec
        self.sleep = sleep

    async def query(self, user_id: str, question: str) -> AsyncIterator[str]:
        if not user_id:
            QUERY_LOGGER.warning("query_rejected | reason=missing_user")
            return self.diagnostic(DiagnosticKind.AUTH_REQUIRED)
        if self.mock_mode:
            return self.diagnostic(DiagnosticKind.MOCK)

        try:
            store = await self.registry.resolve_or_create(user_id)
            self._log_tracked_files(user_id, store.name)
            attempt = await self.open_stream(store.name, question)
        except Exception as exc:
            return self._failure(user_id, exc)

        return self._answer(user_id, attempt)

    def diagnostic(self, kind: DiagnosticKind, detail: str = "") -> AsyncIterator[str]:
        return diagnostic_stream(message_for(kind, detail), self.diagnostic_delay_sec, self.sleep)

    async def open_stream(self, store_name: str, question: str) -> GenerationAttempt:
        attempt = GenerationAttempt(models=list(self.models))
        while attempt.current_model is not None:
            model = attempt.current_model
            attempt.tried.append(model)
            QUERY_LOGGER.info("generate_attempt | model=%s | store=%s", model, store_name)
            try:
                raw = await self.backend.stream_answer(model, store_name, question)
                attempt.stream = await prime_stream(raw)
            except Exception as exc:
                attempt.error = exc
                code = status_code_of(exc)
                if code in NEXT_CANDIDATE_CODES:
                    QUERY_LOGGER.warning("generate_next_candidate | model=%s | status=%s | error=%s", model, code, exc)
                    attempt.index += 1
                    continue
                if code == RATE_LIMIT_CODE:
                    QUERY_LOGGER.error("generate_rate_limited | model=%s", model)
                raise
            QUERY_LOGGER.info(
                "generate_streaming | model=%s | store=%s | tried=%s",
                model,
                store_name,
                ",".join(attempt.tried),
            )
            return attempt

        QUERY_LOGGER.error(
            "generate_exhausted | store=%s | tried=%s | error=%s",
            store_name,
            ",".join(attempt.tried) or "-",
            attempt.error,
        )
        if attempt.error is not None:
            raise attempt.error
        raise NoCandidateModelsError()

    async def _answer(self, user_id: str, attempt: GenerationAttempt) -> AsyncIterator[str]:
        emitted = False
        try:
            async with aclosing(normalize_stream(attempt.stream, label=attempt.current_model or "")) as texts:
                async for text in texts:
                    emitted = True
                    yield text
        except Exception as exc:
            QUERY_LOGGER.error(
                "stream_interrupted | user=%s | model=%s | error=%s",
                user_id,
                attempt.current_model,
                exc,
                exc_info=True,
            )
            kind = classify(exc, has_documents=self.records.has_uploaded_files(user_id))
            notice = message_for(kind, error_text(exc))
            yield f"\n\n{notice}" if emitted else notice

    def _failure(self, user_id: str, exc: Exception) -> AsyncIterator[str]:
        kind = classify(exc, has_documents=self.records.has_uploaded_files(user_id))
        if kind is DiagnosticKind.UNAVAILABLE:
            QUERY_LOGGER.error("query_failed | user=%s | error=%s", user_id, exc, exc_info=True)
        else:
            QUERY_LOGGER.warning("query_diagnostic | user=%s | kind=%s | error=%s", user_id, kind.value, exc)
        return self.diagnostic(kind, error_text(exc))

    def _log_tracked_files(self, user_id: str, store_name: str) -> None:
        tracked = self.records.snapshot(user_id)
        if not tracked:
            QUERY_LOGGER.info(
                "query_no_tracked_files | user=%s | store=%s | note=normal after restart, backend decides",
                user_id,
                store_name,
            )
            return
        in_store = [r for r in tracked if r.store_name == store_name]
        QUERY_LOGGER.info(
            "query_tracked_files | user=%s | store=%s | tracked=%s | in_current_store=%s",
            user_id,
            store_name,
            len(tracked),
            len(in_store),
        )
