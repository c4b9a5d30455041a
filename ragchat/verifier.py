from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Coroutine

import httpx

from ragchat.backend import FileSearchBackend
from ragchat.errors import MissingUserError, error_text, status_code_of
from ragchat.logs import VERIFY_LOGGER
from ragchat.polling import DocumentObservation, Sleep, VerifyPhase, VerifyState, advance_verification
from ragchat.records import ERROR, READY, ProcessingRecordTable, ProcessingStatus, RecordKey
from ragchat.tempfiles import release_temp_file


class TaskSupervisor:
    """Keeps references to detached background tasks so they can be awaited or cancelled."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            VERIFY_LOGGER.warning("task_cancelled | task=%s", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            VERIFY_LOGGER.error("task_failed | task=%s | error=%s", task.get_name(), exc, exc_info=exc)

    async def wait_idle(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


def is_transient_lookup_error(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    code = status_code_of(exc)
    if code is None:
        return True
    return code in (404, 408, 429) or code >= 500


def document_state(document: Any) -> str:
    raw = document.get("state") if isinstance(document, dict) else getattr(document, "state", None)
    raw = getattr(raw, "value", raw)
    text = str(raw or "").upper()
    if "ACTIVE" in text:
        return VerifyPhase.ACTIVE.value
    if "FAILED" in text:
        return VerifyPhase.FAILED.value
    return "PENDING"


def document_error(document: Any) -> str | None:
    raw = document.get("error") if isinstance(document, dict) else getattr(document, "error", None)
    if raw is None:
        return None
    if isinstance(raw, dict):
        return str(raw.get("message") or raw)
    return str(getattr(raw, "message", None) or raw)


class IndexVerifier:
    def __init__(
        self,
        backend: FileSearchBackend,
        records: ProcessingRecordTable,
        *,
        interval_sec: float = 2.0,
        max_attempts: int = 60,
        grace_attempts: int = 6,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.backend = backend
        self.records = records
        self.interval_sec = interval_sec
        self.max_attempts = max(1, int(max_attempts))
        self.grace_attempts = max(1, int(grace_attempts))
        self.sleep = sleep

    async def verify(self, key: RecordKey, document_name: str | None, temp_path: Path | None = None) -> VerifyState:
        user_id, file_name, _ = key
        state = VerifyState()
        VERIFY_LOGGER.info(
            "verify_start | user=%s | file=%s | document=%s",
            user_id,
            file_name,
            document_name or "-",
        )
        try:
            while not state.finished:
                await self.sleep(self.interval_sec)
                observation = await self._observe(document_name) if document_name else None
                state = advance_verification(
                    state,
                    observation,
                    max_attempts=self.max_attempts,
                    grace_attempts=self.grace_attempts,
                )
            self._apply(key, state, document_name)
            return state
        finally:
            release_temp_file(temp_path)

    async def _observe(self, document_name: str) -> DocumentObservation:
        try:
            document = await self.backend.get_document(document_name)
        except Exception as exc:
            if is_transient_lookup_error(exc):
                VERIFY_LOGGER.info("verify_lookup_retry | document=%s | error=%s", document_name, exc)
                return DocumentObservation()
            VERIFY_LOGGER.error("verify_lookup_failed | document=%s | error=%s", document_name, exc)
            return DocumentObservation(fatal=True, error=error_text(exc))
        return DocumentObservation(state=document_state(document), error=document_error(document))

    def _apply(self, key: RecordKey, state: VerifyState, document_name: str | None) -> None:
        user_id, file_name, _ = key
        if state.phase is VerifyPhase.ACTIVE:
            self.records.transition(key, READY, document_name=document_name)
            VERIFY_LOGGER.info(
                "verify_ready | user=%s | file=%s | attempts=%s | optimistic=%s",
                user_id,
                file_name,
                state.attempts,
                state.optimistic,
            )
            return
        self.records.transition(key, ERROR, document_name=document_name, error_message=state.error)
        VERIFY_LOGGER.warning(
            "verify_%s | user=%s | file=%s | attempts=%s | error=%s",
            state.phase.value.lower(),
            user_id,
            file_name,
            state.attempts,
            state.error,
        )


def get_processing_status(records: ProcessingRecordTable, user_id: str) -> ProcessingStatus:
    if not user_id:
        raise MissingUserError("checking file status")
    return records.summary(user_id)
