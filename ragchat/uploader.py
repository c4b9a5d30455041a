from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ragchat.backend import FileSearchBackend
from ragchat.errors import MissingUserError, UploadError, UploadTimeoutError, error_text
from ragchat.logs import UPLOAD_LOGGER
from ragchat.polling import ImportPollState, OperationObservation, Sleep, advance_import
from ragchat.records import (
    ERROR,
    PROCESSING,
    READY,
    UPLOADING,
    ProcessingRecord,
    ProcessingRecordTable,
    RecordKey,
    record_key,
)
from ragchat.registry import StoreRegistry
from ragchat.tempfiles import release_temp_file, write_temp_file
from ragchat.verifier import IndexVerifier, TaskSupervisor


DUPLICATE_MARKERS = ("already exists", "duplicate")

_DOCUMENT_NAME_PATHS = (
    ("document_name",),
    ("documentName",),
    ("file_search_document", "name"),
    ("fileSearchDocument", "name"),
    ("document", "name"),
    ("name",),
)


@dataclass
class UploadResult:
    success: bool
    file_name: str
    store_name: str | None
    is_duplicate: bool
    processing_status: str
    operation_name: str | None = None
    uploaded_at: datetime | None = None
    message: str | None = None


def _lookup(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def extract_document_name(response: Any) -> str | None:
    for path in _DOCUMENT_NAME_PATHS:
        value = response
        for key in path:
            value = _lookup(value, key)
        if isinstance(value, str) and value:
            return value
    return None


def observe_operation(operation: Any) -> OperationObservation:
    error = _lookup(operation, "error")
    if error:
        text = json.dumps(error, default=str) if isinstance(error, dict) else str(error)
        return OperationObservation(done=bool(_lookup(operation, "done")), error=text)
    return OperationObservation(done=bool(_lookup(operation, "done")))


def is_duplicate_error(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in DUPLICATE_MARKERS)


class UploadPipeline:
    def __init__(
        self,
        backend: FileSearchBackend,
        registry: StoreRegistry,
        records: ProcessingRecordTable,
        verifier: IndexVerifier,
        supervisor: TaskSupervisor,
        *,
        poll_interval_sec: float = 5.0,
        poll_max_attempts: int = 60,
        tmp_dir: str | None = None,
        mock_mode: bool = False,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.backend = backend
        self.registry = registry
        self.records = records
        self.verifier = verifier
        self.supervisor = supervisor
        self.poll_interval_sec = poll_interval_sec
        self.poll_max_attempts = max(1, int(poll_max_attempts))
        self.tmp_dir = tmp_dir or None
        self.mock_mode = mock_mode
        self.sleep = sleep

    async def upload(self, user_id: str, data: bytes, file_name: str, mime_type: str | None) -> UploadResult:
        if not user_id:
            raise MissingUserError("file upload")
        if self.mock_mode:
            UPLOAD_LOGGER.info("upload_mock | user=%s | file=%s | size_bytes=%s", user_id, file_name, len(data))
            return UploadResult(
                success=True,
                file_name=file_name,
                store_name=None,
                is_duplicate=False,
                processing_status=READY,
                message="Mock mode: file upload simulated",
            )

        key = record_key(user_id, file_name, len(data))
        existing = self.records.get(key)
        if existing is not None:
            UPLOAD_LOGGER.info(
                "upload_duplicate | user=%s | file=%s | status=%s",
                user_id,
                file_name,
                existing.status,
            )
            return self._duplicate(existing)

        store = await self.registry.resolve_or_create(user_id)

        # Second check: a concurrent upload of the same key may have won while the store resolved.
        record, created = self.records.insert(
            ProcessingRecord(user_id=user_id, file_name=file_name, size=len(data), store_name=store.name)
        )
        if not created:
            UPLOAD_LOGGER.info("upload_duplicate_concurrent | user=%s | file=%s", user_id, file_name)
            return self._duplicate(record)

        UPLOAD_LOGGER.info(
            "upload_start | user=%s | file=%s | mime=%s | size_bytes=%s | store=%s",
            user_id,
            file_name,
            mime_type,
            len(data),
            store.name,
        )
        temp_path = None
        try:
            temp_path = await asyncio.to_thread(write_temp_file, data, user_id, file_name, self.tmp_dir)
            operation = await self.backend.upload_document(store.name, temp_path, file_name, mime_type)
            UPLOAD_LOGGER.info("upload_operation_started | file=%s | operation=%s", file_name, _lookup(operation, "name"))
            self.records.transition(key, PROCESSING)
            operation = await self._wait_for_import(key, operation)
        except asyncio.CancelledError:
            release_temp_file(temp_path)
            self.records.transition(key, ERROR, error_message="Upload cancelled")
            raise
        except Exception as exc:
            release_temp_file(temp_path)
            message = error_text(exc)
            if is_duplicate_error(message):
                self.records.transition(key, READY)
                UPLOAD_LOGGER.info("upload_backend_duplicate | user=%s | file=%s | error=%s", user_id, file_name, message)
                return UploadResult(
                    success=True,
                    file_name=file_name,
                    store_name=store.name,
                    is_duplicate=True,
                    processing_status=READY,
                    uploaded_at=record.uploaded_at,
                    message="File already exists in the store",
                )
            self.records.transition(key, ERROR, error_message=message)
            UPLOAD_LOGGER.error("upload_failed | user=%s | file=%s | error=%s", user_id, file_name, message)
            if isinstance(exc, UploadError):
                raise
            raise UploadError(file_name, f"Upload failed: {message}") from exc

        document_name = extract_document_name(_lookup(operation, "response"))
        if document_name is None:
            UPLOAD_LOGGER.warning(
                "upload_no_document_name | file=%s | response=%r",
                file_name,
                _lookup(operation, "response"),
            )
        self.supervisor.spawn(
            self.verifier.verify(key, document_name, temp_path),
            name=f"verify:{user_id}:{file_name}",
        )
        UPLOAD_LOGGER.info(
            "upload_imported | user=%s | file=%s | store=%s | document=%s",
            user_id,
            file_name,
            store.name,
            document_name or "-",
        )
        return UploadResult(
            success=True,
            file_name=file_name,
            store_name=store.name,
            is_duplicate=False,
            processing_status=PROCESSING,
            operation_name=_lookup(operation, "name"),
            uploaded_at=record.uploaded_at,
        )

    async def _wait_for_import(self, key: RecordKey, operation: Any) -> Any:
        file_name = key[1]
        state = advance_import(
            ImportPollState(),
            observe_operation(operation),
            max_attempts=self.poll_max_attempts,
            counted=False,
        )
        while not state.finished:
            await self.sleep(self.poll_interval_sec)
            operation = await self.backend.refresh_operation(operation)
            state = advance_import(state, observe_operation(operation), max_attempts=self.poll_max_attempts)
            if not state.finished and state.attempts % 6 == 0:
                UPLOAD_LOGGER.info(
                    "upload_still_processing | file=%s | elapsed_sec=%.0f",
                    file_name,
                    state.attempts * self.poll_interval_sec,
                )

        if state.error:
            raise UploadError(file_name, f"Upload operation failed: {state.error}")
        if state.timed_out:
            raise UploadTimeoutError(
                file_name,
                f"Upload operation timed out after {state.attempts * self.poll_interval_sec:.0f} seconds",
            )
        return operation

    def _duplicate(self, record: ProcessingRecord) -> UploadResult:
        return UploadResult(
            success=True,
            file_name=record.file_name,
            store_name=record.store_name or self.registry.store_name_for(record.user_id),
            is_duplicate=True,
            processing_status=PROCESSING if record.status == UPLOADING else record.status,
            uploaded_at=record.uploaded_at,
            message=record.error_message if record.status == ERROR else "File already exists in the knowledge base",
        )
