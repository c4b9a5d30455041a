from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from ragchat.errors import RecordTransitionError


UPLOADING = "uploading"
PROCESSING = "processing"
READY = "ready"
ERROR = "error"

_ORDER = {UPLOADING: 0, PROCESSING: 1, READY: 2, ERROR: 2}
TERMINAL = {READY, ERROR}
IN_FLIGHT = {UPLOADING, PROCESSING}

RecordKey = tuple[str, str, int]


def record_key(user_id: str, file_name: str, size: int) -> RecordKey:
    return (user_id, file_name, size)


@dataclass
class ProcessingRecord:
    user_id: str
    file_name: str
    size: int
    store_name: str | None
    status: str = UPLOADING
    uploaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    document_name: str | None = None
    error_message: str | None = None

    @property
    def key(self) -> RecordKey:
        return record_key(self.user_id, self.file_name, self.size)


@dataclass
class ProcessingStatus:
    files: list[ProcessingRecord]
    processing_count: int
    ready_count: int
    error_count: int

    @property
    def total_files(self) -> int:
        return len(self.files)

    @property
    def all_ready(self) -> bool:
        return self.total_files > 0 and self.processing_count == 0 and self.error_count == 0


class ProcessingRecordTable:
    def __init__(self) -> None:
        self._records: dict[RecordKey, ProcessingRecord] = {}
        self._lock = threading.Lock()

    def get(self, key: RecordKey) -> ProcessingRecord | None:
        with self._lock:
            record = self._records.get(key)
            return replace(record) if record else None

    def insert(self, record: ProcessingRecord) -> tuple[ProcessingRecord, bool]:
        """Insert ``record`` unless a record already holds its key.

        Returns the record now stored under the key and whether it was inserted.
        Records are never replaced, so a key in ``error`` stays in ``error``.
        """
        with self._lock:
            existing = self._records.get(record.key)
            if existing is not None:
                return replace(existing), False
            self._records[record.key] = record
            return replace(record), True

    def transition(self, key: RecordKey, status: str, **fields) -> ProcessingRecord:
        with self._lock:
            record = self._records[key]
            if record.status in TERMINAL or _ORDER[status] <= _ORDER[record.status]:
                raise RecordTransitionError(key, record.status, status)
            record.status = status
            for k, v in fields.items():
                setattr(record, k, v)
            return replace(record)

    def snapshot(self, user_id: str) -> list[ProcessingRecord]:
        with self._lock:
            return [replace(r) for r in self._records.values() if r.user_id == user_id]

    def summary(self, user_id: str) -> ProcessingStatus:
        files = self.snapshot(user_id)
        return ProcessingStatus(
            files=files,
            processing_count=sum(1 for f in files if f.status in IN_FLIGHT),
            ready_count=sum(1 for f in files if f.status == READY),
            error_count=sum(1 for f in files if f.status == ERROR),
        )

    def has_uploaded_files(self, user_id: str | None = None) -> bool:
        return self.uploaded_files_count(user_id) > 0

    def uploaded_files_count(self, user_id: str | None = None) -> int:
        with self._lock:
            if not user_id:
                return len(self._records)
            return sum(1 for r in self._records.values() if r.user_id == user_id)
