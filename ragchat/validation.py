from __future__ import annotations

import re
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable


MAX_FILENAME_LENGTH = 255
ALLOWED_EXTENSIONS = ("pdf", "txt", "md", "doc", "docx", "csv", "xls", "xlsx")
ALLOWED_MIME_TYPES = {
    "application/pdf",
    "text/plain",
    "text/markdown",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/csv",
    "application/vnd.ms-excel",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}
SUSPICIOUS_PATTERNS = (
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
)


@dataclass
class ValidationResult:
    valid: bool
    error: str | None = None


def validate_message(message: Any, max_length: int = 10000) -> ValidationResult:
    if not isinstance(message, str):
        return ValidationResult(False, "Message must be a string")
    if not message.strip():
        return ValidationResult(False, "Message cannot be empty")
    if len(message) > max_length:
        return ValidationResult(False, f"Message exceeds maximum length of {max_length} characters")
    for pattern in SUSPICIOUS_PATTERNS:
        if pattern.search(message):
            return ValidationResult(False, "Message contains potentially unsafe content")
    return ValidationResult(True)


def sanitize_message(message: str) -> str:
    return message.replace("\0", "").strip()


def validate_file(file_name: str | None, size: int, mime_type: str | None, max_size: int = 10 * 1024 * 1024) -> ValidationResult:
    if not file_name:
        return ValidationResult(False, "No file provided")
    if size > max_size:
        return ValidationResult(
            False,
            f"File size ({size / (1024 * 1024):.2f} MB) exceeds the maximum allowed size of "
            f"{max_size / (1024 * 1024):.0f} MB",
        )
    if len(file_name) > MAX_FILENAME_LENGTH:
        return ValidationResult(False, f"Filename exceeds maximum length of {MAX_FILENAME_LENGTH} characters")
    extension = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else ""
    if extension not in ALLOWED_EXTENSIONS:
        return ValidationResult(False, f"File type not allowed. Allowed types: {', '.join(ALLOWED_EXTENSIONS)}")
    if mime_type and mime_type not in ALLOWED_MIME_TYPES:
        return ValidationResult(False, "File type not allowed")
    return ValidationResult(True)


def sanitize_filename(file_name: str) -> str:
    return re.sub(r'[<>:"|?*]', "_", re.sub(r"[\\/]", "_", file_name)).strip()


class UploadRateLimiter:
    """Sliding-window limit on successful uploads per user. In-memory only."""

    def __init__(self, max_uploads: int = 5, window_sec: float = 60.0, clock: Callable[[], float] = time.monotonic) -> None:
        self.max_uploads = max_uploads
        self.window_sec = window_sec
        self.clock = clock
        self._stamps: dict[str, deque[float]] = {}
        self._lock = threading.Lock()

    @property
    def tracked_users(self) -> int:
        with self._lock:
            return len(self._stamps)

    def _prune(self, user_id: str, now: float) -> deque[float]:
        stamps = self._stamps.get(user_id)
        if stamps is None:
            return deque()
        while stamps and now - stamps[0] >= self.window_sec:
            stamps.popleft()
        if not stamps:
            del self._stamps[user_id]
        return stamps

    def check(self, user_id: str) -> float | None:
        """Seconds until the next upload is allowed, or None when allowed now."""
        with self._lock:
            now = self.clock()
            stamps = self._prune(user_id, now)
            if len(stamps) < self.max_uploads:
                return None
            return max(0.0, self.window_sec - (now - stamps[0]))

    def record(self, user_id: str) -> None:
        with self._lock:
            now = self.clock()
            stamps = self._prune(user_id, now)
            stamps.append(now)
            self._stamps[user_id] = stamps
