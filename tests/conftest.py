"""
Pytest configuration for the ragchat test suite.

Log files go to a throwaway directory; async tests use pytest-asyncio markers.
"""
import os
import tempfile

os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="ragchat-logs-"))

import pytest

from fakes import FakeBackend, SleepRecorder
from ragchat.config import Settings
from ragchat.services import build_services


def make_settings(tmp_path, **overrides) -> Settings:
    values = {
        "GOOGLE_API_KEY": "test-key",
        "UPLOAD_TMP_DIR": str(tmp_path / "uploads"),
        "MOCK_STREAM_DELAY_SEC": 0,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def services(tmp_path, backend, sleeper):
    return build_services(make_settings(tmp_path), backend=backend, sleep=sleeper)


async def collect(stream) -> str:
    return "".join([piece async for piece in stream])
