from __future__ import annotations

import asyncio
from dataclasses import dataclass

from ragchat.backend import FileSearchBackend
from ragchat.config import Settings
from ragchat.orchestrator import QueryOrchestrator
from ragchat.polling import Sleep
from ragchat.records import ProcessingRecordTable
from ragchat.registry import StoreRegistry
from ragchat.uploader import UploadPipeline
from ragchat.validation import UploadRateLimiter
from ragchat.verifier import IndexVerifier, TaskSupervisor


@dataclass
class Services:
    settings: Settings
    backend: FileSearchBackend
    registry: StoreRegistry
    records: ProcessingRecordTable
    supervisor: TaskSupervisor
    verifier: IndexVerifier
    uploader: UploadPipeline
    orchestrator: QueryOrchestrator
    rate_limiter: UploadRateLimiter


def build_services(
    settings: Settings,
    backend: FileSearchBackend | None = None,
    sleep: Sleep = asyncio.sleep,
) -> Services:
    backend = backend or FileSearchBackend(settings)
    registry = StoreRegistry(backend, display_prefix=settings.store_display_prefix)
    records = ProcessingRecordTable()
    supervisor = TaskSupervisor()
    verifier = IndexVerifier(
        backend,
        records,
        interval_sec=settings.verify_poll_interval_sec,
        max_attempts=settings.verify_max_attempts,
        grace_attempts=settings.verify_grace_attempts,
        sleep=sleep,
    )
    uploader = UploadPipeline(
        backend,
        registry,
        records,
        verifier,
        supervisor,
        poll_interval_sec=settings.upload_poll_interval_sec,
        poll_max_attempts=settings.upload_poll_max_attempts,
        tmp_dir=settings.upload_tmp_dir,
        mock_mode=settings.mock_mode,
        sleep=sleep,
    )
    orchestrator = QueryOrchestrator(
        backend,
        registry,
        records,
        settings.candidate_models,
        mock_mode=settings.mock_mode,
        diagnostic_delay_sec=settings.mock_stream_delay_sec,
        sleep=sleep,
    )
    rate_limiter = UploadRateLimiter(
        max_uploads=settings.upload_rate_limit_max,
        window_sec=settings.upload_rate_limit_window_sec,
    )
    return Services(
        settings=settings,
        backend=backend,
        registry=registry,
        records=records,
        supervisor=supervisor,
        verifier=verifier,
        uploader=uploader,
        orchestrator=orchestrator,
        rate_limiter=rate_limiter,
    )
