from contextlib import aclosing

import pytest

from conftest import collect, make_settings
from fakes import ClosableStream, FakeAPIError, FakeBackend
from ragchat.orchestrator import QueryOrchestrator
from ragchat.records import ProcessingRecordTable
from ragchat.registry import StoreRegistry
from ragchat.services import build_services

FLASH = "gemini-2.5-flash"
PRO = "gemini-2.5-pro"


async def _ask(services, question="What is in my notes?", user="u1"):
    return await collect(await services.orchestrator.query(user, question))


@pytest.mark.asyncio
async def test_first_model_answers(services, backend):
    backend.streams[FLASH] = ["The notes ", "say hello."]

    assert await _ask(services) == "The notes say hello."
    assert backend.stream_calls == [FLASH]
    assert backend.created == ["RAG-Chatbot-Store-u1"]


@pytest.mark.asyncio
@pytest.mark.parametrize("code", [400, 404])
async def test_falls_back_to_next_model(services, backend, code):
    backend.streams[FLASH] = FakeAPIError(code, "model not usable")
    backend.streams[PRO] = ["from pro"]

    assert await _ask(services) == "from pro"
    assert backend.stream_calls == [FLASH, PRO]


@pytest.mark.asyncio
async def test_open_stream_records_tried_models(services, backend):
    backend.streams[FLASH] = FakeAPIError(404, "model not found")
    backend.streams[PRO] = ["from pro"]

    attempt = await services.orchestrator.open_stream("fileSearchStores/store-1", "hello")

    assert attempt.tried == [FLASH, PRO]
    assert attempt.current_model == PRO
    assert await collect(attempt.stream) == "from pro"


@pytest.mark.asyncio
async def test_open_stream_exhaustion_raises_last_error(services, backend):
    backend.streams[FLASH] = FakeAPIError(400, "bad request")
    backend.streams[PRO] = FakeAPIError(404, "gone")

    with pytest.raises(FakeAPIError) as excinfo:
        await services.orchestrator.open_stream("fileSearchStores/store-1", "hello")

    assert excinfo.value.code == 404


@pytest.mark.asyncio
async def test_lazy_first_chunk_error_still_falls_back(services, backend):
    backend.streams[FLASH] = [FakeAPIError(404, "model not found")]
    backend.streams[PRO] = ["from pro"]

    assert await _ask(services) == "from pro"
    assert backend.stream_calls == [FLASH, PRO]


@pytest.mark.asyncio
async def test_rate_limit_stops_fallback(services, backend):
    backend.streams[FLASH] = FakeAPIError(429, "RESOURCE_EXHAUSTED")

    text = await _ask(services)

    assert text.startswith("**Rate Limit Exceeded**")
    assert backend.stream_calls == [FLASH]


@pytest.mark.asyncio
async def test_other_error_is_unavailable_with_detail(services, backend):
    backend.streams[FLASH] = FakeAPIError(500, "internal failure")

    text = await _ask(services)

    assert text.startswith("**Service Temporarily Unavailable**")
    assert "500 internal failure" in text
    assert backend.stream_calls == [FLASH]


@pytest.mark.asyncio
async def test_all_models_missing(services, backend):
    backend.streams[FLASH] = FakeAPIError(404, "gone")
    backend.streams[PRO] = FakeAPIError(404, "gone too")

    text = await _ask(services)

    assert text.startswith("**Model Configuration Issue**")
    assert backend.stream_calls == [FLASH, PRO]


@pytest.mark.asyncio
async def test_no_candidate_models():
    backend = FakeBackend()
    records = ProcessingRecordTable()
    orchestrator = QueryOrchestrator(backend, StoreRegistry(backend), records, [])

    text = await collect(await orchestrator.query("u1", "hello"))

    assert "No available models found" in text
    assert backend.stream_calls == []


@pytest.mark.asyncio
async def test_anonymous_user_gets_auth_notice(services, backend):
    text = await _ask(services, user="")

    assert text.startswith("**Authentication Required**")
    assert backend.created == []
    assert backend.stream_calls == []


@pytest.mark.asyncio
async def test_mock_mode_notice(tmp_path):
    backend = FakeBackend()
    svc = build_services(make_settings(tmp_path, GOOGLE_API_KEY=""), backend=backend)

    text = await _ask(svc)

    assert text.startswith("**Mock Mode Active**")
    assert backend.created == []
    assert backend.stream_calls == []


@pytest.mark.asyncio
async def test_store_creation_failure_becomes_notice(services, backend):
    backend.create_error = FakeAPIError(503, "backend down")

    text = await _ask(services)

    assert "**Service Temporarily Unavailable**" in text
    assert "backend down" in text
    assert backend.stream_calls == []


@pytest.mark.asyncio
async def test_empty_store_without_uploads_suggests_uploading(services, backend):
    backend.streams[FLASH] = FakeAPIError(500, "File search store is empty")

    assert (await _ask(services)).startswith("**No Documents Uploaded**")


@pytest.mark.asyncio
async def test_empty_store_with_uploads_suggests_reupload(services, backend):
    await services.uploader.upload("u1", b"x" * 10, "notes.txt", "text/plain")
    await services.supervisor.wait_idle()
    backend.streams[FLASH] = FakeAPIError(500, "File search store is empty")

    assert (await _ask(services)).startswith("**File Access Issue**")


@pytest.mark.asyncio
async def test_query_allowed_while_files_are_processing(services, backend):
    result = await services.uploader.upload("u1", b"x" * 10, "notes.txt", "text/plain")
    assert result.processing_status == "processing"
    assert services.records.summary("u1").processing_count == 1

    assert await _ask(services) == "answer"
    await services.supervisor.wait_idle()


@pytest.mark.asyncio
async def test_mid_stream_error_appends_notice(services, backend):
    backend.streams[FLASH] = ["Partial answer", RuntimeError("connection reset")]

    text = await _ask(services)

    assert text.startswith("Partial answer\n\n**Service Temporarily Unavailable**")
    assert "connection reset" in text
    assert backend.stream_calls == [FLASH]


@pytest.mark.asyncio
async def test_closing_answer_closes_backend_stream(services, backend):
    source = ClosableStream(["one", "two", "three"])
    backend.streams[FLASH] = source

    stream = await services.orchestrator.query("u1", "hello")
    async with aclosing(stream) as texts:
        async for text in texts:
            assert text == "one"
            break

    assert source.closed is True
    assert source.pulled == 1
