import asyncio

import pytest

from fakes import FakeAPIError, FakeBackend
from ragchat.errors import MissingUserError
from ragchat.registry import StoreRegistry


@pytest.mark.asyncio
async def test_concurrent_resolution_creates_one_store():
    backend = FakeBackend()
    registry = StoreRegistry(backend)

    handles = await asyncio.gather(*(registry.resolve_or_create("u1") for _ in range(10)))

    assert backend.created == ["RAG-Chatbot-Store-u1"]
    assert {h.name for h in handles} == {"fileSearchStores/store-1"}
    assert registry.get("u1") is handles[0]


@pytest.mark.asyncio
async def test_cached_handle_skips_backend():
    backend = FakeBackend()
    registry = StoreRegistry(backend, display_prefix="Docs")

    first = await registry.resolve_or_create("u1")
    second = await registry.resolve_or_create("u1")

    assert first is second
    assert backend.created == ["Docs-u1"]
    assert registry.store_name_for("u1") == first.name


@pytest.mark.asyncio
async def test_users_get_separate_stores():
    backend = FakeBackend()
    registry = StoreRegistry(backend)

    a, b = await asyncio.gather(registry.resolve_or_create("alice"), registry.resolve_or_create("bob"))

    assert a.name != b.name
    assert a.user_id == "alice"
    assert b.display_name == "RAG-Chatbot-Store-bob"


@pytest.mark.asyncio
async def test_failed_creation_is_not_cached_and_retries():
    backend = FakeBackend()
    backend.create_error = FakeAPIError(500, "backend down")
    registry = StoreRegistry(backend)

    results = await asyncio.gather(
        registry.resolve_or_create("u1"),
        registry.resolve_or_create("u1"),
        return_exceptions=True,
    )

    assert all(isinstance(r, FakeAPIError) for r in results)
    assert len(backend.created) == 1
    assert registry.get("u1") is None

    backend.create_error = None
    handle = await registry.resolve_or_create("u1")
    assert handle.name == "fileSearchStores/store-2"


@pytest.mark.asyncio
async def test_anonymous_user_rejected():
    registry = StoreRegistry(FakeBackend())
    with pytest.raises(MissingUserError):
        await registry.resolve_or_create("")
