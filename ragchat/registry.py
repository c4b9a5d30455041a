from __future__ import annotations

import asyncio
from dataclasses import dataclass

from ragchat.backend import FileSearchBackend
from ragchat.errors import MissingUserError
from ragchat.logs import STORE_LOGGER


@dataclass(frozen=True)
class StoreHandle:
    name: str
    display_name: str
    user_id: str


class StoreRegistry:
    """One File Search store per user, created lazily.

    Concurrent callers for the same user share a single in-flight creation.
    """

    def __init__(self, backend: FileSearchBackend, display_prefix: str = "RAG-Chatbot-Store") -> None:
        self.backend = backend
        self.display_prefix = display_prefix
        self._stores: dict[str, StoreHandle] = {}
        self._pending: dict[str, asyncio.Future[StoreHandle]] = {}

    def get(self, user_id: str) -> StoreHandle | None:
        return self._stores.get(user_id)

    def store_name_for(self, user_id: str) -> str | None:
        handle = self._stores.get(user_id)
        return handle.name if handle else None

    async def resolve_or_create(self, user_id: str) -> StoreHandle:
        if not user_id:
            raise MissingUserError("resolving a file search store")

        handle = self._stores.get(user_id)
        if handle is not None:
            return handle

        pending = self._pending.get(user_id)
        if pending is not None:
            STORE_LOGGER.info("store_create_wait | user=%s", user_id)
            return await asyncio.shield(pending)

        future: asyncio.Future[StoreHandle] = asyncio.get_running_loop().create_future()
        self._pending[user_id] = future
        try:
            handle = await self._create(user_id)
        except BaseException as exc:
            if isinstance(exc, Exception):
                future.set_exception(exc)
                # Mark retrieved so waiter-less failures are not reported as unhandled.
                future.exception()
            else:
                future.cancel()
            raise
        else:
            self._stores[user_id] = handle
            future.set_result(handle)
            return handle
        finally:
            self._pending.pop(user_id, None)

    async def _create(self, user_id: str) -> StoreHandle:
        display_name = f"{self.display_prefix}-{user_id}"
        STORE_LOGGER.info("store_create_start | user=%s | display_name=%s", user_id, display_name)
        try:
            store = await self.backend.create_store(display_name)
        except Exception as exc:
            STORE_LOGGER.error("store_create_failed | user=%s | error=%s", user_id, exc)
            raise
        handle = StoreHandle(name=str(store.name), display_name=display_name, user_id=user_id)
        STORE_LOGGER.info(
            "store_created | user=%s | store=%s | note=in-memory only, files uploaded before a restart live in a previous store",
            user_id,
            handle.name,
        )
        return handle
