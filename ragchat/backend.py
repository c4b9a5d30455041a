from __future__ import annotations

from pathlib import Path
from typing import Any, AsyncIterator

from google import genai
from google.genai import types

from ragchat.config import Settings
from ragchat.errors import BackendNotConfiguredError


class FileSearchBackend:
    """Thin async wrapper over the Gemini File Search API.

    The client is built on first use so the service can start (and run in mock
    mode) without an API key.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._client: genai.Client | None = None

    def _aio(self):
        if self.settings.mock_mode:
            raise BackendNotConfiguredError()
        if self._client is None:
            self._client = genai.Client(api_key=self.settings.google_api_key)
        return self._client.aio

    async def create_store(self, display_name: str) -> Any:
        return await self._aio().file_search_stores.create(config={"display_name": display_name})

    async def upload_document(self, store_name: str, path: Path, display_name: str, mime_type: str | None) -> Any:
        config: dict[str, Any] = {"display_name": display_name}
        if mime_type:
            config["mime_type"] = mime_type
        return await self._aio().file_search_stores.upload_to_file_search_store(
            file=str(path),
            file_search_store_name=store_name,
            config=config,
        )

    async def refresh_operation(self, operation: Any) -> Any:
        return await self._aio().operations.get(operation)

    async def get_document(self, document_name: str) -> Any:
        return await self._aio().file_search_stores.documents.get(name=document_name)

    async def stream_answer(self, model: str, store_name: str, question: str) -> AsyncIterator[Any]:
        config = types.GenerateContentConfig(
            tools=[
                types.Tool(
                    file_search=types.FileSearch(file_search_store_names=[store_name]),
                )
            ]
        )
        return await self._aio().models.generate_content_stream(
            model=model,
            contents=question,
            config=config,
        )
