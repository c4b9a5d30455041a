"""Turns Gemini streaming chunks into plain text.

The SDK and the raw REST API hand back chunks in several shapes. Each extractor
below handles one shape and returns ``None`` when the chunk is not of that shape,
or the extracted text (possibly empty) when it is. The first match wins.
"""
from __future__ import annotations

import asyncio
from typing import Any, AsyncIterable, AsyncIterator, Callable, Sequence

from ragchat.logs import QUERY_LOGGER


Extractor = Callable[[Any], "str | None"]


def _field(obj: Any, *names: str) -> Any:
    for name in names:
        if isinstance(obj, dict):
            value = obj.get(name)
        else:
            value = getattr(obj, name, None)
        if value is not None:
            return value
    return None


def _is_code_part(part: Any) -> bool:
    return bool(_field(part, "executable_code", "executableCode", "code_execution_result", "codeExecutionResult"))


def extract_plain_text(chunk: Any) -> str | None:
    return chunk if isinstance(chunk, str) else None


def extract_text_method(chunk: Any) -> str | None:
    if isinstance(chunk, dict):
        return None
    method = getattr(chunk, "text", None)
    if not callable(method):
        return None
    try:
        value = method()
    except Exception:
        QUERY_LOGGER.debug("chunk_text_method_failed | type=%s", type(chunk).__name__)
        return None
    return value if isinstance(value, str) else None


def extract_text_attribute(chunk: Any) -> str | None:
    value = _field(chunk, "text")
    return value if isinstance(value, str) else None


def extract_candidate_parts(chunk: Any) -> str | None:
    candidates = _field(chunk, "candidates")
    if not candidates:
        return None
    parts = _field(_field(candidates[0], "content"), "parts")
    if not parts:
        return None
    texts = []
    for part in parts:
        if _is_code_part(part):
            continue
        text = _field(part, "text")
        if isinstance(text, str):
            texts.append(text)
    return "".join(texts)


def extract_response_wrapper(chunk: Any) -> str | None:
    inner = _field(chunk, "response")
    if inner is None or inner is chunk:
        return None
    for extractor in _WRAPPED_EXTRACTORS:
        value = extractor(inner)
        if value is not None:
            return value
    return None


def extract_content_field(chunk: Any) -> str | None:
    if _is_code_part(chunk):
        return ""
    value = _field(chunk, "content")
    return value if isinstance(value, str) else None


_WRAPPED_EXTRACTORS: tuple[Extractor, ...] = (
    extract_text_method,
    extract_text_attribute,
    extract_candidate_parts,
)

EXTRACTORS: tuple[Extractor, ...] = (
    extract_plain_text,
    extract_text_method,
    extract_text_attribute,
    extract_candidate_parts,
    extract_response_wrapper,
    extract_content_field,
)


def extract_text(chunk: Any, extractors: Sequence[Extractor] = EXTRACTORS) -> str:
    for extractor in extractors:
        value = extractor(chunk)
        if value is not None:
            return value
    return ""


async def close_stream(stream: Any) -> None:
    aclose = getattr(stream, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception as exc:
        QUERY_LOGGER.warning("stream_close_failed | error=%s", exc)


async def normalize_stream(chunks: AsyncIterable[Any], label: str = "") -> AsyncIterator[str]:
    received = 0
    try:
        async for chunk in chunks:
            text = extract_text(chunk)
            if not text:
                continue
            received += 1
            yield text
        if not received:
            QUERY_LOGGER.warning("stream_empty | source=%s | note=no text data received from stream", label or "-")
    except (GeneratorExit, asyncio.CancelledError):
        QUERY_LOGGER.info("stream_closed_by_consumer | source=%s | chunks_sent=%s", label or "-", received)
        raise
    finally:
        await close_stream(chunks)
