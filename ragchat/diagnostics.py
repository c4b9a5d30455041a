from __future__ import annotations

import asyncio
import re
from enum import Enum
from typing import AsyncIterator

from ragchat.errors import error_text, status_code_of
from ragchat.polling import Sleep


class DiagnosticKind(str, Enum):
    AUTH_REQUIRED = "auth_required"
    MOCK = "mock"
    NO_DOCUMENTS = "no_documents"
    RATE_LIMIT = "rate_limit"
    MODEL_UNAVAILABLE = "model_unavailable"
    BAD_REQUEST = "bad_request"
    STALE_STORE = "stale_store"
    UNAVAILABLE = "unavailable"


STALE_STORE_MARKERS = ("not accessible", "not found", "empty", "different store")
NO_DOCUMENT_MARKERS = ("empty", "no documents", "no files")

MESSAGES: dict[DiagnosticKind, str] = {
    DiagnosticKind.AUTH_REQUIRED: """**Authentication Required**

Please log in to ask questions about your documents.""",
    DiagnosticKind.MOCK: """**Mock Mode Active**

This answer is simulated because `GOOGLE_API_KEY` is missing or set to the placeholder value.

*   **Retrieval**: no knowledge base was searched.
*   **Generation**: this text is streamed to imitate the Gemini API.

Uploads are accepted and reported as processed, but nothing is indexed in this mode.

Set a valid `GOOGLE_API_KEY` in your `.env` file to use Gemini File Search.""",
    DiagnosticKind.NO_DOCUMENTS: """**No Documents Uploaded**

I can't answer questions yet because your knowledge base has no documents.

**To get started:**
1. Upload a document
2. Wait until it shows as ready
3. Ask your question again""",
    DiagnosticKind.RATE_LIMIT: """**Rate Limit Exceeded**

The API quota has been reached. This usually happens when too many requests are made in a short time.

**Solutions:**
1. Wait a minute and try again
2. Use an API key with a higher quota

Please try your question again in about a minute.""",
    DiagnosticKind.MODEL_UNAVAILABLE: """**Model Configuration Issue**

The AI model is temporarily unavailable. This has been logged.

Please try again in a moment.""",
    DiagnosticKind.BAD_REQUEST: """**Configuration Error**

There was an issue with the request format. This has been logged.

Please try again in a moment.""",
    DiagnosticKind.STALE_STORE: """**File Access Issue**

Your uploaded files are not accessible right now. This can happen if:
- The server was restarted (earlier files live in a different store)
- Files are still being indexed
- No files have been uploaded yet

**Solutions:**
1. Re-upload your file(s) so they are in the current store
2. Wait until the upload shows as ready before asking

Please upload your file again and retry your question.""",
    DiagnosticKind.UNAVAILABLE: """**Service Temporarily Unavailable**

I'm having trouble processing your request right now.

**Error details:** {detail}

Please try again in a moment.""",
}


def classify(exc: BaseException, has_documents: bool = True) -> DiagnosticKind:
    code = status_code_of(exc)
    if code == 429:
        return DiagnosticKind.RATE_LIMIT
    if code == 404:
        return DiagnosticKind.MODEL_UNAVAILABLE
    if code == 400:
        return DiagnosticKind.BAD_REQUEST

    text = error_text(exc).lower()
    if not has_documents and any(marker in text for marker in NO_DOCUMENT_MARKERS):
        return DiagnosticKind.NO_DOCUMENTS
    if any(marker in text for marker in STALE_STORE_MARKERS):
        return DiagnosticKind.STALE_STORE
    return DiagnosticKind.UNAVAILABLE


def message_for(kind: DiagnosticKind, detail: str = "") -> str:
    template = MESSAGES[kind]
    if kind is DiagnosticKind.UNAVAILABLE:
        return template.format(detail=detail or "unknown error")
    return template


def split_for_streaming(text: str) -> list[str]:
    return [piece for piece in re.split(r"(?=[ \n])", text) if piece]


async def diagnostic_stream(text: str, delay_sec: float = 0.0, sleep: Sleep = asyncio.sleep) -> AsyncIterator[str]:
    for piece in split_for_streaming(text):
        yield piece
        if delay_sec > 0:
            await sleep(delay_sec)
