class RagChatError(Exception):
    pass


class MissingUserError(RagChatError):
    def __init__(self, action: str = "this operation") -> None:
        super().__init__(f"User ID is required for {action}")


class BackendNotConfiguredError(RagChatError):
    def __init__(self) -> None:
        super().__init__("Cannot use Gemini File Search in mock mode. Set GOOGLE_API_KEY.")


class UploadError(RagChatError):
    def __init__(self, file_name: str, message: str) -> None:
        super().__init__(message)
        self.file_name = file_name
        self.message = message


class UploadTimeoutError(UploadError):
    pass


class RecordTransitionError(RagChatError):
    def __init__(self, key: tuple[str, str, int], current: str, requested: str) -> None:
        super().__init__(f"Invalid status transition for {key[1]!r}: {current} -> {requested}")
        self.key = key
        self.current = current
        self.requested = requested


class NoCandidateModelsError(RagChatError):
    def __init__(self) -> None:
        super().__init__("No available models found")


def status_code_of(exc: BaseException) -> int | None:
    """HTTP-ish status of a backend error, if the exception carries one.

    google-genai raises ``errors.APIError`` with an integer ``code``; httpx errors
    carry a ``response.status_code``.
    """
    for attr in ("code", "status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int):
        return value
    return None


def error_text(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__
