from pathlib import Path
import sys
import os
import socket

from fastapi import Depends, FastAPI, File, Header, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

# Allow running as `python ragchat/main.py` in addition to module mode.
if __package__ is None or __package__ == "":
    sys.path.append(str(Path(__file__).resolve().parents[1]))

from ragchat.config import ensure_runtime_dirs, settings
from ragchat.errors import UploadError
from ragchat.logs import API_LOGGER
from ragchat.models import (
    ChatRequest,
    FileStatusItem,
    HealthResponse,
    ProcessingStatusResponse,
    UploadResponse,
)
from ragchat.services import Services, build_services
from ragchat.validation import sanitize_filename, sanitize_message, validate_file, validate_message
from ragchat.verifier import get_processing_status


ensure_runtime_dirs()


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name, "1" if default else "0") or "").strip().lower()
    return raw in {"1", "true", "yes", "on"}


app = FastAPI(title="RagChat API", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

services = build_services(settings)


def get_services() -> Services:
    return services


def get_user_id(x_user_id: str | None = Header(default=None)) -> str:
    # The auth proxy in front of this service sets X-User-Id for signed-in users.
    return (x_user_id or "").strip()


def require_user(action: str, user_id: str) -> str:
    if not user_id:
        API_LOGGER.warning("unauthorized | action=%s", action)
        raise HTTPException(status_code=401, detail=f"Unauthorized. Please log in to {action}.")
    return user_id


@app.on_event("shutdown")
async def stop_background_tasks() -> None:
    await services.supervisor.cancel_all()


@app.get("/health", response_model=HealthResponse)
def health(svc: Services = Depends(get_services)) -> HealthResponse:
    return HealthResponse(status="ok", mock_mode=svc.settings.mock_mode)


@app.post("/upload", response_model=UploadResponse)
async def upload_file(
    file: UploadFile = File(...),
    user_id: str = Depends(get_user_id),
    svc: Services = Depends(get_services),
) -> UploadResponse:
    require_user("upload files", user_id)

    wait_sec = svc.rate_limiter.check(user_id)
    if wait_sec is not None:
        seconds = max(1, int(wait_sec + 0.999))
        API_LOGGER.warning("upload_rate_limited | user=%s | seconds_remaining=%s", user_id, seconds)
        raise HTTPException(
            status_code=429,
            detail=f"Upload rate limit exceeded. Please wait {seconds} second{'s' if seconds != 1 else ''} before uploading again.",
        )

    try:
        data = await file.read()
    except Exception as exc:
        API_LOGGER.error("upload_read_failed | user=%s | file=%s | error=%s", user_id, file.filename, exc)
        raise HTTPException(status_code=500, detail="Failed to process file") from exc
    finally:
        await file.close()

    check = validate_file(file.filename, len(data), file.content_type, max_size=svc.settings.max_file_size_bytes)
    if not check.valid:
        API_LOGGER.warning(
            "upload_invalid | user=%s | file=%s | size_bytes=%s | error=%s",
            user_id,
            file.filename,
            len(data),
            check.error,
        )
        raise HTTPException(status_code=400, detail=check.error or "Invalid file")

    file_name = sanitize_filename(file.filename or "")
    try:
        result = await svc.uploader.upload(user_id, data, file_name, file.content_type)
    except UploadError as exc:
        raise HTTPException(status_code=502, detail=exc.message) from exc

    svc.rate_limiter.record(user_id)
    API_LOGGER.info("upload_accepted | user=%s | file=%s | duplicate=%s", user_id, file_name, result.is_duplicate)
    if result.is_duplicate and result.processing_status == "error":
        message = f'File "{file_name}" was already uploaded and failed: {result.message or "unknown error"}'
    elif result.is_duplicate:
        message = f'File "{file_name}" already exists in the knowledge base'
    else:
        message = result.message or f"Successfully uploaded {file_name} to Gemini File Search"
    return UploadResponse(
        success=result.success,
        message=message,
        file_name=result.file_name,
        store_name=result.store_name,
        is_duplicate=result.is_duplicate,
        processing_status=result.processing_status,
    )


@app.get("/upload/status", response_model=ProcessingStatusResponse)
def upload_status(
    user_id: str = Depends(get_user_id),
    svc: Services = Depends(get_services),
) -> ProcessingStatusResponse:
    require_user("check file status", user_id)
    status = get_processing_status(svc.records, user_id)
    return ProcessingStatusResponse(
        files=[
            FileStatusItem(
                file_name=r.file_name,
                status=r.status,
                uploaded_at=r.uploaded_at,
                error_message=r.error_message,
                size=r.size,
            )
            for r in sorted(status.files, key=lambda r: r.uploaded_at)
        ],
        all_ready=status.all_ready,
        processing_count=status.processing_count,
        ready_count=status.ready_count,
        error_count=status.error_count,
        total_files=status.total_files,
        poll_interval_sec=svc.settings.status_poll_interval_sec,
        max_polls=svc.settings.status_poll_max_polls,
    )


@app.post("/chat")
async def chat(
    request: ChatRequest,
    user_id: str = Depends(get_user_id),
    svc: Services = Depends(get_services),
):
    require_user("use the chat", user_id)
    check = validate_message(request.message, max_length=svc.settings.max_message_length)
    if not check.valid:
        raise HTTPException(status_code=400, detail=check.error or "Invalid message")

    stream = await svc.orchestrator.query(user_id, sanitize_message(request.message))
    return StreamingResponse(stream, media_type="text/plain; charset=utf-8")


if __name__ == "__main__":
    import uvicorn

    host = os.getenv("RAGCHAT_HOST", "127.0.0.1")
    start_port = _env_int("RAGCHAT_PORT", 8080)
    port_tries = max(1, _env_int("RAGCHAT_PORT_TRIES", 20))
    reload_enabled = _env_bool("RAGCHAT_RELOAD", False)

    chosen_port: int | None = None
    for offset in range(port_tries):
        candidate = start_port + offset
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            try:
                sock.bind((host, candidate))
                chosen_port = candidate
                break
            except OSError:
                continue

    if chosen_port is None:
        print(
            f"Unable to bind any port in range {start_port}-{start_port + port_tries - 1} "
            f"on host {host}."
        )
        raise SystemExit(1)

    print(f"Starting server at http://{host}:{chosen_port}/docs")
    uvicorn.run("ragchat.main:app", host=host, port=chosen_port, reload=reload_enabled)
