import re
import tempfile
import time
from pathlib import Path

from ragchat.logs import UPLOAD_LOGGER


def _temp_dir(base_dir: str | None) -> Path:
    root = Path(base_dir) if base_dir else Path(tempfile.gettempdir())
    root.mkdir(parents=True, exist_ok=True)
    return root


def unique_temp_path(user_id: str, file_name: str, base_dir: str | None = None) -> Path:
    safe_user = re.sub(r"[^a-zA-Z0-9\-_]", "_", user_id)
    safe_name = re.sub(r"[\\/]", "_", file_name)
    root = _temp_dir(base_dir)
    stamp = time.time_ns()
    candidate = root / f"{safe_user}_{stamp}_{safe_name}"
    i = 1
    while candidate.exists():
        candidate = root / f"{safe_user}_{stamp}_{i}_{safe_name}"
        i += 1
    return candidate


def write_temp_file(data: bytes, user_id: str, file_name: str, base_dir: str | None = None) -> Path:
    path = unique_temp_path(user_id, file_name, base_dir)
    path.write_bytes(data)
    UPLOAD_LOGGER.info("temp_file_created | user=%s | path=%s | size_bytes=%s", user_id, path, len(data))
    return path


def release_temp_file(path: Path | None) -> None:
    if path is None:
        return
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        UPLOAD_LOGGER.warning("temp_file_cleanup_failed | path=%s | error=%s", path, exc)
