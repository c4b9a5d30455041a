from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


MOCK_API_KEYS = {"", "dempy"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    google_api_key: str = Field(default="", alias="GOOGLE_API_KEY")
    gemini_models: str = Field(default="gemini-2.5-flash,gemini-2.5-pro", alias="GEMINI_MODELS")
    store_display_prefix: str = Field(default="RAG-Chatbot-Store", alias="STORE_DISPLAY_PREFIX")

    upload_poll_interval_sec: float = Field(default=5.0, alias="UPLOAD_POLL_INTERVAL_SEC")
    upload_poll_max_attempts: int = Field(default=60, alias="UPLOAD_POLL_MAX_ATTEMPTS")
    verify_poll_interval_sec: float = Field(default=2.0, alias="VERIFY_POLL_INTERVAL_SEC")
    verify_max_attempts: int = Field(default=60, alias="VERIFY_MAX_ATTEMPTS")
    verify_grace_attempts: int = Field(default=6, alias="VERIFY_GRACE_ATTEMPTS")
    upload_tmp_dir: str = Field(default="", alias="UPLOAD_TMP_DIR")

    upload_rate_limit_window_sec: float = Field(default=60.0, alias="UPLOAD_RATE_LIMIT_WINDOW_SEC")
    upload_rate_limit_max: int = Field(default=5, alias="UPLOAD_RATE_LIMIT_MAX")
    max_file_size_bytes: int = Field(default=10 * 1024 * 1024, alias="MAX_FILE_SIZE_BYTES")
    max_message_length: int = Field(default=10000, alias="MAX_MESSAGE_LENGTH")

    mock_stream_delay_sec: float = Field(default=0.02, alias="MOCK_STREAM_DELAY_SEC")
    status_poll_interval_sec: float = Field(default=3.0, alias="STATUS_POLL_INTERVAL_SEC")
    status_poll_max_polls: int = Field(default=40, alias="STATUS_POLL_MAX_POLLS")

    log_dir: str = Field(default=".rag", alias="LOG_DIR")

    @property
    def candidate_models(self) -> list[str]:
        return [m.strip() for m in self.gemini_models.split(",") if m.strip()]

    @property
    def mock_mode(self) -> bool:
        return self.google_api_key.strip() in MOCK_API_KEYS


settings = Settings()


def ensure_runtime_dirs() -> None:
    Path(settings.log_dir).mkdir(parents=True, exist_ok=True)
    if settings.upload_tmp_dir:
        Path(settings.upload_tmp_dir).mkdir(parents=True, exist_ok=True)
