from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ChatRequest(BaseModel):
    message: str


class UploadResponse(CamelModel):
    success: bool
    message: str
    file_name: str
    store_name: str | None = None
    is_duplicate: bool = False
    processing_status: Literal["processing", "ready", "error"]


class FileStatusItem(CamelModel):
    file_name: str
    status: Literal["uploading", "processing", "ready", "error"]
    uploaded_at: datetime
    error_message: str | None = None
    size: int


class ProcessingStatusResponse(CamelModel):
    files: list[FileStatusItem] = Field(default_factory=list)
    all_ready: bool
    processing_count: int
    ready_count: int
    error_count: int
    total_files: int
    poll_interval_sec: float
    max_polls: int


class HealthResponse(CamelModel):
    status: str
    mock_mode: bool
