"""Pydantic schemas for API requests and responses."""
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from cogniflow.models.job import Chunk, Job
from cogniflow.models.settings import AppSettings


class ChunkView(BaseModel):
    """One chunk of the live job."""

    id: int
    status: str
    source_chars: int = Field(..., description="Length of the chunk's source text")
    result_text: str = ""
    error_message: Optional[str] = None
    model_used: Optional[str] = None

    @classmethod
    def from_chunk(cls, chunk: Chunk) -> "ChunkView":
        return cls(
            id=chunk.id,
            status=chunk.status.value,
            source_chars=len(chunk.source_text),
            result_text=chunk.result_text,
            error_message=chunk.error_message,
            model_used=chunk.model_used,
        )


class JobSnapshot(BaseModel):
    """Response schema for the live job."""

    job_id: str
    document_name: str
    document_size_bytes: int
    status: str
    progress_percent: float = Field(..., ge=0.0, le=100.0)
    current_stage: str
    total_chunks: int
    completed_chunks: int
    failed_chunks: int
    processing_chunks: int
    job_error: Optional[str] = None
    chunks: List[ChunkView] = Field(default_factory=list)

    @classmethod
    def from_job(cls, job: Job, include_chunks: bool = True) -> "JobSnapshot":
        return cls(
            job_id=job.job_id,
            document_name=job.document_name,
            document_size_bytes=job.document_size_bytes,
            status=job.status.value,
            progress_percent=job.progress_percent,
            current_stage=job.current_stage,
            total_chunks=len(job.chunks),
            completed_chunks=job.completed_count,
            failed_chunks=job.failed_count,
            processing_chunks=job.processing_count,
            job_error=job.job_error,
            chunks=[ChunkView.from_chunk(c) for c in job.chunks] if include_chunks else [],
        )


class SettingsResponse(BaseModel):
    """User settings as returned to clients; credentials are never echoed."""

    api_key_set: bool
    backup_api_key_set: bool
    model_priority: List[str]
    turbo_mode: bool
    parallel_chunks: int
    batch_size: int
    overlap_size: int
    auto_retry: bool
    max_retries: int
    retry_delay: int
    rate_limit_delay: int
    api_timeout: float
    temperature: float
    top_p: Optional[float] = None
    max_output_tokens: int
    system_prompt: str
    text_transform_prompt: str
    pdf_font_size: float
    pdf_line_height: float
    pdf_margin: float

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "SettingsResponse":
        data = settings.model_dump(exclude={"api_key", "backup_api_key"})
        return cls(
            api_key_set=bool(settings.api_key.strip()),
            backup_api_key_set=bool(settings.backup_api_key.strip()),
            **data,
        )


class SettingsUpdate(BaseModel):
    """Partial settings update; omitted fields keep their current value."""

    api_key: Optional[str] = None
    backup_api_key: Optional[str] = None
    model_priority: Optional[List[str]] = None
    turbo_mode: Optional[bool] = None
    parallel_chunks: Optional[int] = None
    batch_size: Optional[int] = None
    overlap_size: Optional[int] = None
    auto_retry: Optional[bool] = None
    max_retries: Optional[int] = None
    retry_delay: Optional[int] = None
    rate_limit_delay: Optional[int] = None
    api_timeout: Optional[float] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_output_tokens: Optional[int] = None
    system_prompt: Optional[str] = None
    text_transform_prompt: Optional[str] = None
    pdf_font_size: Optional[float] = None
    pdf_line_height: Optional[float] = None
    pdf_margin: Optional[float] = None

    @field_validator("api_key", "backup_api_key")
    @classmethod
    def strip_credential(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if v is not None else v

    def changes(self) -> dict:
        """Fields the client actually sent."""
        return self.model_dump(exclude_unset=True)


class LogEntry(BaseModel):
    """Response schema for one activity record."""

    id: str
    timestamp: int = Field(..., description="Milliseconds since the epoch")
    level: str
    message: str
    model_used: Optional[str] = None


class ModelEntry(BaseModel):
    name: str
    display_name: Optional[str] = None
    description: Optional[str] = None


class ModelsResponse(BaseModel):
    source: str = Field(..., description="'catalog' or 'remote'")
    models: List[ModelEntry]
