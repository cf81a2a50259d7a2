"""Job, chunk and activity-log data models."""
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, Field


class ChunkStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobStatus(str, Enum):
    ANALYZING = "analyzing"
    READY = "ready"
    PROCESSING = "processing"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"


TERMINAL_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.ERROR})


@dataclass(frozen=True)
class Chunk:
    """A contiguous slice of source text, the unit of inference work."""

    id: int
    source_text: str
    status: ChunkStatus = ChunkStatus.PENDING
    result_text: str = ""
    error_message: Optional[str] = None
    model_used: Optional[str] = None

    def to_record(self) -> dict:
        """Serialize for the persistence layer."""
        return {
            "id": self.id,
            "status": self.status.value,
            "source_text": self.source_text,
            "result_text": self.result_text,
            "error_message": self.error_message,
            "model_used": self.model_used,
        }

    @classmethod
    def from_record(cls, record: dict) -> "Chunk":
        return cls(
            id=int(record["id"]),
            source_text=record.get("source_text", ""),
            status=ChunkStatus(record.get("status", ChunkStatus.PENDING.value)),
            result_text=record.get("result_text", ""),
            error_message=record.get("error_message"),
            model_used=record.get("model_used"),
        )


@dataclass(frozen=True)
class Job:
    """Snapshot of the single live document-conversion run."""

    job_id: str
    document_name: str
    document_size_bytes: int
    status: JobStatus = JobStatus.ANALYZING
    progress_percent: float = 0.0
    current_stage: str = "Initializing..."
    chunks: Tuple[Chunk, ...] = field(default_factory=tuple)
    job_error: Optional[str] = None

    @property
    def completed_count(self) -> int:
        return sum(1 for c in self.chunks if c.status == ChunkStatus.COMPLETED)

    @property
    def failed_count(self) -> int:
        return sum(1 for c in self.chunks if c.status == ChunkStatus.FAILED)

    @property
    def processing_count(self) -> int:
        return sum(1 for c in self.chunks if c.status == ChunkStatus.PROCESSING)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES

    def get_chunk(self, chunk_id: int) -> Optional[Chunk]:
        for chunk in self.chunks:
            if chunk.id == chunk_id:
                return chunk
        return None


def new_job_id() -> str:
    return str(uuid.uuid4())


class LogLevel(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    SUCCESS = "success"


class ProcessLog(BaseModel):
    """User-facing activity record, persisted append-only."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: int = Field(default_factory=lambda: int(time.time() * 1000))
    level: LogLevel
    message: str
    model_used: Optional[str] = None
