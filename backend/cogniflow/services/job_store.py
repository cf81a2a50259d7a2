"""Job state machine: a pure reducer and the store that holds the live job.

Every change to a job goes through ``reduce_job(state, event)``. The store
applies events synchronously (no awaits), so under asyncio each update is
atomic with respect to other tasks. Events carry the ``job_id`` they were
produced for; an event for a job that is no longer live is ignored, which
is how late results from abandoned runs are dropped.
"""
import asyncio
from dataclasses import dataclass, replace
from typing import AsyncIterator, List, Optional, Sequence, Tuple, Union

from cogniflow.exceptions import JobStateError
from cogniflow.models.job import Chunk, ChunkStatus, Job, JobStatus, new_job_id
from cogniflow.utils.logger import logger

EXTRACTION_SHARE = 50.0


@dataclass(frozen=True)
class JobStarted:
    job_id: str
    document_name: str
    document_size_bytes: int


@dataclass(frozen=True)
class ExtractionProgressed:
    job_id: str
    fraction: float


@dataclass(frozen=True)
class ExtractionFailed:
    job_id: str
    error: str


@dataclass(frozen=True)
class JobReady:
    job_id: str
    chunks: Tuple[Chunk, ...]


@dataclass(frozen=True)
class ProcessingStarted:
    job_id: str


@dataclass(frozen=True)
class ProcessingPaused:
    job_id: str


@dataclass(frozen=True)
class ProcessingResumed:
    job_id: str


@dataclass(frozen=True)
class ChunkStarted:
    job_id: str
    chunk_id: int


@dataclass(frozen=True)
class ChunkCompleted:
    job_id: str
    chunk_id: int
    result_text: str
    model_used: Optional[str] = None


@dataclass(frozen=True)
class ChunkFailed:
    job_id: str
    chunk_id: int
    error: str


@dataclass(frozen=True)
class ProcessingFinished:
    job_id: str


@dataclass(frozen=True)
class JobReset:
    job_id: Optional[str] = None


JobEvent = Union[
    JobStarted,
    ExtractionProgressed,
    ExtractionFailed,
    JobReady,
    ProcessingStarted,
    ProcessingPaused,
    ProcessingResumed,
    ChunkStarted,
    ChunkCompleted,
    ChunkFailed,
    ProcessingFinished,
    JobReset,
]

_CHUNK_EVENT_STATES = (JobStatus.PROCESSING, JobStatus.PAUSED)
_START_STATES = (JobStatus.READY, JobStatus.PAUSED, JobStatus.PROCESSING, JobStatus.ERROR, JobStatus.COMPLETED)


def _require(state: Job, event: JobEvent, allowed: Sequence[JobStatus]) -> None:
    if state.status not in allowed:
        raise JobStateError(
            f"Cannot apply {type(event).__name__} while job is {state.status.value}"
        )


def _replace_chunk(state: Job, chunk_id: int, **changes) -> Tuple[Chunk, ...]:
    if state.get_chunk(chunk_id) is None:
        raise JobStateError(f"Chunk {chunk_id} does not belong to job {state.job_id}")
    return tuple(replace(c, **changes) if c.id == chunk_id else c for c in state.chunks)


def _with_chunks(state: Job, chunks: Tuple[Chunk, ...]) -> Job:
    """Recompute aggregate progress after a chunk transition."""
    total = len(chunks)
    completed = sum(1 for c in chunks if c.status == ChunkStatus.COMPLETED)
    failed = sum(1 for c in chunks if c.status == ChunkStatus.FAILED)
    progress = EXTRACTION_SHARE + (100.0 - EXTRACTION_SHARE) * completed / total if total else 100.0
    return replace(
        state,
        chunks=chunks,
        progress_percent=max(state.progress_percent, progress),
        current_stage=f"{completed}/{total} processed (failed: {failed})",
    )


def reduce_job(state: Optional[Job], event: JobEvent) -> Optional[Job]:
    """
    Compute the next job state.

    Args:
        state: Current job, or None when no job exists
        event: Event produced by the job service or the scheduler

    Returns:
        The new job (the same object when the event is ignored)

    Raises:
        JobStateError: If the event is not legal in the current status
    """
    if isinstance(event, JobStarted):
        return Job(
            job_id=event.job_id,
            document_name=event.document_name,
            document_size_bytes=event.document_size_bytes,
        )

    if isinstance(event, JobReset):
        if state is None or event.job_id in (None, state.job_id):
            return None
        return state

    # Late event for an abandoned or replaced job
    if state is None or event.job_id != state.job_id:
        return state

    if isinstance(event, ExtractionProgressed):
        _require(state, event, (JobStatus.ANALYZING,))
        fraction = min(max(event.fraction, 0.0), 1.0)
        return replace(
            state,
            progress_percent=max(state.progress_percent, fraction * EXTRACTION_SHARE),
            current_stage="Extracting content...",
        )

    if isinstance(event, ExtractionFailed):
        _require(state, event, (JobStatus.ANALYZING,))
        return replace(
            state,
            status=JobStatus.ERROR,
            job_error=event.error,
            current_stage=f"Extraction failed: {event.error}",
        )

    if isinstance(event, JobReady):
        _require(state, event, (JobStatus.ANALYZING,))
        chunks = tuple(replace(c, status=ChunkStatus.PENDING) for c in event.chunks)
        return replace(
            state,
            status=JobStatus.READY,
            chunks=chunks,
            progress_percent=max(state.progress_percent, EXTRACTION_SHARE),
            current_stage=f"Ready to process {len(chunks)} chunks",
        )

    if isinstance(event, ProcessingStarted):
        _require(state, event, _START_STATES)
        return replace(state, status=JobStatus.PROCESSING, job_error=None, current_stage="Processing chunks...")

    if isinstance(event, ProcessingPaused):
        _require(state, event, (JobStatus.PROCESSING, JobStatus.PAUSED))
        return replace(state, status=JobStatus.PAUSED, current_stage="Paused")

    if isinstance(event, ProcessingResumed):
        _require(state, event, (JobStatus.PAUSED, JobStatus.PROCESSING))
        return replace(state, status=JobStatus.PROCESSING, current_stage="Processing chunks...")

    if isinstance(event, ChunkStarted):
        _require(state, event, _CHUNK_EVENT_STATES)
        chunks = _replace_chunk(state, event.chunk_id, status=ChunkStatus.PROCESSING, error_message=None)
        return _with_chunks(state, chunks)

    if isinstance(event, ChunkCompleted):
        _require(state, event, _CHUNK_EVENT_STATES)
        chunks = _replace_chunk(
            state,
            event.chunk_id,
            status=ChunkStatus.COMPLETED,
            result_text=event.result_text,
            model_used=event.model_used,
            error_message=None,
        )
        return _with_chunks(state, chunks)

    if isinstance(event, ChunkFailed):
        _require(state, event, _CHUNK_EVENT_STATES)
        chunks = _replace_chunk(state, event.chunk_id, status=ChunkStatus.FAILED, error_message=event.error)
        return _with_chunks(state, chunks)

    if isinstance(event, ProcessingFinished):
        _require(state, event, (JobStatus.PROCESSING,))
        failed = state.failed_count
        if failed:
            return replace(state, status=JobStatus.ERROR, current_stage=f"Completed with {failed} errors")
        return replace(
            state,
            status=JobStatus.COMPLETED,
            progress_percent=100.0,
            current_stage="Transformation complete",
        )

    raise JobStateError(f"Unknown job event: {type(event).__name__}")


class JobStateStore:
    """Holds the single live job and notifies progress subscribers."""

    def __init__(self):
        self._state: Optional[Job] = None
        self._subscribers: List[asyncio.Queue] = []

    @property
    def job(self) -> Optional[Job]:
        return self._state

    @property
    def current_job_id(self) -> Optional[str]:
        return self._state.job_id if self._state else None

    def start_job(self, document_name: str, document_size_bytes: int) -> Job:
        """Replace any live job with a fresh one in ``analyzing``."""
        return self.dispatch(JobStarted(new_job_id(), document_name, document_size_bytes))

    def dispatch(self, event: JobEvent) -> Optional[Job]:
        """Apply an event and publish the resulting snapshot."""
        previous = self._state
        new_state = reduce_job(previous, event)
        if new_state is previous:
            if not isinstance(event, JobReset):
                logger.debug(f"Ignored {type(event).__name__} for job {getattr(event, 'job_id', None)}")
            return new_state

        self._state = new_state
        for queue in self._subscribers:
            queue.put_nowait(new_state)
        return new_state

    async def progress_events(self) -> AsyncIterator[float]:
        """
        Stream progress percentages of the current job.

        The stream starts with the current value, yields whenever the
        percentage changes, and ends when the job reaches a terminal status,
        is reset, or is replaced by another job. It cannot be restarted;
        call again for a new stream.
        """
        job = self._state
        if job is None:
            return

        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        try:
            last = job.progress_percent
            yield last
            if job.is_terminal:
                return
            while True:
                snapshot = await queue.get()
                if snapshot is None or snapshot.job_id != job.job_id:
                    return
                if snapshot.progress_percent != last:
                    last = snapshot.progress_percent
                    yield last
                if snapshot.is_terminal:
                    return
        finally:
            self._subscribers.remove(queue)
