"""Batch scheduler: bounded-concurrency chunk processing with retry and fallback."""
import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Deque, Dict, Optional, Tuple

from opentelemetry import trace

from cogniflow.exceptions import (
    AllModelsExhausted,
    ChunkTerminalFailure,
    ConfigurationError,
    JobStateError,
    StorageError,
)
from cogniflow.models.job import ChunkStatus, Job, JobStatus
from cogniflow.models.settings import AppSettings, resolve_credential
from cogniflow.prompts import TransformPrompt
from cogniflow.services.activity_log import ActivityLog
from cogniflow.services.inference import GenerationParameters, InferenceGateway
from cogniflow.services.job_store import (
    ChunkCompleted,
    ChunkFailed,
    ChunkStarted,
    JobStateStore,
    ProcessingFinished,
    ProcessingPaused,
    ProcessingResumed,
    ProcessingStarted,
)
from cogniflow.services.persistence import PersistenceBackend
from cogniflow.utils.logger import logger
from cogniflow.utils.metrics import CHUNK_OUTCOMES, CHUNK_RETRIES
from cogniflow.utils.tracer import ATTR_MODEL_USED, CHUNK_ATTEMPT_SPAN, chunk_attempt_attributes, get_tracer

Sleep = Callable[[float], Awaitable[None]]

_WORKING_SET = (ChunkStatus.PENDING, ChunkStatus.FAILED)


@dataclass(frozen=True)
class SchedulerOptions:
    """Everything one processing run needs, frozen for the run's duration."""

    credential: str
    model_priority: Tuple[str, ...]
    prompt: TransformPrompt
    params: GenerationParameters
    concurrency_limit: int = 1
    max_retries: int = 3
    retry_delay_ms: int = 2000
    rate_limit_delay_ms: int = 0

    def __post_init__(self):
        if self.concurrency_limit < 1:
            raise ConfigurationError(f"Concurrency limit must be at least 1, got {self.concurrency_limit}")
        if self.max_retries < 0:
            raise ConfigurationError(f"max_retries cannot be negative, got {self.max_retries}")
        if not self.model_priority:
            raise ConfigurationError("Model priority list is empty.")

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "SchedulerOptions":
        """
        Build run options from the user settings record.

        Raises:
            ConfigurationError: If no credential is configured
        """
        return cls(
            credential=resolve_credential(settings.candidate_credentials()),
            model_priority=tuple(settings.model_priority),
            prompt=settings.transform_prompt(),
            params=GenerationParameters(
                temperature=settings.temperature,
                max_output_tokens=settings.max_output_tokens,
                top_p=settings.top_p,
                timeout=settings.api_timeout,
            ),
            concurrency_limit=settings.concurrency_limit,
            max_retries=settings.effective_max_retries,
            retry_delay_ms=settings.retry_delay,
            rate_limit_delay_ms=settings.rate_limit_delay,
        )


class BatchScheduler:
    """Drives the live job's chunks through the inference gateway."""

    def __init__(
        self,
        store: JobStateStore,
        gateway: InferenceGateway,
        activity: ActivityLog,
        persistence: Optional[PersistenceBackend] = None,
        sleep: Sleep = asyncio.sleep,
        tracer: Optional[trace.Tracer] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            store: Holder of the live job; the only place results are written
            gateway: Inference gateway used for every chunk
            activity: User-facing activity log
            persistence: Optional backend for chunk records
            sleep: Coroutine used for backoff waits
            tracer: Tracer for per-attempt chunk spans
        """
        self.store = store
        self.gateway = gateway
        self.activity = activity
        self.persistence = persistence
        self._sleep = sleep
        self._tracer = tracer or get_tracer()
        self._lock = asyncio.Lock()
        self._running = False
        self._run_job_id: Optional[str] = None
        self._in_flight: Dict[asyncio.Task, int] = {}

    @property
    def is_running(self) -> bool:
        """True while a run for the live job is active; a run for a reset job does not count."""
        return self._running and not self._is_abandoned(self._run_job_id)

    def abandon(self) -> None:
        """Cancel in-flight chunk work and backoff waits of a run whose job is gone."""
        if self._run_job_id is None or not self._is_abandoned(self._run_job_id):
            return
        logger.info("Cancelling chunk work of an abandoned run", extra={"job_id": self._run_job_id})
        for task in self._in_flight:
            task.cancel()

    async def process(self, options: SchedulerOptions) -> None:
        """
        Process every pending or failed chunk of the live job.

        Safe to call repeatedly: completed chunks are never redone, and a job
        with nothing left to do is left untouched. Results are observed
        through the job store.

        Raises:
            JobStateError: If there is no job or it is still being analyzed
        """
        async with self._lock:
            self._running = True
            try:
                await self._run(options)
            finally:
                self._running = False
                self._run_job_id = None

    def pause(self) -> Job:
        """
        Stop dispatching new chunks; in-flight chunks still finish.

        Raises:
            JobStateError: If no job is processing
        """
        job = self.store.job
        if job is None:
            raise JobStateError("No job to pause")
        return self.store.dispatch(ProcessingPaused(job.job_id))

    def resume(self) -> bool:
        """
        Put a paused job back into processing.

        Returns:
            True if the caller must start a new run with ``process``; False
            when the previous run is still draining and will pick up the
            remaining chunks itself

        Raises:
            JobStateError: If no job is paused
        """
        job = self.store.job
        if job is None:
            raise JobStateError("No job to resume")
        self.store.dispatch(ProcessingResumed(job.job_id))
        return not self.is_running

    async def _run(self, options: SchedulerOptions) -> None:
        job = self.store.job
        if job is None:
            raise JobStateError("No job to process")
        if job.status == JobStatus.ANALYZING:
            raise JobStateError("Document is still being analyzed")

        job_id = self._run_job_id = job.job_id
        working_set = sorted(c.id for c in job.chunks if c.status in _WORKING_SET)
        if not working_set and job.is_terminal:
            logger.info("No pending or failed chunks; nothing to process", extra={"job_id": job_id})
            return

        self.store.dispatch(ProcessingStarted(job_id))
        await self.activity.info(
            f"Processing {len(working_set)} chunks (concurrency {options.concurrency_limit})",
            job_id=job_id,
            concurrency_limit=options.concurrency_limit,
        )

        queue: Deque[int] = deque(working_set)
        while True:
            await self._drain(job_id, queue, options)

            job = self.store.job
            if job is None or job.job_id != job_id:
                logger.info("Job was reset or replaced during processing", extra={"job_id": job_id})
                return
            if job.status != JobStatus.PAUSED:
                break

            await self.activity.info(f"Processing paused; {len(queue)} chunks waiting", job_id=job_id)
            if not self._may_dispatch(job_id):
                return
            # resumed while the pause was being logged

        job = self.store.dispatch(ProcessingFinished(job_id))
        if job.failed_count:
            await self.activity.error(
                f"Completed with {job.failed_count} failed chunks out of {len(job.chunks)}",
                job_id=job_id,
            )
        else:
            await self.activity.success(f"All {len(job.chunks)} chunks transformed", job_id=job_id)

    async def _drain(self, job_id: str, queue: Deque[int], options: SchedulerOptions) -> None:
        """Dispatch from the queue within the concurrency limit until nothing is in flight."""
        in_flight: Dict[asyncio.Task, int] = {}
        self._in_flight = in_flight
        try:
            while True:
                while queue and len(in_flight) < options.concurrency_limit and self._may_dispatch(job_id):
                    chunk_id = queue.popleft()
                    task = asyncio.create_task(self._process_chunk(job_id, chunk_id, options))
                    in_flight[task] = chunk_id

                if not in_flight:
                    return

                done, _ = await asyncio.wait(in_flight.keys(), return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    in_flight.pop(task)
        finally:
            for task in in_flight:
                task.cancel()

    def _may_dispatch(self, job_id: str) -> bool:
        job = self.store.job
        return job is not None and job.job_id == job_id and job.status == JobStatus.PROCESSING

    def _is_abandoned(self, job_id: str) -> bool:
        return self.store.current_job_id != job_id

    async def _process_chunk(self, job_id: str, chunk_id: int, options: SchedulerOptions) -> None:
        """Run one chunk to completion or terminal failure; never raises."""
        job = self.store.job
        chunk = job.get_chunk(chunk_id) if job and job.job_id == job_id else None
        if chunk is None:
            return

        self.store.dispatch(ChunkStarted(job_id, chunk_id))
        logger.debug(f"Chunk {chunk_id} dispatched", extra={"job_id": job_id, "chunk_id": chunk_id})

        retry_count = 0
        while True:
            try:
                with self._tracer.start_as_current_span(
                    CHUNK_ATTEMPT_SPAN, attributes=chunk_attempt_attributes(job_id, chunk_id, retry_count)
                ) as span:
                    result = await self.gateway.transform(
                        chunk,
                        options.model_priority,
                        options.credential,
                        options.prompt,
                        options.params,
                        rate_limit_delay_ms=options.rate_limit_delay_ms,
                    )
                    span.set_attribute(ATTR_MODEL_USED, result.model_used)
            except AllModelsExhausted as e:
                if self._is_abandoned(job_id):
                    return
                if retry_count < options.max_retries:
                    backoff_ms = options.retry_delay_ms * (2 ** retry_count)
                    await self.activity.warn(
                        f"All models failed for chunk {chunk_id}. Retrying in {backoff_ms}ms "
                        f"(attempt {retry_count + 1}/{options.max_retries})",
                        job_id=job_id,
                        chunk_id=chunk_id,
                        retry_count=retry_count,
                        backoff_ms=backoff_ms,
                    )
                    CHUNK_RETRIES.inc()
                    if self._is_abandoned(job_id):
                        return
                    await self._sleep(backoff_ms / 1000)
                    retry_count += 1
                    if self._is_abandoned(job_id):
                        return
                    continue

                failure = ChunkTerminalFailure(
                    chunk_id, f"Chunk {chunk_id} failed after {options.max_retries} retries: {str(e)}"
                )
                await self._mark_failed(job_id, chunk_id, str(failure))
                return
            except ConfigurationError as e:
                await self._mark_failed(job_id, chunk_id, str(e))
                return
            except Exception as e:
                logger.error(
                    f"Unexpected error processing chunk {chunk_id}: {str(e)}",
                    exc_info=True,
                    extra={"job_id": job_id, "chunk_id": chunk_id},
                )
                await self._mark_failed(job_id, chunk_id, f"Unexpected error: {str(e)}")
                return

            if self._is_abandoned(job_id):
                logger.info(f"Dropping late result for chunk {chunk_id}", extra={"job_id": job_id, "chunk_id": chunk_id})
                return

            job = self.store.dispatch(ChunkCompleted(job_id, chunk_id, result.text, result.model_used))
            CHUNK_OUTCOMES.labels(status=ChunkStatus.COMPLETED.value).inc()
            await self._persist_chunk(job.get_chunk(chunk_id))
            await self.activity.success(
                f"Chunk {chunk_id} completed successfully.",
                model_used=result.model_used,
                job_id=job_id,
                chunk_id=chunk_id,
            )
            return

    async def _mark_failed(self, job_id: str, chunk_id: int, error: str) -> None:
        if self._is_abandoned(job_id):
            return
        job = self.store.dispatch(ChunkFailed(job_id, chunk_id, error))
        CHUNK_OUTCOMES.labels(status=ChunkStatus.FAILED.value).inc()
        await self._persist_chunk(job.get_chunk(chunk_id))
        await self.activity.error(f"Chunk {chunk_id} failed: {error}", job_id=job_id, chunk_id=chunk_id)

    async def _persist_chunk(self, chunk) -> None:
        if self.persistence is None or chunk is None:
            return
        try:
            await self.persistence.save_chunk(chunk)
        except StorageError as e:
            logger.warning(f"Could not persist chunk {chunk.id}: {str(e)}", extra={"chunk_id": chunk.id})
