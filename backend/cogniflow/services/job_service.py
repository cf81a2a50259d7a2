"""Job service: the application facade over extraction, scheduling and output."""
import asyncio
import time
from typing import Coroutine, Dict, Optional, Tuple

from cogniflow.exceptions import (
    ConfigurationError,
    ExtractionError,
    JobStateError,
    StorageError,
    ValidationError,
)
from cogniflow.models.job import Job, JobStatus
from cogniflow.services.activity_log import ActivityLog
from cogniflow.services.assembler import DocumentRenderer, assemble, output_filename
from cogniflow.services.chunker import chunk_text
from cogniflow.services.extractor import PdfTextExtractor
from cogniflow.services.job_store import (
    ExtractionFailed,
    ExtractionProgressed,
    JobReady,
    JobReset,
    JobStateStore,
)
from cogniflow.services.persistence import PersistenceBackend
from cogniflow.services.scheduler import BatchScheduler, SchedulerOptions
from cogniflow.services.settings_service import SettingsService
from cogniflow.utils.logger import logger
from cogniflow.validators import validate_upload


class JobService:
    """Runs the single live job from upload to output document."""

    def __init__(
        self,
        store: JobStateStore,
        scheduler: BatchScheduler,
        extractor: PdfTextExtractor,
        renderer: DocumentRenderer,
        settings_service: SettingsService,
        activity: ActivityLog,
        persistence: PersistenceBackend,
        max_file_size_mb: float = 50,
    ):
        """
        Initialize job service.

        Args:
            store: Holder of the live job
            scheduler: Batch scheduler driving chunk processing
            extractor: PDF text extractor
            renderer: Output document renderer
            settings_service: Source of the current user settings
            activity: User-facing activity log
            persistence: Backend for chunk records and full resets
            max_file_size_mb: Upload size limit
        """
        self.store = store
        self.scheduler = scheduler
        self.extractor = extractor
        self.renderer = renderer
        self.settings_service = settings_service
        self.activity = activity
        self.persistence = persistence
        self.max_file_size_mb = max_file_size_mb
        self._background: Dict[asyncio.Task, str] = {}

    @property
    def job(self) -> Optional[Job]:
        return self.store.job

    def _require_job(self) -> Job:
        job = self.store.job
        if job is None:
            raise JobStateError("No active job. Upload a PDF first.")
        return job

    async def accept_document(self, content: bytes, filename: str) -> Job:
        """
        Start a new job for an uploaded PDF, replacing any live job.

        Validation errors are raised before a job exists. Once the job is
        started, extraction problems end it in ``error`` instead of raising.

        Args:
            content: Raw PDF bytes
            filename: Original file name

        Returns:
            Job snapshot, ``ready`` or ``error``
        """
        upload_info = validate_upload(filename, content, self.max_file_size_mb)

        job = self.store.start_job(filename, len(content))
        self.scheduler.abandon()
        job_id = job.job_id
        await self.activity.info(
            f"Started job for {filename} (PDF {upload_info['pdf_version']}, {len(content):,} bytes)",
            job_id=job_id,
            document_name=filename,
            pdf_version=upload_info["pdf_version"],
        )

        try:
            await self.persistence.clear_chunks()
        except StorageError as e:
            logger.warning(f"Could not clear previous chunk records: {str(e)}")

        settings = self.settings_service.current
        start_time = time.time()
        try:
            text = await self.extractor.extract(
                content,
                on_progress=lambda fraction: self.store.dispatch(ExtractionProgressed(job_id, fraction)),
            )
            chunks = chunk_text(text, settings.batch_size, settings.overlap_size)
        except (ExtractionError, ValidationError, ConfigurationError) as e:
            job = self.store.dispatch(ExtractionFailed(job_id, str(e)))
            await self.activity.error(f"Extraction failed: {str(e)}", job_id=job_id)
            return self._still_live(job, job_id)

        job = self.store.dispatch(JobReady(job_id, tuple(chunks)))
        await self.activity.success(
            f"Extracted {len(text):,} characters from PDF into {len(chunks)} chunks "
            f"in {time.time() - start_time:.2f}s.",
            job_id=job_id,
            total_chunks=len(chunks),
        )
        return self._still_live(job, job_id)

    @staticmethod
    def _still_live(job: Optional[Job], job_id: str) -> Job:
        if job is None or job.job_id != job_id:
            raise JobStateError("Job was reset or replaced while the document was being analyzed")
        return job

    def _options(self) -> SchedulerOptions:
        return SchedulerOptions.from_settings(self.settings_service.current)

    def start_processing(self) -> Job:
        """
        Launch a processing run in the background.

        Raises:
            JobStateError: If there is no job, it is still analyzing, or a run is active
            ConfigurationError: If no credential is configured
        """
        job = self._require_job()
        if job.status == JobStatus.ANALYZING:
            raise JobStateError("Document is still being analyzed")
        if self.scheduler.is_running or job.job_id in self._background.values():
            raise JobStateError("Processing is already running")
        options = self._options()
        self._spawn(job.job_id, self.scheduler.process(options))
        return job

    async def process(self) -> Job:
        """Run processing to the end in the caller's task."""
        self._require_job()
        await self.scheduler.process(self._options())
        return self.store.job

    async def pause(self) -> Job:
        job = self.scheduler.pause()
        await self.activity.info(f"Paused processing of {job.document_name}", job_id=job.job_id)
        return job

    async def resume(self) -> Job:
        """
        Resume a paused job.

        Raises:
            JobStateError: If the job is not paused
            ConfigurationError: If no credential is configured
        """
        job = self._require_job()
        if job.status != JobStatus.PAUSED:
            raise JobStateError(f"Cannot resume a job that is {job.status.value}")
        options = self._options()
        if self.scheduler.resume():
            self._spawn(job.job_id, self.scheduler.process(options))
        job = self.store.job
        await self.activity.info(f"Resumed processing of {job.document_name}", job_id=job.job_id)
        return job

    async def reset(self) -> None:
        """Discard the live job; results of in-flight chunks are dropped."""
        job = self.store.job
        self.store.dispatch(JobReset())
        self.scheduler.abandon()
        if job is not None:
            await self.activity.info(f"Job for {job.document_name} was reset", job_id=job.job_id)

    async def build_output(self) -> Tuple[str, bytes]:
        """
        Render completed chunks into the output PDF.

        Returns:
            (download file name, PDF bytes)

        Raises:
            JobStateError: If there is no job
            NothingToAssemble: If no chunk is completed
        """
        job = self._require_job()
        text = assemble(job.chunks)
        settings = self.settings_service.current
        pdf_bytes = await asyncio.to_thread(
            self.renderer.render,
            text,
            settings.pdf_font_size,
            settings.pdf_line_height,
            settings.pdf_margin,
        )
        await self.activity.success(
            f"Generated output for {job.document_name} from {job.completed_count} chunks",
            job_id=job.job_id,
        )
        return output_filename(job.document_name), pdf_bytes

    async def clear_all_data(self) -> None:
        """Reset the job and erase settings, logs and chunk records."""
        self.store.dispatch(JobReset())
        self.scheduler.abandon()
        await self.persistence.clear_all()
        self.settings_service.reset_to_defaults()
        logger.info("All stored data cleared")

    def _spawn(self, job_id: str, coro: Coroutine) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background[task] = job_id
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.pop(task, None)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Background processing failed: {str(exc)}", exc_info=exc)

    async def close(self) -> None:
        """Cancel background runs on shutdown."""
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
