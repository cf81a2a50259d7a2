"""Job endpoints: upload, processing control, progress stream and output."""
import json
from typing import Annotated, AsyncIterator

from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile, status
from fastapi.responses import StreamingResponse

from cogniflow.api.schemas import JobSnapshot
from cogniflow.exceptions import (
    CogniFlowError,
    ConfigurationError,
    JobStateError,
    NothingToAssemble,
    StorageError,
    ValidationError,
)
from cogniflow.services.job_service import JobService
from cogniflow.utils.logger import logger

router = APIRouter()


def get_job_service() -> JobService:
    """Get job service from main app."""
    from cogniflow.main import job_service
    if job_service is None:
        raise HTTPException(status_code=503, detail="Job service not initialized")
    return job_service


def to_http_error(e: CogniFlowError) -> HTTPException:
    """Map a domain error to an HTTP error response."""
    if isinstance(e, (ValidationError, ConfigurationError)):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, (JobStateError, NothingToAssemble)):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, StorageError):
        return HTTPException(status_code=503, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


def _current_job(service: JobService):
    job = service.job
    if job is None:
        raise HTTPException(status_code=404, detail="No active job")
    return job


@router.post("/jobs", response_model=JobSnapshot)
async def create_job(
    file: Annotated[UploadFile, File(...)],
    service: JobService = Depends(get_job_service),
):
    """
    Upload a PDF and prepare it for transformation.

    The previous job, if any, is replaced. The response reflects the job
    after extraction: ``ready`` with its chunks, or ``error``.
    """
    try:
        content = await file.read()
        job = await service.accept_document(content, file.filename or "")
        return JobSnapshot.from_job(job)
    except CogniFlowError as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Unexpected error accepting document: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail=f"Failed to process document: {str(e)}")


@router.get("/jobs/current", response_model=JobSnapshot)
async def get_current_job(service: JobService = Depends(get_job_service)):
    return JobSnapshot.from_job(_current_job(service))


@router.post("/jobs/current/process", response_model=JobSnapshot, status_code=status.HTTP_202_ACCEPTED)
async def process_job(service: JobService = Depends(get_job_service)):
    """Start processing pending and failed chunks in the background."""
    try:
        job = service.start_processing()
    except CogniFlowError as e:
        raise to_http_error(e)
    return JobSnapshot.from_job(job, include_chunks=False)


@router.post("/jobs/current/pause", response_model=JobSnapshot)
async def pause_job(service: JobService = Depends(get_job_service)):
    try:
        job = await service.pause()
    except CogniFlowError as e:
        raise to_http_error(e)
    return JobSnapshot.from_job(job, include_chunks=False)


@router.post("/jobs/current/resume", response_model=JobSnapshot)
async def resume_job(service: JobService = Depends(get_job_service)):
    try:
        job = await service.resume()
    except CogniFlowError as e:
        raise to_http_error(e)
    return JobSnapshot.from_job(job, include_chunks=False)


@router.delete("/jobs/current", status_code=status.HTTP_204_NO_CONTENT)
async def reset_job(service: JobService = Depends(get_job_service)):
    await service.reset()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/jobs/current/progress")
async def stream_progress(service: JobService = Depends(get_job_service)):
    """
    Stream progress percentages as server-sent events.

    Each event carries ``{"progress": <percent>}``; the stream closes when
    the job finishes, is reset or is replaced.
    """
    _current_job(service)

    async def event_stream() -> AsyncIterator[str]:
        async for percent in service.store.progress_events():
            yield f"data: {json.dumps({'progress': round(percent, 2)})}\n\n"

    return StreamingResponse(event_stream(), media_type="text/event-stream")


@router.get("/jobs/current/output")
async def download_output(service: JobService = Depends(get_job_service)):
    """Render completed chunks, in order, into a downloadable PDF."""
    try:
        filename, content = await service.build_output()
    except CogniFlowError as e:
        raise to_http_error(e)
    except Exception as e:
        logger.error(f"Unexpected error generating output: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to generate output document")

    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
