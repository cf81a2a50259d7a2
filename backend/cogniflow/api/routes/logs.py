"""Activity log and data reset endpoints."""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from cogniflow.api.routes.jobs import get_job_service
from cogniflow.api.schemas import LogEntry
from cogniflow.exceptions import StorageError
from cogniflow.services.job_service import JobService

router = APIRouter()


@router.get("/logs", response_model=List[LogEntry])
async def get_logs(
    limit: Optional[int] = Query(None, ge=1, le=10000),
    service: JobService = Depends(get_job_service),
):
    """Activity records, newest first."""
    try:
        logs = await service.activity.recent(limit)
    except StorageError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return [
        LogEntry(
            id=log.id,
            timestamp=log.timestamp,
            level=log.level.value,
            message=log.message,
            model_used=log.model_used,
        )
        for log in logs
    ]


@router.delete("/data", status_code=status.HTTP_204_NO_CONTENT)
async def clear_data(service: JobService = Depends(get_job_service)):
    """Reset the job and erase settings, logs and chunk records."""
    try:
        await service.clear_all_data()
    except StorageError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
