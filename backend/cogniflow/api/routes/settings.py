"""Settings and model catalog endpoints."""
from fastapi import APIRouter, Depends, HTTPException, Query

from cogniflow.api.schemas import ModelEntry, ModelsResponse, SettingsResponse, SettingsUpdate
from cogniflow.exceptions import CogniFlowError, ConfigurationError, InferenceError, StorageError
from cogniflow.models.settings import CEREBRAS_MODELS, resolve_credential
from cogniflow.services.inference import InferenceGateway
from cogniflow.services.settings_service import SettingsService
from cogniflow.utils.logger import logger

router = APIRouter()


def get_settings_service() -> SettingsService:
    """Get settings service from main app."""
    from cogniflow.main import settings_service
    if settings_service is None:
        raise HTTPException(status_code=503, detail="Settings service not initialized")
    return settings_service


def get_gateway() -> InferenceGateway:
    """Get inference gateway from main app."""
    from cogniflow.main import gateway
    if gateway is None:
        raise HTTPException(status_code=503, detail="Inference gateway not initialized")
    return gateway


@router.get("/settings", response_model=SettingsResponse)
async def get_settings(service: SettingsService = Depends(get_settings_service)):
    return SettingsResponse.from_settings(service.current)


@router.put("/settings", response_model=SettingsResponse)
async def update_settings(
    update: SettingsUpdate,
    service: SettingsService = Depends(get_settings_service),
):
    """
    Apply a partial settings update.

    The update is merged over the current record and validated as a whole;
    an invalid result leaves the stored record unchanged.
    """
    try:
        updated = await service.update(update.changes())
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageError as e:
        logger.error(f"Failed to save settings: {str(e)}")
        raise HTTPException(status_code=503, detail=str(e))
    return SettingsResponse.from_settings(updated)


@router.get("/models", response_model=ModelsResponse)
async def list_models(
    remote: bool = Query(False, description="Ask the provider instead of the built-in catalog"),
    service: SettingsService = Depends(get_settings_service),
    gateway: InferenceGateway = Depends(get_gateway),
):
    if not remote:
        return ModelsResponse(
            source="catalog",
            models=[ModelEntry(**m.model_dump()) for m in CEREBRAS_MODELS],
        )

    try:
        credential = resolve_credential(service.current.candidate_credentials())
        names = await gateway.list_models(credential)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except InferenceError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except CogniFlowError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return ModelsResponse(source="remote", models=[ModelEntry(name=name) for name in names])
