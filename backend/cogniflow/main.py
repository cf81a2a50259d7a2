"""FastAPI application entry point."""
import os
from contextlib import AsyncExitStack, asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic_settings import BaseSettings
from starlette.responses import Response

from cogniflow.api.routes import jobs, logs
from cogniflow.api.routes import settings as settings_routes
from cogniflow.models.settings import AppSettings
from cogniflow.services.activity_log import ActivityLog
from cogniflow.services.assembler import PdfRenderer
from cogniflow.services.extractor import PdfTextExtractor
from cogniflow.services.inference import DEFAULT_BASE_URL, InferenceGateway
from cogniflow.services.job_service import JobService
from cogniflow.services.job_store import JobStateStore
from cogniflow.services.persistence import open_persistence
from cogniflow.services.scheduler import BatchScheduler
from cogniflow.services.settings_service import SettingsService
from cogniflow.utils.logger import logger
from cogniflow.utils.tracer import initialize_tracing, shutdown_tracing


class Settings(BaseSettings):
    """Service settings, read from the environment or .env."""

    cerebras_api_key: str = ""  # Seeds the default api_key of the user settings
    cerebras_base_url: str = DEFAULT_BASE_URL
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"

    # Persistence
    persistence_backend: str = "redis"  # redis | memory
    redis_url: str = "redis://localhost:6379/0"
    redis_key_prefix: str = "cogniflow"

    # Document upload limits
    max_file_size_mb: int = 50
    max_pages: int = 1000

    # OpenTelemetry tracing configuration
    tracing_enabled: bool = False
    otlp_endpoint: str = ""  # empty = console exporter

    class Config:
        env_file = os.path.join(os.path.dirname(__file__), "..", "..", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


# Global services (initialized in lifespan)
settings: Settings = None
settings_service: SettingsService = None
gateway: InferenceGateway = None
job_service: JobService = None
tracer_provider = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown."""
    global settings, settings_service, gateway, job_service, tracer_provider

    logger.info("Starting CogniFlow")
    settings = Settings()

    tracer_provider = initialize_tracing(
        service_name="cogniflow",
        service_version="1.0.0",
        otlp_endpoint=settings.otlp_endpoint or None,
        tracing_enabled=settings.tracing_enabled,
    )

    async with AsyncExitStack() as stack:
        persistence = await stack.enter_async_context(
            open_persistence(
                settings.persistence_backend,
                redis_url=settings.redis_url,
                key_prefix=settings.redis_key_prefix,
            )
        )

        settings_service = SettingsService(
            persistence, defaults=AppSettings(api_key=settings.cerebras_api_key)
        )
        await settings_service.load()

        gateway = InferenceGateway(base_url=settings.cerebras_base_url)
        stack.push_async_callback(gateway.close)

        store = JobStateStore()
        activity = ActivityLog(persistence)
        scheduler = BatchScheduler(store, gateway, activity, persistence=persistence)
        job_service = JobService(
            store=store,
            scheduler=scheduler,
            extractor=PdfTextExtractor(max_pages=settings.max_pages),
            renderer=PdfRenderer(),
            settings_service=settings_service,
            activity=activity,
            persistence=persistence,
            max_file_size_mb=settings.max_file_size_mb,
        )
        stack.push_async_callback(job_service.close)

        logger.info(
            f"All services initialized (persistence={settings.persistence_backend}, "
            f"base_url={settings.cerebras_base_url})"
        )

        yield

        logger.info("Shutting down CogniFlow")

    job_service = None
    gateway = None
    settings_service = None
    shutdown_tracing(tracer_provider)


app = FastAPI(
    title="CogniFlow",
    description="Chunked PDF transformation with multi-model fallback",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Return validation errors without echoing submitted values such as credentials."""
    errors = [
        {"loc": error.get("loc"), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": errors},
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "service": "CogniFlow"}


@app.get("/metrics")
async def prometheus_metrics():
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


app.include_router(jobs.router, prefix="/api", tags=["jobs"])
app.include_router(settings_routes.router, prefix="/api", tags=["settings"])
app.include_router(logs.router, prefix="/api", tags=["logs"])


if __name__ == "__main__":
    import uvicorn

    service_settings = Settings()
    uvicorn.run(app, host=service_settings.api_host, port=service_settings.api_port)
