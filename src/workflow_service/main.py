"""Main FastAPI application for case-workflow-service."""

import logging
import sys

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from workflow_service import __version__
from workflow_service.api.dependencies import action_runner
from workflow_service.api.routes.cases import router as cases_router
from workflow_service.api.routes.merge import router as merge_router
from workflow_service.api.routes.workflows import router as workflows_router
from workflow_service.config import settings
from workflow_service.core.errors import WorkflowEngineError
from workflow_service.infrastructure.database import db_client
from workflow_service.infrastructure.persistence import RepositoryException
from workflow_service.models import HealthResponse

# Root logging: one stdout handler, level from LOG_LEVEL
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Case Workflow Service",
    description="Workflow and transition engine for incidents, complaints, queries and requests",
    version=__version__,
)

logger.info("Actor identity is read from gateway X-User-ID / X-User-Roles headers")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers; merge routes first so /cases/merge is not read as a case id
app.include_router(merge_router)
app.include_router(cases_router)
app.include_router(workflows_router)


@app.exception_handler(WorkflowEngineError)
async def workflow_engine_error_handler(request: Request, exc: WorkflowEngineError):
    """Translate engine errors into ``{"error": code, "detail": message, ...}``."""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RepositoryException)
async def repository_error_handler(request: Request, exc: RepositoryException):
    logger.error(f"Storage failure on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": "storage_error", "detail": "Storage operation failed"},
    )


@app.on_event("startup")
async def startup():
    """Verify and prepare the database when SQL storage is selected."""
    logger.info(f"Starting {settings.service_name} on port {settings.port}")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Storage: {settings.storage_type}")

    if not settings.uses_sql_storage:
        return

    logger.info(f"Database: {settings.database_url}")
    try:
        # Verify connection with retry logic (handles K8s/scale-to-zero)
        await db_client.verify_connection()

        # Alembic migrations are the primary schema path; create_tables() covers
        # non-migrated local setups
        await db_client.create_tables()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


@app.on_event("shutdown")
async def shutdown():
    """Let queued transition actions finish, then release the engine."""
    logger.info("Shutting down service")
    await action_runner.drain()
    await db_client.close()


@app.get(
    "/health",
    response_model=HealthResponse,
    summary="Liveness probe",
    description="Reports service version and the configured storage backend. "
    "Does not query the database and needs no X-User-* headers.",
)
async def health_check():
    return HealthResponse(
        status="healthy",
        service=settings.service_name,
        version=__version__,
        database=settings.database_url.split("://")[0],
        storage=settings.storage_type,
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "workflow_service.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.environment == "development",
    )
