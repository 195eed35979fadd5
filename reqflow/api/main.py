from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from reqflow import __version__
from reqflow.api.routers import approval_rules, audit, requisitions
from reqflow.core.approval.runtime import build_runtime
from reqflow.core.config import Settings, get_settings
from reqflow.core.errors import (
    ApprovalConfigurationError,
    InvalidTransitionError,
    NotAuthorizedError,
    NotFoundError,
    NotPendingError,
    ValidationError,
    WorkflowError,
)
from reqflow.core.logger import configure_from_settings
from reqflow.db.session import build_engine, build_session_factory

logger = logging.getLogger(__name__)

ERROR_STATUS = (
    (ValidationError, 422),
    (ApprovalConfigurationError, 422),
    (NotFoundError, 404),
    (NotAuthorizedError, 403),
    (InvalidTransitionError, 409),
    (NotPendingError, 409),
)


def _status_for(exc: WorkflowError) -> int:
    for error_type, status_code in ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return 400


async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    body = {"error": exc.message, "code": exc.code}
    if isinstance(exc, ValidationError) and exc.errors:
        body["detail"] = exc.errors
    return JSONResponse(status_code=_status_for(exc), content=body)


def create_app(settings: Settings = None, session_factory=None, dispatcher=None, directory=None) -> FastAPI:
    """
    Build the application.

    Tests pass their own session factory and dispatcher; deployments with a
    user directory pass an ``ApproverDirectory`` to assign steps at submission.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_from_settings(settings)
        factory = session_factory or build_session_factory(build_engine(settings.database_url))
        runtime = build_runtime(settings, factory, dispatcher=dispatcher, directory=directory)
        app.state.runtime = runtime
        if settings.approval_rules_file:
            from reqflow.db.seed import seed_from_settings

            with factory() as db:
                seed_from_settings(db, settings)
        logger.info("%s started", settings.app_name)
        try:
            yield
        finally:
            runtime.close()

    app = FastAPI(
        title=settings.app_name,
        description="Requisition approval workflow engine",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_exception_handler(WorkflowError, workflow_error_handler)

    app.include_router(requisitions.router, prefix="/api")
    app.include_router(approval_rules.router, prefix="/api")
    app.include_router(audit.router, prefix="/api")

    @app.get("/health")
    def health_check():
        return {"status": "healthy", "version": __version__}

    return app
