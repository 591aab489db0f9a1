"""
FastAPI application
"""
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
import logging
from typing import Optional

from .routers import workflows, executions, webhooks, monitoring
from .middleware import RequestLoggingMiddleware
from .models import ErrorResponse, StatusResponse
from .. import __version__
from ..config import EngineSettings
from ..core.engine import ExecutionEngine
from ..core.registry import NodeRegistry, default_registry
from ..core.triggers import TriggerService, ScheduleRunner
from ..integrations import EventBus
from ..monitoring import MetricsRecorder
from ..storage.repository import InMemoryWorkflowRepository, InMemoryExecutionStore
from ..storage.sqlalchemy_repository import DatabaseManager, SQLAlchemyWorkflowRepository, SQLAlchemyExecutionStore


logger = logging.getLogger(__name__)

SERVICE_NAME = "flow-automation-engine"


def _error_body(request: Request, status_code: int, code: str, message: str, details=None) -> dict:
    return ErrorResponse(
        status=status_code,
        code=code,
        message=message,
        details=details,
        requestId=getattr(request.state, "request_id", None)
    ).model_dump(mode="json", exclude_none=True)


def create_app(
    settings: Optional[EngineSettings] = None,
    registry: Optional[NodeRegistry] = None
) -> FastAPI:
    """Build the API application; components are created in the lifespan"""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        config = settings or EngineSettings.from_env()
        logger.info("Starting Flow Automation Engine API...")

        db_manager = None
        if config.database_url:
            db_manager = DatabaseManager(config.database_url)
            await db_manager.initialize()
            workflow_repo = SQLAlchemyWorkflowRepository(db_manager)
            execution_store = SQLAlchemyExecutionStore(db_manager)
        else:
            logger.info("DATABASE_URL not set, using in-memory stores")
            workflow_repo = InMemoryWorkflowRepository()
            execution_store = InMemoryExecutionStore()

        event_bus = EventBus()
        metrics = MetricsRecorder()
        engine = ExecutionEngine(
            registry=registry or default_registry(),
            store=execution_store,
            settings=config,
            event_bus=event_bus,
            metrics=metrics
        )
        await engine.start()

        trigger_service = TriggerService(engine, workflow_repo)
        schedule_runner = ScheduleRunner(trigger_service, workflow_repo)
        await schedule_runner.start()

        app.state.settings = config
        app.state.db_manager = db_manager
        app.state.workflows = workflow_repo
        app.state.engine = engine
        app.state.triggers = trigger_service
        app.state.schedules = schedule_runner
        app.state.event_bus = event_bus
        logger.info("Flow Automation Engine API started successfully")

        yield

        logger.info("Shutting down Flow Automation Engine API...")
        await schedule_runner.stop()
        await engine.stop()
        if db_manager is not None:
            await db_manager.close()
        app.state.engine = None
        app.state.triggers = None
        app.state.workflows = None
        logger.info("Flow Automation Engine API shut down successfully")

    app = FastAPI(
        title="Flow Automation Engine API",
        description="Workflow automation backend: node graphs triggered by webhooks, schedules and API calls",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(workflows.router, prefix="/api/v1/workflows", tags=["workflows"])
    app.include_router(executions.router, prefix="/api/v1/executions", tags=["executions"])
    app.include_router(monitoring.router, prefix="/api/v1/monitoring", tags=["monitoring"])
    app.include_router(webhooks.router, prefix="/webhook", tags=["webhooks"])

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if isinstance(exc.detail, dict) and "code" in exc.detail:
            content = dict(exc.detail)
            content.setdefault("requestId", getattr(request.state, "request_id", None))
        else:
            code = "NOT_FOUND" if exc.status_code == status.HTTP_404_NOT_FOUND else "HTTP_ERROR"
            content = _error_body(request, exc.status_code, code, str(exc.detail))
        return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content=_error_body(
                request,
                status.HTTP_422_UNPROCESSABLE_ENTITY,
                "INVALID_REQUEST",
                "Request validation failed",
                {"errors": [{"loc": list(error.get("loc", ())), "msg": error.get("msg")} for error in exc.errors()]}
            )
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body(
                request,
                status.HTTP_500_INTERNAL_SERVER_ERROR,
                "INTERNAL_SERVER_ERROR",
                "An unexpected error occurred"
            )
        )

    @app.get("/", tags=["root"])
    async def root():
        return {
            "name": "Flow Automation Engine API",
            "version": __version__,
            "status": "running",
            "docs": "/docs",
            "health": "/api/v1/monitoring/health"
        }

    @app.get("/api/v1/status", response_model=StatusResponse, tags=["root"])
    async def service_status() -> StatusResponse:
        return StatusResponse(status="ok", service=SERVICE_NAME, version=__version__)

    return app


app = create_app()
