"""Main FastAPI application for the Agency Workflows engine."""

from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.endpoints import router, init_dependencies
from .config import AppConfig, get_config
from .core.engine import WorkflowEngine
from .core.execution_history import ExecutionHistory
from .core.handlers import HandlerRegistry, default_registry
from .core.logging import configure_logging, get_logger
from .core.services import HandlerServices
from .core.workflow_manager import WorkflowManager
from .core.workflow_service import WorkflowService
from .storage.database import SessionFactory, init_database
from .storage.services import build_handler_services


def create_app(
    config: Optional[AppConfig] = None,
    session_factory: Optional[SessionFactory] = None,
    services: Optional[HandlerServices] = None,
    registry: Optional[HandlerRegistry] = None
) -> FastAPI:
    """
    Create the FastAPI application with its components wired.

    Without a session factory the global database from the configuration is
    used and its tables are created at startup.
    """
    config = config or get_config()
    registry = registry or default_registry()
    services = services or build_handler_services(config, session_factory)

    workflow_manager = WorkflowManager(session_factory)
    execution_history = ExecutionHistory(session_factory)
    engine = WorkflowEngine(config=config, registry=registry, services=services)
    workflow_service = WorkflowService(engine, workflow_manager, execution_history)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager."""
        configure_logging(config)
        logger = get_logger(__name__)
        logger.info(f"Starting {config.app_name} v{config.app_version}")

        if session_factory is None:
            init_database(config.database_url, config.database_echo)
            logger.info("Database tables created")

        logger.info(f"Registered node types: {', '.join(registry.node_types())}")
        yield
        logger.info(f"Shutting down {config.app_name}")

    app = FastAPI(
        title=config.app_name,
        description="Executes declarative automation workflows with timeouts, conditional branching and audit trails",
        version=config.app_version,
        lifespan=lifespan
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"]
    )
    app.include_router(router)

    init_dependencies(
        workflow_manager=workflow_manager,
        execution_history=execution_history,
        workflow_service=workflow_service,
        handler_registry=registry
    )

    @app.get("/")
    async def root():
        """Root endpoint for health check."""
        return {"message": f"{config.app_name} is running"}

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": "agency-workflows"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("agency_workflows.main:app", **get_config().get_uvicorn_config())
