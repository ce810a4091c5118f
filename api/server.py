"""FastAPI server for COA template assignment.

Main entry point for the API server.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import health, coa
from coa_engine.assignment import AssignmentService, build_assignment_service
from coa_engine.settings import CoaSettings
from core.observability.logging import configure_logging, get_logger

logger = get_logger(__name__)


def create_app(
    settings: Optional[CoaSettings] = None,
    service: Optional[AssignmentService] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to wire the service from (defaults to the environment)
        service: Pre-built service (tests)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        # Startup
        resolved = settings or CoaSettings.from_env()
        configure_logging(level=resolved.log_level, json_format=resolved.log_json, force=True)
        app.state.assignment_service = service or build_assignment_service(resolved)
        logger.info("COA API starting up")

        yield

        # Shutdown
        await app.state.assignment_service.repository.close()
        logger.info("COA API shutting down")

    app = FastAPI(
        title="COA Template API",
        description="Chart-of-accounts template assignment and validation",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(coa.router, prefix="/coa", tags=["Chart of Accounts"])

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.server:create_app", factory=True, host="0.0.0.0", port=8000, reload=True)
