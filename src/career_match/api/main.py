"""Main FastAPI application for Career Match."""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from career_match import __version__
from career_match.api.models import ErrorResponse
from career_match.api.routes import all_routers
from career_match.config import settings
from career_match.core.exceptions import CareerMatchError
from career_match.service import CareerMatchService, build_service
from career_match.utils.logging import configure_logging, get_logger

# Configure logging
configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting Career Match API")

    service = getattr(app.state, "service", None) or build_service()
    app.state.service = service

    import career_match.api.routes as routes_module
    routes_module.service = service

    if service.settings.run_scheduler:
        service.scheduler.start()

    logger.info("Application startup completed successfully")

    yield

    logger.info("Shutting down Career Match API")
    try:
        await service.close()
        logger.info("Application shutdown completed successfully")
    except Exception as e:
        logger.error("Application shutdown error", error=str(e))
    finally:
        routes_module.service = None


def create_app(service: Optional[CareerMatchService] = None) -> FastAPI:
    """Create and configure the FastAPI application."""

    app = FastAPI(
        title="Career Match API",
        description="Adaptive job matching with feedback learning and throttled application dispatch",
        version=__version__,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan
    )
    app.state.service = service

    setup_middleware(app)
    setup_exception_handlers(app)

    for router in all_routers:
        app.include_router(router, prefix="/api/v1")

    @app.get("/")
    async def root():
        return {
            "name": "Career Match API",
            "version": __version__,
            "status": "running",
            "docs": "/docs" if settings.debug else "disabled"
        }

    return app


def setup_middleware(app: FastAPI) -> None:
    """Setup application middleware."""

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    if settings.allowed_hosts:
        app.add_middleware(
            TrustedHostMiddleware,
            allowed_hosts=settings.allowed_hosts
        )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = asyncio.get_running_loop().time()

        logger.info(
            "Request started",
            method=request.method,
            url=str(request.url),
            client_ip=request.client.host if request.client else None
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                method=request.method,
                url=str(request.url),
                error=str(e),
                duration_seconds=asyncio.get_running_loop().time() - start_time
            )
            raise

        logger.info(
            "Request completed",
            method=request.method,
            url=str(request.url),
            status_code=response.status_code,
            duration_seconds=asyncio.get_running_loop().time() - start_time
        )
        return response


def _error(status_code: int, error: str, message: str, details=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=error,
            message=message,
            details=details,
            timestamp=datetime.now(timezone.utc)
        ).model_dump(mode="json")
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Setup global exception handlers."""

    @app.exception_handler(CareerMatchError)
    async def domain_exception_handler(request: Request, exc: CareerMatchError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(
            "Domain error",
            error_type=type(exc).__name__,
            status_code=exc.status_code,
            message=exc.message,
            entity_id=exc.entity_id,
            url=str(request.url)
        )
        return _error(
            exc.status_code,
            type(exc).__name__,
            exc.message,
            {"entity_id": exc.entity_id} if exc.entity_id else None
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        logger.warning(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            url=str(request.url)
        )
        return _error(exc.status_code, "HTTPException", str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.warning(
            "Validation error",
            errors=exc.errors(),
            url=str(request.url)
        )
        return _error(
            422,
            "ValidationError",
            "Request validation failed",
            {"validation_errors": [
                {"loc": list(e.get("loc", [])), "msg": e.get("msg"), "type": e.get("type")}
                for e in exc.errors()
            ]}
        )

    @app.exception_handler(StarletteHTTPException)
    async def starlette_exception_handler(request: Request, exc: StarletteHTTPException):
        logger.error(
            "Starlette HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            url=str(request.url)
        )
        return _error(exc.status_code, "StarletteHTTPException", exc.detail or "Internal server error")

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            url=str(request.url)
        )
        return _error(
            500,
            "InternalServerError",
            "An unexpected error occurred",
            {"error_type": type(exc).__name__} if settings.debug else None
        )


# Create the application instance
app = create_app()
