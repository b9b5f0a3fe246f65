"""FastAPI application factory for the discovery control plane."""

import logging
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from discovery_agent import __version__
from discovery_agent.core.exceptions import (
    BudgetExceededError,
    DiscoveryError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from discovery_agent.db.engine import init_db

logger = logging.getLogger(__name__)

# Load .env file from project root
_project_root = Path(__file__).parent.parent.parent
_env_file = _project_root / ".env"
if _env_file.exists():
    load_dotenv(_env_file)


def _error(status_code: int, error: str, message: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": {"error": error, "message": message, **extra}},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Map domain exceptions to HTTP responses."""

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error(400, "validation_error", "Invalid request", errors=jsonable_encoder(exc.errors()))

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
        return _error(400, "validation_error", str(exc))

    @app.exception_handler(InvalidTransitionError)
    async def transition_handler(request: Request, exc: InvalidTransitionError) -> JSONResponse:
        return _error(400, "invalid_state", f"Invalid state: {exc}")

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error(404, "not_found", str(exc))

    @app.exception_handler(BudgetExceededError)
    async def budget_handler(request: Request, exc: BudgetExceededError) -> JSONResponse:
        return _error(429, "budget_exceeded", str(exc), **exc.details)

    @app.exception_handler(DiscoveryError)
    async def discovery_error_handler(request: Request, exc: DiscoveryError) -> JSONResponse:
        logger.error(f"Unhandled discovery error on {request.url.path}: {exc}")
        return _error(500, "internal_error", str(exc))


def create_app(init_database: bool = True) -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Discovery Agent",
        description="Finds venues serving planted products on delivery platforms",
        version=__version__,
    )

    # Initialize database tables
    if init_database:
        init_db()

    register_exception_handlers(app)

    # Include routers (import here to avoid circular imports)
    from discovery_agent.web.routes import budget, feedback, health, review, runs, strategies

    app.include_router(runs.router)
    app.include_router(budget.router)
    app.include_router(strategies.router)
    app.include_router(review.router)
    app.include_router(feedback.router)
    app.include_router(health.router)

    return app
