"""
Savings Group API Application Factory
"""

from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from .system import get_system
from .members import router as members_router
from .loans import router as loans_router
from .notifications import router as notifications_router
from ..errors import (
    DependencyFailure, InsufficientCoverage, InvalidAmount, InvalidState, NotFound, SavingsGroupError
)
from ..service import SavingsGroupSystem
from .. import __version__


def _error_response(status_code: int, error: str, exc: Exception, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "detail": str(exc), **extra})


def register_exception_handlers(app: FastAPI) -> None:
    """Map the loan engine's errors to HTTP responses"""

    @app.exception_handler(NotFound)
    async def not_found_handler(request: Request, exc: NotFound):
        return _error_response(404, "not_found", exc, entity_type=exc.entity_type)

    @app.exception_handler(InvalidState)
    async def invalid_state_handler(request: Request, exc: InvalidState):
        return _error_response(409, "invalid_state", exc, current=exc.current, expected=exc.expected)

    @app.exception_handler(InsufficientCoverage)
    async def coverage_handler(request: Request, exc: InsufficientCoverage):
        return _error_response(422, "insufficient_coverage", exc, shortfall=str(exc.shortfall))

    @app.exception_handler(InvalidAmount)
    async def invalid_amount_handler(request: Request, exc: InvalidAmount):
        return _error_response(422, "invalid_amount", exc)

    @app.exception_handler(DependencyFailure)
    async def dependency_handler(request: Request, exc: DependencyFailure):
        return _error_response(503, "dependency_failure", exc)

    @app.exception_handler(SavingsGroupError)
    async def savings_group_error_handler(request: Request, exc: SavingsGroupError):
        return _error_response(422, "invalid_request", exc)


def create_app(system: Optional[SavingsGroupSystem] = None) -> FastAPI:
    """
    Create and configure the FastAPI application

    Args:
        system: System to serve; the lazily created global one when omitted
    """
    app = FastAPI(
        title="Savings Group Loans API",
        description="Member savings and guarantor-backed loan lifecycle",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if system is not None:
        app.dependency_overrides[get_system] = lambda: system

    register_exception_handlers(app)

    # Include routers
    app.include_router(members_router, prefix="/members", tags=["Members"])
    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(notifications_router, prefix="/notifications", tags=["Notifications"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "savings_group_api",
            "version": __version__
        }

    return app


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "savings_group.api:app",
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )


# The system behind this instance is created on the first request
app = create_app()
