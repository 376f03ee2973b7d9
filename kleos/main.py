"""
KLEOS - Reputation-weighted prediction markets on Solana.

FastAPI application factory and routers.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from kleos.api.deps import close_clients
from kleos.api.routes_cron import router as cron_router
from kleos.api.routes_fairscale import router as fairscale_router
from kleos.api.routes_health import router as health_router
from kleos.api.routes_market_utils import router as market_utils_router
from kleos.api.routes_markets import router as markets_router
from kleos.api.routes_positions import router as positions_router
from kleos.api.routes_protocol import router as protocol_router
from kleos.config import settings
from kleos.errors import ErrorKind, KleosError

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.INVALID_STATE: 409,
    ErrorKind.UNAUTHORIZED: 403,
    ErrorKind.TOO_EARLY: 425,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.UPSTREAM_UNAVAILABLE: 503,
}


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_clients()


async def kleos_error_handler(request: Request, exc: KleosError) -> ORJSONResponse:
    status_code = STATUS_BY_KIND.get(exc.kind, 500)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.kind.value}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.kind.value}: {exc.message}")
    return ORJSONResponse(status_code=status_code, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    detail = f"{location}: {first.get('msg', 'invalid request')}" if location else "invalid request"
    return ORJSONResponse(
        status_code=400,
        content={"error": ErrorKind.INVALID_INPUT.value, "detail": detail},
    )


def create_app() -> FastAPI:
    """
    Create FastAPI application.

    Returns:
        FastAPI app instance
    """
    configure_logging()

    app = FastAPI(
        title="KLEOS",
        description="Prediction markets where stakes are weighted by FairScale reputation and timing.",
        version="0.1.0",
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(KleosError, kleos_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    app.include_router(health_router)
    app.include_router(protocol_router)
    app.include_router(markets_router)
    app.include_router(positions_router)
    app.include_router(fairscale_router)
    app.include_router(market_utils_router)
    app.include_router(cron_router)

    @app.get("/")
    async def root():
        """Root endpoint."""
        return {
            "name": "KLEOS",
            "version": "0.1.0",
            "description": "Reputation-weighted prediction markets on Solana.",
        }

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("kleos.main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())
