import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from flowbundle.core.config import get_settings
from flowbundle.core.errors import (
    ArchiveUnreadable,
    NotFoundError,
    NotMarkup,
    PermissionDenied,
    StorageError,
)
from flowbundle.core.limiter import limiter
from flowbundle.core.middleware import RequestIdMiddleware, SecurityHeadersMiddleware
from flowbundle.db.models import Base
from flowbundle.db.seed import seed_sectors
from flowbundle.db.session import async_session_factory, engine
from flowbundle.files.router import flow_files_router
from flowbundle.files.router import router as files_router
from flowbundle.flows.router import router as flows_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    settings = get_settings()
    if settings.seed_sectors:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with async_session_factory() as session:
            added = await seed_sectors(session)
            await session.commit()
        logger.info("Sector seeding done (%d added)", added)
    yield


def _error_handler(status_code: int):
    async def _handle(request: Request, exc: Exception) -> JSONResponse:
        if status_code >= 500:
            logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    return _handle


def create_app() -> FastAPI:
    settings = get_settings()

    _app = FastAPI(
        title="FlowBundle API",
        description="Publishing and rendering of process flow bundles",
        version="0.1.0",
        lifespan=lifespan,
    )

    # ---------------------------------------------------------------------------
    # Rate limiter state: SlowAPI reads limiter from app.state
    # ---------------------------------------------------------------------------
    _app.state.limiter = limiter
    _app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # ---------------------------------------------------------------------------
    # Domain errors raised by the service layer
    # ---------------------------------------------------------------------------
    _app.add_exception_handler(NotFoundError, _error_handler(status.HTTP_404_NOT_FOUND))
    _app.add_exception_handler(NotMarkup, _error_handler(status.HTTP_404_NOT_FOUND))
    _app.add_exception_handler(PermissionDenied, _error_handler(status.HTTP_403_FORBIDDEN))
    _app.add_exception_handler(
        ArchiveUnreadable, _error_handler(status.HTTP_422_UNPROCESSABLE_ENTITY)
    )
    _app.add_exception_handler(StorageError, _error_handler(status.HTTP_502_BAD_GATEWAY))

    # ---------------------------------------------------------------------------
    # Middleware (registered outermost → innermost; executed innermost → outermost)
    # ---------------------------------------------------------------------------

    # CORS: credentials are allowed because the session cookie authenticates
    # rendered pages opened from the front end.
    _app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # SlowAPI: must be before security headers so 429s also get security headers
    _app.add_middleware(SlowAPIMiddleware)

    _app.add_middleware(SecurityHeadersMiddleware)

    # Request ID: inject / forward X-Request-ID and bind to ContextVar
    _app.add_middleware(RequestIdMiddleware)

    # ---------------------------------------------------------------------------
    # Sentry: initialised here so it captures startup errors too
    # ---------------------------------------------------------------------------
    from flowbundle.core.sentry import init_sentry

    init_sentry(
        dsn=settings.sentry_dsn,
        environment="development" if settings.debug else "production",
    )

    # ---------------------------------------------------------------------------
    # Logging: configure structlog before any routers log anything
    # ---------------------------------------------------------------------------
    from flowbundle.core.logging import configure_structlog

    configure_structlog(debug=settings.debug)

    # ---------------------------------------------------------------------------
    # Routes
    # ---------------------------------------------------------------------------

    @_app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "ok"}

    _app.include_router(flows_router)
    _app.include_router(flow_files_router)
    _app.include_router(files_router)

    return _app


app = create_app()
