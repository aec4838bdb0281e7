"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from commsync.domain.errors import CommSyncError
from commsync.infrastructure import get_settings
from commsync.infrastructure.container import get_engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load the canonical store and run the scheduler for the app's lifetime."""
    settings = get_settings()
    logger.info(f"Starting {settings.app_name} v{settings.app_version} ({settings.environment})")

    engine = get_engine()
    await engine.start(with_scheduler=True)
    linked = engine.accounts.list_linked(settings.user_id)
    logger.info(
        f"Sync engine ready: {len(linked)} linked accounts, "
        f"{len(engine.store)} cached messages"
    )

    yield

    logger.info("Stopping scheduler and persisting store...")
    await engine.stop()
    logger.info("Shutdown complete")


async def domain_error_handler(request: Request, exc: CommSyncError) -> JSONResponse:
    # Routes translate expected errors; anything reaching here escaped that mapping
    logger.error(f"Unhandled {type(exc).__name__} on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": str(exc)})


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Unified inbox sync across email, chat and SMS providers",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(CommSyncError, domain_error_handler)

    from commsync.api.routes import router
    from commsync.infrastructure.http.sms_ingest import router as webhook_router

    app.include_router(router)
    app.include_router(webhook_router)

    return app


app = create_app()
