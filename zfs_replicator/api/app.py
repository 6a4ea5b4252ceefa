"""FastAPI application setup."""

import os

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import RedirectResponse

from zfs_replicator.api.middleware.auth import require_admin
from zfs_replicator.config import get_settings
from zfs_replicator.logging_config import get_logger, setup_logging

setup_logging()
logger = get_logger(__name__)

settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Snapshot-based ZFS replication to a remote backup host, with guarded restores",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    """Build the replication services and start the timer."""
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Dataset: {settings.dataset} -> {settings.remote_host}:{settings.remote_dataset}")

    # Tests attach their own container before the app starts
    if getattr(app.state, "container", None) is not None:
        logger.info("Using pre-configured service container")
        return

    if os.environ.get("PYTEST_CURRENT_TEST"):
        logger.info("Skipping configuration validation and service startup in test environment")
        return

    from zfs_replicator.config.validation import validate_configuration

    try:
        validate_configuration(settings)
        logger.info("Configuration validation passed")
    except Exception as e:
        logger.error(f"Configuration validation failed: {e}")
        raise

    from zfs_replicator.database import init_db
    from zfs_replicator.services.container import ServiceContainer

    init_db()
    logger.info("Database initialized")

    container = ServiceContainer.from_settings(settings)
    app.state.container = container
    app.state.owns_container = True
    await container.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the timer and give in-flight transfers a grace period."""
    logger.info(f"Shutting down {settings.app_name}")
    if getattr(app.state, "owns_container", False):
        try:
            await app.state.container.shutdown()
        except Exception as e:
            logger.error(f"Error during shutdown: {e}", exc_info=True)


from zfs_replicator.api.routes import (  # noqa: E402
    health,
    replication,
    restore,
    snapshots,
    status,
)

app.include_router(health.router, prefix=settings.api_prefix, tags=["Health"])

protected = [Depends(require_admin)]
for route_module, tag in [
    (status, "Status"),
    (snapshots, "Snapshots"),
    (replication, "Replication"),
    (restore, "Restore"),
]:
    app.include_router(
        route_module.router, prefix=settings.api_prefix, tags=[tag], dependencies=protected
    )


@app.get("/")
async def root():
    """Redirect root to API documentation."""
    return RedirectResponse(url="/docs")
