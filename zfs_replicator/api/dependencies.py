"""FastAPI dependencies shared by the routes."""

from fastapi import HTTPException, Request, status

from zfs_replicator.services.container import ServiceContainer


def get_container(request: Request) -> ServiceContainer:
    """Return the service container attached to the running app."""
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Replication services are not initialized",
        )
    return container
