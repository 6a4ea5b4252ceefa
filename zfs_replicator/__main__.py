"""Main entry point for running the application."""

import uvicorn

from zfs_replicator.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "zfs_replicator.api.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
