"""HTTP Basic authentication for operator endpoints."""

import secrets
from typing import Optional

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from zfs_replicator.api.dependencies import get_container
from zfs_replicator.services.container import ServiceContainer

basic_auth = HTTPBasic(auto_error=False)


async def require_admin(
    credentials: Optional[HTTPBasicCredentials] = Security(basic_auth),
    container: ServiceContainer = Depends(get_container),
) -> None:
    """
    Require the admin password when one is configured.

    The password is read from the environment variable named by
    ``admin_password_env``; when that variable is unset, endpoints are open.
    """
    password = container.settings.get_admin_password()
    if not password:
        return

    if credentials is None or not secrets.compare_digest(
        credentials.password.encode("utf-8"), password.encode("utf-8")
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Basic"},
        )
