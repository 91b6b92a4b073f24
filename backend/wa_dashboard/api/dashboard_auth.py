import logging
import secrets

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from wa_dashboard.settings import settings

logger = logging.getLogger(__name__)

security = HTTPBasic(auto_error=False)


def _build_auth_exception(detail: str = "Invalid authentication") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Basic"},
    )


def _resolve_settings(request: Request):  # noqa: ANN202
    return getattr(request.app.state, "app_settings", None) or settings


async def require_dashboard_access(
    request: Request,
    credentials: HTTPBasicCredentials | None = Depends(security),
) -> str | None:
    """Guard for the ``/api`` routes. Returns the authenticated username, or None when open."""
    app_settings = _resolve_settings(request)
    username = app_settings.dashboard_basic_username
    password = app_settings.dashboard_basic_password
    if not username or not password:
        if app_settings.app_env == "prod":
            logger.warning("dashboard_auth_unconfigured", extra={"extra": {"path": request.url.path}})
            raise _build_auth_exception()
        return None

    if not credentials:
        raise _build_auth_exception()
    if secrets.compare_digest(credentials.username, username) and secrets.compare_digest(
        credentials.password, password
    ):
        return credentials.username

    logger.warning("dashboard_auth_failed", extra={"extra": {"path": request.url.path}})
    raise _build_auth_exception()
