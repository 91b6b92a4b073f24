import secrets

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

router = APIRouter()


def _bearer_or_query_token(request: Request) -> str | None:
    scheme, _, credentials = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials
    return request.query_params.get("token")


def require_scrape_token(request: Request) -> None:
    """Scrapers authenticate with ``METRICS_TOKEN``; prod refuses to serve without one."""
    app_settings = getattr(request.app.state, "app_settings", None)
    if app_settings is None:
        return
    expected = app_settings.metrics_token
    if not expected:
        if app_settings.app_env == "prod":
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Metrics token misconfigured")
        return
    provided = _bearer_or_query_token(request)
    if provided is None or not secrets.compare_digest(provided, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.get("/metrics", dependencies=[Depends(require_scrape_token)])
async def metrics_endpoint(request: Request) -> Response:
    metrics_client = getattr(request.app.state, "metrics", None)
    if metrics_client is None or not metrics_client.enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Metrics disabled")
    payload, content_type = metrics_client.render()
    return Response(content=payload, media_type=content_type)
