import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Callable

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from opentelemetry import trace
from starlette.middleware.base import BaseHTTPMiddleware

from wa_dashboard.api.problem_details import install_problem_handlers
from wa_dashboard.api.routes_agents import router as agents_router
from wa_dashboard.api.routes_contacts import router as contacts_router
from wa_dashboard.api.routes_health import router as health_router
from wa_dashboard.api.routes_media import router as media_router
from wa_dashboard.api.routes_messages import router as messages_router
from wa_dashboard.api.routes_metrics import router as metrics_router
from wa_dashboard.api.routes_segments import router as segments_router
from wa_dashboard.api.routes_stats import router as stats_router
from wa_dashboard.api.routes_templates import router as templates_router
from wa_dashboard.api.routes_webhook import router as webhook_router
from wa_dashboard.api.routes_workflows import router as workflows_router
from wa_dashboard.infra.db import dispose_engine, get_session_factory
from wa_dashboard.infra.logging import clear_log_context, configure_logging, update_log_context
from wa_dashboard.infra.media_store import MEDIA_URL_PREFIX
from wa_dashboard.infra.metrics import configure_metrics
from wa_dashboard.infra.tracing import configure_tracing, instrument_fastapi
from wa_dashboard.jobs.scheduler import build_scheduler
from wa_dashboard.services import build_app_services
from wa_dashboard.settings import settings

logger = logging.getLogger(__name__)
access_logger = logging.getLogger("wa_dashboard.request")

DEV_DASHBOARD_ORIGIN = "http://localhost:3000"

ROUTERS = (
    health_router,
    webhook_router,
    messages_router,
    contacts_router,
    stats_router,
    segments_router,
    templates_router,
    workflows_router,
    media_router,
    agents_router,
)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Request id, log context, one access log line and the HTTP series per request."""

    def __init__(self, app: FastAPI, metrics_client) -> None:  # noqa: ANN001
        super().__init__(app)
        self.metrics = metrics_client

    async def dispatch(self, request: Request, call_next: Callable):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        update_log_context(request_id=request_id, method=request.method, path=request.url.path)
        span = trace.get_current_span()
        if span.is_recording():
            span.set_attribute("request_id", request_id)

        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            duration = time.perf_counter() - start
            # Route templates keep phone numbers and ids out of label values.
            route_label = getattr(request.scope.get("route"), "path", "unmatched")
            self.metrics.record_http_request(request.method, route_label, status_code)
            self.metrics.record_http_latency(request.method, route_label, status_code, duration)
            if status_code >= 500:
                self.metrics.record_http_5xx(request.method, route_label)
            update_log_context(status_code=status_code, latency_ms=int(duration * 1000))
            access_logger.info("request")
            clear_log_context()


def _cors_origins(app_settings) -> list[str]:  # noqa: ANN001
    if app_settings.cors_origins:
        return list(app_settings.cors_origins)
    return [DEV_DASHBOARD_ORIGIN] if app_settings.app_env == "dev" else []


def create_app(app_settings, *, tracer_provider=None) -> FastAPI:  # noqa: ANN001
    if tracer_provider is None:
        configure_tracing(app_settings)
    configure_logging(app_settings.log_level)
    metrics_client = configure_metrics(app_settings.metrics_enabled)
    services = build_app_services(app_settings, metrics=metrics_client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Tests pre-seed app.state with fakes; only fill in what is missing.
        state = app.state
        state.services = getattr(state, "services", None) or services
        state.app_settings = getattr(state, "app_settings", None) or app_settings
        state.metrics = getattr(state, "metrics", None) or state.services.metrics
        state.whatsapp_gateway = getattr(state, "whatsapp_gateway", None) or state.services.whatsapp_gateway
        state.pacer = getattr(state, "pacer", None) or state.services.pacer
        state.media_store = getattr(state, "media_store", None) or state.services.media_store
        state.db_session_factory = getattr(state, "db_session_factory", None) or get_session_factory()

        scheduler = None
        if state.app_settings.workflow_scheduler_enabled and not state.app_settings.testing:
            scheduler = build_scheduler(
                state.app_settings,
                state.db_session_factory,
                state.whatsapp_gateway,
                pacer=state.pacer,
            )
            scheduler.start()
        state.workflow_scheduler = scheduler
        try:
            yield
        finally:
            if scheduler is not None:
                await scheduler.stop()
            await dispose_engine()

    app = FastAPI(title="WhatsApp Business Dashboard", version="1.0.0", lifespan=lifespan)
    app.mount(
        MEDIA_URL_PREFIX,
        StaticFiles(directory=app_settings.media_upload_root, check_dir=False),
        name="media",
    )

    app.add_middleware(RequestContextMiddleware, metrics_client=metrics_client)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(app_settings),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # OTel wraps every middleware, so it is added last.
    instrument_fastapi(app, tracer_provider=tracer_provider)

    install_problem_handlers(app)
    for router in ROUTERS:
        app.include_router(router)
    if app_settings.metrics_enabled:
        app.include_router(metrics_router)
    return app


app = create_app(settings)
