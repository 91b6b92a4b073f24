import atexit
import logging
import re

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import DEPLOYMENT_ENVIRONMENT, SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

logger = logging.getLogger(__name__)

# Graph API paths embed phone-number, account and media ids: /v18.0/<id>/messages.
_GRAPH_ID_SEGMENT = re.compile(r"(?<=/)\d{5,}(?=/|$)")

_state = {"configured": False, "shut_down": False}
_instrumented_engines: set[int] = set()


def graph_path_template(path: str) -> str:
    return _GRAPH_ID_SEGMENT.sub("{id}", path)


def _set_http_attributes(span, *, scheme: str | None, host: str | None, path: str) -> None:  # noqa: ANN001
    if span is None or not span.is_recording():
        return
    span.set_attribute("http.target", path)
    if scheme and host:
        span.set_attribute("http.url", f"{scheme}://{host}{path}")


def _server_request_hook(span, scope) -> None:  # noqa: ANN001
    # Dashboard paths carry phone numbers (/api/messages/{phone}); report the route template.
    route_path = getattr(scope.get("route"), "path", None)
    host = (scope.get("server") or (None, None))[0]
    _set_http_attributes(span, scheme=scope.get("scheme"), host=host, path=route_path or scope.get("path", "/"))


def _graph_request_hook(span, request) -> None:  # noqa: ANN001
    # Drops the query string (media download URLs carry signed tokens) and numeric ids.
    url = request.url
    _set_http_attributes(span, scheme=url.scheme, host=url.host, path=graph_path_template(url.path))


def configure_tracing(app_settings) -> None:  # noqa: ANN001
    if _state["configured"]:
        return

    attributes = {
        SERVICE_NAME: app_settings.otel_service_name or app_settings.app_name,
        DEPLOYMENT_ENVIRONMENT: app_settings.deployment_env,
    }
    if app_settings.service_version:
        attributes[SERVICE_VERSION] = app_settings.service_version
    provider = TracerProvider(resource=Resource.create(attributes))
    trace.set_tracer_provider(provider)

    endpoint = app_settings.otel_exporter_otlp_endpoint
    if endpoint and not app_settings.testing:
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=endpoint.startswith("http://")))
        )
    else:
        logger.debug("tracing_exporter_disabled")

    HTTPXClientInstrumentor().instrument(tracer_provider=provider, request_hook=_graph_request_hook)
    _state["configured"] = True
    atexit.register(shutdown_tracing)


def instrument_fastapi(app: FastAPI, *, tracer_provider=None) -> None:  # noqa: ANN001
    FastAPIInstrumentor().instrument_app(
        app,
        tracer_provider=tracer_provider or trace.get_tracer_provider(),
        server_request_hook=_server_request_hook,
    )


def instrument_sqlalchemy(engine) -> None:  # noqa: ANN001
    if engine is None or id(engine) in _instrumented_engines:
        return
    SQLAlchemyInstrumentor().instrument(
        engine=engine,
        tracer_provider=trace.get_tracer_provider(),
        capture_statement=False,
    )
    _instrumented_engines.add(id(engine))


def shutdown_tracing() -> None:
    if _state["shut_down"]:
        return
    _state["shut_down"] = True
    provider = trace.get_tracer_provider()
    try:
        for method in ("force_flush", "shutdown"):
            hook = getattr(provider, method, None)
            if callable(hook):
                hook()
    except Exception as exc:  # noqa: BLE001
        logger.warning("tracing_shutdown_failed", extra={"extra": {"error": type(exc).__name__}})
