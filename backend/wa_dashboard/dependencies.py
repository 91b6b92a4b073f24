from fastapi import Request

from wa_dashboard.infra.db import get_db_session
from wa_dashboard.infra.media_store import LocalMediaStore, resolve_media_store
from wa_dashboard.infra.whatsapp import resolve_app_whatsapp_gateway, resolve_whatsapp_gateway
from wa_dashboard.settings import settings
from wa_dashboard.shared.pacing import NoPacing


def get_whatsapp_gateway(request: Request):  # noqa: ANN201
    gateway = resolve_app_whatsapp_gateway(request)
    if gateway is None:
        gateway = resolve_whatsapp_gateway(settings)
        request.app.state.whatsapp_gateway = gateway
    return gateway


def get_pacer(request: Request):  # noqa: ANN201
    pacer = getattr(request.app.state, "pacer", None)
    if pacer is None:
        services = getattr(request.app.state, "services", None)
        pacer = getattr(services, "pacer", None) if services is not None else None
    return pacer or NoPacing()


def get_media_store(request: Request) -> LocalMediaStore:
    store = getattr(request.app.state, "media_store", None)
    if store is None:
        store = resolve_media_store(settings)
        request.app.state.media_store = store
    return store


def get_session_factory_from_app(request: Request):  # noqa: ANN201
    factory = getattr(request.app.state, "db_session_factory", None)
    if factory is None:
        from wa_dashboard.infra.db import get_session_factory

        factory = get_session_factory()
    return factory
