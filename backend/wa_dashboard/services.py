from __future__ import annotations

from dataclasses import dataclass

from wa_dashboard.infra.media_store import LocalMediaStore, resolve_media_store
from wa_dashboard.infra.metrics import Metrics, configure_metrics
from wa_dashboard.infra.whatsapp import (
    GraphWhatsAppGateway,
    NoopWhatsAppGateway,
    resolve_whatsapp_gateway,
)
from wa_dashboard.shared.pacing import FixedIntervalPacer, build_pacer


@dataclass
class AppServices:
    """Typed container for runtime services stored on `app.state.services`."""

    whatsapp_gateway: GraphWhatsAppGateway | NoopWhatsAppGateway
    pacer: FixedIntervalPacer
    media_store: LocalMediaStore
    metrics: Metrics


def build_app_services(app_settings, *, metrics: Metrics | None = None) -> AppServices:  # noqa: ANN001
    metrics_client = metrics or configure_metrics(app_settings.metrics_enabled)
    return AppServices(
        whatsapp_gateway=resolve_whatsapp_gateway(app_settings),
        pacer=build_pacer(app_settings),
        media_store=resolve_media_store(app_settings),
        metrics=metrics_client,
    )
