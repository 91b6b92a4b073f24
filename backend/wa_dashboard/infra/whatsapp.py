from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from wa_dashboard.infra.metrics import metrics

logger = logging.getLogger(__name__)

MEDIA_TYPES = ("image", "document", "audio", "video")


class WhatsAppApiError(RuntimeError):
    """Raised by read operations (templates, media lookups) when the Graph API call fails."""


@dataclass(frozen=True)
class SendResult:
    success: bool
    message_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class MediaUploadResult:
    success: bool
    media_id: str | None = None
    error: str | None = None


class NoopWhatsAppGateway:
    async def send_text(self, *, to: str, body: str) -> SendResult:  # noqa: D401
        del to, body
        logger.info("whatsapp_send_skipped", extra={"extra": {"mode": "noop", "kind": "text"}})
        return SendResult(success=False, error="whatsapp_disabled")

    async def send_template(
        self,
        *,
        to: str,
        template_name: str,
        language_code: str = "en_US",
        components: list[dict[str, Any]] | None = None,
    ) -> SendResult:
        del to, language_code, components
        logger.info(
            "whatsapp_send_skipped",
            extra={"extra": {"mode": "noop", "kind": "template", "template": template_name}},
        )
        return SendResult(success=False, error="whatsapp_disabled")

    async def send_media(
        self,
        *,
        to: str,
        media_type: str,
        media_id: str,
        caption: str | None = None,
        filename: str | None = None,
    ) -> SendResult:
        del to, media_id, caption, filename
        logger.info("whatsapp_send_skipped", extra={"extra": {"mode": "noop", "kind": media_type}})
        return SendResult(success=False, error="whatsapp_disabled")

    async def upload_media(self, *, content: bytes, filename: str, mime_type: str) -> MediaUploadResult:
        del content, filename, mime_type
        return MediaUploadResult(success=False, error="whatsapp_disabled")

    async def get_media_url(self, media_id: str) -> str | None:
        del media_id
        return None

    async def download_media(self, url: str) -> bytes | None:
        del url
        return None

    async def list_templates(self) -> list[dict[str, Any]]:
        return []


class GraphWhatsAppGateway:
    """WhatsApp Cloud API client.

    Sends never raise: transport errors, timeouts and HTTP error statuses come back as a
    failed ``SendResult`` so callers can log them and move on. Read operations raise
    ``WhatsAppApiError`` instead.
    """

    def __init__(self, app_settings, http_client: httpx.AsyncClient | None = None) -> None:  # noqa: ANN001
        self.app_settings = app_settings
        self.http_client = http_client

    @property
    def _api_root(self) -> str:
        base = self.app_settings.whatsapp_graph_base_url.rstrip("/")
        return f"{base}/{self.app_settings.whatsapp_api_version}"

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.app_settings.whatsapp_token}"}

    def _configured(self) -> bool:
        return bool(self.app_settings.whatsapp_token and self.app_settings.whatsapp_phone_number_id)

    async def send_text(self, *, to: str, body: str) -> SendResult:
        payload = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "text",
            "text": {"body": body},
        }
        return await self._post_message(payload, operation="send_text")

    async def send_template(
        self,
        *,
        to: str,
        template_name: str,
        language_code: str = "en_US",
        components: list[dict[str, Any]] | None = None,
    ) -> SendResult:
        template: dict[str, Any] = {"name": template_name, "language": {"code": language_code}}
        if components:
            template["components"] = components
        payload = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "template",
            "template": template,
        }
        return await self._post_message(payload, operation="send_template")

    async def send_media(
        self,
        *,
        to: str,
        media_type: str,
        media_id: str,
        caption: str | None = None,
        filename: str | None = None,
    ) -> SendResult:
        if media_type not in MEDIA_TYPES:
            return SendResult(success=False, error=f"unsupported_media_type:{media_type}")
        media: dict[str, Any] = {"id": media_id}
        if caption and media_type != "audio":
            media["caption"] = caption
        if filename and media_type == "document":
            media["filename"] = filename
        payload = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": media_type,
            media_type: media,
        }
        return await self._post_message(payload, operation=f"send_{media_type}")

    async def upload_media(self, *, content: bytes, filename: str, mime_type: str) -> MediaUploadResult:
        if not self._configured():
            logger.warning("whatsapp_not_configured")
            return MediaUploadResult(success=False, error="whatsapp_not_configured")
        url = f"{self._api_root}/{self.app_settings.whatsapp_phone_number_id}/media"
        response, error = await self._request(
            "POST",
            url,
            operation="upload_media",
            data={"messaging_product": "whatsapp", "type": mime_type},
            files={"file": (filename, content, mime_type)},
        )
        if response is None:
            return MediaUploadResult(success=False, error=error)
        media_id = _json_field(response, "id")
        if not media_id:
            return MediaUploadResult(success=False, error="whatsapp_missing_media_id")
        return MediaUploadResult(success=True, media_id=str(media_id))

    async def get_media_url(self, media_id: str) -> str | None:
        response, error = await self._request("GET", f"{self._api_root}/{media_id}", operation="media_url")
        if response is None:
            raise WhatsAppApiError(error or "whatsapp_request_failed")
        url = _json_field(response, "url")
        return str(url) if url else None

    async def download_media(self, url: str) -> bytes | None:
        response, error = await self._request("GET", url, operation="media_download")
        if response is None:
            raise WhatsAppApiError(error or "whatsapp_request_failed")
        return response.content

    async def list_templates(self) -> list[dict[str, Any]]:
        account_id = self.app_settings.whatsapp_business_account_id
        if not account_id or not self.app_settings.whatsapp_token:
            raise WhatsAppApiError("whatsapp_not_configured")
        response, error = await self._request(
            "GET",
            f"{self._api_root}/{account_id}/message_templates",
            operation="list_templates",
            params={"status": "APPROVED", "limit": 100},
        )
        if response is None:
            raise WhatsAppApiError(error or "whatsapp_request_failed")
        data = _json_field(response, "data")
        return list(data) if isinstance(data, list) else []

    async def _post_message(self, payload: dict[str, Any], *, operation: str) -> SendResult:
        if not self._configured():
            logger.warning("whatsapp_not_configured")
            return SendResult(success=False, error="whatsapp_not_configured")
        url = f"{self._api_root}/{self.app_settings.whatsapp_phone_number_id}/messages"
        response, error = await self._request("POST", url, operation=operation, json=payload)
        if response is None:
            return SendResult(success=False, error=error)
        messages = _json_field(response, "messages")
        message_id = None
        if isinstance(messages, list) and messages:
            message_id = messages[0].get("id")
        if not message_id:
            logger.warning("whatsapp_response_missing_id", extra={"extra": {"operation": operation}})
        return SendResult(success=True, message_id=message_id)

    async def _request(
        self, method: str, url: str, *, operation: str, **kwargs: Any
    ) -> tuple[httpx.Response | None, str | None]:
        client = self.http_client or httpx.AsyncClient()
        close_client = self.http_client is None
        try:
            response = await client.request(
                method,
                url,
                headers=self._headers(),
                timeout=self.app_settings.whatsapp_timeout_seconds,
                **kwargs,
            )
        except httpx.TimeoutException:
            logger.warning("whatsapp_request_timeout", extra={"extra": {"operation": operation}})
            metrics.record_outbound_request(operation, "timeout")
            return None, "whatsapp_timeout"
        except httpx.HTTPError as exc:
            logger.warning(
                "whatsapp_request_failed",
                extra={"extra": {"operation": operation, "reason": type(exc).__name__}},
            )
            metrics.record_outbound_request(operation, "error")
            return None, f"whatsapp_request_failed:{type(exc).__name__}"
        finally:
            if close_client:
                await client.aclose()

        if response.status_code >= 400:
            detail = _error_message(response)
            logger.warning(
                "whatsapp_request_error",
                extra={"extra": {"operation": operation, "status_code": response.status_code}},
            )
            metrics.record_outbound_request(operation, f"status_{response.status_code}")
            error = f"whatsapp_status_{response.status_code}"
            return None, f"{error}: {detail}" if detail else error

        metrics.record_outbound_request(operation, "ok")
        return response, None


def _json_field(response: httpx.Response, key: str) -> Any:
    try:
        payload = response.json()
    except ValueError:
        logger.warning("whatsapp_response_parse_failed")
        return None
    if not isinstance(payload, dict):
        return None
    return payload.get(key)


def _error_message(response: httpx.Response) -> str | None:
    error = _json_field(response, "error")
    if isinstance(error, dict):
        message = error.get("message")
        return str(message) if message else None
    return None


def resolve_whatsapp_gateway(app_settings) -> GraphWhatsAppGateway | NoopWhatsAppGateway:  # noqa: ANN001
    if app_settings.whatsapp_mode != "graph":
        return NoopWhatsAppGateway()
    return GraphWhatsAppGateway(app_settings)


def resolve_app_whatsapp_gateway(app_like) -> GraphWhatsAppGateway | NoopWhatsAppGateway | None:  # noqa: ANN001
    state = getattr(app_like, "state", None)
    if state is None:
        return None
    app_state = getattr(getattr(app_like, "app", None), "state", None) or state
    gateway = getattr(app_state, "whatsapp_gateway", None)
    if gateway is not None:
        return gateway
    services = getattr(app_state, "services", None)
    if services is not None:
        return getattr(services, "whatsapp_gateway", None)
    return None
