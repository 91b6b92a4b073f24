import json
from types import SimpleNamespace

import httpx
import pytest

from wa_dashboard.infra.tracing import graph_path_template
from wa_dashboard.infra.whatsapp import (
    GraphWhatsAppGateway,
    NoopWhatsAppGateway,
    WhatsAppApiError,
    resolve_whatsapp_gateway,
)


def _settings(**overrides):
    values = {
        "whatsapp_mode": "graph",
        "whatsapp_token": "token-abc",
        "whatsapp_phone_number_id": "123456",
        "whatsapp_business_account_id": "waba-9",
        "whatsapp_api_version": "v18.0",
        "whatsapp_graph_base_url": "https://graph.example.test",
        "whatsapp_timeout_seconds": 5.0,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def _gateway(handler, **overrides):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return GraphWhatsAppGateway(_settings(**overrides), http_client=client)


@pytest.mark.anyio
async def test_send_template_posts_expected_payload():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"messages": [{"id": "wamid.ok"}]})

    gateway = _gateway(handler)
    components = [{"type": "body", "parameters": [{"type": "text", "text": "Ada"}]}]

    result = await gateway.send_template(
        to="15550001", template_name="hello_world", language_code="en", components=components
    )

    assert result.success is True
    assert result.message_id == "wamid.ok"
    assert seen["url"] == "https://graph.example.test/v18.0/123456/messages"
    assert seen["auth"] == "Bearer token-abc"
    assert seen["body"] == {
        "messaging_product": "whatsapp",
        "to": "15550001",
        "type": "template",
        "template": {"name": "hello_world", "language": {"code": "en"}, "components": components},
    }


@pytest.mark.anyio
async def test_http_error_becomes_failed_result():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": {"message": "Template not approved"}})

    result = await _gateway(handler).send_text(to="15550001", body="hi")

    assert result.success is False
    assert result.error == "whatsapp_status_400: Template not approved"


@pytest.mark.anyio
async def test_transport_error_becomes_failed_result():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("boom", request=request)

    result = await _gateway(handler).send_text(to="15550001", body="hi")

    assert result.success is False
    assert result.error == "whatsapp_request_failed:ConnectError"


@pytest.mark.anyio
async def test_timeout_becomes_failed_result():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    result = await _gateway(handler).send_text(to="15550001", body="hi")

    assert result.error == "whatsapp_timeout"


@pytest.mark.anyio
async def test_unconfigured_gateway_never_calls_out():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={})

    result = await _gateway(handler, whatsapp_token=None).send_text(to="15550001", body="hi")

    assert result.success is False
    assert result.error == "whatsapp_not_configured"
    assert calls == []


@pytest.mark.anyio
async def test_send_media_shapes_payload_per_type():
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"messages": [{"id": "wamid.media"}]})

    gateway = _gateway(handler)
    await gateway.send_media(to="1", media_type="audio", media_id="m1", caption="ignored")
    await gateway.send_media(to="1", media_type="document", media_id="m2", caption="Terms", filename="t.pdf")
    unsupported = await gateway.send_media(to="1", media_type="sticker", media_id="m3")

    assert bodies[0]["audio"] == {"id": "m1"}
    assert bodies[1]["document"] == {"id": "m2", "caption": "Terms", "filename": "t.pdf"}
    assert unsupported.success is False
    assert len(bodies) == 2


@pytest.mark.anyio
async def test_list_templates_reads_data_and_raises_on_error():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v18.0/waba-9/message_templates"
        assert request.url.params["status"] == "APPROVED"
        return httpx.Response(200, json={"data": [{"name": "hello_world", "status": "APPROVED"}]})

    templates = await _gateway(handler).list_templates()
    assert templates == [{"name": "hello_world", "status": "APPROVED"}]

    def failing(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={})

    with pytest.raises(WhatsAppApiError):
        await _gateway(failing).list_templates()
    with pytest.raises(WhatsAppApiError):
        await _gateway(handler, whatsapp_business_account_id=None).list_templates()


@pytest.mark.anyio
async def test_upload_and_download_media():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            assert request.url.path == "/v18.0/123456/media"
            return httpx.Response(200, json={"id": "media-77"})
        if request.url.path == "/v18.0/media-77":
            return httpx.Response(200, json={"url": "https://cdn.example.test/file"})
        return httpx.Response(200, content=b"binary")

    gateway = _gateway(handler)

    uploaded = await gateway.upload_media(content=b"abc", filename="a.png", mime_type="image/png")
    url = await gateway.get_media_url("media-77")
    content = await gateway.download_media(url)

    assert uploaded.media_id == "media-77"
    assert url == "https://cdn.example.test/file"
    assert content == b"binary"


def test_resolve_gateway_by_mode():
    assert isinstance(resolve_whatsapp_gateway(_settings(whatsapp_mode="off")), NoopWhatsAppGateway)
    assert isinstance(resolve_whatsapp_gateway(_settings()), GraphWhatsAppGateway)


def test_graph_paths_are_templated_for_spans():
    assert graph_path_template("/v18.0/123456789/messages") == "/v18.0/{id}/messages"
    assert graph_path_template("/v18.0/987654321") == "/v18.0/{id}"
