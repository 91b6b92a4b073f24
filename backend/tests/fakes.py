from typing import Any, Awaitable, Callable

from wa_dashboard.infra.whatsapp import MediaUploadResult, SendResult


class FakeWhatsAppGateway:
    """Records every call; template sends succeed unless the recipient is listed in ``fail_for``."""

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.fail_for: set[str] = set()
        self.raise_for: set[str] = set()
        self.templates: list[dict[str, Any]] = []
        self.media_urls: dict[str, str] = {}
        self.media_content: dict[str, bytes] = {}
        self.before_send: Callable[[str], Awaitable[None]] | None = None
        self._counter = 0

    def _next_id(self) -> str:
        self._counter += 1
        return f"wamid.fake.{self._counter}"

    async def _send(self, kind: str, to: str, **fields: Any) -> SendResult:
        self.calls.append({"kind": kind, "to": to, **fields})
        if self.before_send is not None:
            await self.before_send(to)
        if to in self.raise_for:
            raise RuntimeError("gateway exploded")
        if to in self.fail_for:
            return SendResult(success=False, error="whatsapp_status_400")
        return SendResult(success=True, message_id=self._next_id())

    @property
    def template_calls(self) -> list[dict[str, Any]]:
        return [call for call in self.calls if call["kind"] == "template"]

    async def send_text(self, *, to: str, body: str) -> SendResult:
        return await self._send("text", to, body=body)

    async def send_template(
        self,
        *,
        to: str,
        template_name: str,
        language_code: str = "en_US",
        components: list[dict[str, Any]] | None = None,
    ) -> SendResult:
        return await self._send(
            "template",
            to,
            template_name=template_name,
            language_code=language_code,
            components=components,
        )

    async def send_media(
        self,
        *,
        to: str,
        media_type: str,
        media_id: str,
        caption: str | None = None,
        filename: str | None = None,
    ) -> SendResult:
        return await self._send(media_type, to, media_id=media_id, caption=caption, filename=filename)

    async def upload_media(self, *, content: bytes, filename: str, mime_type: str) -> MediaUploadResult:
        self.calls.append({"kind": "upload", "filename": filename, "mime_type": mime_type, "size": len(content)})
        return MediaUploadResult(success=True, media_id="media-123")

    async def get_media_url(self, media_id: str) -> str | None:
        return self.media_urls.get(media_id)

    async def download_media(self, url: str) -> bytes | None:
        return self.media_content.get(url)

    async def list_templates(self) -> list[dict[str, Any]]:
        return list(self.templates)
