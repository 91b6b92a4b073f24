import asyncio
from dataclasses import dataclass
from pathlib import Path

MEDIA_URL_PREFIX = "/media"

_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "video/mp4": ".mp4",
    "video/3gpp": ".3gp",
    "audio/aac": ".aac",
    "audio/mp4": ".m4a",
    "audio/mpeg": ".mp3",
    "audio/amr": ".amr",
    "audio/ogg": ".ogg",
    "application/pdf": ".pdf",
    "application/vnd.ms-powerpoint": ".ppt",
    "application/msword": ".doc",
    "application/vnd.ms-excel": ".xls",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": ".pptx",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ".xlsx",
}

ALLOWED_UPLOAD_TYPES = frozenset(
    {
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/webp",
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "application/vnd.ms-excel",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-powerpoint",
        "application/vnd.openxmlformats-officedocument.presentationml.presentation",
        "text/plain",
        "text/csv",
        "audio/mpeg",
        "audio/mp3",
        "audio/ogg",
        "audio/aac",
        "audio/amr",
        "audio/opus",
        "audio/wav",
        "audio/webm",
        "audio/x-m4a",
        "audio/mp4",
        "video/mp4",
        "video/3gpp",
        "video/quicktime",
    }
)


def extension_for(mime_type: str | None) -> str:
    if not mime_type:
        return ".bin"
    # WhatsApp voice notes arrive as "audio/ogg; codecs=opus".
    return _EXTENSIONS.get(mime_type.split(";", 1)[0].strip().lower(), ".bin")


@dataclass
class StoredMedia:
    filename: str
    url: str
    size: int


class LocalMediaStore:
    """Files under ``root`` served by the app at ``/media/<filename>``."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def _resolve(self, filename: str) -> Path:
        root_resolved = self.root.resolve()
        path = (self.root / filename.lstrip("/")).resolve()
        if path.parent != root_resolved:
            raise ValueError("Invalid media filename")
        return path

    async def save(self, *, filename: str, content: bytes) -> StoredMedia:
        path = self._resolve(filename)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(content)

        await asyncio.to_thread(_write)
        return StoredMedia(filename=path.name, url=f"{MEDIA_URL_PREFIX}/{path.name}", size=len(content))

    async def read(self, filename: str) -> bytes:
        path = self._resolve(filename)
        return await asyncio.to_thread(path.read_bytes)


def resolve_media_store(app_settings) -> LocalMediaStore:  # noqa: ANN001
    return LocalMediaStore(Path(app_settings.media_upload_root))
