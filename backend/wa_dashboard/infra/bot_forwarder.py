import logging
from typing import Mapping

import httpx

logger = logging.getLogger(__name__)

FORWARDED_SIGNATURE_HEADERS = ("X-Hub-Signature-256", "X-Hub-Signature")
USER_AGENT = "wa-dashboard-forwarder/1.0"


async def forward_to_bot(
    url: str,
    body: bytes,
    headers: Mapping[str, str],
    *,
    timeout: float,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """Relay a raw webhook body to the bot; best-effort, never raises."""
    forwarded = {
        "Content-Type": "application/json",
        "User-Agent": USER_AGENT,
    }
    for name in FORWARDED_SIGNATURE_HEADERS:
        forwarded[name] = headers.get(name) or headers.get(name.lower()) or ""
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.post(url, content=body, headers=forwarded)
    except httpx.HTTPError as exc:
        logger.warning("bot_forward_failed", extra={"extra": {"reason": type(exc).__name__}})
        return False
    if 200 <= response.status_code < 300:
        logger.info("bot_forward_success", extra={"extra": {"status_code": response.status_code}})
        return True
    logger.warning("bot_forward_non_2xx", extra={"extra": {"status_code": response.status_code}})
    return False
