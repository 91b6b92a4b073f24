import asyncio
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable

from alembic.config import Config
from alembic.script import ScriptDirectory
from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from wa_dashboard.domain.ops.db_models import JobHeartbeat
from wa_dashboard.jobs.scheduler import WORKFLOW_ENGINE_JOB

router = APIRouter()
logger = logging.getLogger(__name__)

BACKEND_ROOT = Path(__file__).resolve().parents[2]
CHECK_TIMEOUT_SECONDS = 2.0

_HEAD_CACHE: dict[str, Any] = {"timestamp": 0.0, "heads": None, "skip_reason": None, "warning_logged": False}
_HEAD_CACHE_TTL_SECONDS = 60

CheckResult = tuple[bool, dict[str, Any]]


def _load_expected_heads() -> tuple[list[str] | None, str | None]:
    """Alembic heads from the script directory, cached for a minute.

    Returns ``(None, skip_reason)`` when the migration files are not shipped with the image.
    """
    now = time.monotonic()
    if now - _HEAD_CACHE["timestamp"] < _HEAD_CACHE_TTL_SECONDS:
        return _HEAD_CACHE["heads"], _HEAD_CACHE["skip_reason"]
    heads, skip_reason = None, None
    try:
        cfg = Config(str(BACKEND_ROOT / "alembic.ini"))
        cfg.set_main_option("script_location", str(BACKEND_ROOT / "alembic"))
        heads = list(ScriptDirectory.from_config(cfg).get_heads())
    except Exception as exc:  # noqa: BLE001
        skip_reason = "skipped_no_alembic_files"
        if not _HEAD_CACHE["warning_logged"]:
            logger.warning("migrations_check_skipped", extra={"extra": {"error_type": type(exc).__name__}})
            _HEAD_CACHE["warning_logged"] = True
    _HEAD_CACHE.update({"timestamp": now, "heads": heads, "skip_reason": skip_reason})
    return heads, skip_reason


async def _query(request: Request, fn: Callable[[Any], Awaitable[Any]]) -> Any:
    session_factory = getattr(request.app.state, "db_session_factory", None)
    if session_factory is None:
        raise RuntimeError("session factory unavailable")

    async def _run() -> Any:
        async with session_factory() as session:
            return await fn(session)

    return await asyncio.wait_for(_run(), timeout=CHECK_TIMEOUT_SECONDS)


async def _db_check(request: Request) -> CheckResult:
    await _query(request, lambda session: session.execute(text("SELECT 1")))
    return True, {"message": "database reachable"}


async def _current_revision(session) -> str | None:  # noqa: ANN001
    try:
        row = (await session.execute(text("SELECT version_num FROM alembic_version"))).first()
    except SQLAlchemyError:
        return None
    return row[0] if row else None


async def _migrations_check(request: Request) -> CheckResult:
    expected_heads, skip_reason = _load_expected_heads()
    if skip_reason:
        return True, {"message": "migrations check skipped", "migrations_check": skip_reason}
    current = await _query(request, _current_revision)
    in_sync = bool(expected_heads) and current in expected_heads
    return in_sync, {
        "message": "migrations in sync" if in_sync else "migrations pending",
        "current_version": current,
        "expected_heads": expected_heads,
        "migrations_check": "ok",
    }


async def _jobs_check(request: Request) -> CheckResult:
    app_settings = getattr(request.app.state, "app_settings", None)
    if app_settings is None or not app_settings.job_heartbeat_required:
        return True, {"enabled": False, "message": "job heartbeat check disabled"}

    record = await _query(request, lambda session: session.get(JobHeartbeat, WORKFLOW_ENGINE_JOB))
    if record is None:
        return False, {"enabled": True, "message": "job heartbeat missing", "job": WORKFLOW_ENGINE_JOB}

    last_seen = record.last_heartbeat
    if last_seen.tzinfo is None:
        last_seen = last_seen.replace(tzinfo=timezone.utc)
    age_seconds = (datetime.now(tz=timezone.utc) - last_seen).total_seconds()
    threshold = int(app_settings.job_heartbeat_ttl_seconds)
    return age_seconds <= threshold, {
        "enabled": True,
        "job": WORKFLOW_ENGINE_JOB,
        "last_heartbeat": last_seen.isoformat(),
        "age_seconds": age_seconds,
        "threshold_seconds": threshold,
        "consecutive_failures": record.consecutive_failures,
        "last_run_stats": record.last_run_stats,
    }


READINESS_CHECKS: tuple[tuple[str, Callable[[Request], Awaitable[CheckResult]]], ...] = (
    ("db", _db_check),
    ("migrations", _migrations_check),
    ("jobs", _jobs_check),
)


async def _run_check(name: str, check: Callable[[Request], Awaitable[CheckResult]], request: Request) -> dict:
    start = time.perf_counter()
    try:
        ok, detail = await check(request)
    except asyncio.TimeoutError:
        ok, detail = False, {"message": f"{name} check timed out", "timeout_seconds": CHECK_TIMEOUT_SECONDS}
    except Exception as exc:  # noqa: BLE001
        logger.warning("readiness_check_failed", extra={"extra": {"check": name, "error": type(exc).__name__}})
        ok, detail = False, {"message": f"{name} check failed", "error": type(exc).__name__}
    elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
    return {"name": name, "ok": bool(ok), "ms": elapsed_ms, "detail": detail}


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.head("/healthz")
async def healthz_head() -> Response:
    return Response(status_code=200)


@router.get("/readyz")
async def readyz(request: Request) -> JSONResponse:
    checks = [await _run_check(name, check, request) for name, check in READINESS_CHECKS]
    ready = all(check["ok"] for check in checks)
    return JSONResponse(status_code=200 if ready else 503, content={"ok": ready, "checks": checks})
