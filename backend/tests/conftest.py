import asyncio
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def ensure_event_loop() -> asyncio.AbstractEventLoop:
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

    if loop.is_closed():
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

    return loop


ensure_event_loop()

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from wa_dashboard.infra import models  # noqa: F401
from wa_dashboard.infra.db import Base, get_db_session
from wa_dashboard.infra.media_store import LocalMediaStore
from wa_dashboard.main import app
from wa_dashboard.settings import settings
from wa_dashboard.shared.pacing import NoPacing

from tests.fakes import FakeWhatsAppGateway


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(scope="session")
def test_engine():
    db_path = Path("test.db")
    if db_path.exists():
        db_path.unlink()
    engine = create_async_engine(
        "sqlite+aiosqlite:///./test.db",
        connect_args={"check_same_thread": False, "timeout": 30},
        poolclass=StaticPool,
    )

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    yield engine
    asyncio.run(engine.dispose())


@pytest.fixture(scope="session")
def async_session_maker(test_engine):
    return async_sessionmaker(test_engine, expire_on_commit=False)


@pytest.fixture(autouse=True)
def restore_settings():
    original = {
        name: getattr(settings, name)
        for name in (
            "app_env",
            "testing",
            "whatsapp_verify_token",
            "whatsapp_app_secret",
            "bot_webhook_url",
            "dashboard_basic_username",
            "dashboard_basic_password",
            "metrics_enabled",
            "metrics_token",
            "job_heartbeat_required",
            "job_heartbeat_ttl_seconds",
            "workflow_enrollment_batch_size",
            "workflow_step_batch_size",
            "workflow_enrollment_delay_seconds",
            "media_upload_root",
            "media_max_bytes",
        )
    }
    yield
    for name, value in original.items():
        setattr(settings, name, value)


@pytest.fixture(autouse=True)
def enable_test_mode(tmp_path):
    settings.testing = True
    settings.app_env = "dev"
    settings.dashboard_basic_username = None
    settings.dashboard_basic_password = None
    settings.whatsapp_app_secret = None
    settings.bot_webhook_url = None
    settings.workflow_enrollment_delay_seconds = 0
    settings.media_upload_root = str(tmp_path / "media")
    yield


@pytest.fixture(autouse=True)
def restore_app_state():
    """Restore app.state after each test to prevent state pollution."""
    original_metrics = getattr(app.state, "metrics", None)
    original_app_settings = getattr(app.state, "app_settings", None)
    yield
    for name in ("whatsapp_gateway", "pacer", "media_store"):
        if hasattr(app.state, name):
            delattr(app.state, name)

    if original_metrics is not None:
        app.state.metrics = original_metrics
    elif hasattr(app.state, "metrics"):
        delattr(app.state, "metrics")

    if original_app_settings is not None:
        app.state.app_settings = original_app_settings
    elif hasattr(app.state, "app_settings"):
        delattr(app.state, "app_settings")


@pytest.fixture(autouse=True)
def clean_database(test_engine):
    async def truncate_tables() -> None:
        async with test_engine.begin() as conn:
            for table in reversed(Base.metadata.sorted_tables):
                await conn.execute(table.delete())

    asyncio.run(truncate_tables())
    yield


@pytest.fixture()
def gateway():
    return FakeWhatsAppGateway()


@pytest.fixture()
def client(async_session_maker, gateway, tmp_path):
    ensure_event_loop()

    async def override_db_session():
        async with async_session_maker() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_db_session
    original_factory = getattr(app.state, "db_session_factory", None)
    app.state.db_session_factory = async_session_maker
    app.state.whatsapp_gateway = gateway
    app.state.pacer = NoPacing()
    app.state.media_store = LocalMediaStore(tmp_path / "media")
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    app.state.db_session_factory = original_factory
