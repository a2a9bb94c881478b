import asyncio
import os
from collections.abc import Generator
from typing import Dict

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

# Keep pytest output high-signal by disabling outbound Sentry capture in tests.
os.environ["SENTRY_DSN"] = ""

from photovouchers.core import metrics
from photovouchers.core.config import settings
from photovouchers.db.base import Base
from photovouchers.db.session import get_session
from photovouchers.main import app
from photovouchers.services.coupons import get_coupon_resolver


@pytest.fixture(scope="module")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def _isolated_settings(tmp_path, monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setattr(settings, "voucher_storage_root", str(tmp_path / "vouchers"))
    monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_placeholder")
    monkeypatch.setattr(settings, "stripe_secret_key_sandbox", None)
    monkeypatch.setattr(settings, "stripe_retry_backoff_seconds", 0.0)
    monkeypatch.setattr(settings, "payments_provider", "real")
    monkeypatch.setattr(settings, "smtp_enabled", False)
    monkeypatch.setattr(settings, "admin_token", "admin-secret")
    monkeypatch.setattr(settings, "coupons_json", "[]")
    metrics.reset()
    get_coupon_resolver.cache_clear()
    yield
    get_coupon_resolver.cache_clear()


def make_session_factory(url: str = "sqlite+aiosqlite:///:memory:"):
    engine = create_async_engine(url, future=True)
    SessionLocal = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    return engine, SessionLocal


@pytest.fixture
def session_factory():
    engine, SessionLocal = make_session_factory()
    yield SessionLocal
    asyncio.run(engine.dispose())


@pytest.fixture
def api_app(session_factory) -> Generator[Dict[str, object], None, None]:
    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    client = TestClient(app)
    yield {"client": client, "session_factory": session_factory}
    client.close()
    app.dependency_overrides.clear()


@pytest.fixture
def file_session_factory(tmp_path):
    engine, SessionLocal = make_session_factory(f"sqlite+aiosqlite:///{tmp_path / 'vouchers.db'}")
    yield SessionLocal
    asyncio.run(engine.dispose())
