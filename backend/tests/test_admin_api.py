import asyncio
import json
from typing import Dict
from urllib.parse import urlparse

import pytest
from fastapi.testclient import TestClient

from photovouchers.core.config import settings
from photovouchers.models.voucher import DeliveryMethod
from photovouchers.services import vouchers as voucher_service
from photovouchers.services.coupons import get_coupon_resolver
from photovouchers.services.vouchers import GiftVoucherCreate

ADMIN = {"X-Admin-Token": "admin-secret"}


def _seed_vouchers(session_factory) -> None:
    async def seed() -> None:
        async with session_factory() as session:
            for session_id, method in (
                ("cs_mock_post", DeliveryMethod.post),
                ("cs_mock_email", DeliveryMethod.email),
            ):
                await voucher_service.create_gift_voucher(
                    session,
                    GiftVoucherCreate(
                        checkout_session_id=session_id,
                        recipient_email="anna@example.com",
                        recipient_name="Anna",
                        amount_cents=9500,
                        delivery_method=method,
                    ),
                )

    asyncio.run(seed())


@pytest.mark.parametrize(
    ("method", "path"),
    [
        ("get", "/api/v1/admin/vouchers/print-queue"),
        ("post", "/api/v1/admin/vouchers/cs_mock_post/regenerate-pdf"),
        ("post", "/api/v1/admin/vouchers/cs_mock_post/mark-fulfilled"),
        ("get", "/api/v1/admin/vouchers/secure-link?session_id=cs_mock_post&ttl=3600"),
        ("get", "/api/v1/admin/coupons"),
        ("post", "/api/v1/admin/coupons/refresh"),
    ],
)
def test_admin_routes_require_token(api_app: Dict[str, object], method: str, path: str) -> None:
    client: TestClient = api_app["client"]  # type: ignore[assignment]
    missing = getattr(client, method)(path)
    wrong = getattr(client, method)(path, headers={"X-Admin-Token": "nope"})
    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert wrong.json() == {"detail": "Invalid admin token", "code": None}


def test_unset_admin_token_locks_admin_routes(api_app: Dict[str, object], monkeypatch: pytest.MonkeyPatch) -> None:
    client: TestClient = api_app["client"]  # type: ignore[assignment]
    monkeypatch.setattr(settings, "admin_token", None)
    res = client.get("/api/v1/admin/vouchers/print-queue", headers={"X-Admin-Token": ""})
    assert res.status_code == 401


def test_print_queue_and_fulfillment(api_app: Dict[str, object]) -> None:
    client: TestClient = api_app["client"]  # type: ignore[assignment]
    _seed_vouchers(api_app["session_factory"])

    queue = client.get("/api/v1/admin/vouchers/print-queue", headers=ADMIN)
    assert queue.status_code == 200
    vouchers = queue.json()["vouchers"]
    assert [v["checkout_session_id"] for v in vouchers] == ["cs_mock_post"]
    assert vouchers[0]["recipient_name"] == "Anna"
    assert vouchers[0]["preview_url"].endswith("/api/v1/admin/vouchers/cs_mock_post/preview")

    code = vouchers[0]["security_code"]
    regenerated = client.post("/api/v1/admin/vouchers/cs_mock_post/regenerate-pdf", headers=ADMIN)
    assert regenerated.status_code == 200
    assert regenerated.json()["security_code"] == code
    assert regenerated.json()["status"] == "issued"

    pdf = client.get("/api/v1/admin/vouchers/cs_mock_post/pdf", headers=ADMIN)
    assert pdf.status_code == 200
    assert pdf.headers["content-type"] == "application/pdf"
    assert pdf.content.startswith(b"%PDF")

    preview = client.get("/api/v1/admin/vouchers/cs_mock_post/preview", headers=ADMIN)
    assert preview.status_code == 200
    assert preview.content.startswith(b"\x89PNG")

    fulfilled = client.post("/api/v1/admin/vouchers/cs_mock_post/mark-fulfilled", headers=ADMIN)
    assert fulfilled.status_code == 200
    assert fulfilled.json()["status"] == "fulfilled"
    assert fulfilled.json()["fulfilled_at"]

    again = client.post("/api/v1/admin/vouchers/cs_mock_post/mark-fulfilled", headers=ADMIN)
    assert again.json()["fulfilled_at"] == fulfilled.json()["fulfilled_at"]

    empty = client.get("/api/v1/admin/vouchers/print-queue", headers=ADMIN)
    assert empty.json()["vouchers"] == []


def test_unknown_session_is_404(api_app: Dict[str, object]) -> None:
    client: TestClient = api_app["client"]  # type: ignore[assignment]
    res = client.post("/api/v1/admin/vouchers/cs_mock_missing/mark-fulfilled", headers=ADMIN)
    assert res.status_code == 404
    assert res.json()["code"] == "not_found"


def test_secure_link_download(api_app: Dict[str, object]) -> None:
    client: TestClient = api_app["client"]  # type: ignore[assignment]
    _seed_vouchers(api_app["session_factory"])

    too_short = client.get(
        "/api/v1/admin/vouchers/secure-link", params={"session_id": "cs_mock_post", "ttl": 10}, headers=ADMIN
    )
    assert too_short.status_code == 400

    link = client.get(
        "/api/v1/admin/vouchers/secure-link", params={"session_id": "cs_mock_post", "ttl": 3600}, headers=ADMIN
    )
    assert link.status_code == 200
    body = link.json()
    assert body["expires_at"]
    parsed = urlparse(body["url"])
    assert parsed.path == "/api/v1/vouchers/download"

    download = client.get(f"{parsed.path}?{parsed.query}")
    assert download.status_code == 200
    assert download.content.startswith(b"%PDF")

    bogus = client.get("/api/v1/vouchers/download", params={"token": "forged.token.value"})
    assert bogus.status_code == 404


def test_admin_coupon_listing_and_refresh(api_app: Dict[str, object], monkeypatch: pytest.MonkeyPatch) -> None:
    client: TestClient = api_app["client"]  # type: ignore[assignment]
    monkeypatch.setattr(
        settings,
        "coupons_json",
        json.dumps([{"code": "spring", "type": "fixed", "value": 1000, "skus": ["*"], "minOrderCents": 5000}]),
    )
    get_coupon_resolver.cache_clear()

    listing = client.get("/api/v1/admin/coupons", headers=ADMIN)
    assert listing.status_code == 200
    coupons = listing.json()["coupons"]
    assert coupons[0]["code"] == "SPRING"
    assert coupons[0]["type"] == "fixed_amount"
    assert coupons[0]["min_order_cents"] == 5000
    assert coupons[0]["active"] is True

    monkeypatch.setattr(settings, "coupons_json", "[]")
    refreshed = client.post("/api/v1/admin/coupons/refresh", headers=ADMIN)
    assert refreshed.status_code == 200
    # An empty config falls back to the built-in coupon.
    assert refreshed.json() == {"count": 1}
    codes = [c["code"] for c in client.get("/api/v1/admin/coupons", headers=ADMIN).json()["coupons"]]
    assert codes == ["VCWIEN"]
