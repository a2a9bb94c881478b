import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from photovouchers.services.coupons import (
    CouponResolver,
    CouponType,
    MIN_RELOAD_SECONDS,
    discounted_unit_amount,
    normalize_coupon,
    parse_coupons,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += timedelta(seconds=seconds)


class FakeSource:
    def __init__(self, entries) -> None:
        self.raw = json.dumps(entries)
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        return self.raw


def _family_coupon(**overrides):
    entry = {"code": "vcwien", "type": "percent", "value": 20, "skus": ["Family-Basic"]}
    entry.update(overrides)
    return entry


def test_parse_drops_malformed_entries() -> None:
    coupons = parse_coupons(
        json.dumps(
            [
                _family_coupon(),
                {"code": "NOVALUE", "type": "percent", "skus": []},
                {"code": "NEG", "type": "fixed", "value": -5, "skus": []},
                {"code": "BIG", "type": "percentage", "value": 150, "skus": []},
                {"code": "ODD", "type": "bogo", "value": 10, "skus": []},
                {"code": "NOSKUS", "type": "fixed", "value": 500},
                {"code": "BADDATE", "type": "fixed", "value": 500, "skus": [], "startsAt": "yesterday"},
                {"code": "BOOL", "type": "fixed", "value": True, "skus": []},
                "not-an-object",
            ]
        )
    )
    assert [c.code for c in coupons] == ["VCWIEN"]
    assert coupons[0].type == CouponType.percentage
    assert coupons[0].value == Decimal("20")
    assert coupons[0].allowed_skus == frozenset({"family-basic"})


def test_parse_invalid_json_is_empty() -> None:
    assert parse_coupons("{not json") == []
    assert parse_coupons(json.dumps({"code": "X"})) == []


def test_duplicate_codes_keep_first() -> None:
    coupons = parse_coupons(json.dumps([_family_coupon(value=20), _family_coupon(code="VCWIEN", value=30)]))
    assert len(coupons) == 1
    assert coupons[0].value == Decimal("20")


def test_normalize_reads_window_and_minimum() -> None:
    coupon = normalize_coupon(
        _family_coupon(startsAt="2026-01-01T00:00:00Z", endsAt="2026-12-31T23:59:59", minOrderCents=5000)
    )
    assert coupon is not None
    assert coupon.starts_at == datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert coupon.ends_at is not None and coupon.ends_at.tzinfo is not None
    assert coupon.min_order_cents == 5000


def test_lookup_is_case_insensitive() -> None:
    resolver = CouponResolver(FakeSource([_family_coupon()]), clock=FakeClock())
    assert resolver.find_coupon("vcwien") is resolver.find_coupon("  VCWIEN ")
    assert resolver.find_coupon("VcWiEn") is not None
    assert resolver.find_coupon("") is None
    assert resolver.find_coupon("OTHER") is None


def test_fallback_used_when_config_has_no_valid_entries() -> None:
    resolver = CouponResolver(FakeSource([{"code": "BROKEN"}]), clock=FakeClock())
    coupon = resolver.find_coupon("vcwien")
    assert coupon is not None
    assert coupon.value == Decimal("20")
    assert resolver.allows_sku(coupon, "Newborn-Deluxe")
    assert not resolver.allows_sku(coupon, "business-basic")


def test_source_failure_falls_back() -> None:
    def broken_source() -> str:
        raise RuntimeError("config store down")

    resolver = CouponResolver(broken_source, clock=FakeClock())
    assert resolver.find_coupon("VCWIEN") is not None


def test_reload_only_after_ttl() -> None:
    clock = FakeClock()
    source = FakeSource([_family_coupon()])
    resolver = CouponResolver(source, clock=clock, ttl_seconds=60)

    resolver.find_coupon("VCWIEN")
    resolver.find_coupon("VCWIEN")
    assert source.calls == 1

    source.raw = json.dumps([_family_coupon(code="SPRING", type="fixed", value=1000)])
    clock.advance(59)
    assert resolver.find_coupon("SPRING") is None

    clock.advance(2)
    assert resolver.find_coupon("SPRING") is not None
    assert resolver.find_coupon("VCWIEN") is None
    assert source.calls == 2


def test_ttl_has_a_floor() -> None:
    resolver = CouponResolver(FakeSource([]), clock=FakeClock(), ttl_seconds=1)
    assert resolver.ttl_seconds == MIN_RELOAD_SECONDS


def test_force_refresh_returns_count() -> None:
    source = FakeSource([_family_coupon(), _family_coupon(code="SUMMER", type="amount", value=500)])
    resolver = CouponResolver(source, clock=FakeClock())
    assert resolver.force_refresh() == 2
    assert {c.code for c in resolver.coupons()} == {"VCWIEN", "SUMMER"}


def test_is_active_window() -> None:
    clock = FakeClock()
    resolver = CouponResolver(
        FakeSource([_family_coupon(startsAt="2026-05-01T13:00:00Z", endsAt="2026-05-02T00:00:00Z")]),
        clock=clock,
    )
    coupon = resolver.find_coupon("VCWIEN")
    assert coupon is not None
    assert not resolver.is_active(coupon)
    clock.advance(2 * 3600)
    assert resolver.is_active(coupon)
    clock.advance(24 * 3600)
    assert not resolver.is_active(coupon)


def test_unbounded_coupon_is_always_active() -> None:
    resolver = CouponResolver(FakeSource([_family_coupon()]), clock=FakeClock())
    coupon = resolver.find_coupon("VCWIEN")
    assert coupon is not None
    assert resolver.is_active(coupon, datetime(1999, 1, 1, tzinfo=timezone.utc))


def test_allows_sku_rules() -> None:
    resolver = CouponResolver(
        FakeSource([_family_coupon(), _family_coupon(code="ALL", skus=[]), _family_coupon(code="STAR", skus=["*"])]),
        clock=FakeClock(),
    )
    family = resolver.find_coupon("VCWIEN")
    everything = resolver.find_coupon("ALL")
    star = resolver.find_coupon("STAR")
    assert resolver.allows_sku(family, "FAMILY-BASIC")
    assert not resolver.allows_sku(family, "family-premium")
    assert not resolver.allows_sku(family, None)
    assert resolver.allows_sku(everything, "anything")
    assert resolver.allows_sku(star, "newborn-basic")
    assert not resolver.allows_sku(everything, "")


def test_discount_math() -> None:
    resolver = CouponResolver(
        FakeSource([_family_coupon(), _family_coupon(code="TENOFF", type="fixed", value=1000)]),
        clock=FakeClock(),
    )
    percent = resolver.find_coupon("VCWIEN")
    fixed = resolver.find_coupon("TENOFF")
    assert discounted_unit_amount(percent, 9500) == 7600
    # 20% off 1 cent rounds half up to 1.
    assert discounted_unit_amount(percent, 1) == 1
    assert discounted_unit_amount(percent, 3) == 2
    assert discounted_unit_amount(fixed, 9500) == 8500
    assert discounted_unit_amount(fixed, 700) == 0
