from __future__ import annotations

import enum
import json
import logging
import math
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from functools import lru_cache
from typing import Any, Callable, Iterable, Mapping

from photovouchers.core.config import settings

logger = logging.getLogger(__name__)

MIN_RELOAD_SECONDS = 10
WILDCARD_SKUS = frozenset({"*", "all"})

_PERCENT_TYPES = {"percent", "percentage"}
_AMOUNT_TYPES = {"amount", "fixed", "fixed_amount"}


class CouponType(str, enum.Enum):
    percentage = "percentage"
    fixed_amount = "fixed_amount"


@dataclass(frozen=True)
class Coupon:
    code: str
    type: CouponType
    value: Decimal
    allowed_skus: frozenset[str]
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    min_order_cents: int | None = None

    @property
    def applies_to_all_skus(self) -> bool:
        return not self.allowed_skus or bool(self.allowed_skus & WILDCARD_SKUS)


FALLBACK_COUPONS: tuple[Coupon, ...] = (
    Coupon(
        code="VCWIEN",
        type=CouponType.percentage,
        value=Decimal("20"),
        allowed_skus=frozenset(
            f"{family}-{tier}"
            for family in ("maternity", "family", "newborn")
            for tier in ("basic", "premium", "deluxe")
        ),
    ),
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_code(code: str | None) -> str:
    return str(code or "").strip().upper()


def _parse_instant(raw: Any) -> datetime:
    parsed = datetime.fromisoformat(str(raw).strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _coupon_type(raw: Any) -> CouponType | None:
    cleaned = str(raw or "").strip().lower()
    if cleaned in _PERCENT_TYPES:
        return CouponType.percentage
    if cleaned in _AMOUNT_TYPES:
        return CouponType.fixed_amount
    return None


def _coupon_value(raw: Any) -> Decimal | None:
    if isinstance(raw, bool):
        return None
    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        return None
    if not value.is_finite() or value <= 0:
        return None
    return value


def normalize_coupon(entry: Any) -> Coupon | None:
    """Turn one raw config entry into a Coupon, or None when it is malformed."""
    if not isinstance(entry, Mapping):
        return None
    code = normalize_code(entry.get("code"))
    coupon_type = _coupon_type(entry.get("type"))
    value = _coupon_value(entry.get("value"))
    skus = entry.get("skus", entry.get("allowedSkus"))
    if not code or coupon_type is None or value is None or not isinstance(skus, list):
        return None
    if coupon_type == CouponType.percentage and value > 100:
        return None

    try:
        starts_at = _parse_instant(entry["startsAt"]) if entry.get("startsAt") else None
        ends_at = _parse_instant(entry["endsAt"]) if entry.get("endsAt") else None
    except ValueError:
        return None

    min_order_raw = entry.get("minOrderCents")
    min_order_cents: int | None = None
    if min_order_raw not in (None, "", 0):
        try:
            min_order = float(min_order_raw)
        except (TypeError, ValueError):
            return None
        if not math.isfinite(min_order) or min_order < 0:
            return None
        min_order_cents = int(min_order)

    return Coupon(
        code=code,
        type=coupon_type,
        value=value,
        allowed_skus=frozenset(str(sku).strip().lower() for sku in skus if str(sku).strip()),
        starts_at=starts_at,
        ends_at=ends_at,
        min_order_cents=min_order_cents,
    )


def parse_coupons(raw: str | None) -> list[Coupon]:
    try:
        entries = json.loads(raw or "[]")
    except (TypeError, ValueError):
        logger.warning("coupon_config_invalid_json")
        return []
    if not isinstance(entries, list):
        logger.warning("coupon_config_not_a_list")
        return []

    coupons: list[Coupon] = []
    seen: set[str] = set()
    for idx, entry in enumerate(entries):
        coupon = normalize_coupon(entry)
        if coupon is None:
            logger.warning("coupon_entry_dropped", extra={"index": idx})
            continue
        if coupon.code in seen:
            continue
        seen.add(coupon.code)
        coupons.append(coupon)
    return coupons


@dataclass(frozen=True)
class _Snapshot:
    by_code: Mapping[str, Coupon]
    loaded_at: datetime | None


class CouponResolver:
    """Discount-code lookups over a config source, reloaded lazily after a TTL.

    A reload builds a new immutable snapshot and swaps it in with a single
    assignment, so concurrent readers see either the old set or the new one.
    """

    def __init__(
        self,
        source: Callable[[], str | None],
        *,
        clock: Callable[[], datetime] = _utcnow,
        ttl_seconds: int | None = None,
        fallback: Iterable[Coupon] = FALLBACK_COUPONS,
    ) -> None:
        self._source = source
        self._clock = clock
        configured = settings.coupon_reload_seconds if ttl_seconds is None else ttl_seconds
        self.ttl_seconds = max(MIN_RELOAD_SECONDS, int(configured))
        self._fallback = tuple(fallback)
        self._lock = threading.Lock()
        self._snapshot = _Snapshot(by_code={}, loaded_at=None)

    def _load(self) -> _Snapshot:
        try:
            raw = self._source()
        except Exception as exc:
            logger.warning("coupon_source_failed", extra={"error": str(exc)})
            raw = None
        coupons = parse_coupons(raw)
        if not coupons:
            coupons = list(self._fallback)
        return _Snapshot(by_code={c.code: c for c in coupons}, loaded_at=self._clock())

    def _expired(self, snapshot: _Snapshot, now: datetime) -> bool:
        if snapshot.loaded_at is None:
            return True
        return (now - snapshot.loaded_at).total_seconds() > self.ttl_seconds

    def _current(self) -> _Snapshot:
        snapshot = self._snapshot
        if not self._expired(snapshot, self._clock()):
            return snapshot
        with self._lock:
            snapshot = self._snapshot
            if self._expired(snapshot, self._clock()):
                snapshot = self._load()
                self._snapshot = snapshot
        return snapshot

    def force_refresh(self) -> int:
        with self._lock:
            self._snapshot = self._load()
            return len(self._snapshot.by_code)

    def coupons(self) -> tuple[Coupon, ...]:
        return tuple(self._current().by_code.values())

    def find_coupon(self, code: str | None) -> Coupon | None:
        needle = normalize_code(code)
        if not needle:
            return None
        return self._current().by_code.get(needle)

    def is_active(self, coupon: Coupon, now: datetime | None = None) -> bool:
        moment = now or self._clock()
        if coupon.starts_at and moment < coupon.starts_at:
            return False
        if coupon.ends_at and moment > coupon.ends_at:
            return False
        return True

    def allows_sku(self, coupon: Coupon, sku: str | None) -> bool:
        cleaned = str(sku or "").strip().lower()
        if not cleaned:
            return False
        return coupon.applies_to_all_skus or cleaned in coupon.allowed_skus


@lru_cache
def get_coupon_resolver() -> CouponResolver:
    return CouponResolver(lambda: settings.coupons_json)


def discounted_unit_amount(coupon: Coupon, base_cents: int) -> int:
    base = Decimal(int(base_cents))
    if coupon.type == CouponType.percentage:
        discounted = base * (Decimal(100) - coupon.value) / Decimal(100)
        return int(discounted.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return max(0, int(base - coupon.value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)))


def coupon_summary(resolver: CouponResolver, coupon: Coupon) -> dict[str, Any]:
    return {
        "code": coupon.code,
        "type": coupon.type.value,
        "value": float(coupon.value),
        "allowed_skus": sorted(coupon.allowed_skus),
        "starts_at": coupon.starts_at,
        "ends_at": coupon.ends_at,
        "min_order_cents": coupon.min_order_cents,
        "active": resolver.is_active(coupon),
    }
