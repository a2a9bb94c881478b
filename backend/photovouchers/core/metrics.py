from collections import Counter
from threading import Lock
from typing import Dict, Counter as CounterType

_metrics: CounterType[str] = Counter()
_lock = Lock()


def _inc(key: str) -> None:
    with _lock:
        _metrics[key] += 1


def record_checkout_session(*, mock: bool = False) -> None:
    _inc("mock_checkout_sessions" if mock else "checkout_sessions")


def record_payment_failure() -> None:
    _inc("payment_failures")


def record_voucher_issued() -> None:
    _inc("vouchers_issued")


def record_coupon_redemption() -> None:
    _inc("coupon_redemptions")


def record_voucher_email_sent() -> None:
    _inc("voucher_emails_sent")


def snapshot() -> Dict[str, int]:
    with _lock:
        return dict(_metrics)


def reset() -> None:
    with _lock:
        _metrics.clear()
