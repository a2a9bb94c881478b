from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Literal, cast
from uuid import uuid4

import stripe

from photovouchers.core import metrics
from photovouchers.core.config import settings
from photovouchers.core.errors import PaymentProviderError
from photovouchers.services.payment_provider import MOCK_SESSION_PREFIX

stripe = cast(Any, stripe)

logger = logging.getLogger(__name__)

_STRIPE_PLACEHOLDER_SUFFIX = "_placeholder"


def _stripe_env() -> Literal["sandbox", "live"]:
    raw = (settings.stripe_env or "sandbox").strip().lower()
    if raw in {"live", "production", "prod"}:
        return "live"
    return "sandbox"


def _looks_configured(value: str | None) -> bool:
    cleaned = (value or "").strip()
    if not cleaned:
        return False
    return not cleaned.endswith(_STRIPE_PLACEHOLDER_SUFFIX)


def stripe_secret_key() -> str:
    if _stripe_env() == "live":
        return (settings.stripe_secret_key_live or settings.stripe_secret_key or "").strip()
    return (settings.stripe_secret_key_sandbox or settings.stripe_secret_key or "").strip()


def is_stripe_configured() -> bool:
    return _looks_configured(stripe_secret_key())


def init_stripe() -> None:
    stripe.api_key = stripe_secret_key()
    # Retries are handled by _call_stripe so that 4xx responses are never repeated.
    stripe.max_network_retries = 0


def field(obj: Any, key: str, default: Any = None) -> Any:
    """Read a key from a StripeObject or a plain dict."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        value = obj.get(key, default)
    else:
        value = getattr(obj, key, default)
    return default if value is None else value


def _provider_status(exc: BaseException) -> int | None:
    raw = getattr(exc, "http_status", None)
    try:
        return int(raw) if raw is not None else None
    except (TypeError, ValueError):
        return None


def _provider_message(exc: BaseException) -> str:
    return str(getattr(exc, "user_message", None) or exc or exc.__class__.__name__)


def _is_transient(exc: BaseException) -> bool:
    if isinstance(exc, TimeoutError):
        return True
    connection_error = getattr(stripe, "APIConnectionError", None)
    if isinstance(connection_error, type) and isinstance(exc, connection_error):
        return True
    status_code = _provider_status(exc)
    return status_code is not None and status_code >= 500


def _backoff_delay(attempt: int) -> float:
    return max(0.0, float(settings.stripe_retry_backoff_seconds)) * (2 ** (attempt - 1))


async def _call_stripe(operation: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    attempts = max(0, int(settings.stripe_max_retries)) + 1
    for attempt in range(1, attempts + 1):
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, *args, **kwargs),
                timeout=float(settings.stripe_timeout_seconds),
            )
        except Exception as exc:
            if _is_transient(exc) and attempt < attempts:
                logger.warning(
                    "stripe_call_retry",
                    extra={"operation": operation, "attempt": attempt, "provider_status": _provider_status(exc)},
                )
                await asyncio.sleep(_backoff_delay(attempt))
                continue
            metrics.record_payment_failure()
            logger.error(
                "stripe_call_failed",
                extra={
                    "operation": operation,
                    "attempts": attempt,
                    "provider_status": _provider_status(exc),
                    "provider_message": _provider_message(exc),
                },
            )
            raise PaymentProviderError(
                f"Stripe {operation} failed",
                provider_status=_provider_status(exc),
                provider_message=_provider_message(exc),
            ) from exc
    raise PaymentProviderError(f"Stripe {operation} failed")  # pragma: no cover - loop always returns or raises


def mock_checkout_session() -> dict[str, str]:
    session_id = f"{MOCK_SESSION_PREFIX}{uuid4().hex}"
    base = settings.frontend_origin.rstrip("/")
    return {"session_id": session_id, "checkout_url": f"{base}/checkout/success?session_id={session_id}"}


def _session_result(session_obj: Any) -> dict[str, str]:
    session_id = field(session_obj, "id")
    checkout_url = field(session_obj, "url")
    if not session_id or not checkout_url:
        metrics.record_payment_failure()
        raise PaymentProviderError("Stripe checkout session missing url")
    return {"session_id": str(session_id), "checkout_url": str(checkout_url)}


async def create_checkout_session(session_kwargs: dict[str, Any]) -> dict[str, str]:
    """Create a Stripe-hosted checkout and return {session_id, checkout_url}."""
    init_stripe()
    session_obj = await _call_stripe("checkout session creation", stripe.checkout.Session.create, **session_kwargs)
    return _session_result(session_obj)


async def retrieve_checkout_session(session_id: str) -> Any:
    init_stripe()
    session_obj = await _call_stripe(
        "checkout session retrieval",
        stripe.checkout.Session.retrieve,
        session_id,
        expand=["line_items", "total_details"],
    )
    if not field(session_obj, "id"):
        metrics.record_payment_failure()
        raise PaymentProviderError("Stripe returned a malformed checkout session")
    return session_obj
