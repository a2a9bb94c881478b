from __future__ import annotations

from photovouchers.core.config import settings
from photovouchers.services import payments

_DEV_SECRET_KEYS = {"", "dev-secret-key"}


def is_production() -> bool:
    env = (settings.environment or "").strip().lower()
    return env in {"prod", "production"}


def _looks_like_localhost(url: str | None) -> bool:
    value = (url or "").strip().lower()
    if not value:
        return False
    return "localhost" in value or "127.0.0.1" in value


def _append_if(problems: list[str], *, condition: bool, message: str) -> None:
    if condition:
        problems.append(message)


def _validate_secrets(problems: list[str]) -> None:
    secret = (settings.secret_key or "").strip()
    _append_if(
        problems,
        condition=secret in _DEV_SECRET_KEYS or len(secret) < 32,
        message="SECRET_KEY must be set to a strong random value (not the dev default).",
    )
    admin_token = (settings.admin_token or "").strip()
    _append_if(
        problems,
        condition=len(admin_token) < 16,
        message="ADMIN_TOKEN must be set to a random value of at least 16 characters.",
    )


def _validate_payments(problems: list[str]) -> None:
    _append_if(
        problems,
        condition=(settings.payments_provider or "").strip().lower() in {"mock", "test"},
        message="PAYMENTS_PROVIDER must not be 'mock' in production.",
    )
    _append_if(
        problems,
        condition=not payments.is_stripe_configured(),
        message="STRIPE_SECRET_KEY must be configured in production (placeholder keys are rejected).",
    )
    stripe_env = (settings.stripe_env or "").strip().lower()
    _append_if(
        problems,
        condition=stripe_env in {"live", "prod", "production"} and payments.stripe_secret_key().startswith("sk_test"),
        message="STRIPE_ENV=live but STRIPE secret key looks like a test key (sk_test...).",
    )


def _validate_urls(problems: list[str]) -> None:
    _append_if(
        problems,
        condition=_looks_like_localhost(settings.frontend_origin),
        message="FRONTEND_ORIGIN must be set to the public site origin (not localhost) in production.",
    )
    _append_if(
        problems,
        condition=_looks_like_localhost(settings.public_base_url),
        message="PUBLIC_BASE_URL must be set to the public API origin (not localhost) in production.",
    )


def _validate_smtp_settings(problems: list[str]) -> None:
    if not settings.smtp_enabled:
        return
    _append_if(
        problems,
        condition=not (settings.smtp_host or "").strip(),
        message="SMTP_HOST must be set when SMTP_ENABLED=1.",
    )
    _append_if(
        problems,
        condition=not (settings.smtp_from_email or "").strip(),
        message="SMTP_FROM_EMAIL must be set when SMTP_ENABLED=1.",
    )


def validate_production_settings() -> None:
    """
    Fail fast on insecure defaults when running in production.

    A production process must never hand out mock checkout sessions or sign
    download links and security codes with the development secret.
    """
    if not is_production():
        return

    problems: list[str] = []
    _validate_secrets(problems)
    _validate_payments(problems)
    _validate_urls(problems)
    _validate_smtp_settings(problems)

    if problems:
        raise RuntimeError("Production configuration checks failed:\n- " + "\n- ".join(problems))
