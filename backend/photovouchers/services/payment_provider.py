from __future__ import annotations

from typing import Literal

from photovouchers.core.config import settings

PaymentsProvider = Literal["real", "mock"]

MOCK_SESSION_PREFIX = "cs_mock_"


def payments_provider() -> PaymentsProvider:
    raw = (settings.payments_provider or "real").strip().lower()
    if raw in {"mock", "test"}:
        env = (settings.environment or "").strip().lower()
        if env in {"prod", "production"}:
            return "real"
        return "mock"
    return "real"


def is_mock_payments() -> bool:
    return payments_provider() == "mock"


def is_mock_session_id(session_id: str | None) -> bool:
    return str(session_id or "").startswith(MOCK_SESSION_PREFIX)
