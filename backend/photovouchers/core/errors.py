from __future__ import annotations

from fastapi import status


class ServiceError(Exception):
    """Base class for errors raised by the service layer and rendered as ErrorResponse."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "service_error"

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail

    @property
    def public_detail(self) -> str:
        return self.detail


class ValidationError(ServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"


class NotFoundError(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class PaymentProviderError(ServiceError):
    """The payment provider rejected a request or returned something unusable.

    `provider_status` and `provider_message` are kept for server-side logs only;
    clients get a generic message.
    """

    status_code = status.HTTP_502_BAD_GATEWAY
    code = "payment_provider_error"

    def __init__(
        self,
        detail: str,
        *,
        provider_status: int | None = None,
        provider_message: str | None = None,
    ) -> None:
        super().__init__(detail)
        self.provider_status = provider_status
        self.provider_message = provider_message

    @property
    def public_detail(self) -> str:
        return "Payment provider error"


class PersistenceError(ServiceError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "persistence_error"

    @property
    def public_detail(self) -> str:
        return "Temporarily unable to store the request, please retry"
