"""Application error taxonomy.

Business-logic layers raise these; ``register_exception_handlers`` turns them
into JSON responses so routers never translate errors themselves.

    raise InsufficientFunds(required=1200, available=1000)
"""

from __future__ import annotations

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from libs.common.logging import get_logger

logger = get_logger(__name__)


class AppError(Exception):
    """Base class for expected, user-facing failures.

    - code: stable machine-readable identifier
    - message: human readable reason, safe to show to the customer
    - status_code: HTTP status used when the error reaches a router
    """

    code = "app_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code


class ValidationError(AppError):
    """Bad or incomplete input. Raised before any write."""

    code = "validation_error"
    status_code = status.HTTP_400_BAD_REQUEST


class StockError(AppError):
    """Insufficient stock or unavailable product. Raised before any write."""

    code = "out_of_stock"
    status_code = status.HTTP_409_CONFLICT


class InsufficientFunds(AppError):
    """Wallet balance cannot cover the requested debit."""

    code = "insufficient_funds"
    status_code = status.HTTP_402_PAYMENT_REQUIRED

    def __init__(self, required: float, available: float | None = None) -> None:
        if available is None:
            message = f"Insufficient wallet balance to cover ₦{required:,.2f}"
        else:
            message = (
                f"Insufficient wallet balance. You need ₦{required:,.2f} "
                f"but have ₦{available:,.2f}."
            )
        super().__init__(message)
        self.required = required
        self.available = available


class NotFound(AppError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class ReferenceNotFound(NotFound):
    """No local record is associated with a payment reference."""

    code = "reference_not_found"

    def __init__(self, reference: str) -> None:
        super().__init__(
            f"No payment found for reference {reference}. "
            "Please contact support with this reference."
        )
        self.reference = reference


class GatewayUnavailable(AppError):
    """Gateway call failed or timed out. Inconclusive: state is left as is."""

    code = "gateway_unavailable"
    status_code = status.HTTP_502_BAD_GATEWAY


class AlreadySettled(AppError):
    """Idempotency gate outcome. Not a failure; callers return the state."""

    code = "already_settled"
    status_code = status.HTTP_200_OK

    def __init__(self, reference: str, state: str) -> None:
        super().__init__(f"Reference {reference} already settled as {state}")
        self.reference = reference
        self.state = state


class OrphanedReference(AppError):
    """A ledger or checkout row points at a user/order that no longer exists."""

    code = "orphaned_reference"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, reference: str, missing: str) -> None:
        super().__init__(
            f"Reference {reference} points at a missing {missing}; "
            "flagged for manual review"
        )
        self.reference = reference
        self.missing = missing


async def _app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", exc.code, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the AppError handler to a service app."""
    app.add_exception_handler(AppError, _app_error_handler)
