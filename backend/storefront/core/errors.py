"""
Error taxonomy shared by the lifecycle engine, stores and API layer.

Every error carries a diagnostic message, structured context for logging and a
stable ``user_message`` that the API layer returns to clients. Raw diagnostic
detail is never needed for correct client behaviour.
"""

from typing import Any, Optional


class StorefrontError(Exception):
    """Base exception for storefront domain errors."""

    status_code: int = 500
    default_user_message: str = "Terjadi kesalahan. Silakan coba lagi."

    def __init__(
        self,
        message: str,
        user_message: Optional[str] = None,
        **context: Any,
    ):
        super().__init__(message)
        self.message = message
        self.user_message = user_message or self.default_user_message
        self.context = context

    @property
    def kind(self) -> str:
        """Stable, machine readable error kind."""
        return type(self).__name__.removesuffix("Error")


class UnauthorizedError(StorefrontError):
    """Raised when no valid identity accompanies the call."""

    status_code = 401
    default_user_message = "Silakan login terlebih dahulu."


class ForbiddenError(StorefrontError):
    """Raised when the identity lacks the role or ownership for an action."""

    status_code = 403
    default_user_message = "Anda tidak memiliki akses untuk tindakan ini."


class NotFoundError(StorefrontError):
    """Raised when a referenced order, refund, voucher or product is missing."""

    status_code = 404
    default_user_message = "Data tidak ditemukan."


class InvalidTransitionError(StorefrontError):
    """Raised when a requested status is not a legal successor."""

    status_code = 409
    default_user_message = "Status tidak dapat diubah dari kondisi saat ini."

    def __init__(
        self,
        message: str,
        current_status: str,
        requested_status: str,
        user_message: Optional[str] = None,
        **context: Any,
    ):
        super().__init__(
            message,
            user_message=user_message,
            current_status=current_status,
            requested_status=requested_status,
            **context,
        )
        self.current_status = current_status
        self.requested_status = requested_status


class ConcurrentModificationError(InvalidTransitionError):
    """Raised when another request changed the aggregate between read and write."""

    default_user_message = (
        "Data telah diperbarui oleh proses lain. Muat ulang dan coba lagi."
    )


class InvariantViolationError(StorefrontError):
    """Raised when a transition would break a domain invariant."""

    status_code = 422
    default_user_message = "Permintaan tidak memenuhi persyaratan."


class DuplicateRefundError(InvariantViolationError):
    """Raised when a second refund is requested for the same order."""

    default_user_message = "Refund sudah pernah diajukan untuk pesanan ini."


class ValidationError(StorefrontError):
    """Raised for malformed input such as empty carts or negative amounts."""

    status_code = 400
    default_user_message = "Data yang dikirim tidak valid."


class MaintenanceModeError(StorefrontError):
    """Raised when checkout is attempted while the store is under maintenance."""

    status_code = 503
    default_user_message = (
        "Sistem sedang dalam pemeliharaan. Transaksi tidak dapat dilakukan saat ini."
    )
