"""Application error taxonomy. Each error maps to one HTTP status in app.main."""

from fastapi import status


class AppError(Exception):
    """Base error: `message` is for logs, `public_message` is what the client sees."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_public_message: str | None = None

    def __init__(self, message: str = "", public_message: str | None = None):
        super().__init__(message)
        self.message = message
        self.public_message = public_message or self.default_public_message or message


class ValidationError(AppError):
    """Malformed or missing input."""

    status_code = status.HTTP_400_BAD_REQUEST


class AuthError(AppError):
    """Not authenticated, or credentials rejected."""

    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Authentication required", public_message: str | None = None):
        super().__init__(message, public_message)


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT


class GatewayError(AppError):
    """Payment gateway failure. The remote message is logged, never returned."""

    default_public_message = "決済サービスとの通信に失敗しました"

    def __init__(
        self,
        message: str = "fincode API error",
        public_message: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message, public_message)
        # HTTP status reported by the gateway, if it answered at all
        self.gateway_status = status_code


class GatewayConfigError(GatewayError):
    """No usable gateway credential in configuration."""


class StoreError(AppError):
    default_public_message = "データベース処理に失敗しました"
