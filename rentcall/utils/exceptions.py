from typing import Optional


class RentcallError(Exception):
    """Base error. Handlers in main.py map these to JSON responses."""

    status_code = 500
    error_type = "internal_error"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ValidationError(RentcallError):
    status_code = 422
    error_type = "validation_error"


class AuthenticationError(RentcallError):
    status_code = 401
    error_type = "authentication_error"


class PermissionDeniedError(RentcallError):
    status_code = 403
    error_type = "permission_denied"


class NotFoundError(RentcallError):
    status_code = 404
    error_type = "not_found"


class WebhookVerificationError(RentcallError):
    status_code = 403
    error_type = "webhook_verification_failed"


class ServiceUnavailableError(RentcallError):
    status_code = 503
    error_type = "service_unavailable"


class ConfigurationError(RentcallError):
    error_type = "configuration_error"


class ProviderError(RentcallError):
    """Outbound messaging call failed (HTTP error, API error or timeout)."""

    status_code = 502
    error_type = "provider_error"

    def __init__(self, message: str, code: Optional[str] = None, http_status: Optional[int] = None):
        super().__init__(message)
        self.code = code
        self.http_status = http_status

    def as_dict(self) -> dict:
        return {"code": self.code, "message": self.message}
