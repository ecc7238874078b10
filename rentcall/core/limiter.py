from slowapi import Limiter
from slowapi.util import get_remote_address

from rentcall.core.config import settings

SIGNIN_LIMIT = "5 per 15 minutes"
REFRESH_LIMIT = "20 per 5 minutes"
FORGOT_PASSWORD_LIMIT = "3 per hour"
RESET_PASSWORD_LIMIT = "5 per 15 minutes"
SIGNUP_LIMIT = "5 per hour"

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    enabled=settings.RATE_LIMIT_ENABLED,
)
