"""
JWT issuance, refresh rotation and revocation.

Every token that can be revoked (refresh, password reset, application
credential) is mirrored in Redis under ``<kind>:<token or id>`` with a TTL
equal to its lifetime, so a token is only usable while its mirror exists.
"""

import os
import re
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple

import jwt
import structlog
from dotenv import load_dotenv

from rentcall.metrics.metrics import MetricsCollector
from rentcall.utils.exceptions import (
    AuthenticationError,
    ConfigurationError,
    ServiceUnavailableError,
    ValidationError,
)
from rentcall.utils.redis_client import create_redis_key

logger = structlog.get_logger(__name__)
load_dotenv()


class TokenType(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"
    APPLICATION = "application"
    RESET = "reset"


# default lifetimes per environment
TOKEN_CONFIG: Dict[str, Dict[TokenType, str]] = {
    "production": {
        TokenType.ACCESS: "15m",
        TokenType.REFRESH: "7d",
        TokenType.APPLICATION: "1h",
        TokenType.RESET: "1h",
    },
    "development": {
        TokenType.ACCESS: "1h",
        TokenType.REFRESH: "30d",
        TokenType.APPLICATION: "1h",
        TokenType.RESET: "1h",
    },
}

UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400}
UNIT_RANGES = {"s": (30, 3600), "m": (1, 60), "h": (1, 24), "d": (1, 30)}

# longest lifetime allowed per token type, in seconds
MAX_LIFETIME = {
    TokenType.ACCESS: 24 * 3600,
    TokenType.APPLICATION: 24 * 3600,
    TokenType.RESET: 24 * 3600,
    TokenType.REFRESH: 30 * 86400,
}

STORE_NAMESPACE = {
    TokenType.REFRESH: "refresh_token",
    TokenType.RESET: "reset_token",
    TokenType.APPLICATION: "appcredz",
}

_DURATION = re.compile(r"^(\d+)([smhd])$")

RESERVED_CLAIMS = ("jti", "iat", "exp", "typ")


def parse_duration(expiry: str) -> int:
    """'15m' -> 900"""
    match = _DURATION.match((expiry or "").strip())
    if not match:
        raise ValueError(f"Invalid duration '{expiry}': expected <number><s|m|h|d>")
    value, unit = match.groups()
    return int(value) * UNIT_SECONDS[unit]


def validate_token_expiry(expiry: str, token_type: Optional[TokenType] = None) -> int:
    """Seconds for ``expiry`` after checking the per-unit and per-type limits."""
    seconds = parse_duration(expiry)
    value, unit = _DURATION.match(expiry.strip()).groups()
    low, high = UNIT_RANGES[unit]
    if not low <= int(value) <= high:
        raise ValueError(f"Duration '{expiry}' out of range: {unit} must be between {low} and {high}")
    if token_type is not None and seconds > MAX_LIFETIME[token_type]:
        raise ValueError(f"Duration '{expiry}' exceeds the maximum for {token_type.value} tokens")
    return seconds


@dataclass
class TokenSettings:
    access_secret: str
    refresh_secret: str
    application_secret: str
    reset_secret: str
    algorithm: str = "HS256"
    environment: str = "development"
    expiries: Dict[TokenType, str] = field(default_factory=lambda: dict(TOKEN_CONFIG["development"]))
    lifetimes: Dict[TokenType, int] = field(default_factory=dict, init=False)

    def __post_init__(self):
        self.validate()

    @classmethod
    def from_env(cls) -> "TokenSettings":
        environment = os.getenv("ENVIRONMENT", "development").lower()
        defaults = TOKEN_CONFIG.get(environment, TOKEN_CONFIG["development"])
        return cls(
            access_secret=os.getenv("ACCESS_TOKEN_SECRET", ""),
            refresh_secret=os.getenv("REFRESH_TOKEN_SECRET", ""),
            application_secret=os.getenv("APPCREDZ_TOKEN_SECRET", ""),
            reset_secret=os.getenv("RESET_TOKEN_SECRET", ""),
            algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
            environment=environment,
            expiries={
                token_type: os.getenv(f"{token_type.value.upper()}_TOKEN_EXPIRY", default)
                for token_type, default in defaults.items()
            },
        )

    def validate(self) -> None:
        """Fail at load time rather than at first issuance."""
        secrets = {
            "ACCESS_TOKEN_SECRET": self.access_secret,
            "REFRESH_TOKEN_SECRET": self.refresh_secret,
            "APPCREDZ_TOKEN_SECRET": self.application_secret,
            "RESET_TOKEN_SECRET": self.reset_secret,
        }
        missing = [name for name, value in secrets.items() if not value]
        if missing:
            raise ConfigurationError(f"Missing token secrets: {', '.join(missing)}")
        if self.access_secret == self.refresh_secret:
            raise ConfigurationError("Access and refresh tokens must use different secrets")
        if self.access_secret == self.application_secret:
            raise ConfigurationError("Access tokens and application credentials must use different secrets")

        lifetimes = {}
        for token_type in TokenType:
            expiry = self.expiries.get(token_type)
            if not expiry:
                raise ConfigurationError(f"No expiry configured for {token_type.value} tokens")
            try:
                lifetimes[token_type] = validate_token_expiry(expiry, token_type)
            except ValueError as e:
                raise ConfigurationError(str(e)) from e
        self.lifetimes = lifetimes

    def secret_for(self, token_type: TokenType) -> str:
        return {
            TokenType.ACCESS: self.access_secret,
            TokenType.REFRESH: self.refresh_secret,
            TokenType.APPLICATION: self.application_secret,
            TokenType.RESET: self.reset_secret,
        }[token_type]


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str
    issued_at: int
    access_expires_at: int
    refresh_expires_at: int


class TokenService:
    """
    Issues and rotates tokens. ``store`` is an AsyncRedisClient (or any
    object with async set(key, value, ex) / get(key) / delete(key)).

    Expiry is checked against ``clock`` rather than inside PyJWT so a single
    time source drives both the ``exp`` claim and its verification.
    """

    def __init__(
        self,
        settings: TokenSettings,
        store,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.store = store
        self.metrics = metrics
        self.clock = clock

    def _encode(
        self,
        token_type: TokenType,
        claims: Dict[str, Any],
        secret: Optional[str] = None,
        jti: Optional[str] = None,
        lifetime: Optional[int] = None,
    ) -> Tuple[str, Dict[str, Any]]:
        iat = int(self.clock())
        payload = {
            **claims,
            "jti": jti or uuid.uuid4().hex,
            "iat": iat,
            "exp": iat + (lifetime or self.settings.lifetimes[token_type]),
            "typ": token_type.value,
        }
        token = jwt.encode(
            payload,
            secret or self.settings.secret_for(token_type),
            algorithm=self.settings.algorithm,
        )
        if self.metrics:
            self.metrics.record_token_issued(token_type.value)
        return token, payload

    def _decode(self, token: str, secret: str, *token_types: TokenType) -> Dict[str, Any]:
        if not token:
            raise AuthenticationError("Missing token")
        try:
            claims = jwt.decode(
                token,
                secret,
                algorithms=[self.settings.algorithm],
                options={
                    "require": ["exp", "iat", "jti"],
                    "verify_exp": False,
                    "verify_iat": False,
                },
            )
        except jwt.InvalidTokenError as e:
            raise AuthenticationError("Invalid token") from e
        if claims["exp"] <= int(self.clock()):
            raise AuthenticationError("Token expired")
        if claims.get("typ") not in {t.value for t in token_types}:
            raise AuthenticationError("Wrong token type")
        return claims

    async def _mirror(self, token_type: TokenType, key_part: str, value: Any, claims: Dict[str, Any]) -> None:
        """Store the token's mirror; TTL and claims share the same lifetime."""
        key = create_redis_key(STORE_NAMESPACE[token_type], key_part)
        stored = await self.store.set(key, value, ex=claims["exp"] - claims["iat"])
        if not stored:
            logger.error("token_store_write_failed", token_type=token_type.value)
            raise ServiceUnavailableError("Token store unavailable")

    # ------------------------------------------------------------------
    # access / refresh
    # ------------------------------------------------------------------

    async def issue(self, identity: Dict[str, Any]) -> TokenPair:
        """New access/refresh pair for ``identity`` (must carry ``sub``)."""
        if not identity.get("sub"):
            raise ValidationError("Token identity requires a subject")
        access_token, access_claims = self._encode(TokenType.ACCESS, identity)
        refresh_token, refresh_claims = self._encode(TokenType.REFRESH, identity)
        await self._mirror(TokenType.REFRESH, refresh_token, identity["sub"], refresh_claims)
        logger.info("tokens_issued", sub=identity["sub"], refresh_jti=refresh_claims["jti"])
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            issued_at=refresh_claims["iat"],
            access_expires_at=access_claims["exp"],
            refresh_expires_at=refresh_claims["exp"],
        )

    async def refresh(self, refresh_token: str) -> TokenPair:
        """
        Rotate a refresh token. The old mirror is deleted before the new pair
        is issued; of two concurrent calls with the same token only the one
        whose delete removed the key succeeds.
        """
        try:
            claims = self._decode(refresh_token, self.settings.refresh_secret, TokenType.REFRESH)
        except AuthenticationError:
            self._record_refresh("invalid")
            raise

        key = create_redis_key(STORE_NAMESPACE[TokenType.REFRESH], refresh_token)
        if await self.store.delete(key) != 1:
            self._record_refresh("revoked")
            logger.warning("refresh_token_not_in_store", sub=claims.get("sub"), jti=claims["jti"])
            raise AuthenticationError("Refresh token revoked or already used")

        identity = {k: v for k, v in claims.items() if k not in RESERVED_CLAIMS}
        pair = await self.issue(identity)
        self._record_refresh("rotated")
        return pair

    async def revoke(self, refresh_token: str) -> bool:
        key = create_redis_key(STORE_NAMESPACE[TokenType.REFRESH], refresh_token)
        removed = await self.store.delete(key)
        logger.info("refresh_token_revoked", removed=bool(removed))
        return bool(removed)

    def verify_access_token(self, token: str) -> Dict[str, Any]:
        """Claims of a valid access token or application access token."""
        return self._decode(token, self.settings.access_secret, TokenType.ACCESS, TokenType.APPLICATION)

    def _record_refresh(self, outcome: str) -> None:
        if self.metrics:
            self.metrics.record_refresh(outcome)

    # ------------------------------------------------------------------
    # application credentials
    # ------------------------------------------------------------------

    async def create_application_credentials(
        self, organization_id: str, expiry_seconds: int, created_by: Optional[str] = None
    ) -> Dict[str, Any]:
        """clientId / clientSecret pair valid for ``expiry_seconds``."""
        if expiry_seconds <= 0:
            raise ValidationError("Credential expiry must be in the future")
        max_seconds = MAX_LIFETIME[TokenType.APPLICATION]
        if expiry_seconds > max_seconds:
            raise ValidationError(f"Credential expiry cannot exceed {max_seconds // 3600}h")
        client_id = str(uuid.uuid4())
        client_secret, claims = self._encode(
            TokenType.APPLICATION,
            {"organizationId": organization_id, "createdBy": created_by},
            jti=client_id,
            lifetime=expiry_seconds,
        )
        await self._mirror(TokenType.APPLICATION, client_id, organization_id, claims)
        logger.info("application_credentials_created", client_id=client_id, organization_id=organization_id)
        return {"clientId": client_id, "clientSecret": client_secret, "expiresAt": claims["exp"]}

    async def issue_application_token(self, client_id: str, client_secret: str) -> Dict[str, Any]:
        """Access token (no refresh) for a machine client."""
        try:
            claims = self._decode(client_secret, self.settings.application_secret, TokenType.APPLICATION)
        except AuthenticationError as e:
            raise AuthenticationError("Invalid client credentials") from e
        if claims["jti"] != client_id:
            raise AuthenticationError("Invalid client credentials")

        key = create_redis_key(STORE_NAMESPACE[TokenType.APPLICATION], client_id)
        if await self.store.get(key) is None:
            raise AuthenticationError("Client credentials revoked or expired")

        organization_id = claims.get("organizationId")
        # never outlive the credential itself
        lifetime = min(self.settings.lifetimes[TokenType.APPLICATION], claims["exp"] - int(self.clock()))
        access_token, _ = self._encode(
            TokenType.APPLICATION,
            {"sub": client_id, "application": {"clientId": client_id, "organizationId": organization_id}},
            secret=self.settings.access_secret,
            lifetime=lifetime,
        )
        logger.info("application_token_issued", client_id=client_id)
        return {"accessToken": access_token, "organizationId": organization_id}

    # ------------------------------------------------------------------
    # password reset
    # ------------------------------------------------------------------

    async def issue_reset_token(self, email: str) -> str:
        token, claims = self._encode(TokenType.RESET, {"email": email})
        await self._mirror(TokenType.RESET, token, email, claims)
        return token

    async def consume_reset_token(self, token: str) -> str:
        """Email the reset token was issued for. Single use."""
        claims = self._decode(token, self.settings.reset_secret, TokenType.RESET)
        key = create_redis_key(STORE_NAMESPACE[TokenType.RESET], token)
        if await self.store.delete(key) != 1:
            raise AuthenticationError("Reset token revoked or already used")
        return claims["email"]
