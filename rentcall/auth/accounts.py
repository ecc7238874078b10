from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from motor.motor_asyncio import AsyncIOMotorDatabase
from passlib.context import CryptContext
from pymongo.errors import DuplicateKeyError

from rentcall.utils.exceptions import AuthenticationError, ValidationError

logger = structlog.get_logger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

MIN_PASSWORD_LENGTH = 8


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not password or not hashed:
        return False
    try:
        return pwd_context.verify(password, hashed)
    except ValueError:
        # unrecognized or malformed hash
        return False


def account_identity(account: Dict[str, Any]) -> Dict[str, Any]:
    """Claims carried by tokens issued for a landlord account."""
    return {
        "sub": str(account["_id"]),
        "account": {
            "email": account.get("email"),
            "firstname": account.get("firstname"),
            "lastname": account.get("lastname"),
            "role": account.get("role", "administrator"),
        },
    }


class AccountRepository:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.accounts = db.accounts

    async def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        if not email:
            return None
        return await self.accounts.find_one({"email": email.strip().lower()})

    async def create(self, firstname: str, lastname: str, email: str, password: str) -> bool:
        """
        Register a landlord account. Returns False when the email is
        already taken; the account is left untouched.
        """
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        email = email.strip().lower()
        if await self.find_by_email(email) is not None:
            return False
        try:
            await self.accounts.insert_one({
                "firstname": firstname.strip(),
                "lastname": lastname.strip(),
                "email": email,
                "password": hash_password(password),
                "createdAt": datetime.now(timezone.utc),
            })
        except DuplicateKeyError:
            return False
        logger.info("account_created", email=email)
        return True

    async def authenticate(self, email: str, password: str) -> Dict[str, Any]:
        account = await self.find_by_email(email)
        # same error for unknown email and wrong password
        if account is None or not verify_password(password, account.get("password")):
            logger.warning("signin_failed", email=(email or "").strip().lower())
            raise AuthenticationError("Invalid credentials")
        return account

    async def update_password(self, email: str, password: str) -> None:
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        result = await self.accounts.update_one(
            {"email": email.strip().lower()},
            {"$set": {
                "password": hash_password(password),
                "updatedAt": datetime.now(timezone.utc),
            }},
        )
        if result.matched_count == 0:
            raise AuthenticationError("Invalid credentials")
        logger.info("password_updated", email=email)
