from typing import Any, Dict, Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from rentcall.auth.accounts import AccountRepository
from rentcall.auth.tokens import TokenService
from rentcall.utils.exceptions import AuthenticationError, PermissionDeniedError

security = HTTPBearer(auto_error=False)


def get_token_service(request: Request) -> TokenService:
    return request.app.state.token_service


def get_account_repository(request: Request) -> AccountRepository:
    return request.app.state.account_repository


async def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    token_service: TokenService = Depends(get_token_service),
) -> Dict[str, Any]:
    if credentials is None:
        raise AuthenticationError("Missing bearer token")
    return token_service.verify_access_token(credentials.credentials)


async def require_administrator(
    identity: Dict[str, Any] = Depends(get_current_identity),
) -> Dict[str, Any]:
    role = (identity.get("account") or {}).get("role")
    if role != "administrator":
        raise PermissionDeniedError("Administrator role required")
    return identity
