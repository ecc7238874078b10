from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import BaseModel, Field

from rentcall.auth.accounts import AccountRepository, account_identity
from rentcall.auth.dependencies import (
    get_account_repository,
    get_token_service,
    require_administrator,
)
from rentcall.auth.tokens import TokenPair, TokenService
from rentcall.core.config import settings
from rentcall.core.limiter import (
    FORGOT_PASSWORD_LIMIT,
    REFRESH_LIMIT,
    RESET_PASSWORD_LIMIT,
    SIGNIN_LIMIT,
    SIGNUP_LIMIT,
    limiter,
)
from rentcall.utils.exceptions import AuthenticationError, NotFoundError, ValidationError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/landlord", tags=["Authentication"])


class SignupRequest(BaseModel):
    firstname: str
    lastname: str
    email: str
    password: str


class SigninRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    client_id: Optional[str] = Field(None, alias="clientId")
    client_secret: Optional[str] = Field(None, alias="clientSecret")


class RefreshRequest(BaseModel):
    refresh_token: Optional[str] = Field(None, alias="refreshToken")


class ForgotPasswordRequest(BaseModel):
    email: str


class ResetPasswordRequest(BaseModel):
    reset_token: str = Field(..., alias="resetToken")
    password: str


class ApplicationCredentialsRequest(BaseModel):
    expiry: datetime
    organization_id: str = Field(..., alias="organizationId")


def _set_refresh_cookie(response: Response, pair: TokenPair) -> None:
    response.set_cookie(
        settings.REFRESH_COOKIE_NAME,
        pair.refresh_token,
        max_age=pair.refresh_expires_at - pair.issued_at,
        path=settings.REFRESH_COOKIE_PATH,
        domain=settings.REFRESH_COOKIE_DOMAIN,
        secure=settings.REFRESH_COOKIE_SECURE,
        httponly=True,
        samesite="strict",
    )


@router.post("/signup", status_code=status.HTTP_201_CREATED)
@limiter.limit(SIGNUP_LIMIT)
async def signup(
    request: Request,
    body: SignupRequest,
    accounts: AccountRepository = Depends(get_account_repository),
) -> Response:
    """Responds 201 whether or not the email is already registered."""
    if not settings.SIGNUP_ENABLED:
        raise NotFoundError("Not Found")
    if not all(v.strip() for v in (body.firstname, body.lastname, body.email, body.password)):
        raise ValidationError("missing fields")
    created = await accounts.create(body.firstname, body.lastname, body.email, body.password)
    if not created:
        logger.info("signup_existing_account")
    return Response(status_code=status.HTTP_201_CREATED)


@router.post("/signin")
@limiter.limit(SIGNIN_LIMIT)
async def signin(
    request: Request,
    response: Response,
    body: SigninRequest,
    accounts: AccountRepository = Depends(get_account_repository),
    token_service: TokenService = Depends(get_token_service),
) -> Dict[str, Any]:
    """Email/password sign-in for landlords, clientId/clientSecret for applications."""
    if body.client_id or body.client_secret:
        if not (body.client_id and body.client_secret):
            raise ValidationError("clientId and clientSecret are both required")
        return await token_service.issue_application_token(body.client_id, body.client_secret)

    if not body.email or not body.password:
        raise ValidationError("email and password are required")

    account = await accounts.authenticate(body.email, body.password)
    pair = await token_service.issue(account_identity(account))
    _set_refresh_cookie(response, pair)
    logger.info("signin_succeeded", account_id=str(account["_id"]))
    return {"accessToken": pair.access_token}


@router.post("/refreshtoken")
@limiter.limit(REFRESH_LIMIT)
async def refresh_token(
    request: Request,
    response: Response,
    body: Optional[RefreshRequest] = None,
    token_service: TokenService = Depends(get_token_service),
) -> Dict[str, Any]:
    token = request.cookies.get(settings.REFRESH_COOKIE_NAME) or (body.refresh_token if body else None)
    if not token:
        raise AuthenticationError("Missing refresh token")
    pair = await token_service.refresh(token)
    _set_refresh_cookie(response, pair)
    return {"accessToken": pair.access_token, "refreshToken": pair.refresh_token}


@router.delete("/signout")
async def signout(request: Request, token_service: TokenService = Depends(get_token_service)):
    token = request.cookies.get(settings.REFRESH_COOKIE_NAME)
    if not token:
        return Response(status_code=status.HTTP_202_ACCEPTED)
    await token_service.revoke(token)
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    response.delete_cookie(
        settings.REFRESH_COOKIE_NAME,
        path=settings.REFRESH_COOKIE_PATH,
        domain=settings.REFRESH_COOKIE_DOMAIN,
    )
    return response


@router.post("/appcredz")
async def create_application_credentials(
    body: ApplicationCredentialsRequest,
    identity: Dict[str, Any] = Depends(require_administrator),
    token_service: TokenService = Depends(get_token_service),
) -> Dict[str, Any]:
    expiry = body.expiry if body.expiry.tzinfo else body.expiry.replace(tzinfo=timezone.utc)
    seconds = int((expiry - datetime.now(timezone.utc)).total_seconds())
    return await token_service.create_application_credentials(
        body.organization_id, seconds, created_by=identity.get("sub")
    )


@router.post("/forgotpassword", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit(FORGOT_PASSWORD_LIMIT)
async def forgot_password(
    request: Request,
    body: ForgotPasswordRequest,
    accounts: AccountRepository = Depends(get_account_repository),
    token_service: TokenService = Depends(get_token_service),
) -> Response:
    """Responds 204 whether or not the account exists."""
    account = await accounts.find_by_email(body.email)
    if account is not None:
        reset_token = await token_service.issue_reset_token(account["email"])
        logger.info("password_reset_requested", account_id=str(account["_id"]))
        if not settings.is_production:
            logger.debug(
                "password_reset_link",
                url=f"{settings.PUBLIC_BASE_URL}/landlord/resetpassword/{reset_token}",
            )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.patch("/resetpassword")
@limiter.limit(RESET_PASSWORD_LIMIT)
async def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    accounts: AccountRepository = Depends(get_account_repository),
    token_service: TokenService = Depends(get_token_service),
) -> Dict[str, Any]:
    email = await token_service.consume_reset_token(body.reset_token)
    await accounts.update_password(email, body.password)
    return {"msg": "Password updated"}
