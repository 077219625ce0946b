"""
Caller authentication for the delisting API.

Two kinds of caller exist:
- operators / system jobs, authenticated with HTTP Basic credentials from settings
- end users, authenticated with a bearer token minted by the external auth layer
  in the form "<user_id>.<hex hmac-sha256(SECRET_KEY, user_id)>"
"""

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBasic, HTTPBasicCredentials, HTTPBearer

from salesync.core.config import Settings, get_settings

basic_security = HTTPBasic(auto_error=False)
bearer_security = HTTPBearer(auto_error=False)


@dataclass
class Caller:
    user_id: Optional[str] = None
    is_operator: bool = False

    def can_access(self, owner_id: str) -> bool:
        return self.is_operator or (self.user_id is not None and self.user_id == owner_id)


def sign_user_token(user_id: str, secret_key: str) -> str:
    digest = hmac.new(secret_key.encode(), user_id.encode(), hashlib.sha256).hexdigest()
    return f"{user_id}.{digest}"


def verify_user_token(token: str, secret_key: str) -> Optional[str]:
    """Return the user id carried by a valid token, None otherwise"""
    user_id, _, signature = token.rpartition(".")
    if not user_id or not signature:
        return None
    expected = hmac.new(secret_key.encode(), user_id.encode(), hashlib.sha256).hexdigest()
    if not hmac.compare_digest(signature, expected):
        return None
    return user_id


def _operator_credentials_valid(credentials: HTTPBasicCredentials, settings: Settings) -> bool:
    if not settings.BASIC_AUTH_PASSWORD:
        return False
    is_correct_username = secrets.compare_digest(
        credentials.username.encode("utf8"),
        settings.BASIC_AUTH_USERNAME.encode("utf8")
    )
    is_correct_password = secrets.compare_digest(
        credentials.password.encode("utf8"),
        settings.BASIC_AUTH_PASSWORD.encode("utf8")
    )
    return is_correct_username and is_correct_password


async def get_caller(
    basic: Optional[HTTPBasicCredentials] = Depends(basic_security),
    bearer: Optional[HTTPAuthorizationCredentials] = Depends(bearer_security),
    settings: Settings = Depends(get_settings),
) -> Caller:
    """Resolve the authenticated caller or reject the request with 401"""
    if basic is not None and _operator_credentials_valid(basic, settings):
        return Caller(user_id=None, is_operator=True)

    if bearer is not None:
        user_id = verify_user_token(bearer.credentials, settings.SECRET_KEY)
        if user_id:
            return Caller(user_id=user_id, is_operator=False)

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def require_operator(caller: Caller = Depends(get_caller)) -> Caller:
    if not caller.is_operator:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Operator access required")
    return caller
