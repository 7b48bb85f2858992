"""Authentication dependencies for API user scoping."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from services.session_token import decode_session_token


auth_scheme = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    external_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    email_verified: bool = False


def require_email(auth: AuthContext) -> str:
    """Return the caller's email or reject the request."""
    if not auth.email:
        raise HTTPException(status_code=400, detail="User email not found")
    return auth.email


async def get_auth_context(
    credentials: HTTPAuthorizationCredentials = Depends(auth_scheme),
) -> AuthContext:
    """Resolve authenticated identity from Bearer session token."""
    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        payload = decode_session_token(credentials.credentials)
    except ValueError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    return AuthContext(
        external_id=str(payload.get("sub", "")),
        email=str(payload.get("email", "")) or None,
        name=str(payload.get("name", "")) or None,
        email_verified=bool(payload.get("email_verified", False)),
    )
