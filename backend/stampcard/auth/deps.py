"""FastAPI dependencies for authentication.

Dependencies:
  get_current_user  → decode JWT, check revocation, load the active User

Authorization is per location and lives in `stampcard.auth.permissions`;
routers resolve it inside the service call because the location comes
from the request body.
"""

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stampcard.auth.jwt import decode_token
from stampcard.auth.revocation import TokenRevocation
from stampcard.config import settings
from stampcard.database import get_db
from stampcard.middleware.exceptions import UnauthorizedError
from stampcard.models.user import User

bearer_scheme = HTTPBearer(auto_error=False)


# ── Core user dependency ────────────────────────────────────

async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Decode the JWT, load the user, and return it.

    Also stashes the decoded payload on the user object as `_token_payload`
    so downstream code can read claims without re-decoding.
    """
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError("Missing bearer token")

    token = credentials.credentials
    payload = decode_token(token)
    user_id: str | None = payload.get("sub")
    if not user_id or payload.get("type") != "access":
        raise UnauthorizedError()

    if settings.token_revocation_enabled and await TokenRevocation.is_revoked(payload):
        raise UnauthorizedError("Token has been revoked")

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user or not user.is_active:
        raise UnauthorizedError("User not found or inactive")

    user._token_payload = payload  # type: ignore[attr-defined]
    return user
