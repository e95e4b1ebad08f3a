"""JWT token creation and decoding.

Token claims:
  - sub:   staff user ID
  - jti:   unique token ID (revocation key)
  - iat:   issue time, compared against a staff member's revocation cutoff
  - type:  "access"
  - exp:   expiry timestamp

Capabilities are not carried in the token; they are resolved per request
from staff grants for the location being acted on, so a grant change takes
effect on the next request without reissuing tokens.
"""

import uuid
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from stampcard.config import settings

ALGORITHM = settings.jwt_algorithm


def create_access_token(user_id: str, expires_delta: timedelta | None = None) -> str:
    issued_at = datetime.now(timezone.utc)
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    claims = {
        "sub": user_id,
        "jti": uuid.uuid4().hex,
        "iat": issued_at,
        "exp": issued_at + lifetime,
        "type": "access",
    }
    return jwt.encode(claims, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """Verify signature and expiry. Returns {} for anything unusable."""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return {}
