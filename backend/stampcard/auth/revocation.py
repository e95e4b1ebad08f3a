"""Access token revocation backed by Redis.

Two kinds of entry:
  revoked:jti:{jti}       one token, kept until that token would expire anyway
  revoked:staff:{user_id} cutoff timestamp; every token of that staff member
                          issued at or before it is rejected (e.g. a cashier
                          leaves, or a till is lost)

Lookups fail closed: if Redis cannot be reached the token is treated as
revoked.
"""

import logging
import time

from stampcard.config import settings
from stampcard.utils.cache import get_redis

logger = logging.getLogger(__name__)


def _jti_key(jti: str) -> str:
    return f"revoked:jti:{jti}"


def _staff_key(user_id: str) -> str:
    return f"revoked:staff:{user_id}"


class TokenRevocation:
    """Revoke and check access tokens by their decoded claims."""

    @staticmethod
    async def revoke_token(claims: dict) -> bool:
        """Blacklist a single token until its own expiry."""
        ttl = int(claims.get("exp", 0) - time.time())
        if ttl <= 0:
            return True

        redis_client = await get_redis()
        try:
            await redis_client.setex(_jti_key(claims["jti"]), ttl, str(claims.get("sub", "")))
            return True
        except Exception as e:
            logger.error(f"Failed to revoke token {claims.get('jti')}: {e}")
            return False

    @staticmethod
    async def revoke_staff_sessions(user_id: str) -> bool:
        """Reject every token issued to `user_id` up to now.

        The cutoff only needs to outlive the longest token lifetime.
        """
        ttl = settings.access_token_expire_minutes * 60
        redis_client = await get_redis()
        try:
            await redis_client.setex(_staff_key(user_id), ttl, str(int(time.time())))
            logger.info(f"Revoked all sessions of staff user {user_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to revoke sessions of {user_id}: {e}")
            return False

    @staticmethod
    async def is_revoked(claims: dict) -> bool:
        redis_client = await get_redis()
        try:
            single, cutoff = await redis_client.mget(
                _jti_key(claims.get("jti", "")), _staff_key(claims.get("sub", ""))
            )
        except Exception as e:
            logger.error(f"Failed to check token revocation: {e}")
            return True

        if single is not None:
            return True
        return cutoff is not None and int(claims.get("iat", 0)) <= int(cutoff)
