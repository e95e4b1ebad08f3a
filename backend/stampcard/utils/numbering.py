"""Customer QR token generation.

Format:
  QR-{timestamp}-{random}
    {timestamp}  → YYYYMMDDHHMMSS (UTC)
    {random}     → 10 characters from [A-Z0-9]

Tokens are globally unique; the unique index on `customers.qr_code` is
the final guard, `generate_unique_qr_token` retries on a pre-check hit.
"""

import secrets
import string
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from stampcard.models.customer import Customer

QR_PREFIX = "QR"
RANDOM_LENGTH = 10
_ALPHABET = string.ascii_uppercase + string.digits

MAX_ATTEMPTS = 5


def generate_qr_token(now: datetime | None = None) -> str:
    stamp = (now or datetime.utcnow()).strftime("%Y%m%d%H%M%S")
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(RANDOM_LENGTH))
    return f"{QR_PREFIX}-{stamp}-{suffix}"


async def generate_unique_qr_token(db: AsyncSession) -> str:
    """Return a token not yet held by any customer."""
    for _ in range(MAX_ATTEMPTS):
        token = generate_qr_token()
        existing = await db.execute(
            select(Customer.id).where(Customer.qr_code == token)
        )
        if existing.scalar_one_or_none() is None:
            return token
    raise RuntimeError("Could not generate a unique QR token")
