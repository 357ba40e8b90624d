"""
Referral code helpers

Generation, validation, lookup and display formatting of user referral codes.
"""

import random
import re
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from config.risk_config import (
    REFERRAL_CODE_ALPHABET,
    REFERRAL_CODE_FALLBACK_LENGTH,
    REFERRAL_CODE_LENGTH,
    REFERRAL_CODE_MAX_ATTEMPTS,
    REFERRAL_CODE_PATTERN,
)
from completion_engine.database.models import User


_CODE_RE = re.compile(REFERRAL_CODE_PATTERN)


def generate_referral_code(length: int = REFERRAL_CODE_LENGTH, rng: Optional[random.Random] = None) -> str:
    """
    Random code from an alphabet without look-alike characters (0, O, I, 1)

    Example: ABC234XY
    """
    rng = rng or random
    return "".join(rng.choices(REFERRAL_CODE_ALPHABET, k=length))


def is_valid_referral_code(code: Optional[str]) -> bool:
    """6-12 uppercase alphanumeric characters"""
    if not code or not isinstance(code, str):
        return False
    return _CODE_RE.fullmatch(code) is not None


async def find_user_by_referral_code(session: AsyncSession, code: Optional[str]) -> Optional[User]:
    """
    Get the owner of a referral code

    Returns:
        User or None (also None for malformed codes, without a query)
    """
    if not is_valid_referral_code(code):
        return None

    stmt = select(User).where(User.referral_code == code)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def generate_unique_referral_code(
    session: AsyncSession,
    max_attempts: int = REFERRAL_CODE_MAX_ATTEMPTS,
    rng: Optional[random.Random] = None,
) -> str:
    """
    Generate a referral code not used by any user

    Args:
        session: Database session
        max_attempts: Collision retries before falling back to a longer code
        rng: Random generator (module-level random by default)

    Returns:
        Unused code; after max_attempts collisions a 12-character code is
        returned without a further check
    """
    for _ in range(max_attempts):
        code = generate_referral_code(rng=rng)

        stmt = select(User.id).where(User.referral_code == code)
        result = await session.execute(stmt)
        if result.scalar_one_or_none() is None:
            return code

    logger.warning(f"Referral code collisions after {max_attempts} attempts, using a longer code")
    return generate_referral_code(REFERRAL_CODE_FALLBACK_LENGTH, rng=rng)


async def normalize_referral_code_for_registration(session: AsyncSession, code: Optional[str]) -> Optional[str]:
    """
    Clean a code typed at registration

    Strips dashes and whitespace and uppercases. Returns the cleaned code
    when it is well-formed and belongs to a user, None otherwise.
    """
    if not code:
        return None

    cleaned = "".join(ch for ch in code if ch != "-" and not ch.isspace()).upper()
    if not is_valid_referral_code(cleaned):
        return None

    referrer = await find_user_by_referral_code(session, cleaned)
    if not referrer:
        return None

    return cleaned


def format_referral_code(code: Optional[str]) -> Optional[str]:
    """Dashed display form: ABC234XY -> ABC-234-XY, ABC234 -> ABC-234"""
    if not code or len(code) < 6:
        return code

    if len(code) == 8:
        return f"{code[:3]}-{code[3:6]}-{code[6:]}"

    if len(code) == 6:
        return f"{code[:3]}-{code[3:]}"

    return code
