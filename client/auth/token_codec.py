"""
Token representation and text encoding.

Tokens are opaque credential strings and are kept exactly as received. Missing
or empty text decodes to EMPTY_TOKEN, so callers can test ``token.is_empty``
instead of special-casing missing values.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from jose import jwt, JWTError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthToken:
    value: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.value

    def __str__(self) -> str:
        return self.value

    def __repr__(self) -> str:
        if self.is_empty:
            return "AuthToken(<empty>)"
        return f"AuthToken({self.value[:6]}...)"


EMPTY_TOKEN = AuthToken()


def encode(token: AuthToken) -> str:
    """Serialize a token for storage."""
    return token.value


def decode(text: Optional[str]) -> AuthToken:
    """Parse stored or received text into a token; never fails."""
    if not text:
        return EMPTY_TOKEN
    return AuthToken(text)


def bearer(token: AuthToken) -> str:
    """Authorization header value for a token."""
    return f"Bearer {token.value}"


def fits_header(token: AuthToken) -> bool:
    """False if the token would break an HTTP header line (CR, LF or NUL)."""
    return not token.is_empty and not any(c in token.value for c in "\r\n\0")


def peek_expiry(token: AuthToken) -> Optional[datetime]:
    """
    Read the expiry of a JWT-shaped token without verifying it.

    Args:
        token: Token to inspect

    Returns:
        Expiration datetime, or None for opaque tokens and tokens without
        an ``exp``/``expires_at`` claim
    """
    if token.is_empty or token.value.count('.') != 2:
        return None

    try:
        claims = jwt.get_unverified_claims(token.value)
    except JWTError as e:
        logger.debug(f"Token is not a readable JWT: {e}")
        return None

    expires = claims.get('exp', claims.get('expires_at'))
    if isinstance(expires, (int, float)):
        return datetime.fromtimestamp(expires)
    return None
