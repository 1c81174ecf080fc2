"""
Staff Session Tokens

Staff log in with a shared PIN and receive a cookie carrying
``STAFF_VERIFIED:<version>``. The token has no signature: it is only
honoured while its version equals the counter stored in
``admin_settings``. Bumping that counter revokes every issued token at
once.

Storage lookups fail open to version 1 so a database hiccup does not lock
every staff device out mid-shift. Revocation itself fails loudly.

Author: Khalil Bannouri
Version: 3.0.0
"""

import hashlib
import hmac
import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.models import AdminSettings

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "STAFF_VERIFIED"
TOKEN_SEPARATOR = ":"
DEFAULT_SESSION_VERSION = 1

# Matches Node's crypto.scrypt defaults so existing hashes keep working
SCRYPT_N = 16384
SCRYPT_R = 8
SCRYPT_P = 1
SCRYPT_KEY_LENGTH = 64

STORAGE_ERRORS = (SQLAlchemyError, OSError)


# =============================================================================
# TOKEN CODEC
# =============================================================================

@dataclass(frozen=True)
class ParsedToken:
    """Result of decoding a session token string."""
    valid: bool
    version: Optional[int] = None


def issue_token(version: int) -> str:
    """Encode a session token for ``version``."""
    return f"{TOKEN_PREFIX}{TOKEN_SEPARATOR}{int(version)}"


def parse_token(token: Optional[str]) -> ParsedToken:
    """
    Decode ``STAFF_VERIFIED:<digits>``.

    Anything else (missing value, other prefix, extra separators,
    non-numeric version) is invalid.
    """
    if not token:
        return ParsedToken(valid=False)

    parts = token.split(TOKEN_SEPARATOR)
    if len(parts) != 2 or parts[0] != TOKEN_PREFIX:
        return ParsedToken(valid=False)

    raw_version = parts[1]
    if not raw_version.isascii() or not raw_version.isdigit():
        return ParsedToken(valid=False)

    return ParsedToken(valid=True, version=int(raw_version))


# =============================================================================
# PIN HASHING
# =============================================================================

def hash_pin(pin: str, salt: Optional[str] = None) -> str:
    """Hash a PIN as ``<hex key>.<salt>`` with scrypt."""
    salt = salt or secrets.token_hex(16)
    key = hashlib.scrypt(
        pin.encode("utf-8"),
        salt=salt.encode("utf-8"),
        n=SCRYPT_N,
        r=SCRYPT_R,
        p=SCRYPT_P,
        dklen=SCRYPT_KEY_LENGTH,
    )
    return f"{key.hex()}.{salt}"


def verify_pin(stored_hash: str, supplied_pin: str) -> bool:
    """Check ``supplied_pin`` against a stored ``hex.salt`` hash."""
    hashed, _, salt = stored_hash.partition(".")
    if not hashed or not salt:
        return False
    candidate = hash_pin(supplied_pin, salt).partition(".")[0]
    return hmac.compare_digest(candidate, hashed)


# =============================================================================
# VERSION STORAGE
# =============================================================================

class SessionVersionStore(ABC):
    """Persistent home of the staff session counters."""

    @abstractmethod
    async def get_versions(self) -> tuple[Optional[int], Optional[int]]:
        """Return ``(staff_session_version, pin_version)``; either may be None."""
        pass

    @abstractmethod
    async def increment_session_version(self) -> int:
        """Atomically add one to the session counter and return the new value."""
        pass

    @abstractmethod
    async def get_pin_hash(self) -> Optional[str]:
        """Stored scrypt hash of the staff PIN, if any."""
        pass

    @abstractmethod
    async def set_pin_hash(self, pin_hash: str) -> None:
        """Replace the staff PIN hash and bump ``pin_version``."""
        pass


class SqlSessionVersionStore(SessionVersionStore):
    """``admin_settings`` backed store."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_versions(self) -> tuple[Optional[int], Optional[int]]:
        result = await self._session.execute(
            select(AdminSettings.staff_session_version, AdminSettings.pin_version)
            .order_by(AdminSettings.id)
            .limit(1)
        )
        row = result.first()
        if row is None:
            return None, None
        return row.staff_session_version, row.pin_version

    async def increment_session_version(self) -> int:
        current = func.coalesce(
            AdminSettings.staff_session_version,
            AdminSettings.pin_version,
            DEFAULT_SESSION_VERSION,
        )
        result = await self._session.execute(
            update(AdminSettings)
            .values(staff_session_version=current + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self._session.add(AdminSettings(staff_session_version=DEFAULT_SESSION_VERSION + 1))
        await self._session.commit()

        version, _ = await self.get_versions()
        return version

    async def get_pin_hash(self) -> Optional[str]:
        result = await self._session.execute(
            select(AdminSettings.staff_pin_hash).order_by(AdminSettings.id).limit(1)
        )
        return result.scalar_one_or_none()

    async def set_pin_hash(self, pin_hash: str) -> None:
        result = await self._session.execute(
            update(AdminSettings).values(
                staff_pin_hash=pin_hash,
                pin_version=AdminSettings.pin_version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self._session.add(AdminSettings(staff_pin_hash=pin_hash, pin_version=2))
        await self._session.commit()


# =============================================================================
# AUTHORIZATION
# =============================================================================

class StaffSessionAuthority:
    """
    Issues, checks and revokes staff session tokens against a store.

    Example:
        >>> authority = StaffSessionAuthority(SqlSessionVersionStore(db))
        >>> token = await authority.issue()
        >>> await authority.authorize(token)
        True
        >>> await authority.revoke_all()
        2
        >>> await authority.authorize(token)
        False
    """

    def __init__(self, store: SessionVersionStore):
        self._store = store

    async def current_version(self) -> int:
        """
        Authoritative version: session counter, then legacy PIN counter,
        then 1. Storage errors also yield 1.
        """
        try:
            session_version, pin_version = await self._store.get_versions()
        except STORAGE_ERRORS as e:
            logger.error(f"Session version lookup failed, using default: {e}")
            return DEFAULT_SESSION_VERSION

        if session_version is not None:
            return session_version
        if pin_version is not None:
            return pin_version
        return DEFAULT_SESSION_VERSION

    async def issue(self) -> str:
        """Token bound to the current version."""
        return issue_token(await self.current_version())

    async def authorize(self, token: Optional[str]) -> bool:
        """True only for a well-formed token whose version is current."""
        parsed = parse_token(token)
        if not parsed.valid:
            return False
        return parsed.version == await self.current_version()

    async def revoke_all(self) -> int:
        """Invalidate every issued token; returns the new version."""
        version = await self._store.increment_session_version()
        logger.info(f"All staff sessions revoked (version now {version})")
        return version
