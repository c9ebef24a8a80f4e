"""
Backend-agnostic session and token handling.

Tokens are opaque to callers but carry a backend prefix (``relational_``,
``kv_``, ``local_``) followed by an identifier: the user id for the stateless
backends, a random id bound to a persisted session row for the relational one.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from itembase.errors import Unauthorized
from itembase.models import BackendKind, SessionRecord

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL_SECONDS = 24 * 60 * 60
BEARER_PREFIX = "Bearer "


class TokenCodec:
    """Maps (backend kind, identifier) pairs to prefixed tokens and back."""

    PREFIXES = {
        BackendKind.RELATIONAL: "relational_",
        BackendKind.KV: "kv_",
        BackendKind.LOCAL: "local_",
    }

    @classmethod
    def encode(cls, kind: BackendKind, ident: str) -> str:
        return f"{cls.PREFIXES[kind]}{ident}"

    @classmethod
    def decode(cls, token: Optional[str]) -> Optional[tuple[BackendKind, str]]:
        """Return ``(kind, ident)``, or None for anything unrecognized."""
        if not token:
            return None
        for kind, prefix in cls.PREFIXES.items():
            if token.startswith(prefix):
                ident = token[len(prefix):]
                return (kind, ident) if ident else None
        return None

    @classmethod
    def ident_for(cls, kind: BackendKind, token: Optional[str]) -> Optional[str]:
        """Identifier carried by ``token`` if it was issued for ``kind``."""
        decoded = cls.decode(token)
        if decoded is None or decoded[0] != kind:
            return None
        return decoded[1]

    @staticmethod
    def new_opaque_id() -> str:
        return uuid.uuid4().hex


def session_expiry(now: datetime, ttl_seconds: float = DEFAULT_SESSION_TTL_SECONDS) -> datetime:
    return now + timedelta(seconds=ttl_seconds)


def parse_bearer(header: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""
    if not header or not header.startswith(BEARER_PREFIX):
        return None
    token = header[len(BEARER_PREFIX):].strip()
    return token or None


class SessionManager:
    """
    Resolves bearer tokens against whichever backend is active. ``backend``
    is a zero-argument callable so selection changes are seen immediately.
    """

    def __init__(self, backend: Callable[[], Any]):
        self._backend = backend

    async def current(self, token: Optional[str], db: Any = None) -> Optional[SessionRecord]:
        """
        Session for ``token`` on the active backend. Without a token there is
        no session, whatever the backend's own ``get_session(None)`` returns.
        """
        if not token:
            return None
        db = db or self._backend()
        if TokenCodec.ident_for(db.kind, token) is None:
            # Issued by another backend or not one of ours at all.
            return None
        return await db.get_session(token)

    async def require(self, token: Optional[str], db: Any = None) -> SessionRecord:
        if not token:
            raise Unauthorized("Unauthorized")
        session = await self.current(token, db)
        if session is None:
            raise Unauthorized("Unauthorized")
        return session

    async def end(self, token: Optional[str], db: Any = None) -> None:
        db = db or self._backend()
        if token and TokenCodec.ident_for(db.kind, token) is None:
            logger.debug("Ignoring sign-out for a token not issued by %s", db.kind.value)
            return
        await db.sign_out(token)
