"""
Chooses the active storage backend.

Fallback chain: relational -> key-value -> reference. Selection runs once at
startup (``probe``) and again only when an operator asks for it (``recheck``)
or when the data service reports the active backend unavailable
(``degrade``). Reading ``active`` never blocks.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Optional

from itembase.db import DbClient
from itembase.models import BackendKind

logger = logging.getLogger(__name__)


class SelectorState(str, Enum):
    UNPROBED = "unprobed"
    PROBING = "probing"
    RELATIONAL_ACTIVE = "relational_active"
    KV_ACTIVE = "kv_active"
    REFERENCE_ACTIVE = "reference_active"


STATE_FOR_KIND = {
    BackendKind.RELATIONAL: SelectorState.RELATIONAL_ACTIVE,
    BackendKind.KV: SelectorState.KV_ACTIVE,
    BackendKind.LOCAL: SelectorState.REFERENCE_ACTIVE,
}


class BackendSelector:
    """
    Owns the single "active backend" designation.

    Args:
        reference: The process-local backend; always available.
        relational: Relational backend, or None when no database is configured.
        kv: Key-value backend, or None when no store is configured.
    """

    def __init__(
        self,
        reference: DbClient,
        *,
        relational: DbClient | None = None,
        kv: DbClient | None = None,
    ):
        self.reference = reference
        self.relational = relational
        self.kv = kv
        self.state = SelectorState.UNPROBED
        self._active: Optional[DbClient] = None
        self._lock = asyncio.Lock()

    @property
    def chain(self) -> list[DbClient]:
        return [b for b in (self.relational, self.kv, self.reference) if b is not None]

    @property
    def active(self) -> DbClient:
        if self._active is None:
            raise RuntimeError("Backend selection has not run; call probe() first")
        return self._active

    @property
    def active_kind(self) -> Optional[BackendKind]:
        return self._active.kind if self._active is not None else None

    async def _available(self, backend: DbClient) -> bool:
        if backend is self.reference:
            return True
        if await backend.connect() and await backend.health_check():
            return True
        logger.warning("%s backend unavailable", backend.kind.value)
        return False

    async def _first_available(self, candidates: list[DbClient]) -> DbClient:
        for backend in candidates:
            if await self._available(backend):
                return backend
        return self.reference

    def _activate(self, backend: DbClient) -> None:
        previous = self.active_kind
        self._active = backend
        self.state = STATE_FOR_KIND[backend.kind]
        if previous != backend.kind:
            logger.info("Active storage backend: %s", backend.kind.value)

    async def probe(self) -> DbClient:
        """Walk the fallback chain and activate the first backend that answers."""
        async with self._lock:
            self.state = SelectorState.PROBING
            chosen = await self._first_available(self.chain)
            self._activate(chosen)
            return chosen

    async def recheck(self) -> DbClient:
        """Manual re-probe, e.g. after the database comes back."""
        return await self.probe()

    async def degrade(self, failed: DbClient) -> DbClient:
        """
        Move past ``failed`` to the next available backend in the chain and
        return it. If another caller already moved on, returns the current one.
        """
        async with self._lock:
            if self._active is not failed:
                return self.active
            chain = self.chain
            if failed is self.reference or failed not in chain:
                return self.reference
            self.state = SelectorState.PROBING
            chosen = await self._first_available(chain[chain.index(failed) + 1:])
            logger.warning(
                "Storage backend %s unavailable, falling back to %s",
                failed.kind.value,
                chosen.kind.value,
            )
            self._activate(chosen)
            return chosen

    async def status(self) -> dict:
        backends = {}
        for kind, backend in (
            (BackendKind.RELATIONAL, self.relational),
            (BackendKind.KV, self.kv),
            (BackendKind.LOCAL, self.reference),
        ):
            backends[kind.value] = {
                "configured": backend is not None,
                "healthy": bool(backend is not None and await backend.health_check()),
            }
        return {
            "state": self.state.value,
            "active": self.active_kind.value if self.active_kind else None,
            "backends": backends,
        }

    async def close(self) -> None:
        for backend in self.chain:
            await backend.close()
