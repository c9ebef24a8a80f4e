"""
Dependency wiring for the FastAPI app.

Everything stateful lives in one ``AppContext`` built at process start and
stored on ``app.state``; request handlers reach it through the accessors
below instead of module-level singletons.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Header, Request
from sqlalchemy.exc import ArgumentError

from itembase.config import Settings, get_settings
from itembase.db import LocalDbClient, PostgresDbClient
from itembase.kv import RedisDbClient
from itembase.selector import BackendSelector, SelectorState
from itembase.service import DataService
from itembase.sessions import parse_bearer
from itembase.storage import FileSnapshotStore, InMemorySnapshotStore
from itembase.transport import RemoteTransport

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    settings: Settings
    selector: BackendSelector
    service: DataService
    transport: Optional[RemoteTransport] = None

    async def start(self) -> None:
        await self.selector.probe()

    async def close(self) -> None:
        await self.selector.close()
        if self.transport is not None:
            self.transport.close()


def build_context(settings: Settings | None = None) -> AppContext:
    """
    Construct every backend the settings describe. Nothing connects here;
    ``AppContext.start`` runs the selection.
    """
    settings = settings or get_settings()

    if settings.snapshot_dir:
        store = FileSnapshotStore(settings.snapshot_dir)
    else:
        store = InMemorySnapshotStore()
    reference = LocalDbClient(store, simulate_latency=settings.simulate_latency)

    relational = None
    if settings.database_url:
        try:
            relational = PostgresDbClient(
                settings.database_url, session_ttl_seconds=settings.session_ttl_seconds
            )
        except (ImportError, ArgumentError, ValueError) as e:
            # Missing driver or malformed URL: treat as not configured.
            logger.warning("Relational backend disabled: %s", e)

    kv = None
    if settings.redis_url:
        try:
            kv = RedisDbClient(settings.redis_url, key_prefix=settings.redis_key_prefix)
        except ValueError as e:
            logger.warning("Key-value backend disabled: %s", e)

    selector = BackendSelector(reference, relational=relational, kv=kv)

    transport = None
    if settings.remote_api_url:
        transport = RemoteTransport(
            settings.remote_api_url, timeout=settings.remote_timeout_seconds
        )

    service = DataService(selector, transport=transport, environment=settings.environment)
    return AppContext(
        settings=settings, selector=selector, service=service, transport=transport
    )


def get_context(request: Request) -> AppContext:
    return request.app.state.context


async def get_data_service(request: Request) -> DataService:
    context = get_context(request)
    if context.selector.state is SelectorState.UNPROBED:
        # App served without lifespan events (e.g. TestClient outside a with-block).
        await context.start()
    return context.service


def get_bearer_token(authorization: Optional[str] = Header(default=None)) -> Optional[str]:
    return parse_bearer(authorization)
