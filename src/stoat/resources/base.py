"""Repository: transactions, per-server write locks and event publication.

Every mutation runs as::

    async with repo.writing(server_id) as db:
        server = await authorize(db, principal_id, server_id, action)
        ...                       # validate, mutate
        await db.commit()
        await repo.publish(kind, op, server_id, snapshot)

The server lock is held from the permission check through publish, so events
for one server reach the bus in commit order.  An exception before ``commit``
closes the session and rolls back; nothing is published.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stoat.gateway.bus import EventBus
from stoat.gateway.events import DomainEvent
from stoat.locks import KeyedLocks
from stoat.models.base import StoatModel

log = logging.getLogger(__name__)


class Repository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], bus: EventBus) -> None:
        self.session_factory = session_factory
        self.bus = bus
        self.server_locks = KeyedLocks()
        self.user_locks = KeyedLocks()

    @asynccontextmanager
    async def reading(self) -> AsyncIterator[AsyncSession]:
        async with self.session_factory() as db:
            yield db

    @asynccontextmanager
    async def writing(self, server_id: int) -> AsyncIterator[AsyncSession]:
        async with self.server_locks.hold(server_id):
            async with self.session_factory() as db:
                yield db

    @asynccontextmanager
    async def writing_user(self, user_id: int) -> AsyncIterator[AsyncSession]:
        async with self.user_locks.hold(user_id):
            async with self.session_factory() as db:
                yield db

    async def publish(
        self,
        entity_kind: str,
        operation: str,
        server_id: int,
        resource: StoatModel | dict[str, Any],
        audience: frozenset[int] | None = None,
    ) -> None:
        """Queue one committed mutation. *audience* narrows delivery to those user ids."""
        if isinstance(resource, StoatModel):
            resource = resource.snapshot()
        log.debug("Publish %s.%s on server %d", entity_kind, operation, server_id)
        await self.bus.publish(DomainEvent(entity_kind, operation, server_id, resource, audience))
