"""Dispatcher: fans bus events out to the sessions subscribed to their server."""

from __future__ import annotations

import logging

from stoat.gateway import events
from stoat.gateway.bus import EventBus
from stoat.gateway.events import DomainEvent
from stoat.gateway.registry import SessionRegistry

log = logging.getLogger(__name__)


class Dispatcher:
    """Bus handler. Keeps subscriptions in step with membership events.

    A joining user is subscribed before fan-out so they receive their own
    member created event; a departing user is unsubscribed after fan-out so
    they still see their removal.  Events carrying an audience reach only
    the sessions of those users.  Delivery never blocks: each session queues
    the frame or evicts itself.
    """

    def __init__(self, registry: SessionRegistry, bus: EventBus | None = None) -> None:
        self.registry = registry
        self.bus = bus

    async def __call__(self, event: DomainEvent) -> None:
        await self.dispatch(event)

    async def dispatch(self, event: DomainEvent) -> None:
        await self._before(event)
        envelope = event.envelope()
        for session in self.registry.sessions_for_server(event.server_id):
            if event.audience is not None and session.user_id not in event.audience:
                continue
            try:
                delivered = session.enqueue(envelope)
            except Exception:
                log.exception(
                    "Dispatch: delivery to session %s failed", session.session_id,
                )
                continue
            if not delivered:
                log.debug("Dispatch: dropped %s.%s for session %s",
                          event.entity_kind, event.operation, session.session_id)
        await self._after(event)

    async def _before(self, event: DomainEvent) -> None:
        if event.operation != events.CREATED:
            return
        if event.entity_kind == events.MEMBER:
            await self.registry.add_user_server(event.resource["user_id"], event.server_id)
        elif event.entity_kind == events.SERVER:
            await self.registry.add_user_server(event.resource["owner_id"], event.server_id)

    async def _after(self, event: DomainEvent) -> None:
        if event.operation != events.DELETED:
            return
        if event.entity_kind == events.MEMBER:
            await self.registry.remove_user_server(event.resource["user_id"], event.server_id)
        elif event.entity_kind == events.SERVER:
            await self.registry.drop_server(event.server_id)
            if self.bus is not None:
                self.bus.forget(event.server_id)
