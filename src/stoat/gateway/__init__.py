"""Stoat WebSocket gateway: real-time event delivery."""

from stoat.gateway.bus import EventBus
from stoat.gateway.dispatcher import Dispatcher
from stoat.gateway.registry import SessionRegistry

__all__ = ["Dispatcher", "EventBus", "SessionRegistry"]
