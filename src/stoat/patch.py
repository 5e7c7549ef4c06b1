"""Partial-update values.

A field left at ``UNSET`` was not provided and is not touched; any other value,
including ``None``, is an explicit assignment.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any


class _Unset:
    _instance: _Unset | None = None

    def __new__(cls) -> _Unset:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


@dataclass(frozen=True)
class Patch:
    def changes(self) -> dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }

    def is_empty(self) -> bool:
        return not self.changes()


@dataclass(frozen=True)
class ServerPatch(Patch):
    name: Any = UNSET
    description: Any = UNSET


@dataclass(frozen=True)
class ChannelPatch(Patch):
    name: Any = UNSET
    description: Any = UNSET
    position: Any = UNSET


@dataclass(frozen=True)
class UserPatch(Patch):
    display_name: Any = UNSET
    presence: Any = UNSET
