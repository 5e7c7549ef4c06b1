"""Snowflake ids and invite codes."""

from __future__ import annotations

import asyncio
import secrets
import string
import time

# Simple snowflake: 42-bit timestamp (ms) + 22-bit sequence
_seq = 0
_last_ts = 0
_snowflake_lock = asyncio.Lock()

INVITE_CODE_LENGTH = 8
_INVITE_ALPHABET = string.ascii_lowercase + string.digits


def now_ms() -> int:
    return int(time.time() * 1000)


async def snowflake() -> int:
    global _seq, _last_ts
    async with _snowflake_lock:
        ts = now_ms()
        if ts <= _last_ts:
            # Clock stalled or stepped back: keep ids strictly increasing
            ts = _last_ts
            _seq += 1
            if _seq > 0x3FFFFF:
                ts += 1
                _seq = 0
        else:
            _seq = 0
        _last_ts = ts
        return (ts << 22) | (_seq & 0x3FFFFF)


def snowflake_time(snowflake_id: int) -> int:
    """Unix ms encoded in *snowflake_id*."""
    return snowflake_id >> 22


def generate_invite_code() -> str:
    return "".join(secrets.choice(_INVITE_ALPHABET) for _ in range(INVITE_CODE_LENGTH))


def normalize_invite_code(code: str) -> str:
    return code.strip().lower()
