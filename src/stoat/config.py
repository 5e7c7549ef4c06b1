"""Service configuration backed by the DB ``config`` table.

Uses pydantic-settings ``BaseSettings`` sub-configs grouped under a top-level
``StoatConfig``.  Every value can be overridden via:

  1. env vars              (per-section prefix, highest priority)
  2. DB Config table rows  (application-level overrides)
  3. field defaults         (lowest priority)

Call ``load_config(db)`` at startup to sync the DB overrides into the
in-memory singleton.
"""

from __future__ import annotations

from typing import Any, ClassVar

from pydantic import BaseModel
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

# ---------------------------------------------------------------------------
# Single flat store of raw DB values (async → sync bridge)
# ---------------------------------------------------------------------------
_db_values: dict[str, str] = {}


class DbSource(PydanticBaseSettingsSource):
    """Reads values from ``_db_values`` using a per-class key map."""

    def get_field_value(
        self, field: Any, field_name: str
    ) -> tuple[Any, str, bool]:
        key_map: dict[str, str] = getattr(self.settings_cls, "_DB_KEY_MAP", {})
        for db_key, name in key_map.items():
            if name == field_name and db_key in _db_values:
                return _db_values[db_key], field_name, False
        return None, field_name, False

    def __call__(self) -> dict[str, Any]:
        d: dict[str, Any] = {}
        for field_name in self.settings_cls.model_fields:
            val, _, _ = self.get_field_value(None, field_name)
            if val is not None:
                d[field_name] = val
        return d


class _DbSettings(BaseSettings):
    """Base for all sub-configs: wires in DbSource so env > DB > defaults."""

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (init_settings, env_settings, DbSource(settings_cls))


# ---------------------------------------------------------------------------
# Sub-configs
# ---------------------------------------------------------------------------

class LimitsConfig(_DbSettings):
    model_config = {"env_prefix": "STOAT_LIMIT_"}

    _DB_KEY_MAP: ClassVar[dict[str, str]] = {}  # auto-generated below

    # --- Auth ---
    username_min: int = 3
    username_max: int = 32
    password_min: int = 8
    password_max: int = 128
    display_name_min: int = 1
    display_name_max: int = 64

    # --- Servers ---
    server_name_min: int = 1
    server_name_max: int = 100
    server_description_max: int = 500
    role_tag_max: int = 32
    roles_per_member_max: int = 16

    # --- Channels ---
    channel_name_min: int = 1
    channel_name_max: int = 100
    channel_description_max: int = 500

    # --- Messages ---
    message_content_min: int = 1
    message_content_max: int = 2000

    # --- Invites ---
    invite_max_uses_max: int = 10000
    invite_max_age_max: int = 2592000  # 30 days in seconds

    # --- Gateway ---
    max_total_connections: int = 10000
    max_sessions_per_user: int = 5

    # --- Pagination ---
    page_limit_messages: int = 100
    page_limit_members: int = 200
    page_limit_invites: int = 100


# Auto-generate the key map: limit_{field} -> field
LimitsConfig._DB_KEY_MAP = {f"limit_{f}": f for f in LimitsConfig.model_fields}


class GatewayConfig(_DbSettings):
    model_config = {"env_prefix": "STOAT_GATEWAY_"}

    _DB_KEY_MAP: ClassVar[dict[str, str]] = {
        "gateway_heartbeat_interval_ms": "heartbeat_interval_ms",
        "gateway_heartbeat_timeout_factor": "heartbeat_timeout_factor",
        "gateway_identify_timeout_s": "identify_timeout_s",
        "gateway_send_queue_max": "send_queue_max",
        "gateway_bus_backlog_max": "bus_backlog_max",
    }

    heartbeat_interval_ms: int = 45_000
    heartbeat_timeout_factor: float = 1.5
    identify_timeout_s: float = 30.0
    # Per-session outbound frames before the session is evicted as a slow consumer
    send_queue_max: int = 1000
    # Per-server events buffered before publishers are made to wait
    bus_backlog_max: int = 10000


class AuthConfig(_DbSettings):
    model_config = {"env_prefix": "STOAT_AUTH_"}

    _DB_KEY_MAP: ClassVar[dict[str, str]] = {
        "session_ttl_days": "session_ttl_days",
    }

    session_ttl_days: int = 30


# ---------------------------------------------------------------------------
# Top-level StoatConfig
# ---------------------------------------------------------------------------

_SECTIONS: dict[str, type[BaseSettings]] = {
    "limits": LimitsConfig,
    "gateway": GatewayConfig,
    "auth": AuthConfig,
}


class StoatConfig(BaseModel):
    limits: LimitsConfig = LimitsConfig()
    gateway: GatewayConfig = GatewayConfig()
    auth: AuthConfig = AuthConfig()


# Module-level singleton
config = StoatConfig()


def _reload_all() -> None:
    """Rebuild all sub-configs from ``_db_values`` + env."""
    for section_name, cls in _SECTIONS.items():
        setattr(config, section_name, cls())


async def load_config(db: AsyncSession) -> None:
    """Load all config overrides from the Config table into the in-memory singleton."""
    from stoat.db.models import Config

    result = await db.execute(select(Config))
    _db_values.clear()
    for row in result.scalars().all():
        _db_values[row.key] = row.value
    _reload_all()
