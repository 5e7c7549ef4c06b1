"""Length checks against the runtime ``limits`` config.

``str_limit`` builds validators for ``Annotated[..., AfterValidator(...)]`` on
request models; ``check_length`` is the equivalent for the resource layer and
raises ``InvalidArgument`` naming the field.
"""

from __future__ import annotations

from stoat.errors import InvalidArgument


def _limits():
    """Lazy import to avoid circular dependency at module level."""
    from stoat.config import config
    return config.limits


def str_limit(*, min_attr: str | None = None, max_attr: str | None = None):
    """Returns a callable for AfterValidator that checks string length against limits.<attr>."""
    def _validate(v: str | None) -> str | None:
        if v is None:
            return v
        lim = _limits()
        if min_attr and len(v) < getattr(lim, min_attr):
            raise ValueError(f"String should have at least {getattr(lim, min_attr)} character(s)")
        if max_attr and len(v) > getattr(lim, max_attr):
            raise ValueError(f"String should have at most {getattr(lim, max_attr)} character(s)")
        return v
    return _validate


def check_length(
    field: str,
    value: str,
    *,
    min_attr: str | None = None,
    max_attr: str | None = None,
) -> str:
    lim = _limits()
    if min_attr and len(value) < getattr(lim, min_attr):
        raise InvalidArgument(
            f"{field} must be at least {getattr(lim, min_attr)} character(s).", fields=[field]
        )
    if max_attr and len(value) > getattr(lim, max_attr):
        raise InvalidArgument(
            f"{field} must be at most {getattr(lim, max_attr)} character(s).", fields=[field]
        )
    return value


def check_range(field: str, value: int, *, ge: int, max_attr: str) -> int:
    """For numeric bounds -- ge is a fixed floor, max_attr is runtime-configurable ceiling."""
    lim = _limits()
    if value < ge or value > getattr(lim, max_attr):
        raise InvalidArgument(
            f"{field} must be between {ge} and {getattr(lim, max_attr)}.", fields=[field]
        )
    return value
