from __future__ import annotations

import os
from typing import Optional


_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def require_env(name: str) -> str:
    value = (os.getenv(name) or "").strip()
    if not value:
        raise ValueError(f"Missing required environment variable: {name}")
    return value


def optional_env(name: str) -> Optional[str]:
    value = (os.getenv(name) or "").strip()
    return value or None


def env_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = optional_env(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid {name}; must be an integer") from exc
    if value < minimum:
        raise ValueError(f"Invalid {name}; must be >= {minimum}")
    return value


def env_float(name: str, default: float, *, minimum: float = 0.0) -> float:
    raw = optional_env(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid {name}; must be a number") from exc
    if value < minimum:
        raise ValueError(f"Invalid {name}; must be >= {minimum}")
    return value


def env_bool(name: str, default: bool) -> bool:
    raw = optional_env(name)
    if raw is None:
        return default
    lowered = raw.lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ValueError(f"Invalid {name}; expected one of true/false/1/0/yes/no/on/off")


def env_list(name: str) -> tuple[str, ...]:
    """Comma-separated list; blank items are dropped."""

    raw = optional_env(name)
    if raw is None:
        return ()
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def region_from_env(region_env: Optional[str] = None) -> str:
    region_name = (
        (os.getenv(region_env) if region_env else None)
        or os.getenv("AWS_REGION")
        or os.getenv("AWS_DEFAULT_REGION")
    )
    if not region_name:
        missing = f"{region_env} (or AWS_REGION/AWS_DEFAULT_REGION)" if region_env else "AWS_REGION/AWS_DEFAULT_REGION"
        raise ValueError(f"Missing required environment variable: {missing}")
    return region_name
