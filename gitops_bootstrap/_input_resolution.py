"""Shared helpers for resolving CLI and environment inputs."""

from __future__ import annotations

import os
from collections import abc as cabc
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True, slots=True)
class InputResolution:
    """Configuration for resolving an input from multiple sources."""

    env_key: str
    default: str | Path | None = None
    required: bool = False
    as_path: bool = False


def resolve_input(
    param_value: str | Path | None,
    resolution: InputResolution,
    env: cabc.Mapping[str, str] | None = None,
) -> str | Path | None:
    """Resolve input from parameter, environment variable, or default.

    Empty environment values count as unset.

    Examples
    --------
    >>> resolve_input(None, InputResolution("PHASE", default="bootstrap"), env={})
    'bootstrap'
    >>> resolve_input(None, InputResolution("PHASE"), env={"PHASE": "steady_state"})
    'steady_state'
    """
    if param_value is not None:
        return param_value

    env_value = (os.environ if env is None else env).get(resolution.env_key)
    if env_value:
        return Path(env_value) if resolution.as_path else env_value

    if resolution.required:
        msg = f"{resolution.env_key} is required"
        raise SystemExit(msg)

    return resolution.default


def resolve_int(
    param_value: int | None,
    env_key: str,
    default: int,
    env: cabc.Mapping[str, str] | None = None,
) -> int:
    """Resolve an integer input, exiting with a message on malformed values.

    Examples
    --------
    >>> resolve_int(None, "MAX_RETRIES", 6, env={"MAX_RETRIES": "3"})
    3
    """
    if param_value is not None:
        return param_value
    raw = resolve_input(None, InputResolution(env_key=env_key), env)
    if raw is None:
        return default
    try:
        return int(str(raw).strip())
    except ValueError as exc:
        msg = f"{env_key} must be an integer, got {raw!r}"
        raise SystemExit(msg) from exc


def parse_bool(value: str | None, *, default: bool = True) -> bool:
    """Parse a boolean string value.

    Examples
    --------
    >>> parse_bool("yes")
    True
    >>> parse_bool(None, default=False)
    False
    """
    if value is None:
        return default
    return value.strip().lower() in ("true", "1", "yes")


__all__ = ["InputResolution", "parse_bool", "resolve_input", "resolve_int"]
