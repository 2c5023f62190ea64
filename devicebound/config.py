"""Client configuration loaded from the environment."""
from __future__ import annotations

import os
import re
from dataclasses import dataclass
from typing import Mapping, Optional, Tuple

__all__ = [
    "DEFAULT_API_BASE",
    "DEFAULT_ORIGIN",
    "ClientConfig",
    "load_config",
]


DEFAULT_API_BASE = "http://localhost:4000"
DEFAULT_ORIGIN = "https://localhost"

_SCREEN_PATTERN = re.compile(r"^\s*(\d+)\s*[xX]\s*(\d+)\s*(?:[xX]\s*(\d+))?\s*$")


def _env_flag(environ: Mapping[str, str], name: str) -> Optional[bool]:
    """Return ``True`` or ``False`` when the named env var is explicitly set."""

    raw_value = environ.get(name)
    if raw_value is None:
        return None

    normalised = raw_value.strip().lower()
    if normalised in {"", "0", "false", "off", "no"}:
        return False
    return True


def _parse_screen(raw_value: Optional[str]) -> Optional[Tuple[int, int, int]]:
    """Parse ``WIDTHxHEIGHT[xDEPTH]``; the depth defaults to 24 bits."""

    if raw_value is None:
        return None
    match = _SCREEN_PATTERN.match(raw_value)
    if match is None:
        raise ValueError(f"DEVICEBOUND_SCREEN must look like 1920x1080x24, got {raw_value!r}")
    width, height, depth = match.groups()
    return int(width), int(height), int(depth or 24)


def _parse_optional_number(environ: Mapping[str, str], name: str) -> Optional[float]:
    raw_value = environ.get(name)
    if raw_value is None or not raw_value.strip():
        return None
    try:
        return float(raw_value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw_value!r}") from exc


@dataclass(frozen=True)
class ClientConfig:
    api_base: str = DEFAULT_API_BASE
    origin: str = DEFAULT_ORIGIN
    timeout: Optional[float] = None
    screen: Optional[Tuple[int, int, int]] = None
    max_touch_points: Optional[int] = None
    probe_screen: bool = True
    cookie_file: Optional[str] = None
    debug: bool = False


def load_config(environ: Optional[Mapping[str, str]] = None) -> ClientConfig:
    """Build a :class:`ClientConfig` from ``DEVICEBOUND_*`` variables."""

    env = os.environ if environ is None else environ

    touch_points = _parse_optional_number(env, "DEVICEBOUND_TOUCH_POINTS")
    probe_flag = _env_flag(env, "DEVICEBOUND_PROBE_SCREEN")

    return ClientConfig(
        api_base=(env.get("DEVICEBOUND_API_BASE") or DEFAULT_API_BASE).strip(),
        origin=(env.get("DEVICEBOUND_ORIGIN") or DEFAULT_ORIGIN).strip(),
        timeout=_parse_optional_number(env, "DEVICEBOUND_TIMEOUT"),
        screen=_parse_screen(env.get("DEVICEBOUND_SCREEN")),
        max_touch_points=int(touch_points) if touch_points is not None else None,
        probe_screen=True if probe_flag is None else probe_flag,
        cookie_file=env.get("DEVICEBOUND_COOKIE_FILE") or None,
        debug=bool(_env_flag(env, "DEVICEBOUND_DEBUG")),
    )
