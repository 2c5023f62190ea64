"""Device identity derivation.

The fingerprint is a coarse device-equivalence key computed from host
attributes that stay the same whichever client software runs the ceremony.
It is not a secret: the hash is a 32-bit rolling hash, and identical
attribute vectors always produce identical tokens.
"""
from __future__ import annotations

import locale
import logging
import os
import platform
import struct
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional, Tuple

__all__ = [
    "DEFAULT_LANGUAGE",
    "DEFAULT_PLATFORM",
    "DEFAULT_TIMEZONE",
    "FINGERPRINT_DELIMITER",
    "FINGERPRINT_PREFIX",
    "FINGERPRINT_SCHEME",
    "EnvironmentSnapshot",
    "HostEnvironment",
    "attribute_vector",
    "derive",
    "derive_fingerprint",
    "normalize_screen",
    "rolling_hash",
]


LOGGER = logging.getLogger("devicebound.fingerprint")

FINGERPRINT_SCHEME = "fp-hash-v1"
FINGERPRINT_PREFIX = "fp_"
FINGERPRINT_DELIMITER = "|"

DEFAULT_TIMEZONE = "UTC"
DEFAULT_LANGUAGE = "en"
DEFAULT_PLATFORM = "unknown"

_SCREEN_BUCKET = 100


@dataclass(frozen=True)
class EnvironmentSnapshot:
    """Attributes of the host that feed the fingerprint."""

    screen_width: int = 0
    screen_height: int = 0
    color_depth: int = 0
    timezone: str = DEFAULT_TIMEZONE
    locale: str = DEFAULT_LANGUAGE
    language: str = DEFAULT_LANGUAGE
    hardware_concurrency: int = 0
    platform: str = DEFAULT_PLATFORM
    max_touch_points: int = 0


def normalize_screen(width: int, height: int, depth: int) -> str:
    """Coarsen screen geometry to 100px buckets and join it with the depth."""

    bucket_width = (int(width) // _SCREEN_BUCKET) * _SCREEN_BUCKET
    bucket_height = (int(height) // _SCREEN_BUCKET) * _SCREEN_BUCKET
    return f"{bucket_width}x{bucket_height}x{int(depth)}"


def attribute_vector(snapshot: EnvironmentSnapshot) -> List[str]:
    # Order participates in the hash.
    return [
        normalize_screen(snapshot.screen_width, snapshot.screen_height, snapshot.color_depth),
        snapshot.timezone or DEFAULT_TIMEZONE,
        snapshot.locale or snapshot.language or DEFAULT_LANGUAGE,
        snapshot.language or DEFAULT_LANGUAGE,
        str(int(snapshot.hardware_concurrency or 0)),
        (snapshot.platform or DEFAULT_PLATFORM).lower(),
        str(int(snapshot.max_touch_points or 0)),
    ]


def rolling_hash(text: str) -> int:
    """Return the signed 32-bit ``hash * 31 + code_unit`` hash of ``text``.

    Code units are UTF-16, so non-BMP characters contribute two units.
    """

    encoded = text.encode("utf-16-le", "surrogatepass")
    value = 0
    for (unit,) in struct.iter_unpack("<H", encoded):
        value = (value * 31 + unit) & 0xFFFFFFFF
        if value & 0x80000000:
            value -= 0x100000000
    return value


def derive_fingerprint(snapshot: EnvironmentSnapshot) -> str:
    """Compute the device fingerprint for ``snapshot``."""

    joined = FINGERPRINT_DELIMITER.join(attribute_vector(snapshot))
    return f"{FINGERPRINT_PREFIX}{abs(rolling_hash(joined)):x}"


def _bcp47(tag: Optional[str]) -> Optional[str]:
    if not tag:
        return None
    cleaned = tag.split(".", 1)[0].split("@", 1)[0].strip()
    if not cleaned or cleaned in {"C", "POSIX"}:
        return None
    return cleaned.replace("_", "-")


def _zoneinfo_from_localtime(path: str = "/etc/localtime") -> Optional[str]:
    try:
        target = os.path.realpath(path)
    except OSError:
        return None
    marker = "zoneinfo" + os.sep
    if marker not in target:
        return None
    return target.split(marker, 1)[1] or None


def _probe_screen() -> Optional[Tuple[int, int, int]]:
    """Read the screen geometry through Tk. Must run on the main thread."""

    import tkinter

    root = tkinter.Tk()
    try:
        root.withdraw()
        return (
            int(root.winfo_screenwidth()),
            int(root.winfo_screenheight()),
            int(root.winfo_screendepth()),
        )
    finally:
        root.destroy()


class HostEnvironment:
    """Reads the host attributes used for the fingerprint.

    Every reader is isolated: a failure in one attribute falls back to the
    documented default for that attribute and never aborts the snapshot.
    ``screen`` and ``max_touch_points`` replace values the host cannot report.
    The screen probe opens a Tk root, so the first snapshot of an environment
    that probes must be taken on the main thread; the result is cached.
    """

    def __init__(
        self,
        environ: Optional[Mapping[str, str]] = None,
        *,
        screen: Optional[Tuple[int, int, int]] = None,
        max_touch_points: Optional[int] = None,
        probe_screen: bool = True,
        screen_probe: Optional[Callable[[], Optional[Tuple[int, int, int]]]] = None,
    ) -> None:
        self._environ = os.environ if environ is None else environ
        self._screen = screen
        self._max_touch_points = max_touch_points
        self._probe_screen = probe_screen
        self._screen_probe = screen_probe or _probe_screen
        self._probed: Optional[Tuple[Optional[Tuple[int, int, int]]]] = None

    def _read(self, name: str, reader: Callable[[], Any], default: Any) -> Any:
        try:
            value = reader()
        except Exception as exc:
            LOGGER.debug("Attribute %s unavailable (%s); using default.", name, exc)
            return default
        if value is None or value == "":
            return default
        return value

    def timezone_name(self) -> Optional[str]:
        configured = self._environ.get("TZ", "").lstrip(":").strip()
        if configured and ("/" in configured or configured == "UTC"):
            return configured
        zone = _zoneinfo_from_localtime()
        if zone:
            return zone
        return time.tzname[0] if time.tzname and time.tzname[0] else None

    def locale_tag(self) -> Optional[str]:
        for name in ("LC_ALL", "LC_MESSAGES", "LANG"):
            tag = _bcp47(self._environ.get(name))
            if tag:
                return tag
        return _bcp47(locale.getlocale()[0])

    def language_tag(self) -> Optional[str]:
        for entry in self._environ.get("LANGUAGE", "").split(":"):
            tag = _bcp47(entry)
            if tag:
                return tag
        return self.locale_tag()

    def platform_name(self) -> Optional[str]:
        parts = (platform.system(), platform.machine())
        return " ".join(part for part in parts if part) or None

    def screen(self) -> Optional[Tuple[int, int, int]]:
        if self._screen is not None:
            return self._screen
        if not self._probe_screen:
            return None
        # Probed once per environment; a failed probe is not retried.
        if self._probed is None:
            try:
                self._probed = (self._screen_probe(),)
            except Exception:
                self._probed = (None,)
                raise
        return self._probed[0]

    def touch_points(self) -> int:
        # Desktop hosts expose no touch digitizer information.
        return self._max_touch_points or 0

    def snapshot(self) -> EnvironmentSnapshot:
        width, height, depth = self._read("screen", self.screen, (0, 0, 0))
        language = self._read("language", self.language_tag, DEFAULT_LANGUAGE)
        return EnvironmentSnapshot(
            screen_width=int(width),
            screen_height=int(height),
            color_depth=int(depth),
            timezone=str(self._read("timezone", self.timezone_name, DEFAULT_TIMEZONE)),
            locale=str(self._read("locale", self.locale_tag, language)),
            language=str(language),
            hardware_concurrency=int(self._read("hardware_concurrency", os.cpu_count, 0)),
            platform=str(self._read("platform", self.platform_name, DEFAULT_PLATFORM)),
            max_touch_points=int(self._read("max_touch_points", self.touch_points, 0)),
        )


def derive(environment: Optional[HostEnvironment] = None) -> str:
    """Derive the fingerprint for the current host.

    Never raises: if the snapshot cannot be taken at all, the all-defaults
    snapshot is hashed instead.
    """

    provider = environment or HostEnvironment()
    try:
        snapshot = provider.snapshot()
    except Exception:
        LOGGER.warning("Host environment unavailable; using default attributes.", exc_info=True)
        snapshot = EnvironmentSnapshot()
    fingerprint = derive_fingerprint(snapshot)
    LOGGER.debug("Derived device fingerprint %s (%s).", fingerprint, FINGERPRINT_SCHEME)
    return fingerprint
