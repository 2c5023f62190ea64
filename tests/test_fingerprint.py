import dataclasses

import pytest

from devicebound.fingerprint import (
    FINGERPRINT_PREFIX,
    EnvironmentSnapshot,
    HostEnvironment,
    attribute_vector,
    derive,
    derive_fingerprint,
    normalize_screen,
    rolling_hash,
)

SNAPSHOT = EnvironmentSnapshot(
    screen_width=1920,
    screen_height=1080,
    color_depth=24,
    timezone="Europe/Berlin",
    locale="de-DE",
    language="de-DE",
    hardware_concurrency=8,
    platform="Linux x86_64",
    max_touch_points=0,
)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("", 0),
        ("a", 97),
        ("hello", 99162322),
        ("Hello World", -862545276),
        ("polygenelubricants", -(2**31)),
    ],
)
def test_rolling_hash_known_values(text, expected):
    assert rolling_hash(text) == expected


def test_rolling_hash_counts_utf16_code_units():
    # U+1F600 is the surrogate pair D83D DE00.
    assert rolling_hash("\U0001F600") == (0xD83D * 31 + 0xDE00)


def test_fingerprint_formats_absolute_hash_as_hex():
    snapshot = EnvironmentSnapshot()
    joined = "|".join(attribute_vector(snapshot))
    assert derive_fingerprint(snapshot) == f"fp_{abs(rolling_hash(joined)):x}"
    assert f"{abs(rolling_hash('polygenelubricants')):x}" == "80000000"


def test_normalize_screen_buckets():
    assert normalize_screen(1920, 1080, 24) == "1900x1000x24"
    assert normalize_screen(1987, 1099, 24) == "1900x1000x24"
    assert normalize_screen(99, 0, 30) == "0x0x30"


def test_attribute_vector_order():
    assert attribute_vector(SNAPSHOT) == [
        "1900x1000x24",
        "Europe/Berlin",
        "de-DE",
        "de-DE",
        "8",
        "linux x86_64",
        "0",
    ]


def test_fingerprint_is_deterministic():
    assert derive_fingerprint(SNAPSHOT) == derive_fingerprint(dataclasses.replace(SNAPSHOT))
    assert derive_fingerprint(SNAPSHOT).startswith(FINGERPRINT_PREFIX)


def test_screen_within_bucket_keeps_token():
    other = dataclasses.replace(SNAPSHOT, screen_width=1987, screen_height=1099)
    assert derive_fingerprint(other) == derive_fingerprint(SNAPSHOT)


def test_timezone_change_alters_token():
    other = dataclasses.replace(SNAPSHOT, timezone="America/New_York")
    assert derive_fingerprint(other) != derive_fingerprint(SNAPSHOT)


def test_token_is_lowercase_hex():
    token = derive_fingerprint(SNAPSHOT)
    int(token[len(FINGERPRINT_PREFIX):], 16)
    assert token == token.lower()


def test_host_environment_prefers_configured_values():
    environment = HostEnvironment(
        {"TZ": ":Asia/Tokyo", "LANGUAGE": "ja_JP.UTF-8:en"},
        screen=(2560, 1440, 30),
        max_touch_points=5,
        probe_screen=False,
    )
    snapshot = environment.snapshot()
    assert snapshot.timezone == "Asia/Tokyo"
    assert snapshot.language == "ja-JP"
    assert (snapshot.screen_width, snapshot.screen_height, snapshot.color_depth) == (2560, 1440, 30)
    assert snapshot.max_touch_points == 5


def test_failing_screen_probe_falls_back_to_zero():
    def broken_probe():
        raise RuntimeError("no display")

    environment = HostEnvironment({}, screen_probe=broken_probe)
    snapshot = environment.snapshot()
    assert (snapshot.screen_width, snapshot.screen_height, snapshot.color_depth) == (0, 0, 0)


def test_disabled_probe_is_never_called():
    def probe():
        raise AssertionError("probe should not run")

    snapshot = HostEnvironment({}, probe_screen=False, screen_probe=probe).snapshot()
    assert snapshot.screen_width == 0


def test_derive_never_raises():
    class Broken(HostEnvironment):
        def snapshot(self):
            raise OSError("host unavailable")

    assert derive(Broken({})) == derive_fingerprint(EnvironmentSnapshot())


def test_derive_uses_the_environment(environment):
    assert derive(environment) == derive(environment)
    assert derive(environment) == derive_fingerprint(environment.snapshot())


def test_locale_prefers_injected_environment(monkeypatch):
    monkeypatch.setattr("locale.getlocale", lambda *args: ("fr_FR", "UTF-8"))
    environment = HostEnvironment({"LANG": "pt_BR.UTF-8"}, probe_screen=False)
    assert environment.locale_tag() == "pt-BR"
    assert HostEnvironment({}, probe_screen=False).locale_tag() == "fr-FR"


def test_screen_probe_runs_once_per_environment():
    calls = []

    def probe():
        calls.append(1)
        return (1280, 800, 24)

    environment = HostEnvironment({}, screen_probe=probe)
    first = derive(environment)
    assert derive(environment) == first
    assert environment.snapshot().screen_width == 1280
    assert len(calls) == 1


def test_failed_screen_probe_is_not_retried():
    calls = []

    def probe():
        calls.append(1)
        raise RuntimeError("no display")

    environment = HostEnvironment({}, screen_probe=probe)
    environment.snapshot()
    snapshot = environment.snapshot()
    assert snapshot.screen_width == 0
    assert len(calls) == 1
