from pathlib import Path

import pytest

from devicebound.authenticator import PlatformAuthenticator
from devicebound.ceremony import CeremonyOrchestrator
from devicebound.fingerprint import HostEnvironment
from devicebound.transport import ServiceTransport

from fake_service import running_service
from software_authenticator import SoftwareAuthenticator

ORIGIN = "https://localhost"


def pytest_addoption(parser):
    parser.addoption(
        "--run-device-tests",
        action="store_true",
        help="Include the hardware-in-the-loop tests under tests/device.",
    )


def pytest_ignore_collect(collection_path, config):
    """Skip hardware tests unless explicitly requested."""

    if config.getoption("--run-device-tests"):
        return False

    try:
        path_obj = Path(str(collection_path))
    except TypeError:
        return False

    parts = path_obj.parts
    try:
        tests_index = parts.index("tests")
    except ValueError:
        return False

    return tests_index + 1 < len(parts) and parts[tests_index + 1] == "device"


@pytest.fixture
def environment():
    return HostEnvironment(
        {"TZ": "Europe/Berlin", "LANG": "de_DE.UTF-8", "LANGUAGE": "de-DE"},
        screen=(1920, 1080, 24),
        max_touch_points=0,
        probe_screen=False,
    )


@pytest.fixture
def service():
    with running_service() as running:
        yield running


@pytest.fixture
def authenticator():
    return SoftwareAuthenticator(ORIGIN)


@pytest.fixture
def make_orchestrator(service, environment):
    """Build orchestrators that share the fake service but not cookies."""

    def factory(software=None, origin=ORIGIN):
        platform = None
        if software is not None:
            platform = PlatformAuthenticator(software, description="software")
        return CeremonyOrchestrator(
            ServiceTransport(service.base_url, timeout=5),
            platform,
            origin=origin,
            environment=environment,
        )

    return factory
