"""Adapters around the ``fido2`` WebAuthn client.

The platform ceremony is a single blocking call: it returns a complete
response or raises. Errors are classified by the orchestrator.
"""
from __future__ import annotations

import getpass
import logging
import sys
from typing import Any, Optional

from fido2.client import DefaultClientDataCollector, Fido2Client, UserInteraction, WebAuthnClient
from fido2.hid import CtapHidDevice
from fido2.webauthn import (
    AuthenticationResponse,
    PublicKeyCredentialCreationOptions,
    PublicKeyCredentialRequestOptions,
    RegistrationResponse,
)

__all__ = [
    "ConsoleInteraction",
    "PlatformAuthenticator",
    "discover_platform",
]


LOGGER = logging.getLogger("devicebound.authenticator")


class ConsoleInteraction(UserInteraction):
    """Prompts on the terminal while the authenticator waits for the user."""

    def __init__(self, stream: Any = None) -> None:
        self._stream = stream or sys.stderr

    def prompt_up(self) -> None:
        print("Touch your authenticator device now...", file=self._stream)

    def request_pin(self, permissions, rp_id) -> Optional[str]:
        return getpass.getpass("Enter authenticator PIN: ")

    def request_uv(self, permissions, rp_id) -> bool:
        print("User verification required.", file=self._stream)
        return True


class PlatformAuthenticator:
    """Runs the create/get ceremonies through a ``WebAuthnClient``."""

    def __init__(self, client: WebAuthnClient, *, description: str = "authenticator") -> None:
        self._client = client
        self.description = description

    def create(self, options: PublicKeyCredentialCreationOptions) -> RegistrationResponse:
        return self._client.make_credential(options)

    def get(self, options: PublicKeyCredentialRequestOptions) -> AuthenticationResponse:
        selection = self._client.get_assertion(options)
        # Several discoverable credentials may match; the first one is used.
        return selection.get_response(0)


def _windows_client(origin: str) -> Optional[WebAuthnClient]:
    if sys.platform != "win32":
        return None

    import ctypes

    from fido2.client.windows import WindowsClient

    if not WindowsClient.is_available() or ctypes.windll.shell32.IsUserAnAdmin():
        return None
    return WindowsClient(DefaultClientDataCollector(origin))


def discover_platform(
    origin: str,
    interaction: Optional[UserInteraction] = None,
) -> Optional[PlatformAuthenticator]:
    """Return an adapter for the first available authenticator, if any."""

    windows_client = _windows_client(origin)
    if windows_client is not None:
        LOGGER.debug("Using the Windows WebAuthn API.")
        return PlatformAuthenticator(windows_client, description="Windows Hello")

    device = next(CtapHidDevice.list_devices(), None)
    if device is None:
        LOGGER.info("No FIDO authenticator found.")
        return None

    LOGGER.debug("Using CTAP HID device %s.", device)
    client = Fido2Client(
        device,
        client_data_collector=DefaultClientDataCollector(origin),
        user_interaction=interaction or ConsoleInteraction(),
    )
    return PlatformAuthenticator(client, description=str(device))
