"""Device-bound WebAuthn ceremonies.

Each public operation runs one ceremony invocation from ``idle`` to a
terminal state. Every step is sequential; any failure moves the invocation to
``rejected`` and raises a single classified :class:`CeremonyError`. The finish
endpoint is only called once a complete, encoded result exists.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import urlparse

from .codec import encode
from .errors import (
    CeremonyError,
    FailureCategory,
    IncompleteCredentialError,
    InsecureContextError,
    MalformedOptionsError,
    MissingProtocolFieldError,
    PlatformCeremonyError,
    UnsupportedPlatformError,
)
from .fingerprint import HostEnvironment, derive
from .options import parse_creation_options, parse_request_options
from .session import SessionStore, UserProfile
from .transport import ServiceTransport

__all__ = [
    "CeremonyInvocation",
    "CeremonyKind",
    "CeremonyOrchestrator",
    "CeremonyOutcome",
    "CeremonyState",
    "encode_authentication_response",
    "encode_registration_response",
    "is_secure_context",
]


LOGGER = logging.getLogger("devicebound.ceremony")

_LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1"})


class CeremonyKind(str, Enum):
    REGISTRATION = "registration"
    AUTHENTICATION = "authentication"
    PASSWORD_LOGIN = "password-login"
    ACCOUNT_REGISTRATION = "account-registration"


class CeremonyState(str, Enum):
    IDLE = "idle"
    AWAITING_OPTIONS = "awaiting-options"
    OPTIONS_VALIDATED = "options-validated"
    AWAITING_PLATFORM_CEREMONY = "awaiting-platform-ceremony"
    AWAITING_FINISH = "awaiting-finish"
    SUCCEEDED = "succeeded"
    REJECTED = "rejected"


_TRANSITIONS: Dict[CeremonyState, Tuple[CeremonyState, ...]] = {
    # Password calls skip the option and platform steps.
    CeremonyState.IDLE: (CeremonyState.AWAITING_OPTIONS, CeremonyState.AWAITING_FINISH),
    CeremonyState.AWAITING_OPTIONS: (CeremonyState.OPTIONS_VALIDATED,),
    CeremonyState.OPTIONS_VALIDATED: (CeremonyState.AWAITING_PLATFORM_CEREMONY,),
    CeremonyState.AWAITING_PLATFORM_CEREMONY: (CeremonyState.AWAITING_FINISH,),
    CeremonyState.AWAITING_FINISH: (CeremonyState.SUCCEEDED,),
    CeremonyState.SUCCEEDED: (),
    CeremonyState.REJECTED: (),
}


@dataclass(frozen=True)
class CeremonyOutcome:
    """Terminal result of one ceremony invocation."""

    kind: CeremonyKind
    state: CeremonyState
    email: str
    verified: bool
    fingerprint: Optional[str] = None
    device_id_hash: Optional[str] = None
    category: Optional[FailureCategory] = None
    message: Optional[str] = None
    history: Tuple[CeremonyState, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.state is CeremonyState.SUCCEEDED


@dataclass
class CeremonyInvocation:
    """State of one ceremony run; a retry always starts a new invocation."""

    kind: CeremonyKind
    email: str
    fingerprint: Optional[str] = None
    state: CeremonyState = CeremonyState.IDLE
    history: List[CeremonyState] = field(default_factory=lambda: [CeremonyState.IDLE])

    @property
    def finished(self) -> bool:
        return self.state in (CeremonyState.SUCCEEDED, CeremonyState.REJECTED)

    def advance(self, state: CeremonyState) -> None:
        rejecting = state is CeremonyState.REJECTED and not self.finished
        if not rejecting and state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"invalid ceremony transition {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)
        LOGGER.debug("%s ceremony for %s: %s", self.kind.value, self.email, state.value)

    def outcome(
        self,
        *,
        verified: bool,
        device_id_hash: Optional[str] = None,
        category: Optional[FailureCategory] = None,
        message: Optional[str] = None,
    ) -> CeremonyOutcome:
        return CeremonyOutcome(
            kind=self.kind,
            state=self.state,
            email=self.email,
            verified=verified,
            fingerprint=self.fingerprint,
            device_id_hash=device_id_hash,
            category=category,
            message=message,
            history=tuple(self.history),
        )


def is_secure_context(origin: str) -> bool:
    """Return ``True`` for HTTPS origins and for loopback hosts."""

    parsed = urlparse(origin or "")
    if parsed.scheme.lower() == "https":
        return True
    return (parsed.hostname or "").lower() in _LOOPBACK_HOSTS


def _binary(value: Any, name: str) -> bytes:
    if isinstance(value, (bytes, bytearray, memoryview)):
        data = bytes(value)
    elif value is not None and hasattr(value, "__bytes__"):
        data = bytes(value)
    else:
        raise IncompleteCredentialError(name)
    if not data:
        raise IncompleteCredentialError(name)
    return data


def _enum_text(value: Any) -> str:
    return str(getattr(value, "value", value))


def _json_safe(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return encode(value)
    if isinstance(value, Mapping):
        return {str(key): _json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(item) for item in value]
    if isinstance(value, Enum):
        return value.value
    return value


def _credential_envelope(credential: Any, raw_id: bytes) -> Dict[str, Any]:
    credential_id = getattr(credential, "id", None)
    if not isinstance(credential_id, str) or not credential_id:
        credential_id = encode(raw_id)

    envelope: Dict[str, Any] = {
        "id": credential_id,
        "rawId": encode(raw_id),
        "type": _enum_text(getattr(credential, "type", None) or "public-key"),
    }
    attachment = getattr(credential, "authenticator_attachment", None)
    if attachment:
        envelope["authenticatorAttachment"] = _enum_text(attachment)
    envelope["clientExtensionResults"] = _json_safe(
        dict(getattr(credential, "client_extension_results", None) or {})
    )
    return envelope


def encode_registration_response(credential: Any) -> Dict[str, Any]:
    """Encode a platform registration result for the finish endpoint."""

    if credential is None:
        raise IncompleteCredentialError("credential")
    raw_id = _binary(getattr(credential, "raw_id", None), "rawId")
    response = getattr(credential, "response", None)
    if response is None:
        raise IncompleteCredentialError("response")

    attestation_object = _binary(getattr(response, "attestation_object", None), "attestationObject")
    client_data = _binary(getattr(response, "client_data", None), "clientDataJSON")
    transports = [_enum_text(item) for item in (getattr(response, "transports", None) or [])]

    payload = _credential_envelope(credential, raw_id)
    payload["response"] = {
        "attestationObject": encode(attestation_object),
        "clientDataJSON": encode(client_data),
        "transports": transports,
    }
    return payload


def encode_authentication_response(credential: Any) -> Dict[str, Any]:
    """Encode a platform assertion for the finish endpoint."""

    if credential is None:
        raise IncompleteCredentialError("credential")
    raw_id = _binary(getattr(credential, "raw_id", None), "rawId")
    response = getattr(credential, "response", None)
    if response is None:
        raise IncompleteCredentialError("response")

    authenticator_data = _binary(getattr(response, "authenticator_data", None), "authenticatorData")
    client_data = _binary(getattr(response, "client_data", None), "clientDataJSON")
    signature = _binary(getattr(response, "signature", None), "signature")
    user_handle = getattr(response, "user_handle", None)

    payload = _credential_envelope(credential, raw_id)
    payload["response"] = {
        "authenticatorData": encode(authenticator_data),
        "clientDataJSON": encode(client_data),
        "signature": encode(signature),
        "userHandle": encode(_binary(user_handle, "userHandle")) if user_handle else None,
    }
    return payload


class CeremonyOrchestrator:
    """Drives the device-bound registration and authentication ceremonies.

    ``platform`` is any object with ``create(options)`` and ``get(options)``
    returning ``fido2`` style responses, usually a
    :class:`devicebound.authenticator.PlatformAuthenticator`. ``None`` means
    no credential API is available on this host.
    """

    def __init__(
        self,
        transport: ServiceTransport,
        platform: Optional[Any] = None,
        *,
        origin: str,
        environment: Optional[HostEnvironment] = None,
        session: Optional[SessionStore] = None,
    ) -> None:
        self.transport = transport
        self.platform = platform
        self.origin = origin
        self.environment = environment
        self.session = session if session is not None else SessionStore()

    def fingerprint(self) -> str:
        return derive(self.environment)

    def _abort(self, invocation: CeremonyInvocation, exc: CeremonyError) -> None:
        if not invocation.finished:
            invocation.advance(CeremonyState.REJECTED)
        exc.invocation = invocation
        LOGGER.warning(
            "%s ceremony for %s rejected (%s): %s",
            invocation.kind.value,
            invocation.email,
            exc.category.value,
            exc.message,
        )

    def _require_webauthn(self, email: str) -> None:
        if not email:
            raise MalformedOptionsError("An email address is required.")
        if self.platform is None:
            raise UnsupportedPlatformError()
        if not is_secure_context(self.origin):
            raise InsecureContextError(f"Origin {self.origin!r} is not a secure context.")

    def _run_platform(self, call: Callable[[Any], Any], options: Any, operation: str) -> Any:
        try:
            result = call(options)
        except CeremonyError:
            raise
        except Exception as exc:
            raise PlatformCeremonyError(exc, operation=operation) from exc
        if result is None:
            raise IncompleteCredentialError("credential")
        return result

    def register(self, email: str, fingerprint: Optional[str] = None) -> CeremonyOutcome:
        """Create a credential bound to ``email`` and this device."""

        invocation = CeremonyInvocation(CeremonyKind.REGISTRATION, email)
        try:
            self._require_webauthn(email)
            invocation.fingerprint = fingerprint or self.fingerprint()

            invocation.advance(CeremonyState.AWAITING_OPTIONS)
            payload = self.transport.register_start(email, invocation.fingerprint)
            options = parse_creation_options(payload)
            invocation.advance(CeremonyState.OPTIONS_VALIDATED)

            invocation.advance(CeremonyState.AWAITING_PLATFORM_CEREMONY)
            credential = self._run_platform(self.platform.create, options, "create")
            attestation_response = encode_registration_response(credential)

            invocation.advance(CeremonyState.AWAITING_FINISH)
            self.transport.register_finish(email, attestation_response, invocation.fingerprint)
        except CeremonyError as exc:
            self._abort(invocation, exc)
            raise

        invocation.advance(CeremonyState.SUCCEEDED)
        LOGGER.info("Registered a device-bound credential for %s.", email)
        return invocation.outcome(verified=True)

    def login(self, email: str, fingerprint: Optional[str] = None) -> CeremonyOutcome:
        """Authenticate ``email`` with an assertion from this device.

        A finish response without ``verified: true`` yields a ``rejected``
        outcome and leaves the session untouched.
        """

        invocation = CeremonyInvocation(CeremonyKind.AUTHENTICATION, email)
        try:
            self._require_webauthn(email)
            invocation.fingerprint = fingerprint or self.fingerprint()

            invocation.advance(CeremonyState.AWAITING_OPTIONS)
            payload = self.transport.login_start(email, invocation.fingerprint)
            options = parse_request_options(payload)
            invocation.advance(CeremonyState.OPTIONS_VALIDATED)

            invocation.advance(CeremonyState.AWAITING_PLATFORM_CEREMONY)
            credential = self._run_platform(self.platform.get, options, "get")
            assertion_response = encode_authentication_response(credential)

            invocation.advance(CeremonyState.AWAITING_FINISH)
            result = self.transport.login_finish(email, assertion_response, invocation.fingerprint)
        except CeremonyError as exc:
            self._abort(invocation, exc)
            raise

        if isinstance(result, Mapping) and result.get("verified") is True:
            invocation.advance(CeremonyState.SUCCEEDED)
            self.session.sign_in(email)
            LOGGER.info("Authenticated %s with a device-bound credential.", email)
            return invocation.outcome(verified=True)

        invocation.advance(CeremonyState.REJECTED)
        message = None
        if isinstance(result, Mapping) and isinstance(result.get("message"), str):
            message = result["message"]
        LOGGER.warning("Assertion for %s was not verified.", email)
        return invocation.outcome(
            verified=False,
            category=FailureCategory.SERVER_REJECTED,
            message=message or "Authentication was not verified.",
        )

    def password_login(self, email: str, password: str, fingerprint: Optional[str] = None) -> CeremonyOutcome:
        """Log in with a password, tagging the request with the device identity.

        The returned device-hash token is kept in the session store only.
        """

        invocation = CeremonyInvocation(CeremonyKind.PASSWORD_LOGIN, email)
        try:
            if not email or not password:
                raise MalformedOptionsError("Enter email and password.")
            invocation.fingerprint = fingerprint or self.fingerprint()

            invocation.advance(CeremonyState.AWAITING_FINISH)
            result = self.transport.password_login(email, password, invocation.fingerprint)
            device_id_hash = result.get("deviceIdHash") if isinstance(result, Mapping) else None
            if not isinstance(device_id_hash, str) or not device_id_hash:
                raise MissingProtocolFieldError("deviceIdHash")
        except CeremonyError as exc:
            self._abort(invocation, exc)
            raise

        invocation.advance(CeremonyState.SUCCEEDED)
        self.session.sign_in(email, device_id_hash)
        LOGGER.info("Password login succeeded for %s.", email)
        return invocation.outcome(verified=True, device_id_hash=device_id_hash)

    def password_register(self, email: str, password: str) -> CeremonyOutcome:
        """Create a password account; the device is bound at first login."""

        invocation = CeremonyInvocation(CeremonyKind.ACCOUNT_REGISTRATION, email)
        try:
            if not email or not password:
                raise MalformedOptionsError("Enter email and password.")
            invocation.advance(CeremonyState.AWAITING_FINISH)
            self.transport.password_register(email, password)
        except CeremonyError as exc:
            self._abort(invocation, exc)
            raise

        invocation.advance(CeremonyState.SUCCEEDED)
        LOGGER.info("Registered password account for %s.", email)
        return invocation.outcome(verified=True)

    def current_user(self) -> UserProfile:
        payload = self.transport.profile()
        if not isinstance(payload, Mapping):
            raise MissingProtocolFieldError("email")
        try:
            return UserProfile.from_payload(payload)
        except ValueError as exc:
            raise MissingProtocolFieldError("email") from exc

    def logout(self) -> None:
        try:
            self.transport.logout()
        finally:
            self.session.clear()
