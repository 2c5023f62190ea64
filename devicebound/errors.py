"""Failure taxonomy and classification for ceremony errors."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional, Sequence, Tuple

from fido2.client import ClientError

if TYPE_CHECKING:  # pragma: no cover - import only for static analysis.
    from .ceremony import CeremonyInvocation

__all__ = [
    "CeremonyError",
    "Classification",
    "FailureCategory",
    "IncompleteCredentialError",
    "InsecureContextError",
    "MalformedOptionsError",
    "MissingProtocolFieldError",
    "PlatformCeremonyError",
    "ServerRejectedError",
    "TransportError",
    "UnsupportedPlatformError",
    "classify",
    "failure_name",
]


class FailureCategory(str, Enum):
    """User-facing outcome of a failed ceremony."""

    UNSUPPORTED_PLATFORM = "unsupported-platform"
    INSECURE_CONTEXT = "insecure-context"
    MISSING_PROTOCOL_FIELD = "missing-protocol-field"
    USER_CANCELLED_OR_DENIED = "user-cancelled-or-denied"
    CREDENTIAL_ALREADY_EXISTS = "credential-already-exists"
    NOT_SUPPORTED_BY_AUTHENTICATOR = "not-supported-by-authenticator"
    SECURITY_CONTEXT_ERROR = "security-context-error"
    MALFORMED_OPTIONS = "malformed-options"
    SERVER_REJECTED = "server-rejected"
    UNKNOWN = "unknown"


DEFAULT_MESSAGES: Dict[FailureCategory, str] = {
    FailureCategory.UNSUPPORTED_PLATFORM: "No WebAuthn authenticator is available on this device.",
    FailureCategory.INSECURE_CONTEXT: "WebAuthn requires a secure origin (HTTPS or localhost).",
    FailureCategory.MISSING_PROTOCOL_FIELD: "The server returned incomplete ceremony options.",
    FailureCategory.USER_CANCELLED_OR_DENIED: "The operation was cancelled, timed out, or not allowed.",
    FailureCategory.CREDENTIAL_ALREADY_EXISTS: (
        "A passkey for this device is already registered. Try logging in instead."
    ),
    FailureCategory.NOT_SUPPORTED_BY_AUTHENTICATOR: (
        "The authenticator does not support the requested options."
    ),
    FailureCategory.SECURITY_CONTEXT_ERROR: "The relying party is not valid for this origin.",
    FailureCategory.MALFORMED_OPTIONS: "The ceremony options could not be used.",
    FailureCategory.SERVER_REJECTED: "The server rejected the request.",
    FailureCategory.UNKNOWN: "The ceremony failed.",
}


@dataclass(frozen=True)
class Classification:
    category: FailureCategory
    message: str


class CeremonyError(Exception):
    """Base error for an aborted ceremony invocation."""

    category: FailureCategory = FailureCategory.UNKNOWN

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        category: Optional[FailureCategory] = None,
    ) -> None:
        if category is not None:
            self.category = category
        self.message = message or DEFAULT_MESSAGES[self.category]
        self.invocation: Optional["CeremonyInvocation"] = None
        super().__init__(self.message)


class UnsupportedPlatformError(CeremonyError):
    category = FailureCategory.UNSUPPORTED_PLATFORM


class InsecureContextError(CeremonyError):
    category = FailureCategory.INSECURE_CONTEXT


class MissingProtocolFieldError(CeremonyError):
    """Raised when server-issued options lack a required field."""

    category = FailureCategory.MISSING_PROTOCOL_FIELD

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"Server options are missing '{field}'.")


class MalformedOptionsError(CeremonyError):
    category = FailureCategory.MALFORMED_OPTIONS


class IncompleteCredentialError(CeremonyError):
    """Raised when the platform result lacks a required binary field."""

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"The authenticator response is missing '{field}'.")


class ServerRejectedError(CeremonyError):
    category = FailureCategory.SERVER_REJECTED

    def __init__(self, message: Optional[str] = None, *, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class TransportError(CeremonyError):
    """Raised when the remote service cannot be reached."""


class PlatformCeremonyError(CeremonyError):
    """Wraps a failure raised by the platform credential ceremony."""

    def __init__(self, cause: BaseException, *, operation: Optional[str] = None) -> None:
        self.cause = cause
        self.failure_name = failure_name(cause, operation=operation)
        classification = classify(cause, operation=operation)
        super().__init__(classification.message, category=classification.category)


_CLIENT_ERROR_NAMES: Dict[ClientError.ERR, str] = {
    ClientError.ERR.TIMEOUT: "NotAllowedError",
    ClientError.ERR.CONFIGURATION_UNSUPPORTED: "NotSupportedError",
    ClientError.ERR.BAD_REQUEST: "NotAllowedError",
    ClientError.ERR.OTHER_ERROR: "UnknownError",
}

_NAME_RULES: Sequence[Tuple[str, FailureCategory]] = (
    ("NotAllowedError", FailureCategory.USER_CANCELLED_OR_DENIED),
    ("AbortError", FailureCategory.USER_CANCELLED_OR_DENIED),
    ("InvalidStateError", FailureCategory.CREDENTIAL_ALREADY_EXISTS),
    ("NotSupportedError", FailureCategory.NOT_SUPPORTED_BY_AUTHENTICATOR),
    ("SecurityError", FailureCategory.SECURITY_CONTEXT_ERROR),
    ("TypeError", FailureCategory.MALFORMED_OPTIONS),
)

_MESSAGE_RULES: Sequence[Tuple[str, FailureCategory]] = (
    ("not allowed", FailureCategory.USER_CANCELLED_OR_DENIED),
    ("cancel", FailureCategory.USER_CANCELLED_OR_DENIED),
    ("timed out", FailureCategory.USER_CANCELLED_OR_DENIED),
    ("timeout", FailureCategory.USER_CANCELLED_OR_DENIED),
    ("already registered", FailureCategory.CREDENTIAL_ALREADY_EXISTS),
    ("credential excluded", FailureCategory.CREDENTIAL_ALREADY_EXISTS),
    ("not supported", FailureCategory.NOT_SUPPORTED_BY_AUTHENTICATOR),
    ("unsupported", FailureCategory.NOT_SUPPORTED_BY_AUTHENTICATOR),
    ("rp id", FailureCategory.SECURITY_CONTEXT_ERROR),
    ("insecure", FailureCategory.INSECURE_CONTEXT),
)


def failure_name(exc: BaseException, *, operation: Optional[str] = None) -> str:
    """Return the DOM-style name used to classify ``exc``.

    ``fido2`` client errors carry a numeric code instead of a name; they are
    translated to the names a browser would raise for the same condition.
    ``operation`` is ``"create"`` or ``"get"``.
    """

    if isinstance(exc, ClientError):
        if exc.code == ClientError.ERR.DEVICE_INELIGIBLE:
            return "InvalidStateError" if operation == "create" else "NotAllowedError"
        # The client data collector raises a bare BAD_REQUEST for an RP ID
        # that is not valid for the origin; CTAP failures always carry a cause.
        if exc.code == ClientError.ERR.BAD_REQUEST and (
            exc.cause is None or "rp id" in str(exc.cause).lower()
        ):
            return "SecurityError"
        return _CLIENT_ERROR_NAMES.get(exc.code, "UnknownError")

    # Builtin errors such as ImportError use ``name`` for something else.
    explicit: Any = None if type(exc).__module__ == "builtins" else getattr(exc, "name", None)
    if isinstance(explicit, str) and explicit:
        return explicit
    return type(exc).__name__


def _failure_message(exc: BaseException) -> str:
    if isinstance(exc, ClientError):
        return repr(exc)
    return str(exc).strip()


def classify(exc: BaseException, *, operation: Optional[str] = None) -> Classification:
    """Map a raw failure to a user-facing category; first match wins."""

    if isinstance(exc, CeremonyError):
        return Classification(exc.category, exc.message)

    name = failure_name(exc, operation=operation)
    for needle, category in _NAME_RULES:
        if needle in name:
            return Classification(category, DEFAULT_MESSAGES[category])

    message = _failure_message(exc)
    lowered = message.lower()
    for needle, category in _MESSAGE_RULES:
        if needle in lowered:
            return Classification(category, DEFAULT_MESSAGES[category])

    return Classification(FailureCategory.UNKNOWN, message or DEFAULT_MESSAGES[FailureCategory.UNKNOWN])
