"""Device-bound passkey ceremonies for a JSON WebAuthn service."""
from __future__ import annotations

from .ceremony import (
    CeremonyInvocation,
    CeremonyKind,
    CeremonyOrchestrator,
    CeremonyOutcome,
    CeremonyState,
    is_secure_context,
)
from .codec import CodecError, decode, encode
from .config import ClientConfig, load_config
from .errors import CeremonyError, Classification, FailureCategory, classify
from .fingerprint import EnvironmentSnapshot, HostEnvironment, derive, derive_fingerprint
from .session import SessionStore, UserProfile
from .transport import ServiceTransport

__version__ = "0.1.0"

__all__ = [
    "CeremonyError",
    "CeremonyInvocation",
    "CeremonyKind",
    "CeremonyOrchestrator",
    "CeremonyOutcome",
    "CeremonyState",
    "Classification",
    "ClientConfig",
    "CodecError",
    "EnvironmentSnapshot",
    "FailureCategory",
    "HostEnvironment",
    "ServiceTransport",
    "SessionStore",
    "UserProfile",
    "classify",
    "decode",
    "derive",
    "derive_fingerprint",
    "encode",
    "is_secure_context",
    "load_config",
]
