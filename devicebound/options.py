"""Validation of server-issued ceremony options.

Options arrive as loosely typed JSON with base64url binary fields. They are
checked and decoded here, once, into ``fido2.webauthn`` records so the rest of
the ceremony never sees optional or untyped fields.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from enum import Enum
from typing import Any, List, Optional, Type, TypeVar

from fido2.webauthn import (
    AttestationConveyancePreference,
    AuthenticatorAttachment,
    AuthenticatorSelectionCriteria,
    PublicKeyCredentialCreationOptions,
    PublicKeyCredentialDescriptor,
    PublicKeyCredentialParameters,
    PublicKeyCredentialRequestOptions,
    PublicKeyCredentialRpEntity,
    PublicKeyCredentialType,
    PublicKeyCredentialUserEntity,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from .codec import CodecError, decode
from .errors import MalformedOptionsError, MissingProtocolFieldError

__all__ = [
    "DEFAULT_ALGORITHMS",
    "parse_creation_options",
    "parse_request_options",
    "unwrap_public_key",
]


LOGGER = logging.getLogger("devicebound.options")

# ES256, RS256: the WebAuthn default when the server sends no parameters.
DEFAULT_ALGORITHMS = (-7, -257)

_E = TypeVar("_E", bound=Enum)


def unwrap_public_key(payload: Any) -> Mapping:
    """Return the options mapping, unwrapping a ``{"publicKey": ...}`` envelope."""

    if not isinstance(payload, Mapping):
        raise MalformedOptionsError("Server options must be a JSON object.")
    inner = payload.get("publicKey")
    if isinstance(inner, Mapping):
        return inner
    return payload


def _require_text(value: Any, field: str) -> str:
    if value is None or value == "":
        raise MissingProtocolFieldError(field)
    if not isinstance(value, str):
        raise MalformedOptionsError(f"'{field}' must be a string, got {type(value).__name__}.")
    return value


def _decode_field(value: str, field: str) -> bytes:
    try:
        return decode(value)
    except CodecError as exc:
        raise MalformedOptionsError(f"'{field}' is not valid base64url.") from exc


def _section(options: Mapping, key: str) -> Mapping:
    section = options.get(key)
    if section is None:
        return {}
    if not isinstance(section, Mapping):
        raise MalformedOptionsError(f"'{key}' must be an object.")
    return section


def _optional_enum(enum_cls: Type[_E], value: Any, field: str) -> Optional[_E]:
    if value is None:
        return None
    try:
        return enum_cls(value)
    except ValueError:
        # Unknown enum members are ignored, as a browser would.
        LOGGER.debug("Ignoring unknown %s value %r.", field, value)
        return None


def _optional_timeout(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedOptionsError("'timeout' must be a number of milliseconds.")
    return int(value)


def _descriptors(raw: Any, field: str) -> List[PublicKeyCredentialDescriptor]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise MalformedOptionsError(f"'{field}' must be a list.")

    descriptors: List[PublicKeyCredentialDescriptor] = []
    for index, entry in enumerate(raw):
        label = f"{field}[{index}].id"
        if not isinstance(entry, Mapping):
            raise MalformedOptionsError(f"'{field}[{index}]' must be an object.")
        credential_id = _decode_field(_require_text(entry.get("id"), label), label)
        transports = entry.get("transports")
        if transports is not None and not (
            isinstance(transports, list) and all(isinstance(item, str) for item in transports)
        ):
            raise MalformedOptionsError(f"'{field}[{index}].transports' must be a list of strings.")
        credential_type = _optional_enum(
            PublicKeyCredentialType, entry.get("type", "public-key"), f"{field}[{index}].type"
        )
        if credential_type is None:
            continue
        descriptors.append(
            PublicKeyCredentialDescriptor(
                type=credential_type,
                id=credential_id,
                transports=list(transports) if transports else None,
            )
        )
    return descriptors


def _parameters(raw: Any) -> List[PublicKeyCredentialParameters]:
    if raw is None:
        raw = [{"type": "public-key", "alg": alg} for alg in DEFAULT_ALGORITHMS]
    if not isinstance(raw, list):
        raise MalformedOptionsError("'pubKeyCredParams' must be a list.")

    parameters: List[PublicKeyCredentialParameters] = []
    for index, entry in enumerate(raw):
        if not isinstance(entry, Mapping):
            raise MalformedOptionsError(f"'pubKeyCredParams[{index}]' must be an object.")
        alg = entry.get("alg")
        if isinstance(alg, bool) or not isinstance(alg, int):
            raise MalformedOptionsError(f"'pubKeyCredParams[{index}].alg' must be an integer.")
        credential_type = _optional_enum(
            PublicKeyCredentialType, entry.get("type", "public-key"), "pubKeyCredParams.type"
        )
        if credential_type is not None:
            parameters.append(PublicKeyCredentialParameters(type=credential_type, alg=alg))
    if not parameters:
        raise MalformedOptionsError("'pubKeyCredParams' lists no supported credential type.")
    return parameters


def _selection(raw: Any) -> Optional[AuthenticatorSelectionCriteria]:
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise MalformedOptionsError("'authenticatorSelection' must be an object.")
    require_resident_key = raw.get("requireResidentKey")
    if require_resident_key is not None and not isinstance(require_resident_key, bool):
        raise MalformedOptionsError("'authenticatorSelection.requireResidentKey' must be a boolean.")
    return AuthenticatorSelectionCriteria(
        authenticator_attachment=_optional_enum(
            AuthenticatorAttachment, raw.get("authenticatorAttachment"), "authenticatorAttachment"
        ),
        resident_key=_optional_enum(ResidentKeyRequirement, raw.get("residentKey"), "residentKey"),
        user_verification=_optional_enum(
            UserVerificationRequirement, raw.get("userVerification"), "userVerification"
        ),
        require_resident_key=require_resident_key,
    )


def _extensions(raw: Any) -> Optional[Mapping]:
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise MalformedOptionsError("'extensions' must be an object.")
    return dict(raw)


def parse_creation_options(payload: Any) -> PublicKeyCredentialCreationOptions:
    """Validate and decode registration options.

    Presence of ``challenge``, ``rp.id`` and ``user.id`` is checked before
    anything is decoded, so a missing field is always reported as such.
    """

    options = unwrap_public_key(payload)
    rp = _section(options, "rp")
    user = _section(options, "user")

    challenge_text = _require_text(options.get("challenge"), "challenge")
    rp_id = _require_text(rp.get("id"), "rp.id")
    user_id_text = _require_text(user.get("id"), "user.id")

    challenge = _decode_field(challenge_text, "challenge")
    user_id = _decode_field(user_id_text, "user.id")
    if not user_id:
        raise MissingProtocolFieldError("user.id")

    try:
        return PublicKeyCredentialCreationOptions(
            rp=PublicKeyCredentialRpEntity(name=rp.get("name") or rp_id, id=rp_id),
            user=PublicKeyCredentialUserEntity(
                name=user.get("name"),
                id=user_id,
                display_name=user.get("displayName"),
            ),
            challenge=challenge,
            pub_key_cred_params=_parameters(options.get("pubKeyCredParams")),
            timeout=_optional_timeout(options.get("timeout")),
            exclude_credentials=_descriptors(options.get("excludeCredentials"), "excludeCredentials"),
            authenticator_selection=_selection(options.get("authenticatorSelection")),
            attestation=_optional_enum(
                AttestationConveyancePreference, options.get("attestation"), "attestation"
            ),
            extensions=_extensions(options.get("extensions")),
        )
    except (TypeError, ValueError) as exc:
        raise MalformedOptionsError(f"Registration options are malformed: {exc}") from exc


def parse_request_options(payload: Any) -> PublicKeyCredentialRequestOptions:
    """Validate and decode authentication options."""

    options = unwrap_public_key(payload)
    challenge = _decode_field(_require_text(options.get("challenge"), "challenge"), "challenge")

    rp_id = options.get("rpId")
    if rp_id is not None and not isinstance(rp_id, str):
        raise MalformedOptionsError("'rpId' must be a string.")

    try:
        return PublicKeyCredentialRequestOptions(
            challenge=challenge,
            timeout=_optional_timeout(options.get("timeout")),
            rp_id=rp_id or None,
            allow_credentials=_descriptors(options.get("allowCredentials"), "allowCredentials"),
            user_verification=_optional_enum(
                UserVerificationRequirement, options.get("userVerification"), "userVerification"
            ),
            extensions=_extensions(options.get("extensions")),
        )
    except (TypeError, ValueError) as exc:
        raise MalformedOptionsError(f"Authentication options are malformed: {exc}") from exc
