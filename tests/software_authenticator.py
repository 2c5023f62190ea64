"""Software WebAuthn authenticator used in place of hardware in tests.

Produces real ``fido2`` registration and assertion responses with ES256 keys
and ``none`` attestation, so the finish endpoints of the fake service can
check them the way a real verifier would.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from urllib.parse import urlparse

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from fido2.cose import ES256
from fido2.utils import sha256
from fido2.webauthn import (
    Aaguid,
    AttestationObject,
    AttestedCredentialData,
    AuthenticationResponse,
    AuthenticatorAssertionResponse,
    AuthenticatorAttachment,
    AuthenticatorAttestationResponse,
    AuthenticatorData,
    CollectedClientData,
    RegistrationResponse,
)


class NotAllowedError(Exception):
    """Raised when the simulated user dismisses the prompt."""


class InvalidStateError(Exception):
    """Raised when an excluded credential is already on the authenticator."""


@dataclass
class StoredCredential:
    credential_id: bytes
    private_key: ec.EllipticCurvePrivateKey
    rp_id: str
    user_handle: bytes
    sign_count: int = 0


@dataclass
class _Selection:
    responses: List[AuthenticationResponse]

    def get_response(self, index: int) -> AuthenticationResponse:
        return self.responses[index]


@dataclass
class SoftwareAuthenticator:
    origin: str
    credentials: Dict[bytes, StoredCredential] = field(default_factory=dict)
    cancel: bool = False
    calls: List[str] = field(default_factory=list)

    def _rp_id(self, explicit: Optional[str]) -> str:
        return explicit or urlparse(self.origin).hostname or ""

    def make_credential(self, options) -> RegistrationResponse:
        self.calls.append("create")
        if self.cancel:
            raise NotAllowedError("The operation either timed out or was not allowed.")

        rp_id = self._rp_id(options.rp.id)
        for descriptor in options.exclude_credentials or []:
            if descriptor.id in self.credentials:
                raise InvalidStateError("The authenticator contains one of the excluded credentials.")

        private_key = ec.generate_private_key(ec.SECP256R1())
        credential_id = os.urandom(32)
        self.credentials[credential_id] = StoredCredential(
            credential_id=credential_id,
            private_key=private_key,
            rp_id=rp_id,
            user_handle=bytes(options.user.id),
        )

        credential_data = AttestedCredentialData.create(
            Aaguid.NONE,
            credential_id,
            ES256.from_cryptography_key(private_key.public_key()),
        )
        auth_data = AuthenticatorData.create(
            sha256(rp_id.encode("utf-8")),
            AuthenticatorData.FLAG.UP | AuthenticatorData.FLAG.UV | AuthenticatorData.FLAG.AT,
            counter=0,
            credential_data=credential_data,
        )
        client_data = CollectedClientData.create(
            CollectedClientData.TYPE.CREATE,
            options.challenge,
            self.origin,
        )
        return RegistrationResponse(
            raw_id=credential_id,
            response=AuthenticatorAttestationResponse(
                client_data=client_data,
                attestation_object=AttestationObject.create("none", auth_data, {}),
            ),
            authenticator_attachment=AuthenticatorAttachment.PLATFORM,
        )

    def get_assertion(self, options) -> _Selection:
        self.calls.append("get")
        if self.cancel:
            raise NotAllowedError("The operation either timed out or was not allowed.")

        rp_id = self._rp_id(options.rp_id)
        allowed = [descriptor.id for descriptor in options.allow_credentials or []]
        if allowed:
            candidates = [self.credentials[cid] for cid in allowed if cid in self.credentials]
        else:
            candidates = [cred for cred in self.credentials.values() if cred.rp_id == rp_id]
        if not candidates:
            raise NotAllowedError("No matching credential found for assertion")

        responses = []
        for stored in candidates:
            stored.sign_count += 1
            auth_data = AuthenticatorData.create(
                sha256(rp_id.encode("utf-8")),
                AuthenticatorData.FLAG.UP | AuthenticatorData.FLAG.UV,
                counter=stored.sign_count,
            )
            client_data = CollectedClientData.create(
                CollectedClientData.TYPE.GET,
                options.challenge,
                self.origin,
            )
            signature = stored.private_key.sign(
                bytes(auth_data) + client_data.hash,
                ec.ECDSA(hashes.SHA256()),
            )
            responses.append(
                AuthenticationResponse(
                    raw_id=stored.credential_id,
                    response=AuthenticatorAssertionResponse(
                        client_data=client_data,
                        authenticator_data=auth_data,
                        signature=signature,
                        user_handle=stored.user_handle,
                    ),
                    authenticator_attachment=AuthenticatorAttachment.PLATFORM,
                )
            )
        return _Selection(responses)
