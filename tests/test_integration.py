"""End-to-end ceremonies against the in-process service."""
import hashlib

import cbor2
import pytest

from devicebound.ceremony import CeremonyState
from devicebound.codec import decode
from devicebound.errors import CeremonyError, FailureCategory

EMAIL = "alice@example.com"


def test_register_then_login(service, authenticator, make_orchestrator):
    orchestrator = make_orchestrator(authenticator)

    registered = orchestrator.register(EMAIL)
    assert registered.succeeded
    assert authenticator.calls == ["create"]

    finish = service.recorded[-1]
    assert finish.path == "/webauthn/register/finish"
    assert finish.fingerprint == registered.fingerprint
    assert finish.body["fpVisitorId"] == registered.fingerprint
    attestation = cbor2.loads(decode(finish.body["attestationResponse"]["response"]["attestationObject"]))
    assert attestation["fmt"] == "none"
    assert len(service.accounts[EMAIL].credentials) == 1

    logged_in = make_orchestrator(authenticator).login(EMAIL)
    assert logged_in.succeeded
    assert logged_in.verified
    assert service.paths()[-2:] == ["/webauthn/login/start", "/webauthn/login/finish"]


def test_login_from_another_device_is_not_verified(service, authenticator, make_orchestrator):
    make_orchestrator(authenticator).register(EMAIL)

    orchestrator = make_orchestrator(authenticator)
    outcome = orchestrator.login(EMAIL, fingerprint="fp_deadbeef")

    assert outcome.state is CeremonyState.REJECTED
    assert outcome.category == FailureCategory.SERVER_REJECTED
    assert outcome.message == "This passkey is bound to another device."
    assert not orchestrator.session.state.authenticated


def test_duplicate_registration_is_excluded(service, authenticator, make_orchestrator):
    make_orchestrator(authenticator).register(EMAIL)

    with pytest.raises(CeremonyError) as excinfo:
        make_orchestrator(authenticator).register(EMAIL)

    assert excinfo.value.category == FailureCategory.CREDENTIAL_ALREADY_EXISTS
    assert service.paths().count("/webauthn/register/finish") == 1


def test_cancelled_login(service, authenticator, make_orchestrator):
    make_orchestrator(authenticator).register(EMAIL)
    authenticator.cancel = True

    with pytest.raises(CeremonyError) as excinfo:
        make_orchestrator(authenticator).login(EMAIL)

    assert excinfo.value.category == FailureCategory.USER_CANCELLED_OR_DENIED
    assert "/webauthn/login/finish" not in service.paths()


def test_login_without_registration(service, authenticator, make_orchestrator):
    with pytest.raises(CeremonyError) as excinfo:
        make_orchestrator(authenticator).login(EMAIL)

    assert excinfo.value.category == FailureCategory.SERVER_REJECTED
    assert excinfo.value.invocation.history == [
        CeremonyState.IDLE,
        CeremonyState.AWAITING_OPTIONS,
        CeremonyState.REJECTED,
    ]
    assert authenticator.calls == []


def test_insecure_origin_never_reaches_service(service, authenticator, make_orchestrator):
    with pytest.raises(CeremonyError) as excinfo:
        make_orchestrator(authenticator, origin="http://example.com").register(EMAIL)

    assert excinfo.value.category == FailureCategory.INSECURE_CONTEXT
    assert service.recorded == []


def test_password_account_flow(service, make_orchestrator):
    orchestrator = make_orchestrator()

    assert orchestrator.password_register(EMAIL, "correct horse").succeeded
    outcome = orchestrator.password_login(EMAIL, "correct horse")

    expected_hash = hashlib.sha256(outcome.fingerprint.encode("utf-8")).hexdigest()
    assert outcome.device_id_hash == expected_hash
    assert orchestrator.session.state.device_id_hash == expected_hash

    profile = orchestrator.current_user()
    assert profile.email == EMAIL
    assert profile.device_id_hash == expected_hash

    orchestrator.logout()
    assert not orchestrator.session.state.authenticated
    with pytest.raises(CeremonyError) as excinfo:
        orchestrator.current_user()
    assert excinfo.value.category == FailureCategory.SERVER_REJECTED


def test_wrong_password(service, make_orchestrator):
    orchestrator = make_orchestrator()
    orchestrator.password_register(EMAIL, "correct horse")

    with pytest.raises(CeremonyError) as excinfo:
        orchestrator.password_login(EMAIL, "battery staple")

    assert excinfo.value.message == "Invalid credentials"
    assert not orchestrator.session.state.authenticated
