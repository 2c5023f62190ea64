"""JSON-over-HTTP adapter for the remote verification service."""
from __future__ import annotations

import http.cookiejar
import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Dict, Mapping, Optional

from .errors import ServerRejectedError, TransportError

__all__ = [
    "FINGERPRINT_HEADER",
    "ServiceTransport",
]


LOGGER = logging.getLogger("devicebound.transport")

FINGERPRINT_HEADER = "x-fp-visitor-id"

REGISTER_START_PATH = "/webauthn/register/start"
REGISTER_FINISH_PATH = "/webauthn/register/finish"
LOGIN_START_PATH = "/webauthn/login/start"
LOGIN_FINISH_PATH = "/webauthn/login/finish"
PASSWORD_LOGIN_PATH = "/auth/login"
PASSWORD_REGISTER_PATH = "/auth/register"
PROFILE_PATH = "/auth/me"
LOGOUT_PATH = "/auth/logout"


def _error_message(body: bytes) -> Optional[str]:
    if not body:
        return None
    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    if isinstance(payload, Mapping):
        for key in ("message", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None


class ServiceTransport:
    """Issues the ceremony calls against ``base_url``.

    Cookies set by the service are kept in a per-transport jar and sent on
    every later call, so one transport corresponds to one browser session.
    ``timeout`` defaults to ``None``: waiting is left to the network stack.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: Optional[float] = None,
        opener: Optional[urllib.request.OpenerDirector] = None,
        cookie_jar: Optional[http.cookiejar.CookieJar] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.cookie_jar = cookie_jar if cookie_jar is not None else http.cookiejar.CookieJar()
        self._opener = opener or urllib.request.build_opener(
            urllib.request.HTTPCookieProcessor(self.cookie_jar)
        )

    def _url(self, path: str) -> str:
        return urllib.parse.urljoin(self.base_url + "/", path.lstrip("/"))

    def _request(
        self,
        method: str,
        path: str,
        body: Optional[Mapping[str, Any]] = None,
        *,
        fingerprint: Optional[str] = None,
    ) -> Any:
        headers: Dict[str, str] = {"Accept": "application/json"}
        data: Optional[bytes] = None
        if body is not None:
            data = json.dumps(body).encode("utf-8")
            headers["Content-Type"] = "application/json"
        if fingerprint is not None:
            headers[FINGERPRINT_HEADER] = fingerprint

        request = urllib.request.Request(self._url(path), data=data, headers=headers, method=method)
        LOGGER.debug("%s %s", method, path)
        try:
            with self._opener.open(request, timeout=self.timeout) as response:
                raw = response.read()
        except urllib.error.HTTPError as exc:
            try:
                error_body = exc.read() or b""
            except OSError:
                error_body = b""
            message = _error_message(error_body)
            LOGGER.info("%s %s rejected with HTTP %s.", method, path, exc.code)
            raise ServerRejectedError(message, status_code=exc.code) from exc
        except urllib.error.URLError as exc:
            reason = getattr(exc, "reason", exc)
            raise TransportError(f"Unable to reach the service: {reason}") from exc
        except OSError as exc:
            raise TransportError(f"Unable to reach the service: {exc}") from exc

        if not raw:
            return {}
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise TransportError(f"{path} returned a non-JSON response.") from exc

    def post(self, path: str, body: Mapping[str, Any], *, fingerprint: Optional[str] = None) -> Any:
        return self._request("POST", path, body, fingerprint=fingerprint)

    def get(self, path: str) -> Any:
        return self._request("GET", path)

    def register_start(self, email: str, fingerprint: str) -> Any:
        return self.post(REGISTER_START_PATH, {"email": email}, fingerprint=fingerprint)

    def register_finish(self, email: str, attestation_response: Mapping[str, Any], fingerprint: str) -> Any:
        body = {
            "email": email,
            "attestationResponse": attestation_response,
            "fpVisitorId": fingerprint,
        }
        return self.post(REGISTER_FINISH_PATH, body, fingerprint=fingerprint)

    def login_start(self, email: str, fingerprint: str) -> Any:
        return self.post(LOGIN_START_PATH, {"email": email}, fingerprint=fingerprint)

    def login_finish(self, email: str, assertion_response: Mapping[str, Any], fingerprint: str) -> Any:
        body = {
            "email": email,
            "assertionResponse": assertion_response,
            "fpVisitorId": fingerprint,
        }
        return self.post(LOGIN_FINISH_PATH, body, fingerprint=fingerprint)

    def password_login(self, email: str, password: str, fingerprint: str) -> Any:
        return self.post(PASSWORD_LOGIN_PATH, {"email": email, "password": password}, fingerprint=fingerprint)

    def password_register(self, email: str, password: str) -> Any:
        return self.post(PASSWORD_REGISTER_PATH, {"email": email, "password": password})

    def profile(self) -> Any:
        return self.get(PROFILE_PATH)

    def logout(self) -> Any:
        return self.post(LOGOUT_PATH, {})
