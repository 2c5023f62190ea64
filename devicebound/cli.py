"""Command line entry point for the device-bound ceremonies."""
from __future__ import annotations

import argparse
import dataclasses
import getpass
import http.cookiejar
import logging
import os
import sys
from typing import Any, Callable, List, Optional, TextIO

from .authenticator import discover_platform
from .ceremony import CeremonyOrchestrator, CeremonyOutcome
from .config import ClientConfig, load_config
from .errors import CeremonyError
from .fingerprint import FINGERPRINT_SCHEME, HostEnvironment, attribute_vector
from .transport import ServiceTransport

__all__ = ["build_orchestrator", "main"]


LOGGER = logging.getLogger("devicebound.cli")


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _load_cookie_jar(path: Optional[str]) -> Optional[http.cookiejar.FileCookieJar]:
    if not path:
        return None
    jar = http.cookiejar.MozillaCookieJar(path)
    if os.path.exists(path):
        try:
            jar.load(ignore_discard=True, ignore_expires=True)
        except (OSError, http.cookiejar.LoadError):
            LOGGER.warning("Ignoring unreadable cookie file %s.", path)
    return jar


def build_orchestrator(
    config: ClientConfig,
    *,
    platform: Optional[Any] = None,
    discover: bool = True,
) -> CeremonyOrchestrator:
    """Wire transport, host environment and authenticator from ``config``."""

    transport = ServiceTransport(
        config.api_base,
        timeout=config.timeout,
        cookie_jar=_load_cookie_jar(config.cookie_file),
    )
    environment = HostEnvironment(
        screen=config.screen,
        max_touch_points=config.max_touch_points,
        probe_screen=config.probe_screen,
    )
    if platform is None and discover:
        try:
            platform = discover_platform(config.origin)
        except OSError as exc:
            LOGGER.warning("Unable to enumerate authenticators: %s", exc)
    return CeremonyOrchestrator(
        transport,
        platform,
        origin=config.origin,
        environment=environment,
    )


def _save_cookies(orchestrator: CeremonyOrchestrator) -> None:
    jar = orchestrator.transport.cookie_jar
    if isinstance(jar, http.cookiejar.FileCookieJar):
        jar.save(ignore_discard=True, ignore_expires=True)


def _report(outcome: CeremonyOutcome, success_message: str, out: TextIO) -> int:
    if outcome.succeeded:
        print(success_message, file=out)
        return 0
    print(outcome.message or "Ceremony rejected.", file=out)
    return 1


def _password(args: argparse.Namespace) -> str:
    return args.password if args.password is not None else getpass.getpass("Password: ")


def _cmd_fingerprint(args: argparse.Namespace, orchestrator: CeremonyOrchestrator, out: TextIO) -> int:
    environment = orchestrator.environment or HostEnvironment()
    if args.verbose:
        snapshot = environment.snapshot()
        for name, value in dataclasses.asdict(snapshot).items():
            print(f"{name}: {value}", file=out)
        print(f"vector: {'|'.join(attribute_vector(snapshot))}", file=out)
        print(f"scheme: {FINGERPRINT_SCHEME}", file=out)
    print(orchestrator.fingerprint(), file=out)
    return 0


def _cmd_register(args: argparse.Namespace, orchestrator: CeremonyOrchestrator, out: TextIO) -> int:
    return _report(orchestrator.register(args.email), "Device registered. Now login.", out)


def _cmd_login(args: argparse.Namespace, orchestrator: CeremonyOrchestrator, out: TextIO) -> int:
    return _report(orchestrator.login(args.email), "Logged in", out)


def _cmd_password_login(args: argparse.Namespace, orchestrator: CeremonyOrchestrator, out: TextIO) -> int:
    outcome = orchestrator.password_login(args.email, _password(args))
    code = _report(outcome, "Logged in", out)
    if outcome.device_id_hash:
        print(f"Device ID: {outcome.device_id_hash}", file=out)
    return code


def _cmd_password_register(args: argparse.Namespace, orchestrator: CeremonyOrchestrator, out: TextIO) -> int:
    outcome = orchestrator.password_register(args.email, _password(args))
    return _report(outcome, "Registered. Now login.", out)


def _cmd_whoami(args: argparse.Namespace, orchestrator: CeremonyOrchestrator, out: TextIO) -> int:
    profile = orchestrator.current_user()
    print(f"Email: {profile.email}", file=out)
    if profile.device_id_hash:
        print(f"Device ID (SHA-256): {profile.device_id_hash}", file=out)
    if profile.registered_at is not None:
        print(f"Registered At: {profile.registered_at.isoformat()}", file=out)
    return 0


def _cmd_logout(args: argparse.Namespace, orchestrator: CeremonyOrchestrator, out: TextIO) -> int:
    orchestrator.logout()
    print("Logged out", file=out)
    return 0


_Command = Callable[[argparse.Namespace, CeremonyOrchestrator, TextIO], int]

_NEEDS_AUTHENTICATOR = {"register", "login"}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="devicebound",
        description="Device-bound passkey registration and login",
    )
    parser.add_argument("--api-base", help="Base URL of the verification service")
    parser.add_argument("--origin", help="Origin reported in client data")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    fingerprint_parser = subparsers.add_parser("fingerprint", help="Print this device's identity")
    fingerprint_parser.add_argument("--verbose", action="store_true", help="Show the attribute vector")
    fingerprint_parser.set_defaults(handler=_cmd_fingerprint)

    for name, handler, help_text in (
        ("register", _cmd_register, "Register a passkey bound to this device"),
        ("login", _cmd_login, "Log in with a passkey from this device"),
    ):
        command = subparsers.add_parser(name, help=help_text)
        command.add_argument("--email", required=True)
        command.set_defaults(handler=handler)

    for name, handler, help_text in (
        ("password-login", _cmd_password_login, "Log in with email and password"),
        ("password-register", _cmd_password_register, "Create a password account"),
    ):
        command = subparsers.add_parser(name, help=help_text)
        command.add_argument("--email", required=True)
        command.add_argument("--password", help="Prompted for when omitted")
        command.set_defaults(handler=handler)

    whoami_parser = subparsers.add_parser("whoami", help="Show the signed-in account")
    whoami_parser.set_defaults(handler=_cmd_whoami)
    logout_parser = subparsers.add_parser("logout", help="End the session")
    logout_parser.set_defaults(handler=_cmd_logout)
    return parser


def main(
    argv: Optional[List[str]] = None,
    *,
    config: Optional[ClientConfig] = None,
    platform: Optional[Any] = None,
    out: Optional[TextIO] = None,
) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    out = out or sys.stdout

    config = config or load_config()
    overrides = {}
    if args.api_base:
        overrides["api_base"] = args.api_base
    if args.origin:
        overrides["origin"] = args.origin
    if args.debug:
        overrides["debug"] = True
    if overrides:
        config = dataclasses.replace(config, **overrides)

    _configure_logging(config.debug)
    orchestrator = build_orchestrator(
        config,
        platform=platform,
        discover=args.command in _NEEDS_AUTHENTICATOR,
    )

    handler: _Command = args.handler
    try:
        return handler(args, orchestrator, out)
    except CeremonyError as exc:
        print(exc.message, file=out)
        return 1
    finally:
        _save_cookies(orchestrator)


if __name__ == "__main__":  # pragma: no cover - convenience entry point.
    sys.exit(main())
