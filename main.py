#!/usr/bin/env python3
"""
identity-admin -- Command-line client for the identity service.

Usage:
  identity-admin register "Ada Lovelace" ada@example.com s3cret
  identity-admin authenticate ada@example.com s3cret
  identity-admin authenticate ada@example.com s3cret --file ~/.identity/token
  identity-admin --host http://localhost:8000 register ...

Environment variables:
  IDENTITY_HOST   Base URL of the service when --host is not given
                  (default: http://localhost:8000).

The first account ever registered becomes ADMIN. A token written with --file
is created with mode 0600; treat it like a password.
"""

import argparse
import os
import sys
from pathlib import Path
from typing import Any, Optional

import requests

DEFAULT_HOST = "http://localhost:8000"
API_PREFIX = "/api/v1"

# The service is a known endpoint; 3 hops is generous and keeps a
# misconfigured proxy from bouncing credentials around.
_session = requests.Session()
_session.max_redirects = 3

_TIMEOUT_SECONDS = 10


class CommandError(Exception):
    """A command failed; the message is printed and the exit status is 1."""


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


def _url(host: str, path: str) -> str:
    return host.rstrip("/") + API_PREFIX + path


def _error_message(resp: requests.Response) -> str:
    """Pull the message out of the service's error envelope, if there is one."""
    try:
        body: Any = resp.json()
    except ValueError:
        return f"{resp.status_code} {resp.reason}"
    error = body.get("error") if isinstance(body, dict) else None
    if not isinstance(error, dict):
        return f"{resp.status_code} {resp.reason}"
    message = error.get("message") or resp.reason
    fields = error.get("fields")
    if fields:
        message += ": " + "; ".join(fields[k] for k in sorted(fields))
    return message


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def register(host: str, name: str, email: str, password: str) -> dict:
    """Self-register an account and return the created user as JSON."""
    url = _url(host, "/users/register")
    payload = {"name": name, "email": email, "password": password, "password_confirm": password}
    try:
        resp = _session.post(url, json=payload, timeout=_TIMEOUT_SECONDS)
    except requests.RequestException as e:
        raise CommandError(f"sending request to {url!r}: {e}") from e
    if resp.status_code != 201:
        raise CommandError(f"request failed: {_error_message(resp)}")
    return resp.json()


def authenticate(host: str, email: str, password: str) -> str:
    """Exchange email/password for a bearer token."""
    url = _url(host, "/users/token")
    try:
        resp = _session.get(url, auth=(email, password), timeout=_TIMEOUT_SECONDS)
    except requests.RequestException as e:
        raise CommandError(f"sending request to {url!r}: {e}") from e
    if resp.status_code != 200:
        raise CommandError(f"request failed: {_error_message(resp)}")
    token = resp.json().get("token")
    if not token:
        raise CommandError("response did not contain a token")
    return token


def write_token(path: str, token: str) -> Path:
    """Write token to path with owner-only permissions, creating parent dirs."""
    token_path = Path(path).expanduser()
    token_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    fd = os.open(token_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as fh:
        fh.write(token)
    # O_CREAT's mode is ignored for an existing file.
    os.chmod(token_path, 0o600)
    return token_path


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="identity-admin",
        description="Register accounts and obtain tokens from the identity service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  identity-admin register "Ada Lovelace" ada@example.com s3cret
  identity-admin authenticate ada@example.com s3cret
  identity-admin authenticate ada@example.com s3cret --file ~/.identity/token
        """,
    )
    parser.add_argument(
        "--host",
        default=os.environ.get("IDENTITY_HOST") or DEFAULT_HOST,
        metavar="URL",
        help=f"Base URL of the identity service (default: $IDENTITY_HOST or {DEFAULT_HOST})",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    reg = sub.add_parser("register", help="Self-register a new account")
    reg.add_argument("name", help="Display name")
    reg.add_argument("email", help="Email address (login identifier)")
    reg.add_argument("password", help="Password")

    auth = sub.add_parser("authenticate", help="Obtain a bearer token")
    auth.add_argument("email", help="Email address")
    auth.add_argument("password", help="Password")
    auth.add_argument(
        "--file",
        metavar="PATH",
        help="Write the token to PATH (mode 0600) instead of printing it",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 2

    try:
        if args.command == "register":
            user = register(args.host, args.name, args.email, args.password)
            roles = ", ".join(user.get("roles", []))
            print(f"new user registered with id {user.get('id')!r} and roles {roles}")
        else:
            token = authenticate(args.host, args.email, args.password)
            if args.file:
                path = write_token(args.file, token)
                print(f"user has authenticated successfully, token is stored in: {str(path)!r}")
            else:
                print(f"user has authenticated successfully, token: {token!r}")
    except CommandError as e:
        print(f"  [!] {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"  [!] writing token file: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
