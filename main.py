#!/usr/bin/env python3
"""
DigestGate -- HTTP Digest (RFC 2617) authentication service.

Usage:
  python main.py add-account admin --role admin
  python main.py add-account user --role user --secret userPassword
  python main.py list-accounts
  python main.py deactivate user
  python main.py probe http://localhost:8000/api/v1/digest-auth --username admin --password adminPassword
  python main.py serve --port 8000

Environment variables:
  DIGEST_AUTH_SECRET  Key used to sign nonces (required unless DEBUG=true).
  DIGEST_REALM        Protection space advertised in challenges.
  AUTH_DB_URL         SQLAlchemy URL of the account database.
"""

import argparse
import getpass
import sys

import requests
from requests.auth import HTTPDigestAuth
from sqlalchemy.exc import IntegrityError

from auth.models import Account
from auth.store import DEFAULT_DB_URL, AccountStore


def _open_store(db_url: str | None) -> AccountStore:
    if db_url is None:
        # Settings load only when no explicit URL is given.
        from core.config import get_settings

        db_url = get_settings().auth_db_url or DEFAULT_DB_URL
    return AccountStore(db_url=db_url)


def cmd_add_account(args: argparse.Namespace) -> int:
    secret = args.secret
    if secret is None:
        secret = getpass.getpass(f"Secret for {args.username}: ")
        if secret != getpass.getpass("Repeat secret: "):
            print("  [!] Secrets do not match.")
            return 1
    if not secret:
        print("  [!] Secret must not be empty.")
        return 1

    store = _open_store(args.db_url)
    try:
        store.create_account(Account(username=args.username, secret=secret, roles=set(args.role or [])))
    except IntegrityError:
        print(f"  [!] Account '{args.username}' already exists.")
        return 1
    finally:
        store.close()
    print(f"  Account '{args.username}' created.")
    return 0


def cmd_list_accounts(args: argparse.Namespace) -> int:
    store = _open_store(args.db_url)
    try:
        accounts = store.list_accounts()
    finally:
        store.close()
    if not accounts:
        print("  No accounts.")
        return 0
    for account in accounts:
        state = "active" if account.is_active else "inactive"
        roles = ",".join(sorted(account.roles)) or "-"
        print(f"  {account.username:<24} {roles:<24} {state}")
    return 0


def cmd_deactivate(args: argparse.Namespace) -> int:
    store = _open_store(args.db_url)
    try:
        found = store.set_active(args.username, False)
    finally:
        store.close()
    if not found:
        print(f"  [!] No account named '{args.username}'.")
        return 1
    print(f"  Account '{args.username}' deactivated.")
    return 0


def cmd_probe(args: argparse.Namespace) -> int:
    """Run a full challenge/response handshake against a running server."""
    password = args.password if args.password is not None else getpass.getpass("Password: ")
    try:
        resp = requests.get(args.url, auth=HTTPDigestAuth(args.username, password), timeout=args.timeout)
    except requests.RequestException as e:
        print(f"  [!] Request failed: {e}")
        return 2
    print(f"  HTTP {resp.status_code}")
    challenge = resp.headers.get("WWW-Authenticate")
    if challenge:
        print(f"  WWW-Authenticate: {challenge}")
    print(resp.text)
    return 0 if resp.ok else 1


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="digestgate",
        description="Manage digest accounts and run the DigestGate API.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--db-url",
        metavar="URL",
        default=None,
        help="SQLAlchemy URL of the account database (default: AUTH_DB_URL or auth/digestgate_auth.db)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    add = sub.add_parser("add-account", help="Create a digest account")
    add.add_argument("username")
    add.add_argument("--role", action="append", metavar="ROLE", help="Role to grant (repeatable)")
    add.add_argument("--secret", default=None, help="Account secret (prompted if omitted)")
    add.set_defaults(func=cmd_add_account)

    lst = sub.add_parser("list-accounts", help="List digest accounts")
    lst.set_defaults(func=cmd_list_accounts)

    deact = sub.add_parser("deactivate", help="Disable an account without deleting it")
    deact.add_argument("username")
    deact.set_defaults(func=cmd_deactivate)

    probe = sub.add_parser("probe", help="Authenticate against a running server")
    probe.add_argument("url")
    probe.add_argument("--username", required=True)
    probe.add_argument("--password", default=None, help="Prompted if omitted")
    probe.add_argument("--timeout", type=float, default=10.0)
    probe.set_defaults(func=cmd_probe)

    serve = sub.add_parser("serve", help="Run the API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true")
    serve.set_defaults(func=cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
