"""
Command line entry point.

    python -m elara serve [--host HOST] [--port PORT]
    python -m elara login USERNAME
    python -m elara register EMAIL USERNAME
    python -m elara logout
    python -m elara whoami
"""
from __future__ import annotations

import argparse
import getpass
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .backend import BackendClient
from .session import SessionStore
from .settings import SettingsManager, data_dir

SESSION_FILE = "session.json"


def _store(root: Path) -> SessionStore:
    settings = SettingsManager(root / "settings.json")
    backend = BackendClient(
        settings.backend_url,
        timeout=settings.settings["backend"].get("timeout_seconds", 30),
    )
    return SessionStore(root / SESSION_FILE, backend)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="elara", description="Elara herbal remedy chat.")
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the web app.")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=3000)

    login = commands.add_parser("login", help="Log in and remember the token.")
    login.add_argument("username")

    register = commands.add_parser("register", help="Create an account.")
    register.add_argument("email")
    register.add_argument("username")

    commands.add_parser("logout", help="Forget the stored token.")
    commands.add_parser("whoami", help="Show the stored identity.")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s | %(name)s | %(message)s")
    root = data_dir()

    if args.command == "serve":
        import uvicorn

        uvicorn.run("elara.main:app", host=args.host, port=args.port)
        return 0

    store = _store(root)
    if args.command == "login":
        password = getpass.getpass("Password: ")
        if not store.login(args.username, password):
            print("Invalid username or password", file=sys.stderr)
            return 1
        print(f"Logged in as {args.username}")
    elif args.command == "register":
        password = getpass.getpass("Password: ")
        if len(password) < 6:
            print("Password must be at least 6 characters long", file=sys.stderr)
            return 1
        if getpass.getpass("Confirm password: ") != password:
            print("Passwords do not match", file=sys.stderr)
            return 1
        if not store.register(args.email, args.username, password):
            print("Registration failed", file=sys.stderr)
            return 1
        print("Please check your email for verification instructions")
    elif args.command == "logout":
        store.logout()
        print("Logged out")
    elif args.command == "whoami":
        session = store.session
        if not session.is_authenticated:
            print("Not logged in")
            return 1
        print(session.username)
    return 0


if __name__ == "__main__":
    sys.exit(main())
