#!/usr/bin/env python3
"""
Lectoria -- digital library with owner-controlled public share links.

Usage:
  python main.py create-user --username alice --email alice@example.com
  python main.py create-user --username root --email root@example.com --role admin
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8000 --reload

The password is prompted for (twice) unless --password is given. Passing it on
the command line leaves it in shell history; prefer the prompt.

Environment variables (or .env):
  SECRET_KEY    Session signing key, at least 32 characters. Required unless DEBUG=true.
  DATABASE_URL  SQLAlchemy URL. Defaults to sqlite:///lectoria.db in the project root.
"""

import argparse
import getpass
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.models import Role, User
from auth.passwords import check_password_strength, hash_password
from auth.store import UserStore


def _prompt_password() -> str:
    """Prompt until the password is strong and typed the same way twice."""
    while True:
        password = getpass.getpass("  Password: ")
        problems = check_password_strength(password)
        if problems:
            print("  [!] Password must contain " + ", ".join(problems) + ".")
            continue
        if getpass.getpass("  Repeat password: ") != password:
            print("  [!] Passwords do not match.")
            continue
        return password


def create_user(args: argparse.Namespace) -> int:
    password: Optional[str] = args.password
    if password is None:
        password = _prompt_password()
    else:
        problems = check_password_strength(password)
        if problems:
            print("  [!] Password must contain " + ", ".join(problems) + ".")
            return 1

    user = User(
        username=args.username,
        email=args.email,
        role=Role(args.role),
        hashed_password=hash_password(password),
    )
    store = UserStore()
    try:
        user_id = store.create_user(user)
    except IntegrityError:
        print(f"  [!] A user named '{args.username}' or with that email already exists.")
        return 1
    finally:
        store.close()
    print(f"  Created {user.role.value} '{user.username}' (id {user_id}).")
    return 0


def serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="lectoria",
        description="Lectoria -- digital library with expiring public share links.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_user = sub.add_parser("create-user", help="Create a user account")
    p_user.add_argument("--username", required=True)
    p_user.add_argument("--email", required=True)
    p_user.add_argument("--role", choices=[r.value for r in Role], default=Role.USER.value)
    p_user.add_argument("--password", help="Skip the prompt (ends up in shell history)")
    p_user.set_defaults(func=create_user)

    p_serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8000)
    p_serve.add_argument("--reload", action="store_true")
    p_serve.set_defaults(func=serve)

    args = parser.parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
