"""
tests/test_cli.py -- main.py operator commands.

The CLI builds UserStore() from settings; tests point it at a temporary
SQLite file instead.
"""

from __future__ import annotations

import pytest

import main as cli
from auth.models import Role
from auth.passwords import verify_password
from auth.store import UserStore


@pytest.fixture
def db_url(tmp_path, monkeypatch):
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    monkeypatch.setattr(cli, "UserStore", lambda: UserStore(db_url=url))
    return url


def test_create_admin_with_password(db_url, capsys):
    code = cli.main(
        ["create-user", "--username", "root", "--email", "root@example.com", "--role", "admin", "--password", "R00t-pass!"]
    )
    assert code == 0
    assert "Created admin 'root'" in capsys.readouterr().out

    store = UserStore(db_url=db_url)
    user = store.get_by_username("root")
    store.close()
    assert user.role is Role.ADMIN
    assert verify_password("R00t-pass!", user.hashed_password)


def test_weak_password_refused(db_url, capsys):
    code = cli.main(["create-user", "--username", "weak", "--email", "weak@example.com", "--password", "weak"])
    assert code == 1
    assert "Password must contain" in capsys.readouterr().out


def test_duplicate_user_refused(db_url, capsys):
    args = ["create-user", "--username", "twice", "--email", "twice@example.com", "--password", "Tw1ce-pass!"]
    assert cli.main(args) == 0
    assert cli.main(args) == 1
    assert "already exists" in capsys.readouterr().out


def test_prompted_password(db_url, monkeypatch):
    answers = iter(["short", "G00d-pass!", "G00d-pass!"])
    monkeypatch.setattr(cli.getpass, "getpass", lambda prompt="": next(answers))
    assert cli.main(["create-user", "--username", "prompted", "--email", "p@example.com"]) == 0
