"""
tests/test_policy.py -- Truth table for auth.policy.can_access().

Admins may do everything. Users may view and download anything, and may do
owner actions only on resources they own. Unknown roles and missing claims
are denied everything.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from auth.models import Role, SessionClaims
from auth.policy import MEMBER_ACTIONS, OWNER_ACTIONS, Action, can_access

_T = datetime(2024, 1, 1, tzinfo=timezone.utc)
ADMIN = SessionClaims(user_id=1, username="root", role=Role.ADMIN, issued_at=_T)
ALICE = SessionClaims(user_id=2, username="alice", role=Role.USER, issued_at=_T)
MALLORY = SessionClaims(user_id=3, username="mallory", role="superuser", issued_at=_T)


def test_every_action_is_classified_or_admin_only():
    admin_only = set(Action) - OWNER_ACTIONS - MEMBER_ACTIONS
    assert admin_only == {Action.MANAGE_USERS}


@pytest.mark.parametrize("action", list(Action))
@pytest.mark.parametrize("owner", [None, 1, 2, 99])
def test_admin_can_do_everything(action, owner):
    assert can_access(ADMIN, action, owner)


@pytest.mark.parametrize("action", sorted(MEMBER_ACTIONS))
@pytest.mark.parametrize("owner", [None, 2, 99])
def test_user_can_view_and_download_anything(action, owner):
    assert can_access(ALICE, action, owner)


@pytest.mark.parametrize("action", sorted(OWNER_ACTIONS))
def test_user_owner_actions_on_own_resource(action):
    assert can_access(ALICE, action, resource_owner_id=2)


@pytest.mark.parametrize("action", sorted(OWNER_ACTIONS))
@pytest.mark.parametrize("owner", [None, 1, 99])
def test_user_owner_actions_on_other_resource_denied(action, owner):
    assert not can_access(ALICE, action, owner)


def test_user_cannot_manage_users():
    assert not can_access(ALICE, Action.MANAGE_USERS)
    assert not can_access(ALICE, Action.MANAGE_USERS, resource_owner_id=2)


@pytest.mark.parametrize("action", list(Action))
def test_unknown_role_denied(action):
    assert not can_access(MALLORY, action, resource_owner_id=3)


@pytest.mark.parametrize("action", list(Action))
def test_no_claims_denied(action):
    assert not can_access(None, action, resource_owner_id=2)
