"""
auth/policy.py -- The authorization gate.

can_access() is the single decision function consulted by every protected
operation. It is pure and total: no I/O, no exceptions, the same answer for
the same inputs.

Truth table:

    role   | action                           | owner matches | result
    -------+----------------------------------+---------------+-------
    admin  | any                              | any           | allow
    user   | view, download                   | any           | allow
    user   | delete, edit, share_*, analytics | yes           | allow
    user   | delete, edit, share_*, analytics | no / unknown  | deny
    user   | manage_users                     | any           | deny
    other  | any                              | any           | deny

view/download are open to every authenticated user because the library is
shared between its members; ownership only restricts changes and sharing.
"""

from __future__ import annotations

from enum import Enum

from auth.models import Role, SessionClaims


class Action(str, Enum):
    VIEW = "view"
    DOWNLOAD = "download"
    DELETE = "delete"
    EDIT = "edit"
    SHARE_CREATE = "share_create"
    SHARE_LIST = "share_list"
    SHARE_REVOKE = "share_revoke"
    ANALYTICS = "analytics"
    MANAGE_USERS = "manage_users"


OWNER_ACTIONS = frozenset(
    {
        Action.DELETE,
        Action.EDIT,
        Action.SHARE_CREATE,
        Action.SHARE_LIST,
        Action.SHARE_REVOKE,
        Action.ANALYTICS,
    }
)
MEMBER_ACTIONS = frozenset({Action.VIEW, Action.DOWNLOAD})


def can_access(claims: SessionClaims | None, action: Action, resource_owner_id: int | None = None) -> bool:
    if claims is None:
        return False
    role = Role.parse(claims.role)
    if role is Role.ADMIN:
        return True
    if role is Role.USER:
        if action in MEMBER_ACTIONS:
            return True
        if action in OWNER_ACTIONS:
            return resource_owner_id is not None and claims.user_id == resource_owner_id
        return False
    return False
