"""
auth/authorization.py -- Role membership capability used by the role gate.

Roles may be referred to by name ("admin") or by numeric ID everywhere.
Lookups are delegated to UserStore; this class owns the naming rules and the
error messages for misuse (unknown roles).

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from auth.models import Role
from auth.store import UserStore

logger = logging.getLogger("sessiongate.auth.authorization")


class Authorization:
    """Answers "is user X in role Y" and manages memberships."""

    def __init__(self, store: UserStore) -> None:
        self.store = store

    def in_role(self, role: str | int, user_id: int | None) -> bool:
        """Return True if user_id is a member of role.

        An anonymous caller (user_id None) is never in any role. Unknown roles
        are simply not held; they do not raise.
        """
        if user_id is None:
            return False
        return self.store.user_has_role(user_id, _normalize(role))

    def roles_for(self, user_id: int) -> list[str]:
        return [r.name for r in self.store.get_roles_for_user(user_id)]

    def create_role(self, name: str, description: str = "") -> int:
        name = name.strip()
        if not name:
            raise ValueError("role name cannot be empty")
        role_id = self.store.create_role(Role(name=name, description=description))
        logger.info("Role %r created (id=%d)", name, role_id)
        return role_id

    def add_user_to_role(self, user_id: int, role: str | int) -> bool:
        found = self._require_role(role)
        added = self.store.add_user_to_role(user_id, found.id)
        if added:
            logger.info("User %d added to role %r", user_id, found.name)
        return added

    def remove_user_from_role(self, user_id: int, role: str | int) -> bool:
        found = self._require_role(role)
        removed = self.store.remove_user_from_role(user_id, found.id)
        if removed:
            logger.info("User %d removed from role %r", user_id, found.name)
        return removed

    def _require_role(self, role: str | int) -> Role:
        found = self.store.get_role(_normalize(role))
        if found is None:
            raise LookupError(f"Role {role!r} does not exist")
        return found


def _normalize(role: str | int) -> str | int:
    # Route params arrive as strings; "3" means role ID 3.
    if isinstance(role, str) and role.isdigit():
        return int(role)
    return role
