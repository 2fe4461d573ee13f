from __future__ import annotations

from dataclasses import dataclass

STAFF_ROLES = frozenset({"admin", "instructor"})


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated identity extracted from a validated JWT.

    user_id: subject from the JWT.  For students it is the student id.
    roles:   platform roles (student, instructor, admin).
    """

    user_id: str
    roles: frozenset[str]

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def has_any_role(self, roles: set[str] | frozenset[str]) -> bool:
        return bool(self.roles & roles)

    def is_admin(self) -> bool:
        return "admin" in self.roles

    def is_staff(self) -> bool:
        return self.has_any_role(STAFF_ROLES)
