"""Authenticated caller identity supplied by the upstream gateway."""

from __future__ import annotations

from dataclasses import dataclass

ROLE_MANAGER = "manager"
ROLE_DIRECTOR = "director"
ROLE_TEAM_LEAD = "team_lead"
ROLE_MEMBER = "member"

STAFF_ROLES = frozenset({ROLE_MANAGER, ROLE_DIRECTOR})


@dataclass(frozen=True)
class Actor:
    actor_id: str
    role: str = ROLE_MEMBER

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    @property
    def is_director(self) -> bool:
        return self.role == ROLE_DIRECTOR


SYSTEM_ACTOR = Actor(actor_id="system", role=ROLE_DIRECTOR)
