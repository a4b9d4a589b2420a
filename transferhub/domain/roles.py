"""
Closed role model and capability checks.

Every engine operation asks ``require(actor, Capability.X)`` instead of
comparing role strings at the call site.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from .errors import PermissionDenied


class Role(str, enum.Enum):
    CUSTOMER = "customer"
    PARTNER = "partner"
    ADMIN = "admin"
    SUPPORT = "support"
    SYSTEM = "system"


class Capability(str, enum.Enum):
    BOOK_TRIP = "book_trip"
    DRIVE_TRIP = "drive_trip"
    ASSIGN_TRIP = "assign_trip"
    OVERRIDE_TRIP = "override_trip"
    CANCEL_ANY_TRIP = "cancel_any_trip"
    VIEW_ALL = "view_all"
    MANAGE_OWN_PROFILE = "manage_own_profile"
    REVIEW_DRIVERS = "review_drivers"
    MANAGE_ANY_AVAILABILITY = "manage_any_availability"
    MANAGE_INVITES = "manage_invites"


ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.CUSTOMER: frozenset({Capability.BOOK_TRIP}),
    Role.PARTNER: frozenset({Capability.DRIVE_TRIP, Capability.MANAGE_OWN_PROFILE}),
    Role.SUPPORT: frozenset({Capability.VIEW_ALL}),
    Role.ADMIN: frozenset(
        {
            Capability.BOOK_TRIP,
            Capability.ASSIGN_TRIP,
            Capability.OVERRIDE_TRIP,
            Capability.CANCEL_ANY_TRIP,
            Capability.VIEW_ALL,
            Capability.REVIEW_DRIVERS,
            Capability.MANAGE_ANY_AVAILABILITY,
            Capability.MANAGE_INVITES,
        }
    ),
    Role.SYSTEM: frozenset({Capability.ASSIGN_TRIP, Capability.VIEW_ALL}),
}


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: Role

    def can(self, capability: Capability) -> bool:
        return capability in ROLE_CAPABILITIES.get(self.role, frozenset())


SYSTEM_ACTOR = Actor(user_id="system:matcher", role=Role.SYSTEM)


def require(actor: Actor, capability: Capability) -> None:
    if not actor.can(capability):
        raise PermissionDenied(
            f"Role '{actor.role.value}' lacks capability '{capability.value}'"
        )
