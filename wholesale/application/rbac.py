"""Role checks for the storefront back-office."""

from dataclasses import dataclass
from wholesale.domain.models import Role
from .errors import UnauthorizedError

STAFF_ROLES = (Role.MANAGER, Role.ADMIN)

PERMISSIONS = {
    "view_pricing": (Role.VERIFIED, Role.MANAGER, Role.ADMIN),
    "submit_order": (Role.VERIFIED, Role.MANAGER, Role.ADMIN),
    "view_own_orders": (Role.VERIFIED, Role.MANAGER, Role.ADMIN),
    "manage_orders": STAFF_ROLES,
    "manage_products": STAFF_ROLES,
    "manage_invoices": STAFF_ROLES,
    "propose_tier": (Role.VERIFIED, Role.MANAGER, Role.ADMIN),
    "manage_tiers": STAFF_ROLES,
    "delete_orders": (Role.ADMIN,),
    "view_audit_logs": (Role.ADMIN,),
}


@dataclass(frozen=True)
class Actor:
    """Who is calling: resolved from the session, trusted by the services."""

    user_id: int
    role: Role

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


def can(actor: Actor, permission: str) -> bool:
    return actor.role in PERMISSIONS[permission]


def require(actor: Actor, permission: str) -> None:
    if not can(actor, permission):
        raise UnauthorizedError("Unauthorized")


def ensure_owner_or_staff(actor: Actor, owner_id: int) -> None:
    """Customers only see their own records; staff see everything."""
    if actor.is_staff:
        return
    if actor.user_id != owner_id:
        raise UnauthorizedError("Forbidden")
