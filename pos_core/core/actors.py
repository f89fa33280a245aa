"""
Actors and Capabilities

The core never parses tokens or permission blobs. It receives an
already-authenticated ``Actor`` and asks a ``PermissionPolicy`` whether
the actor holds a typed ``Capability``.

``RolePolicy`` is the default policy, a static role -> capability table.
Deployments with finer-grained permissions plug in their own policy.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    """Staff roles."""
    ADMIN = "admin"
    MODERATOR = "moderator"
    SERVER = "server"
    CASHIER = "cashier"


class Capability(str, Enum):
    """Operations gated by role rather than ownership."""
    ORDER_CREATE = "order_create"
    ORDER_MODIFY_ANY = "order_modify_any"
    ORDER_CANCEL = "order_cancel"
    PAYMENT_PROCESS = "payment_process"
    TABLE_LOCK_OVERRIDE = "table_lock_override"
    TABLE_MANAGE = "table_manage"


@dataclass(frozen=True)
class Actor:
    """Authenticated staff member performing an operation."""
    id: int
    role: Role

    def __str__(self) -> str:
        return f"{self.role.value}#{self.id}"


class PermissionPolicy(ABC):
    """Interface the core uses to check capabilities."""

    @abstractmethod
    def allows(self, actor: Actor, capability: Capability) -> bool:
        """Return True if ``actor`` holds ``capability``."""
        pass


ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.ADMIN: frozenset(Capability),
    Role.MODERATOR: frozenset({
        Capability.ORDER_MODIFY_ANY,
        Capability.ORDER_CANCEL,
        Capability.TABLE_MANAGE,
    }),
    Role.SERVER: frozenset({
        Capability.ORDER_CREATE,
    }),
    Role.CASHIER: frozenset({
        Capability.PAYMENT_PROCESS,
    }),
}


class RolePolicy(PermissionPolicy):
    """Capability check backed by a static role table."""

    def __init__(self, table: dict[Role, frozenset[Capability]] | None = None):
        self.table = table if table is not None else ROLE_CAPABILITIES

    def allows(self, actor: Actor, capability: Capability) -> bool:
        return capability in self.table.get(actor.role, frozenset())
