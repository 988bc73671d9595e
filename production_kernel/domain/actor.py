"""
Actor context and role-based authorization.

Responsibility:
    Replaces ambient session/role lookup with an explicit ``ActorContext``
    passed into every service call.  ``AuthorizationPolicy`` maps each kernel
    operation to the roles allowed to perform it.

Architecture position:
    Kernel > Domain -- pure, no I/O.  Services call ``policy.require()`` as
    the first statement of every mutating operation.

Failure modes:
    - ForbiddenError when the actor's role is not in the allow-list.
    - ValueError when an allow-list names an unknown operation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping
from uuid import UUID

from production_kernel.exceptions import ForbiddenError
from production_kernel.logging_config import get_logger

logger = get_logger("domain.actor")


class Role(str, Enum):
    ADMIN = "admin"
    FULFILLMENT = "fulfillment"
    PRODUCTION = "production"


class Operation(str, Enum):
    """Every role-gated kernel operation."""

    CREATE_REQUEST = "create_request"
    START_REQUEST = "start_request"
    COMPLETE_REQUEST = "complete_request"
    CANCEL_REQUEST = "cancel_request"
    RESERVE = "reserve"
    RELEASE = "release"
    ADJUST_STOCK = "adjust_stock"
    MANAGE_MATERIALS = "manage_materials"
    MANAGE_PRODUCTS = "manage_products"
    MANAGE_BOM = "manage_bom"


@dataclass(frozen=True)
class ActorContext:
    """Who is calling, and in which role."""

    actor_id: UUID
    role: Role

    def log_fields(self) -> dict[str, str]:
        return {"actor_id": str(self.actor_id), "role": self.role.value}


DEFAULT_ALLOWED_ROLES: Mapping[Operation, frozenset[Role]] = MappingProxyType({
    Operation.CREATE_REQUEST: frozenset({Role.FULFILLMENT, Role.ADMIN}),
    Operation.START_REQUEST: frozenset({Role.PRODUCTION, Role.ADMIN}),
    Operation.COMPLETE_REQUEST: frozenset({Role.PRODUCTION, Role.ADMIN}),
    Operation.CANCEL_REQUEST: frozenset({Role.FULFILLMENT, Role.PRODUCTION, Role.ADMIN}),
    Operation.RESERVE: frozenset({Role.FULFILLMENT, Role.ADMIN}),
    Operation.RELEASE: frozenset({Role.FULFILLMENT, Role.ADMIN}),
    Operation.ADJUST_STOCK: frozenset({Role.PRODUCTION, Role.ADMIN}),
    Operation.MANAGE_MATERIALS: frozenset({Role.PRODUCTION, Role.ADMIN}),
    Operation.MANAGE_PRODUCTS: frozenset({Role.FULFILLMENT, Role.ADMIN}),
    Operation.MANAGE_BOM: frozenset({Role.FULFILLMENT, Role.ADMIN}),
})


@dataclass(frozen=True)
class AuthorizationPolicy:
    """
    Operation -> allowed roles.

    Contract:
        Operations missing from ``allowed_roles`` fall back to
        ``DEFAULT_ALLOWED_ROLES``.

    Non-goals:
        Authentication.  The actor is trusted to be who it says it is.
    """

    allowed_roles: Mapping[Operation, frozenset[Role]] = field(
        default_factory=lambda: DEFAULT_ALLOWED_ROLES
    )

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, list[str]]) -> AuthorizationPolicy:
        merged = dict(DEFAULT_ALLOWED_ROLES)
        for op_name, role_names in mapping.items():
            try:
                op = Operation(op_name)
            except ValueError:
                raise ValueError(f"Unknown operation in authorization config: {op_name}")
            merged[op] = frozenset(Role(r) for r in role_names)
        return cls(allowed_roles=MappingProxyType(merged))

    def roles_for(self, operation: Operation) -> frozenset[Role]:
        return self.allowed_roles.get(operation, DEFAULT_ALLOWED_ROLES[operation])

    def is_allowed(self, actor: ActorContext, operation: Operation) -> bool:
        return actor.role in self.roles_for(operation)

    def require(self, actor: ActorContext, operation: Operation) -> None:
        allowed = self.roles_for(operation)
        if actor.role not in allowed:
            logger.warning(
                "authorization_denied",
                extra={
                    "actor_id": str(actor.actor_id),
                    "role": actor.role.value,
                    "operation": operation.value,
                },
            )
            raise ForbiddenError(
                actor_id=str(actor.actor_id),
                role=actor.role.value,
                operation=operation.value,
                allowed_roles=[r.value for r in allowed],
            )
