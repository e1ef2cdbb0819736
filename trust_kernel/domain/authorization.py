"""
Authorization -- acting identity and the overdraft override policy.

The ledger never authenticates anyone.  It receives an AuthorizationContext
from the caller and asks an OverridePolicy whether that context may push a
balance below zero.  Which roles carry override authority is configuration,
not code (``overdraft.override_roles``).
"""

from dataclasses import dataclass
from enum import Enum

from trust_kernel.exceptions import UnauthorizedError


class ActorRole(str, Enum):
    """Roles the trust kernel knows about."""

    STANDARD = "standard"
    OVERRIDE = "override"


@dataclass(frozen=True)
class AuthorizationContext:
    """
    Identity performing a ledger operation.

    ``role`` is kept as a plain string so deployments can map their own
    role names onto the override policy without touching the kernel.
    """

    actor_id: str
    role: str

    @classmethod
    def standard(cls, actor_id: str) -> "AuthorizationContext":
        return cls(actor_id=actor_id, role=ActorRole.STANDARD.value)

    @classmethod
    def override(cls, actor_id: str) -> "AuthorizationContext":
        return cls(actor_id=actor_id, role=ActorRole.OVERRIDE.value)


def require_actor(
    actor: AuthorizationContext | None, matter_id: str | None = None
) -> AuthorizationContext:
    """
    Validate that an acting identity with a role is present.

    Raises:
        UnauthorizedError: If actor is missing, or has no id or no role.
    """
    if actor is None:
        raise UnauthorizedError("no authorization context supplied", matter_id)
    if not isinstance(actor, AuthorizationContext):
        raise UnauthorizedError(
            f"expected AuthorizationContext, got {type(actor).__name__}", matter_id
        )
    if not actor.actor_id or not str(actor.actor_id).strip():
        raise UnauthorizedError("authorization context has no actor id", matter_id)
    if not actor.role or not str(actor.role).strip():
        raise UnauthorizedError(
            f"actor {actor.actor_id} has no role", matter_id
        )
    return actor


@dataclass(frozen=True)
class OverridePolicy:
    """Which roles may authorize a shortfall (a debit past zero)."""

    override_roles: frozenset[str] = frozenset({ActorRole.OVERRIDE.value})

    def has_override_authority(self, actor: AuthorizationContext) -> bool:
        return actor.role in self.override_roles

    def permits_shortfall(
        self, actor: AuthorizationContext, authorize_shortfall: bool
    ) -> bool:
        """Both the role and the explicit per-call flag are required."""
        return authorize_shortfall and self.has_override_authority(actor)
