# ==== CLAIM PERMISSION MATRIX ==== #

"""
Role-scoped authorization rules for claim operations.

One function per relation keeps the permission matrix directly testable:
ownership for the employee actions, the owner's current manager for the
first decision point, the finance role for the second decision point and
payment. Read access is wider than write access.
"""

from typing import Optional

from claimflow.business.identity import Identity, Role
from claimflow.business.workflow_rules import Authority


def is_owner(actor: Identity, owner_id: int) -> bool:
    return actor.id == owner_id


def is_owner_manager(actor: Identity, owner_manager_id: Optional[int]) -> bool:
    """Actor holds the MANAGER role and is the claim owner's manager."""
    return (
        actor.role is Role.MANAGER
        and owner_manager_id is not None
        and owner_manager_id == actor.id
    )


def has_authority(
    authority: Authority,
    actor: Identity,
    owner_id: int,
    owner_manager_id: Optional[int]
) -> bool:
    """
    Check whether ``actor`` holds ``authority`` over a claim.
    
    Args:
        authority: Relation required by the action
        actor: Identity invoking the action
        owner_id: Identity id of the claim owner
        owner_manager_id: Current manager id of the claim owner, if any
        
    Returns:
        bool: True when the action is authorized
    """
    if authority is Authority.OWNER:
        return is_owner(actor, owner_id)
    if authority is Authority.OWNER_MANAGER:
        return is_owner_manager(actor, owner_manager_id)
    if authority is Authority.FINANCE:
        return actor.role is Role.FINANCE
    return False


def can_read(actor: Identity, owner_id: int, owner_manager_id: Optional[int]) -> bool:
    """Owner, the owner's manager, or any finance/admin identity may read a claim."""
    return (
        is_owner(actor, owner_id)
        or is_owner_manager(actor, owner_manager_id)
        or actor.can_read_any_claim
    )
