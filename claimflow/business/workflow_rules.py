# ==== CLAIM WORKFLOW RULES ==== #

"""
Claim statuses, audit action kinds and the transition table.

This module defines the finite state machine that governs a claim: the
seven statuses, the actions that move a claim between them, who is allowed
to perform each action and which audit entry every accepted action leaves
behind. The workflow is strictly linear with two decision points.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Optional


# ==== ENUMERATION DEFINITIONS ==== #


class ClaimStatus(str, Enum):
    """
    Claim status lifecycle.
    
    Status progression: DRAFT → PENDING_MANAGER → PENDING_FINANCE → APPROVED → PAID,
    with REJECTED_MANAGER and REJECTED_FINANCE as the two rejection exits.
    """
    
    DRAFT = "DRAFT"
    PENDING_MANAGER = "PENDING_MANAGER"
    PENDING_FINANCE = "PENDING_FINANCE"
    APPROVED = "APPROVED"
    REJECTED_MANAGER = "REJECTED_MANAGER"
    REJECTED_FINANCE = "REJECTED_FINANCE"
    PAID = "PAID"


class AuditAction(str, Enum):
    """Kinds of audit entries recorded against a claim."""
    
    CREATED = "CREATED"
    SUBMITTED = "SUBMITTED"
    MANAGER_APPROVED = "MANAGER_APPROVED"
    MANAGER_REJECTED = "MANAGER_REJECTED"
    FINANCE_APPROVED = "FINANCE_APPROVED"
    FINANCE_REJECTED = "FINANCE_REJECTED"
    MARKED_AS_PAID = "MARKED_AS_PAID"


class WorkflowAction(str, Enum):
    """Status-changing actions accepted by the workflow engine."""
    
    SUBMIT = "SUBMIT"
    MANAGER_APPROVE = "MANAGER_APPROVE"
    MANAGER_REJECT = "MANAGER_REJECT"
    FINANCE_APPROVE = "FINANCE_APPROVE"
    FINANCE_REJECT = "FINANCE_REJECT"
    MARK_PAID = "MARK_PAID"


class Authority(str, Enum):
    """Relation an actor must hold to a claim to perform an action."""
    
    OWNER = "OWNER"
    OWNER_MANAGER = "OWNER_MANAGER"
    FINANCE = "FINANCE"


# ==== TRANSITION TABLE ==== #


@dataclass(frozen=True)
class Transition:
    """One edge of the claim state machine."""
    
    action: WorkflowAction
    authority: Authority
    source: ClaimStatus
    target: ClaimStatus
    audit_action: AuditAction
    requires_comment: bool = False
    default_comment: Optional[str] = None


TRANSITIONS: Dict[WorkflowAction, Transition] = {
    WorkflowAction.SUBMIT: Transition(
        action=WorkflowAction.SUBMIT,
        authority=Authority.OWNER,
        source=ClaimStatus.DRAFT,
        target=ClaimStatus.PENDING_MANAGER,
        audit_action=AuditAction.SUBMITTED,
        default_comment="Submitted for manager review",
    ),
    WorkflowAction.MANAGER_APPROVE: Transition(
        action=WorkflowAction.MANAGER_APPROVE,
        authority=Authority.OWNER_MANAGER,
        source=ClaimStatus.PENDING_MANAGER,
        target=ClaimStatus.PENDING_FINANCE,
        audit_action=AuditAction.MANAGER_APPROVED,
    ),
    WorkflowAction.MANAGER_REJECT: Transition(
        action=WorkflowAction.MANAGER_REJECT,
        authority=Authority.OWNER_MANAGER,
        source=ClaimStatus.PENDING_MANAGER,
        target=ClaimStatus.REJECTED_MANAGER,
        audit_action=AuditAction.MANAGER_REJECTED,
        requires_comment=True,
    ),
    WorkflowAction.FINANCE_APPROVE: Transition(
        action=WorkflowAction.FINANCE_APPROVE,
        authority=Authority.FINANCE,
        source=ClaimStatus.PENDING_FINANCE,
        target=ClaimStatus.APPROVED,
        audit_action=AuditAction.FINANCE_APPROVED,
    ),
    WorkflowAction.FINANCE_REJECT: Transition(
        action=WorkflowAction.FINANCE_REJECT,
        authority=Authority.FINANCE,
        source=ClaimStatus.PENDING_FINANCE,
        target=ClaimStatus.REJECTED_FINANCE,
        audit_action=AuditAction.FINANCE_REJECTED,
        requires_comment=True,
    ),
    WorkflowAction.MARK_PAID: Transition(
        action=WorkflowAction.MARK_PAID,
        authority=Authority.FINANCE,
        source=ClaimStatus.APPROVED,
        target=ClaimStatus.PAID,
        audit_action=AuditAction.MARKED_AS_PAID,
        default_comment="Payment processed",
    ),
}

# No outgoing edges; there is no resubmission path out of a rejection.
TERMINAL_STATES: FrozenSet[ClaimStatus] = frozenset({
    ClaimStatus.PAID,
    ClaimStatus.REJECTED_MANAGER,
    ClaimStatus.REJECTED_FINANCE,
})

CREATED_COMMENT = "Draft created"


# ==== RULE HELPERS ==== #


def transition_for(action: WorkflowAction) -> Transition:
    """Return the transition edge for ``action``."""
    return TRANSITIONS[action]


def allowed_actions(status: ClaimStatus) -> FrozenSet[WorkflowAction]:
    """
    List the actions whose precondition is satisfied by ``status``.
    
    Args:
        status: Current claim status
        
    Returns:
        FrozenSet[WorkflowAction]: Actions that may be attempted from ``status``
    """
    return frozenset(
        action for action, edge in TRANSITIONS.items() if edge.source is status
    )


def is_terminal(status: ClaimStatus) -> bool:
    return status in TERMINAL_STATES


def normalize_comment(comment: Optional[str]) -> Optional[str]:
    """Strip a comment and collapse blank input to ``None``."""
    if comment is None:
        return None
    stripped = comment.strip()
    return stripped or None
