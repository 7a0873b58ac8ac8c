# ==== MANAGER REVIEW ROUTES ==== #

"""
Manager routes for the first decision point of the claim workflow.

Only identities with the MANAGER role reach these handlers; the engine
additionally requires the caller to be the claim owner's manager.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends

from claimflow.business.identity import Identity, Role
from claimflow.schemas.claim import ClaimView, DecisionRequest
from claimflow.security.auth import require_role
from claimflow.services.claim_queries import ClaimQueries, get_claim_queries
from claimflow.services.workflow_engine import WorkflowEngine, get_workflow_engine


router = APIRouter()
require_manager = require_role(Role.MANAGER)


@router.get("/pending", response_model=List[ClaimView])
async def list_team_pending(
    manager: Identity = Depends(require_manager),
    queries: ClaimQueries = Depends(get_claim_queries)
) -> List[ClaimView]:
    """Claims from the caller's direct reports awaiting review, oldest first."""
    return await queries.list_team_pending(manager)


@router.post("/{claim_id}/approve", response_model=ClaimView)
async def approve_request(
    claim_id: int,
    payload: Optional[DecisionRequest] = None,
    manager: Identity = Depends(require_manager),
    engine: WorkflowEngine = Depends(get_workflow_engine)
) -> ClaimView:
    """Forward a claim to finance, with an optional comment."""
    comment = payload.comment if payload else None
    return await engine.manager_decide(claim_id, manager, approve=True, comment=comment)


@router.post("/{claim_id}/reject", response_model=ClaimView)
async def reject_request(
    claim_id: int,
    payload: Optional[DecisionRequest] = None,
    manager: Identity = Depends(require_manager),
    engine: WorkflowEngine = Depends(get_workflow_engine)
) -> ClaimView:
    """
    Reject a claim at the manager stage.

    Args:
        claim_id (int): Claim identifier
        payload (Optional[DecisionRequest]): Rejection reason, required
        manager (Identity): Authenticated manager
        engine (WorkflowEngine): Workflow engine dependency

    Returns:
        ClaimView: The rejected claim
    """
    comment = payload.comment if payload else None
    return await engine.manager_decide(claim_id, manager, approve=False, comment=comment)
