# ==== FINANCE ROUTES ==== #

"""
Finance routes for the second decision point and payment.

Only identities with the FINANCE role reach these handlers.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends

from claimflow.business.identity import Identity, Role
from claimflow.schemas.claim import ClaimView, DecisionRequest
from claimflow.security.auth import require_role
from claimflow.services.claim_queries import ClaimQueries, get_claim_queries
from claimflow.services.workflow_engine import WorkflowEngine, get_workflow_engine


router = APIRouter()
require_finance = require_role(Role.FINANCE)


@router.get("/pending", response_model=List[ClaimView])
async def list_finance_pending(
    identity: Identity = Depends(require_finance),
    queries: ClaimQueries = Depends(get_claim_queries)
) -> List[ClaimView]:
    """Claims approved by managers and awaiting finance, latest first."""
    return await queries.list_finance_pending(identity)


@router.post("/{claim_id}/approve", response_model=ClaimView)
async def approve_request(
    claim_id: int,
    payload: Optional[DecisionRequest] = None,
    identity: Identity = Depends(require_finance),
    engine: WorkflowEngine = Depends(get_workflow_engine)
) -> ClaimView:
    comment = payload.comment if payload else None
    return await engine.finance_decide(claim_id, identity, approve=True, comment=comment)


@router.post("/{claim_id}/reject", response_model=ClaimView)
async def reject_request(
    claim_id: int,
    payload: Optional[DecisionRequest] = None,
    identity: Identity = Depends(require_finance),
    engine: WorkflowEngine = Depends(get_workflow_engine)
) -> ClaimView:
    """Reject a claim at the finance stage; a comment is required."""
    comment = payload.comment if payload else None
    return await engine.finance_decide(claim_id, identity, approve=False, comment=comment)


@router.post("/{claim_id}/pay", response_model=ClaimView)
async def mark_paid(
    claim_id: int,
    identity: Identity = Depends(require_finance),
    engine: WorkflowEngine = Depends(get_workflow_engine)
) -> ClaimView:
    """Record payment of an APPROVED claim."""
    return await engine.mark_paid(claim_id, identity)
