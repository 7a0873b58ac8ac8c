# ==== EMPLOYEE CLAIM ROUTES ==== #

"""
Employee routes for drafting, editing, submitting and reading claims.

Every authenticated identity may use these endpoints; ownership and read
access are enforced by the workflow engine and the query views.
"""

from typing import List

from fastapi import APIRouter, Depends, Response

from claimflow.business.identity import Identity
from claimflow.observability.tracing import get_tracer
from claimflow.schemas.claim import ClaimCreateRequest, ClaimUpdateRequest, ClaimView
from claimflow.security.auth import get_current_identity
from claimflow.services.claim_queries import ClaimQueries, get_claim_queries
from claimflow.services.workflow_engine import WorkflowEngine, get_workflow_engine


router = APIRouter()
tracer = get_tracer(__name__)


# ==== DRAFT MANAGEMENT ==== #


@router.post("", response_model=ClaimView, status_code=201)
async def create_expense(
    payload: ClaimCreateRequest,
    identity: Identity = Depends(get_current_identity),
    engine: WorkflowEngine = Depends(get_workflow_engine)
) -> ClaimView:
    """
    Draft a new claim owned by the caller.

    Args:
        payload (ClaimCreateRequest): Title, amount and optional details
        identity (Identity): Authenticated caller
        engine (WorkflowEngine): Workflow engine dependency

    Returns:
        ClaimView: The new DRAFT claim
    """
    return await engine.create_claim(
        identity,
        title=payload.title,
        amount=payload.amount,
        description=payload.description,
        receipt_ref=payload.receipt_ref,
    )


@router.get("/my", response_model=List[ClaimView])
async def list_my_expenses(
    identity: Identity = Depends(get_current_identity),
    queries: ClaimQueries = Depends(get_claim_queries)
) -> List[ClaimView]:
    """List the caller's own claims, newest first."""
    return await queries.list_mine(identity)


@router.get("/{claim_id}", response_model=ClaimView)
async def get_expense(
    claim_id: int,
    identity: Identity = Depends(get_current_identity),
    queries: ClaimQueries = Depends(get_claim_queries)
) -> ClaimView:
    """Read one claim with its history."""
    return await queries.get_by_id(claim_id, identity)


@router.put("/{claim_id}", response_model=ClaimView)
async def update_expense(
    claim_id: int,
    payload: ClaimUpdateRequest,
    identity: Identity = Depends(get_current_identity),
    engine: WorkflowEngine = Depends(get_workflow_engine)
) -> ClaimView:
    """
    Edit a DRAFT claim; fields left out of the body keep their value.

    Args:
        claim_id (int): Claim identifier
        payload (ClaimUpdateRequest): Fields to change
        identity (Identity): Authenticated caller
        engine (WorkflowEngine): Workflow engine dependency

    Returns:
        ClaimView: The updated claim
    """
    with tracer.start_as_current_span("update_expense") as span:
        fields = payload.changed_fields()
        span.set_attribute("fields", ",".join(sorted(fields)))
        return await engine.update_claim(claim_id, identity, fields)


@router.delete("/{claim_id}", status_code=204)
async def delete_expense(
    claim_id: int,
    identity: Identity = Depends(get_current_identity),
    engine: WorkflowEngine = Depends(get_workflow_engine)
) -> Response:
    """Delete a DRAFT claim and its history."""
    await engine.delete_claim(claim_id, identity)
    return Response(status_code=204)


# ==== SUBMISSION ==== #


@router.post("/{claim_id}/submit", response_model=ClaimView)
async def submit_expense(
    claim_id: int,
    identity: Identity = Depends(get_current_identity),
    engine: WorkflowEngine = Depends(get_workflow_engine)
) -> ClaimView:
    """Send a DRAFT claim to the caller's manager."""
    return await engine.submit(claim_id, identity)
