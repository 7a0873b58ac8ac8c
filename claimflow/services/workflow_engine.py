# ==== CLAIM WORKFLOW ENGINE ==== #

"""
Workflow engine that applies claim commands for claimflow.

Every command runs as one transaction: refresh the actor in the identity
directory, load the claim, authorize, check the status precondition,
validate input, mutate the aggregate together with its audit trail and
commit. A rejected command leaves no trace in storage.
"""

import datetime as dt
from datetime import timezone
from typing import Any, Awaitable, Callable, Dict, Optional

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from claimflow.business.errors import (
    ClaimForbiddenError,
    ClaimValidationError,
    ClaimWorkflowError,
    ConcurrentUpdateError,
    InvalidClaimStateError,
    StorageUnavailableError,
)
from claimflow.business.identity import Identity
from claimflow.business.permissions import has_authority, is_owner
from claimflow.business.validation import (
    validate_amount,
    validate_description,
    validate_receipt_ref,
    validate_title,
    validate_update_fields,
)
from claimflow.business.workflow_rules import (
    Authority,
    Transition,
    WorkflowAction,
    normalize_comment,
    transition_for,
)
from claimflow.observability.logging import get_logger, log_business_event
from claimflow.observability.metrics import (
    claim_rejections_total,
    claim_transitions_total,
    engine_duration_seconds,
)
from claimflow.observability.tracing import get_tracer
from claimflow.schemas.claim import ClaimView
from claimflow.storage.claims import IdentityDirectory, load_claim
from claimflow.storage.db import get_session_factory
from claimflow.storage.models import ClaimRecord


# ==== MODULE INITIALIZATION ==== #


tracer = get_tracer(__name__)
logger = get_logger(__name__)

Clock = Callable[[], dt.datetime]
Guard = Callable[[AsyncSession, ClaimRecord], Awaitable[None]]


def utc_now() -> dt.datetime:
    """Naive UTC timestamp, the storage convention for all claim times."""
    return dt.datetime.now(timezone.utc).replace(tzinfo=None)


# ==== WORKFLOW ENGINE CLASS ==== #


class WorkflowEngine:
    """
    Engine for drafting, editing and moving claims through the workflow.

    Checks run in a fixed order so the reported error is deterministic:
    not found, then forbidden, then invalid state, then validation. Storage
    faults and lost optimistic-concurrency races surface as transient errors.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        directory: Optional[IdentityDirectory] = None,
        clock: Clock = utc_now
    ):
        """
        Initialize the engine.

        Args:
            session_factory: Session factory; defaults to the configured database
            directory: Identity directory used for the manager relation
            clock: Source of mutation timestamps
        """
        self._session_factory = session_factory
        self.directory = directory or IdentityDirectory()
        self.clock = clock

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        return self._session_factory or get_session_factory()


    # ==== DRAFT LIFECYCLE ==== #

    async def create_claim(
        self,
        owner: Identity,
        title: str,
        amount: Any,
        description: Optional[str] = None,
        receipt_ref: Optional[str] = None
    ) -> ClaimView:
        """
        Create a DRAFT claim owned by ``owner``.

        Args:
            owner: Authenticated identity that owns the new claim
            title: Non-blank title
            amount: Positive monetary amount with at most two decimals
            description: Optional free text
            receipt_ref: Optional opaque receipt reference

        Returns:
            ClaimView: The new claim with its CREATED audit entry

        Raises:
            ClaimValidationError: If title or amount are invalid
        """
        operation = "create"
        with tracer.start_as_current_span("claim_create") as span, \
                engine_duration_seconds.labels(operation=operation).time():
            span.set_attribute("actor_id", owner.id)
            try:
                values = {
                    "title": validate_title(title),
                    "description": validate_description(description),
                    "amount": validate_amount(amount),
                    "receipt_ref": validate_receipt_ref(receipt_ref),
                }
                async with self.session_factory() as db:
                    async with db.begin():
                        now = self.clock()
                        await self.directory.sync(db, owner, now)
                        claim = ClaimRecord.draft(owner=owner, now=now, **values)
                        db.add(claim)
                    view = ClaimView.from_record(claim)
            except ClaimWorkflowError as e:
                self._record_rejection(operation, owner, None, e)
                raise
            except DBAPIError as e:
                raise self._storage_fault(operation, owner, None, e) from e

            span.set_attribute("claim_id", view.id)
            claim_transitions_total.labels(action=operation).inc()
            log_business_event(
                "CREATED", view.id, actor_id=owner.id, amount=str(view.amount)
            )
            return view

    async def update_claim(
        self,
        claim_id: int,
        actor: Identity,
        fields: Dict[str, Any]
    ) -> ClaimView:
        """
        Edit the supplied fields of a DRAFT claim owned by ``actor``.

        An empty ``fields`` mapping changes nothing but still requires
        ownership and DRAFT status. No audit entry is appended.
        """
        async def mutate(db: AsyncSession, claim: ClaimRecord, now: dt.datetime) -> None:
            values = validate_update_fields(fields)
            if values:
                claim.apply_update(values, now)

        view = await self._execute(
            "update", claim_id, actor, self._draft_owner_guard(actor, "updated"), mutate
        )
        return view

    async def delete_claim(self, claim_id: int, actor: Identity) -> None:
        """Remove a DRAFT claim owned by ``actor`` together with its audit trail."""
        async def mutate(db: AsyncSession, claim: ClaimRecord, now: dt.datetime) -> None:
            await db.delete(claim)

        await self._execute(
            "delete",
            claim_id,
            actor,
            self._draft_owner_guard(actor, "deleted"),
            mutate,
            render=False
        )
        log_business_event("DELETED", claim_id, actor_id=actor.id)


    # ==== STATUS TRANSITIONS ==== #

    async def submit(self, claim_id: int, actor: Identity) -> ClaimView:
        """Send a DRAFT claim to the owner's manager."""
        return await self._transition(WorkflowAction.SUBMIT, claim_id, actor, None)

    async def manager_decide(
        self,
        claim_id: int,
        actor: Identity,
        approve: bool,
        comment: Optional[str] = None
    ) -> ClaimView:
        """
        Approve or reject a claim awaiting the owner's manager.

        Args:
            claim_id: Claim identifier
            actor: Manager deciding the claim
            approve: True to forward to finance, False to reject
            comment: Decision comment; required when rejecting
        """
        action = (
            WorkflowAction.MANAGER_APPROVE if approve else WorkflowAction.MANAGER_REJECT
        )
        return await self._transition(action, claim_id, actor, comment)

    async def finance_decide(
        self,
        claim_id: int,
        actor: Identity,
        approve: bool,
        comment: Optional[str] = None
    ) -> ClaimView:
        """Approve or reject a claim awaiting finance; rejection needs a comment."""
        action = (
            WorkflowAction.FINANCE_APPROVE if approve else WorkflowAction.FINANCE_REJECT
        )
        return await self._transition(action, claim_id, actor, comment)

    async def mark_paid(self, claim_id: int, actor: Identity) -> ClaimView:
        """Record payment of an APPROVED claim."""
        return await self._transition(WorkflowAction.MARK_PAID, claim_id, actor, None)

    async def _transition(
        self,
        action: WorkflowAction,
        claim_id: int,
        actor: Identity,
        comment: Optional[str]
    ) -> ClaimView:
        transition = transition_for(action)
        comment = normalize_comment(comment)

        async def mutate(db: AsyncSession, claim: ClaimRecord, now: dt.datetime) -> None:
            if transition.requires_comment and comment is None:
                raise ClaimValidationError(
                    "A comment is required when rejecting a claim",
                    claim_id=claim.id,
                    field="comment"
                )
            claim.apply_transition(transition, actor, comment, now)

        view = await self._execute(
            action.value.lower(),
            claim_id,
            actor,
            self._transition_guard(transition, actor),
            mutate
        )
        log_business_event(
            transition.audit_action.value,
            claim_id,
            actor_id=actor.id,
            status=view.status.value,
            comment=comment
        )
        return view


    # ==== GUARDS ==== #

    def _draft_owner_guard(self, actor: Identity, operation: str) -> Guard:
        async def guard(db: AsyncSession, claim: ClaimRecord) -> None:
            if not is_owner(actor, claim.owner_id):
                raise ClaimForbiddenError(
                    f"Only the owner may modify claim {claim.id}", claim_id=claim.id
                )
            claim.require_draft(operation)
        return guard

    def _transition_guard(self, transition: Transition, actor: Identity) -> Guard:
        async def guard(db: AsyncSession, claim: ClaimRecord) -> None:
            owner_manager_id = None
            if transition.authority is Authority.OWNER_MANAGER:
                owner_manager_id = await self.directory.manager_of(db, claim.owner_id)

            if not has_authority(transition.authority, actor, claim.owner_id, owner_manager_id):
                raise ClaimForbiddenError(
                    f"Identity {actor.id} may not {transition.action.value} "
                    f"claim {claim.id}",
                    claim_id=claim.id
                )
            if claim.claim_status is not transition.source:
                raise InvalidClaimStateError(
                    f"Cannot {transition.action.value} claim {claim.id} "
                    f"in status {claim.status}",
                    claim_id=claim.id
                )
        return guard


    # ==== TRANSACTION EXECUTION ==== #

    async def _execute(
        self,
        operation: str,
        claim_id: int,
        actor: Identity,
        guard: Guard,
        mutate: Callable[[AsyncSession, ClaimRecord, dt.datetime], Awaitable[None]],
        render: bool = True
    ) -> Optional[ClaimView]:
        """
        Run one read-check-write unit against a single claim.

        Args:
            operation: Metric and span label of the command
            claim_id: Claim identifier
            actor: Identity invoking the command
            guard: Authorization and status checks
            mutate: Validation plus the aggregate mutation
            render: Whether to return the committed claim view

        Returns:
            Optional[ClaimView]: The committed claim, or None when not rendered
        """
        with tracer.start_as_current_span(f"claim_{operation}") as span, \
                engine_duration_seconds.labels(operation=operation).time():
            span.set_attribute("claim_id", claim_id)
            span.set_attribute("actor_id", actor.id)
            span.set_attribute("actor_role", actor.role.value)

            try:
                async with self.session_factory() as db:
                    async with db.begin():
                        now = self.clock()
                        await self.directory.sync(db, actor, now)
                        claim = await load_claim(db, claim_id)
                        await guard(db, claim)
                        await mutate(db, claim, now)
                    view = ClaimView.from_record(claim) if render else None
            except StaleDataError:
                span.set_attribute("version_conflict", True)
                try:
                    await self._resolve_conflict(operation, claim_id, guard)
                except ClaimWorkflowError as e:
                    self._record_rejection(operation, actor, claim_id, e)
                    raise
            except ClaimWorkflowError as e:
                self._record_rejection(operation, actor, claim_id, e)
                raise
            except DBAPIError as e:
                raise self._storage_fault(operation, actor, claim_id, e) from e

            if view is not None:
                span.set_attribute("status", view.status.value)
            claim_transitions_total.labels(action=operation).inc()
            return view

    async def _resolve_conflict(self, operation: str, claim_id: int, guard: Guard) -> None:
        """
        Re-evaluate the checks after another writer committed first.

        The command is never re-applied: a check that now fails surfaces as
        its deterministic error, otherwise the caller gets a retryable
        ``ConcurrentUpdateError``.
        """
        logger.info(
            "Version conflict, re-reading claim",
            operation=operation,
            claim_id=claim_id
        )
        try:
            async with self.session_factory() as db:
                claim = await load_claim(db, claim_id)
                await guard(db, claim)
        except DBAPIError as e:
            raise StorageUnavailableError(
                f"Storage unavailable while re-reading claim {claim_id}",
                claim_id=claim_id
            ) from e

        raise ConcurrentUpdateError(
            f"Claim {claim_id} was modified concurrently; retry the {operation}",
            claim_id=claim_id
        )


    # ==== ERROR REPORTING ==== #

    def _record_rejection(
        self,
        operation: str,
        actor: Identity,
        claim_id: Optional[int],
        error: ClaimWorkflowError
    ) -> None:
        claim_rejections_total.labels(action=operation, code=error.code).inc()
        log = logger.warning if error.retryable else logger.info
        log(
            f"Claim {operation} rejected: {error.message}",
            operation=operation,
            claim_id=claim_id,
            actor_id=actor.id,
            code=error.code
        )

    def _storage_fault(
        self,
        operation: str,
        actor: Identity,
        claim_id: Optional[int],
        error: DBAPIError
    ) -> StorageUnavailableError:
        claim_rejections_total.labels(
            action=operation, code=StorageUnavailableError.code
        ).inc()
        logger.error(
            f"Storage fault during claim {operation}: {error}",
            operation=operation,
            claim_id=claim_id,
            actor_id=actor.id
        )
        return StorageUnavailableError(
            f"Storage unavailable during claim {operation}", claim_id=claim_id
        )


# ==== DEPENDENCY PROVIDER ==== #


def get_workflow_engine() -> WorkflowEngine:
    """FastAPI dependency returning an engine bound to the configured database."""
    return WorkflowEngine()
