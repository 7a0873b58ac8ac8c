"""Tests for the workflow engine against a real SQLite database."""

from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from claimflow.business.errors import (
    ClaimForbiddenError,
    ClaimNotFoundError,
    ClaimValidationError,
    InvalidClaimStateError,
    StorageUnavailableError,
)
from claimflow.business.workflow_rules import AuditAction, ClaimStatus
from claimflow.services import workflow_engine
from claimflow.storage.models import AuditEntryRecord, ClaimRecord
from tests.factories.identity_factories import claim_payload


def _actions(view):
    return [entry.action for entry in view.history]


def _failing_flush(self, objects=None):
    raise OperationalError("UPDATE claims", {}, Exception("disk I/O error"))


@pytest.mark.unit
class TestDraftLifecycle:
    """Test cases for create, update and delete."""

    @pytest.mark.asyncio
    async def test_create_claim(self, workflow, org, clock):
        view = await workflow.create_claim(org.employee, **claim_payload())

        assert view.id is not None
        assert view.status is ClaimStatus.DRAFT
        assert view.amount == Decimal("100.00")
        assert view.owner_id == org.employee.id
        assert view.owner_name == "Mai Tran"
        assert view.created_at == clock.now
        assert _actions(view) == [AuditAction.CREATED]
        assert view.history[0].comment == "Draft created"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("overrides", [
        {"amount": Decimal("0")},
        {"amount": Decimal("-5.00")},
        {"title": "   "},
    ])
    async def test_create_rejects_invalid_input(self, workflow, org, database, overrides):
        with pytest.raises(ClaimValidationError):
            await workflow.create_claim(org.employee, **claim_payload(**overrides))

        async with database() as db:
            count = await db.scalar(select(func.count()).select_from(ClaimRecord))
        assert count == 0

    @pytest.mark.asyncio
    async def test_update_draft(self, workflow, org, clock):
        created = await workflow.create_claim(org.employee, **claim_payload())
        clock.advance(minutes=5)

        view = await workflow.update_claim(
            created.id, org.employee, {"title": "Team dinner", "amount": "120.5"}
        )

        assert view.title == "Team dinner"
        assert view.amount == Decimal("120.50")
        assert view.description == created.description
        assert view.updated_at == clock.now
        assert view.created_at == created.created_at
        assert _actions(view) == [AuditAction.CREATED]

    @pytest.mark.asyncio
    async def test_non_owner_update_is_forbidden(self, workflow, org):
        created = await workflow.create_claim(org.employee, **claim_payload())

        with pytest.raises(ClaimForbiddenError):
            await workflow.update_claim(created.id, org.colleague, {"title": "Mine now"})

    @pytest.mark.asyncio
    async def test_update_after_submit_is_invalid_state(self, workflow, org):
        created = await workflow.create_claim(org.employee, **claim_payload())
        await workflow.submit(created.id, org.employee)

        with pytest.raises(InvalidClaimStateError):
            await workflow.update_claim(created.id, org.employee, {"title": "Too late"})

    @pytest.mark.asyncio
    async def test_update_checks_state_before_validation(self, workflow, org):
        created = await workflow.create_claim(org.employee, **claim_payload())
        await workflow.submit(created.id, org.employee)

        with pytest.raises(InvalidClaimStateError):
            await workflow.update_claim(created.id, org.employee, {"amount": "-1"})

    @pytest.mark.asyncio
    async def test_update_missing_claim(self, workflow, org):
        with pytest.raises(ClaimNotFoundError):
            await workflow.update_claim(999, org.employee, {"title": "Ghost"})

    @pytest.mark.asyncio
    async def test_delete_draft_removes_audit_trail(self, workflow, org, database):
        created = await workflow.create_claim(org.employee, **claim_payload())

        await workflow.delete_claim(created.id, org.employee)

        async with database() as db:
            assert await db.get(ClaimRecord, created.id) is None
            entries = await db.scalar(
                select(func.count()).select_from(AuditEntryRecord)
                .where(AuditEntryRecord.claim_id == created.id)
            )
        assert entries == 0

    @pytest.mark.asyncio
    async def test_delete_guards(self, workflow, org):
        created = await workflow.create_claim(org.employee, **claim_payload())

        with pytest.raises(ClaimForbiddenError):
            await workflow.delete_claim(created.id, org.manager)

        await workflow.submit(created.id, org.employee)
        with pytest.raises(InvalidClaimStateError):
            await workflow.delete_claim(created.id, org.employee)

        with pytest.raises(ClaimNotFoundError):
            await workflow.delete_claim(created.id + 100, org.employee)


@pytest.mark.unit
class TestTransitions:
    """Test cases for submit, decisions and payment."""

    @pytest.mark.asyncio
    async def test_full_rejection_scenario(self, workflow, org, queries):
        view = await workflow.create_claim(org.employee, **claim_payload())
        assert view.status is ClaimStatus.DRAFT

        view = await workflow.submit(view.id, org.employee)
        assert view.status is ClaimStatus.PENDING_MANAGER
        assert _actions(view) == [AuditAction.CREATED, AuditAction.SUBMITTED]

        view = await workflow.manager_decide(view.id, org.manager, approve=True, comment=None)
        assert view.status is ClaimStatus.PENDING_FINANCE
        assert _actions(view)[-1] is AuditAction.MANAGER_APPROVED

        with pytest.raises(ClaimValidationError):
            await workflow.finance_decide(view.id, org.finance, approve=False, comment="")
        unchanged = await queries.get_by_id(view.id, org.finance)
        assert unchanged.status is ClaimStatus.PENDING_FINANCE
        assert len(unchanged.history) == 3

        view = await workflow.finance_decide(
            view.id, org.finance, approve=False, comment="missing receipt"
        )
        assert view.status is ClaimStatus.REJECTED_FINANCE
        assert view.history[-1].action is AuditAction.FINANCE_REJECTED
        assert view.history[-1].comment == "missing receipt"
        assert view.history[-1].actor_name == "Thu Finance"

        with pytest.raises(InvalidClaimStateError):
            await workflow.finance_decide(view.id, org.finance, approve=True)

    @pytest.mark.asyncio
    async def test_happy_path_to_paid(self, workflow, org, clock):
        view = await workflow.create_claim(org.employee, **claim_payload())
        await workflow.submit(view.id, org.employee)
        await workflow.manager_decide(view.id, org.manager, approve=True, comment="Fine")
        await workflow.finance_decide(view.id, org.finance, approve=True)
        clock.advance(days=1)

        view = await workflow.mark_paid(view.id, org.finance)

        assert view.status is ClaimStatus.PAID
        assert view.updated_at == clock.now
        assert _actions(view) == [
            AuditAction.CREATED,
            AuditAction.SUBMITTED,
            AuditAction.MANAGER_APPROVED,
            AuditAction.FINANCE_APPROVED,
            AuditAction.MARKED_AS_PAID,
        ]
        assert view.history[-1].comment == "Payment processed"

    @pytest.mark.asyncio
    async def test_manager_reject_requires_comment(self, workflow, org):
        view = await workflow.create_claim(org.employee, **claim_payload())
        await workflow.submit(view.id, org.employee)

        for blank in (None, "", "   "):
            with pytest.raises(ClaimValidationError) as exc_info:
                await workflow.manager_decide(view.id, org.manager, approve=False, comment=blank)
            assert exc_info.value.field == "comment"

        view = await workflow.manager_decide(
            view.id, org.manager, approve=False, comment="Not a business expense"
        )
        assert view.status is ClaimStatus.REJECTED_MANAGER
        assert len(view.history) == 3

    @pytest.mark.asyncio
    async def test_rejections_are_terminal(self, workflow, org):
        view = await workflow.create_claim(org.employee, **claim_payload())
        await workflow.submit(view.id, org.employee)
        await workflow.manager_decide(view.id, org.manager, approve=False, comment="No")

        with pytest.raises(InvalidClaimStateError):
            await workflow.submit(view.id, org.employee)
        with pytest.raises(InvalidClaimStateError):
            await workflow.manager_decide(view.id, org.manager, approve=True)

    @pytest.mark.asyncio
    async def test_repeat_approval_is_invalid_state(self, workflow, org, queries):
        view = await workflow.create_claim(org.employee, **claim_payload())
        await workflow.submit(view.id, org.employee)
        first = await workflow.manager_decide(view.id, org.manager, approve=True)

        with pytest.raises(InvalidClaimStateError):
            await workflow.manager_decide(view.id, org.manager, approve=True)

        after = await queries.get_by_id(view.id, org.manager)
        assert after.status is first.status
        assert len(after.history) == len(first.history)

    @pytest.mark.asyncio
    async def test_only_the_owners_manager_may_decide(self, workflow, org):
        view = await workflow.create_claim(org.employee, **claim_payload())
        await workflow.submit(view.id, org.employee)

        for actor in (org.other_manager, org.finance, org.admin, org.employee):
            with pytest.raises(ClaimForbiddenError):
                await workflow.manager_decide(view.id, actor, approve=True)

    @pytest.mark.asyncio
    async def test_authorization_checked_before_state(self, workflow, org):
        view = await workflow.create_claim(org.employee, **claim_payload())

        # DRAFT is the wrong state, but the outsider is not even authorized
        with pytest.raises(ClaimForbiddenError):
            await workflow.manager_decide(view.id, org.other_manager, approve=False, comment="")

        with pytest.raises(InvalidClaimStateError):
            await workflow.manager_decide(view.id, org.manager, approve=False, comment="")

    @pytest.mark.asyncio
    async def test_only_finance_may_decide_or_pay(self, workflow, org):
        view = await workflow.create_claim(org.employee, **claim_payload())
        await workflow.submit(view.id, org.employee)
        await workflow.manager_decide(view.id, org.manager, approve=True)

        for actor in (org.manager, org.employee, org.admin):
            with pytest.raises(ClaimForbiddenError):
                await workflow.finance_decide(view.id, actor, approve=True)

        await workflow.finance_decide(view.id, org.finance, approve=True)
        with pytest.raises(ClaimForbiddenError):
            await workflow.mark_paid(view.id, org.admin)

    @pytest.mark.asyncio
    async def test_submit_by_non_owner(self, workflow, org):
        view = await workflow.create_claim(org.employee, **claim_payload())

        with pytest.raises(ClaimForbiddenError):
            await workflow.submit(view.id, org.manager)

    @pytest.mark.asyncio
    async def test_transition_on_missing_claim(self, workflow, org):
        with pytest.raises(ClaimNotFoundError):
            await workflow.submit(404, org.employee)
        with pytest.raises(ClaimNotFoundError):
            await workflow.mark_paid(404, org.finance)

    @pytest.mark.asyncio
    async def test_audit_sequence_grows_by_one(self, workflow, org, database):
        view = await workflow.create_claim(org.employee, **claim_payload())
        await workflow.submit(view.id, org.employee)
        await workflow.manager_decide(view.id, org.manager, approve=True)

        async with database() as db:
            sequences = (await db.scalars(
                select(AuditEntryRecord.sequence)
                .where(AuditEntryRecord.claim_id == view.id)
                .order_by(AuditEntryRecord.sequence)
            )).all()
            claim = await db.get(ClaimRecord, view.id)

        assert sequences == [1, 2, 3]
        # One version bump per committed mutation after the insert
        assert claim.version == 3


@pytest.mark.unit
class TestStorageFaults:
    """Database errors surface as retryable storage faults and commit nothing."""

    @pytest.mark.asyncio
    async def test_commit_failure_leaves_claim_unchanged(
        self, workflow, queries, known_org, database, monkeypatch
    ):
        org = known_org
        view = await workflow.create_claim(org.employee, **claim_payload())
        view = await workflow.submit(view.id, org.employee)

        monkeypatch.setattr(Session, "flush", _failing_flush)
        with pytest.raises(StorageUnavailableError) as exc_info:
            await workflow.manager_decide(view.id, org.manager, approve=True)
        monkeypatch.undo()

        error = exc_info.value
        assert not isinstance(error, InvalidClaimStateError)
        assert error.retryable is True
        assert error.code == "STORAGE_UNAVAILABLE"
        assert error.status_code == 503
        assert isinstance(error.__cause__, OperationalError)

        current = await queries.get_by_id(view.id, org.manager)
        assert current.status is ClaimStatus.PENDING_MANAGER
        assert _actions(current) == [AuditAction.CREATED, AuditAction.SUBMITTED]

        async with database() as db:
            audit_rows = await db.scalar(select(func.count()).select_from(AuditEntryRecord))
            claim = await db.get(ClaimRecord, view.id)
        assert audit_rows == 2
        assert claim.version == 2

        # The same decision succeeds once storage recovers
        retried = await workflow.manager_decide(view.id, org.manager, approve=True)
        assert retried.status is ClaimStatus.PENDING_FINANCE

    @pytest.mark.asyncio
    async def test_create_failure_leaves_no_rows(self, workflow, known_org, database, monkeypatch):
        monkeypatch.setattr(Session, "flush", _failing_flush)
        with pytest.raises(StorageUnavailableError):
            await workflow.create_claim(known_org.employee, **claim_payload())
        monkeypatch.undo()

        async with database() as db:
            claims = await db.scalar(select(func.count()).select_from(ClaimRecord))
            audit_rows = await db.scalar(select(func.count()).select_from(AuditEntryRecord))
        assert claims == 0
        assert audit_rows == 0

    @pytest.mark.asyncio
    async def test_load_failure_is_storage_unavailable(self, workflow, known_org, monkeypatch):
        org = known_org
        view = await workflow.create_claim(org.employee, **claim_payload())

        async def failing_load(db, claim_id):
            raise OperationalError("SELECT claims", {}, Exception("connection reset"))

        monkeypatch.setattr(workflow_engine, "load_claim", failing_load)
        with pytest.raises(StorageUnavailableError) as exc_info:
            await workflow.submit(view.id, org.employee)

        assert exc_info.value.retryable is True
        assert exc_info.value.claim_id == view.id
