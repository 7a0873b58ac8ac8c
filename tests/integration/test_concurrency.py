"""Integration tests for optimistic concurrency and manager reassignment."""

import asyncio
from dataclasses import replace
from datetime import timedelta

import pytest
from sqlalchemy import func, select, update

from claimflow.business.errors import (
    ClaimForbiddenError,
    ConcurrentUpdateError,
    InvalidClaimStateError,
)
from claimflow.business.workflow_rules import AuditAction, ClaimStatus
from claimflow.services.workflow_engine import WorkflowEngine
from claimflow.storage.claims import IdentityDirectory
from claimflow.storage.models import ClaimRecord, IdentityRecord
from tests.factories.identity_factories import IdentityFactory, claim_payload


class GatedDirectory(IdentityDirectory):
    """Directory that pauses the first manager lookup until released."""

    def __init__(self):
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def manager_of(self, db, identity_id):
        manager_id = await super().manager_of(db, identity_id)
        if not self.entered.is_set():
            self.entered.set()
            await self.release.wait()
        return manager_id


async def _submitted_claim(workflow, owner):
    view = await workflow.create_claim(owner, **claim_payload())
    return await workflow.submit(view.id, owner)


@pytest.mark.integration
class TestOptimisticConcurrency:
    """Test cases for two writers racing on one claim."""

    @pytest.mark.asyncio
    async def test_double_manager_approval(self, workflow, queries, known_org, database, clock):
        org = known_org
        claim = await _submitted_claim(workflow, org.employee)

        gate = GatedDirectory()
        slow = WorkflowEngine(session_factory=database, directory=gate, clock=clock)
        slow_call = asyncio.create_task(slow.manager_decide(claim.id, org.manager, approve=True))

        # The slow writer has read the PENDING_MANAGER claim and is paused
        await asyncio.wait_for(gate.entered.wait(), timeout=5)
        winner = await workflow.manager_decide(claim.id, org.manager, approve=True)
        gate.release.set()

        with pytest.raises(InvalidClaimStateError):
            await asyncio.wait_for(slow_call, timeout=5)

        final = await queries.get_by_id(claim.id, org.manager)
        assert winner.status is ClaimStatus.PENDING_FINANCE
        assert final.status is ClaimStatus.PENDING_FINANCE
        assert [e.action for e in final.history].count(AuditAction.MANAGER_APPROVED) == 1
        assert len(final.history) == 3

    @pytest.mark.asyncio
    async def test_conflict_with_action_still_valid_is_retryable(
        self, workflow, queries, known_org, database, clock
    ):
        org = known_org
        claim = await _submitted_claim(workflow, org.employee)

        gate = GatedDirectory()
        slow = WorkflowEngine(session_factory=database, directory=gate, clock=clock)
        slow_call = asyncio.create_task(
            slow.manager_decide(claim.id, org.manager, approve=False, comment="Duplicate")
        )
        await asyncio.wait_for(gate.entered.wait(), timeout=5)

        # Another writer bumps the version without changing the status
        async with database() as db:
            async with db.begin():
                await db.execute(
                    update(ClaimRecord)
                    .where(ClaimRecord.id == claim.id)
                    .values(version=ClaimRecord.version + 1)
                    .execution_options(synchronize_session=False)
                )
        gate.release.set()

        with pytest.raises(ConcurrentUpdateError) as exc_info:
            await asyncio.wait_for(slow_call, timeout=5)
        assert exc_info.value.retryable

        # The losing action was not applied; a retry succeeds
        current = await queries.get_by_id(claim.id, org.manager)
        assert current.status is ClaimStatus.PENDING_MANAGER
        assert len(current.history) == 2

        retried = await workflow.manager_decide(
            claim.id, org.manager, approve=False, comment="Duplicate"
        )
        assert retried.status is ClaimStatus.REJECTED_MANAGER

    @pytest.mark.asyncio
    async def test_different_claims_are_independent(self, workflow, known_org):
        org = known_org
        first = await _submitted_claim(workflow, org.employee)
        second = await _submitted_claim(workflow, org.colleague)

        a = await workflow.manager_decide(first.id, org.manager, approve=True)
        b = await workflow.manager_decide(second.id, org.manager, approve=False, comment="No")

        assert a.status is ClaimStatus.PENDING_FINANCE
        assert b.status is ClaimStatus.REJECTED_MANAGER


@pytest.mark.integration
class TestManagerReassignment:
    """Authorization follows the current manager without rewriting history."""

    @pytest.mark.asyncio
    async def test_reassignment_affects_only_future_decisions(self, workflow, queries, known_org):
        org = known_org
        decided = await _submitted_claim(workflow, org.employee)
        decided = await workflow.manager_decide(decided.id, org.manager, approve=True)
        waiting = await _submitted_claim(workflow, org.employee)

        # The employee now reports to the other manager
        moved = replace(org.employee, manager_id=org.other_manager.id)
        fresh = await _submitted_claim(workflow, moved)

        for claim_id in (waiting.id, fresh.id):
            with pytest.raises(ClaimForbiddenError):
                await workflow.manager_decide(claim_id, org.manager, approve=True)

        assert await queries.list_team_pending(org.manager) == []
        queue = await queries.list_team_pending(org.other_manager)
        assert [v.id for v in queue] == [waiting.id, fresh.id]

        approved = await workflow.manager_decide(waiting.id, org.other_manager, approve=True)
        assert approved.history[-1].actor_name == "Quan Manager"

        history = (await queries.get_by_id(decided.id, org.finance)).history
        assert history[-1].action is AuditAction.MANAGER_APPROVED
        assert history[-1].actor_name == "Linh Manager"

    @pytest.mark.asyncio
    async def test_identity_issued_before_reassignment_cannot_restore_old_manager(
        self, workflow, queries, known_org, clock
    ):
        org = known_org
        moved = replace(
            org.employee,
            manager_id=org.other_manager.id,
            issued_at=clock.now + timedelta(minutes=10)
        )
        claim = await _submitted_claim(workflow, moved)

        # A token minted before the move is still valid and still names the old manager
        stale = replace(org.employee, issued_at=clock.now + timedelta(minutes=5))
        await workflow.create_claim(stale, **claim_payload(title="Parking"))

        with pytest.raises(ClaimForbiddenError):
            await workflow.manager_decide(claim.id, org.manager, approve=True)

        assert await queries.list_team_pending(org.manager) == []
        queue = await queries.list_team_pending(org.other_manager)
        assert [v.id for v in queue] == [claim.id]


@pytest.mark.integration
class TestFirstSightingConcurrency:
    """Concurrent first requests from an identity the directory has not seen."""

    @pytest.mark.asyncio
    async def test_concurrent_first_creates_all_succeed(
        self, workflow, queries, database, directory, org
    ):
        newcomer = IdentityFactory(next_id=100).employee("Lan Vo", manager=org.manager)

        views = await asyncio.wait_for(
            asyncio.gather(*(
                workflow.create_claim(newcomer, **claim_payload(title=f"Taxi {n}"))
                for n in range(3)
            )),
            timeout=10
        )

        assert len({v.id for v in views}) == 3
        assert all(v.status is ClaimStatus.DRAFT for v in views)
        assert len(await queries.list_mine(newcomer)) == 3

        async with database() as db:
            count = await db.scalar(
                select(func.count()).select_from(IdentityRecord)
                .where(IdentityRecord.id == newcomer.id)
            )
            manager_id = await directory.manager_of(db, newcomer.id)
        assert count == 1
        assert manager_id == org.manager.id

    @pytest.mark.asyncio
    async def test_concurrent_first_syncs_keep_one_row(self, database, directory, org, clock):
        newcomer = IdentityFactory(next_id=200).employee("Khanh Do", manager=org.other_manager)

        async def sync_once():
            async with database() as db:
                async with db.begin():
                    return await directory.sync(db, newcomer, clock())

        results = await asyncio.wait_for(
            asyncio.gather(*(sync_once() for _ in range(3))), timeout=10
        )

        assert any(results)
        async with database() as db:
            row = await db.get(IdentityRecord, newcomer.id)
        assert row.manager_id == org.other_manager.id
        assert row.display_name == "Khanh Do"
