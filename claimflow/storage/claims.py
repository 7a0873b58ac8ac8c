"""Claim and identity directory queries."""

import datetime as dt
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from claimflow.business.errors import ClaimNotFoundError
from claimflow.business.identity import Identity
from claimflow.business.workflow_rules import ClaimStatus
from claimflow.observability.logging import get_logger
from claimflow.observability.tracing import get_tracer
from claimflow.storage.models import ClaimRecord, IdentityRecord


tracer = get_tracer(__name__)
logger = get_logger(__name__)


# ==== CLAIM LOOKUPS ==== #


async def load_claim(db: AsyncSession, claim_id: int) -> ClaimRecord:
    """Load a claim with its audit trail.

    Args:
        db: Database session
        claim_id: Claim identifier

    Returns:
        The claim aggregate

    Raises:
        ClaimNotFoundError: If no claim has this id
    """
    result = await db.execute(
        select(ClaimRecord)
        .where(ClaimRecord.id == claim_id)
        .execution_options(populate_existing=True)
    )
    claim = result.scalar_one_or_none()
    if claim is None:
        raise ClaimNotFoundError(f"Claim {claim_id} not found", claim_id=claim_id)
    return claim


async def claims_owned_by(db: AsyncSession, owner_id: int) -> List[ClaimRecord]:
    """All claims of one owner, newest first."""
    result = await db.execute(
        select(ClaimRecord)
        .where(ClaimRecord.owner_id == owner_id)
        .order_by(ClaimRecord.created_at.desc(), ClaimRecord.id.desc())
    )
    return list(result.scalars().all())


async def claims_pending_manager(db: AsyncSession, manager_id: int) -> List[ClaimRecord]:
    """Claims awaiting ``manager_id``'s decision, oldest first.

    The owner's manager is resolved through the identity directory at
    query time, so a reassigned employee's queue follows the new manager.
    """
    with tracer.start_as_current_span("claims_pending_manager") as span:
        span.set_attribute("manager_id", manager_id)
        result = await db.execute(
            select(ClaimRecord)
            .join(IdentityRecord, IdentityRecord.id == ClaimRecord.owner_id)
            .where(
                ClaimRecord.status == ClaimStatus.PENDING_MANAGER.value,
                IdentityRecord.manager_id == manager_id,
            )
            .order_by(ClaimRecord.created_at.asc(), ClaimRecord.id.asc())
        )
        return list(result.scalars().all())


async def claims_pending_finance(db: AsyncSession) -> List[ClaimRecord]:
    """Claims awaiting a finance decision, most recently updated first."""
    result = await db.execute(
        select(ClaimRecord)
        .where(ClaimRecord.status == ClaimStatus.PENDING_FINANCE.value)
        .order_by(ClaimRecord.updated_at.desc(), ClaimRecord.id.desc())
    )
    return list(result.scalars().all())


# ==== IDENTITY DIRECTORY ==== #


class IdentityDirectory:
    """Read/refresh access to the identity directory mirror.

    The directory answers the manager relation for authorization and the
    team queue; it is refreshed from identities the service has seen.
    Attributes issued earlier than the stored ones are ignored, so a
    token minted before a reassignment cannot restore the old manager.
    """

    async def sync(self, db: AsyncSession, identity: Identity, now: dt.datetime) -> bool:
        """Record the latest known display name, role and manager of ``identity``.

        Identities without ``issued_at`` are stamped with ``now``. An
        unchanged identity costs one primary-key read and no write.

        Returns:
            True when the directory row was written
        """
        issued_at = identity.issued_at or now
        record = await db.get(IdentityRecord, identity.id)
        if record is not None:
            if record.issued_at > issued_at:
                logger.debug(
                    "Ignoring stale identity attributes",
                    identity_id=identity.id,
                    issued_at=issued_at.isoformat(),
                    current_issued_at=record.issued_at.isoformat()
                )
                return False
            unchanged = (
                record.display_name == identity.display_name
                and record.role == identity.role.value
                and record.manager_id == identity.manager_id
            )
            if unchanged and (identity.issued_at is None or record.issued_at == issued_at):
                return False

        await db.execute(self._upsert(db, {
            "id": identity.id,
            "display_name": identity.display_name,
            "role": identity.role.value,
            "manager_id": identity.manager_id,
            "issued_at": issued_at,
            "updated_at": now,
        }))
        if record is not None:
            db.expire(record)
        return True

    @staticmethod
    def _upsert(db: AsyncSession, values: Dict[str, Any]):
        """INSERT .. ON CONFLICT DO UPDATE guarded by the issue time.

        Concurrent first sightings of one identity all succeed; the row
        keeps whichever attributes were issued last.
        """
        if db.get_bind().dialect.name == "postgresql":
            stmt = postgresql_insert(IdentityRecord).values(**values)
        else:
            stmt = sqlite_insert(IdentityRecord).values(**values)

        return stmt.on_conflict_do_update(
            index_elements=[IdentityRecord.id],
            set_={
                name: stmt.excluded[name] for name in values if name != "id"
            },
            where=IdentityRecord.issued_at <= stmt.excluded.issued_at,
        )

    async def manager_of(self, db: AsyncSession, identity_id: int) -> Optional[int]:
        """Current manager id of ``identity_id``; None when unknown or unmanaged."""
        result = await db.execute(
            select(IdentityRecord.manager_id).where(IdentityRecord.id == identity_id)
        )
        return result.scalar_one_or_none()
