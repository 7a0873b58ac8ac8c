"""SQLAlchemy models for the claimflow claim aggregate and identity directory."""

import datetime as dt
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import (
    String, Integer, ForeignKey, UniqueConstraint,
    Text, DateTime, Numeric, Index
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from claimflow.business.errors import InvalidClaimStateError
from claimflow.business.identity import Identity
from claimflow.business.workflow_rules import (
    AuditAction, ClaimStatus, Transition, CREATED_COMMENT
)
from claimflow.storage.db import Base


class IdentityRecord(Base):
    """Directory mirror of identities seen by the service.

    Holds no credentials. Rows are refreshed from authenticated identities
    and answer the question "who is this owner's manager right now".
    ``issued_at`` is the issue time of the attributes currently stored; an
    identity issued earlier never overwrites them.
    """

    __tablename__ = "identities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    display_name: Mapped[str] = mapped_column(String(128), nullable=False)
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    manager_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    issued_at: Mapped[dt.datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime, nullable=False)


class ClaimRecord(Base):
    """Reimbursement claim together with its owned audit trail.

    This is the unit of consistency: status and audit entries change in
    the same flush, guarded by the ``version`` optimistic concurrency token.
    """

    __tablename__ = "claims"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    owner_name: Mapped[str] = mapped_column(String(128), nullable=False)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    receipt_ref: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)

    status: Mapped[str] = mapped_column(
        String(32), default=ClaimStatus.DRAFT.value, nullable=False
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # Audit fields
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(DateTime, nullable=False)

    # Relationships
    audit_entries: Mapped[List["AuditEntryRecord"]] = relationship(
        back_populates="claim",
        order_by="AuditEntryRecord.sequence",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    # Indexes
    __table_args__ = (
        Index("ix_claims_status_created", "status", "created_at"),
        Index("ix_claims_status_updated", "status", "updated_at"),
        Index("ix_claims_owner_created", "owner_id", "created_at"),
    )

    __mapper_args__ = {"version_id_col": version}

    @classmethod
    def draft(
        cls,
        owner: Identity,
        title: str,
        description: Optional[str],
        amount: Decimal,
        receipt_ref: Optional[str],
        now: dt.datetime
    ) -> "ClaimRecord":
        """Build a new DRAFT claim carrying its CREATED audit entry."""
        claim = cls(
            owner_id=owner.id,
            owner_name=owner.display_name,
            title=title,
            description=description,
            amount=amount,
            receipt_ref=receipt_ref,
            status=ClaimStatus.DRAFT.value,
            created_at=now,
            updated_at=now,
            audit_entries=[],
        )
        claim._append_audit(owner, AuditAction.CREATED, CREATED_COMMENT, now)
        return claim

    @property
    def claim_status(self) -> ClaimStatus:
        return ClaimStatus(self.status)

    @property
    def audit_trail(self) -> Tuple["AuditEntryRecord", ...]:
        """Read-only, insertion-ordered view of the audit entries."""
        return tuple(self.audit_entries)

    def require_draft(self, operation: str) -> None:
        if self.claim_status is not ClaimStatus.DRAFT:
            raise InvalidClaimStateError(
                f"Claim {self.id} can only be {operation} while DRAFT "
                f"(current status: {self.status})",
                claim_id=self.id
            )

    def apply_update(self, fields: Dict[str, Any], now: dt.datetime) -> None:
        """Overwrite editable fields on a DRAFT claim.

        Args:
            fields: Already-validated values keyed by field name
            now: Mutation timestamp
        """
        self.require_draft("updated")
        for name, value in fields.items():
            setattr(self, name, value)
        self.updated_at = now

    def apply_transition(
        self,
        transition: Transition,
        actor: Identity,
        comment: Optional[str],
        now: dt.datetime
    ) -> "AuditEntryRecord":
        """Move to the transition target and append exactly one audit entry.

        Callers have already checked authorization and the source status;
        this re-asserts the source status so a misuse can never skip an edge.
        """
        if self.claim_status is not transition.source:
            raise InvalidClaimStateError(
                f"Claim {self.id} is not in status {transition.source.value}",
                claim_id=self.id
            )
        self.status = transition.target.value
        self.updated_at = now
        return self._append_audit(
            actor,
            transition.audit_action,
            comment if comment is not None else transition.default_comment,
            now,
        )

    def _append_audit(
        self,
        actor: Identity,
        action: AuditAction,
        comment: Optional[str],
        now: dt.datetime
    ) -> "AuditEntryRecord":
        entry = AuditEntryRecord(
            sequence=len(self.audit_entries) + 1,
            actor_id=actor.id,
            actor_name=actor.display_name,
            action=action.value,
            comment=comment,
            created_at=now,
        )
        self.audit_entries.append(entry)
        return entry


class AuditEntryRecord(Base):
    """Immutable record of one accepted action against a claim.

    Invariants:
    - Written once when the action is accepted, never edited
    - Removed only together with its claim
    - ``sequence`` is the per-claim insertion order, starting at 1
    """

    __tablename__ = "claim_audit_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    claim_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("claims.id", ondelete="CASCADE"),
        nullable=False
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    actor_id: Mapped[int] = mapped_column(Integer, nullable=False)
    actor_name: Mapped[str] = mapped_column(String(128), nullable=False)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(DateTime, nullable=False)

    claim: Mapped[ClaimRecord] = relationship(back_populates="audit_entries")

    __table_args__ = (
        UniqueConstraint("claim_id", "sequence", name="uq_claim_audit_sequence"),
    )

    @property
    def audit_action(self) -> AuditAction:
        return AuditAction(self.action)


# ==== END OF MODELS ==== #
