"""Pydantic schemas for claim views and claim commands."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from claimflow.business.workflow_rules import AuditAction, ClaimStatus
from claimflow.storage.models import AuditEntryRecord, ClaimRecord


class AuditEntryView(BaseModel):
    """One rendered audit entry of a claim's history."""

    model_config = ConfigDict(populate_by_name=True)

    actor_name: str = Field(alias="actorName")
    action: AuditAction
    comment: Optional[str] = None
    created_at: datetime = Field(alias="createdAt")

    @classmethod
    def from_record(cls, entry: AuditEntryRecord) -> "AuditEntryView":
        return cls(
            actor_name=entry.actor_name,
            action=AuditAction(entry.action),
            comment=entry.comment,
            created_at=entry.created_at,
        )


class ClaimView(BaseModel):
    """Serializable projection of a claim aggregate including its history.

    The JSON field names are the stable external contract.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "id": 42,
                "employeeId": 7,
                "employeeName": "Mai Tran",
                "title": "Client dinner",
                "description": "Dinner with the Hanoi distributor",
                "amount": "100.00",
                "receiptImageUrl": "https://files.example.com/receipts/42.jpg",
                "status": "PENDING_MANAGER",
                "createdAt": "2025-08-16T10:00:00",
                "updatedAt": "2025-08-16T10:05:00",
                "history": [
                    {
                        "actorName": "Mai Tran",
                        "action": "CREATED",
                        "comment": "Draft created",
                        "createdAt": "2025-08-16T10:00:00"
                    },
                    {
                        "actorName": "Mai Tran",
                        "action": "SUBMITTED",
                        "comment": "Submitted for manager review",
                        "createdAt": "2025-08-16T10:05:00"
                    }
                ]
            }
        }
    )

    id: int
    owner_id: int = Field(alias="employeeId")
    owner_name: str = Field(alias="employeeName")
    title: str
    description: Optional[str] = None
    amount: Decimal
    receipt_ref: Optional[str] = Field(None, alias="receiptImageUrl")
    status: ClaimStatus
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")
    history: List[AuditEntryView] = Field(default_factory=list)

    @classmethod
    def from_record(cls, claim: ClaimRecord) -> "ClaimView":
        return cls(
            id=claim.id,
            owner_id=claim.owner_id,
            owner_name=claim.owner_name,
            title=claim.title,
            description=claim.description,
            amount=claim.amount,
            receipt_ref=claim.receipt_ref,
            status=ClaimStatus(claim.status),
            created_at=claim.created_at,
            updated_at=claim.updated_at,
            history=[AuditEntryView.from_record(entry) for entry in claim.audit_trail],
        )


# ==== COMMAND PAYLOADS ==== #


class ClaimCreateRequest(BaseModel):
    """Request schema for drafting a new claim."""

    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(..., max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    amount: Decimal
    receipt_ref: Optional[str] = Field(None, alias="receiptImageUrl", max_length=1024)


class ClaimUpdateRequest(BaseModel):
    """Request schema for editing a DRAFT claim; omitted fields stay unchanged."""

    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = Field(None, max_length=2000)
    amount: Optional[Decimal] = None
    receipt_ref: Optional[str] = Field(None, alias="receiptImageUrl", max_length=1024)

    def changed_fields(self) -> dict:
        return self.model_dump(exclude_unset=True, by_alias=False)


class DecisionRequest(BaseModel):
    """Manager or finance decision comment; required when rejecting."""

    comment: Optional[str] = Field(None, max_length=2000)
