"""Credit-related Pydantic schemas."""

from datetime import datetime
from typing import List, Optional
from uuid import UUID
from pydantic import BaseModel, Field, ConfigDict
from mockup_queue.models.credit import LedgerEntryKind


class LedgerEntryView(BaseModel):
    """One credit ledger entry."""

    id: UUID = Field(..., description="Entry identifier")
    kind: LedgerEntryKind = Field(..., description="Entry kind")
    amount: int = Field(..., description="Credits involved")
    delta: int = Field(..., description="Signed change to the balance")
    reason: str = Field(..., description="Why the entry was written")
    job_id: Optional[UUID] = Field(None, description="Related job")
    created_at: datetime = Field(..., description="Entry timestamp")

    model_config = ConfigDict(from_attributes=True)


class CreditBalanceResponse(BaseModel):
    """Balance with recent ledger activity."""

    user_id: str = Field(..., description="Account owner")
    balance: int = Field(..., description="Spendable credits")
    reserved: int = Field(..., description="Credits held by active jobs")
    entries: List[LedgerEntryView] = Field(..., description="Most recent entries")


class CreditAdjustmentRequest(BaseModel):
    """Admin grant or debit."""

    user_id: str = Field(..., min_length=1, max_length=255, description="Account owner")
    amount: int = Field(..., gt=0, description="Credits to add or remove")
    reason: str = Field(..., min_length=1, max_length=500, description="Reason for the adjustment")


class CreditAdjustmentResponse(BaseModel):
    """Balance after an adjustment."""

    user_id: str = Field(..., description="Account owner")
    balance: int = Field(..., description="New balance")
