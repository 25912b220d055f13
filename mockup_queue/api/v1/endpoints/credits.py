"""Credit balance and admin adjustment endpoints."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from mockup_queue.api.dependencies import get_current_member, require_admin
from mockup_queue.core.config import get_settings, Settings
from mockup_queue.core.logging import get_logger
from mockup_queue.db.database import get_session
from mockup_queue.schemas.credit import (
    CreditAdjustmentRequest,
    CreditAdjustmentResponse,
    CreditBalanceResponse,
    LedgerEntryView,
)
from mockup_queue.services.credit_ledger import CreditLedger
from mockup_queue.services.membership_service import Member

router = APIRouter()
logger = get_logger(__name__)


@router.get("", response_model=CreditBalanceResponse)
async def get_credits(
    limit: int = Query(20, ge=1, le=100, description="Ledger entries to return"),
    member: Member = Depends(get_current_member),
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings)
) -> CreditBalanceResponse:
    """Caller's balance, credits held by active jobs and recent ledger entries."""
    ledger = CreditLedger(db, initial_grant=settings.initial_credit_grant)
    await ledger.open_account(member.user_id)
    entries = await ledger.list_entries(member.user_id, limit=limit)

    return CreditBalanceResponse(
        user_id=member.user_id,
        balance=await ledger.get_balance(member.user_id),
        reserved=await ledger.outstanding_total(member.user_id),
        entries=[LedgerEntryView.model_validate(entry) for entry in entries]
    )


@router.post(
    "/grant",
    response_model=CreditAdjustmentResponse,
    dependencies=[Depends(require_admin)]
)
async def grant_credits(
    adjustment: CreditAdjustmentRequest,
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings)
) -> CreditAdjustmentResponse:
    """Add purchased or promotional credits to an account."""
    ledger = CreditLedger(db, initial_grant=settings.initial_credit_grant)
    balance = await ledger.grant(adjustment.user_id, adjustment.amount, adjustment.reason)
    await db.commit()
    return CreditAdjustmentResponse(user_id=adjustment.user_id, balance=balance)


@router.post(
    "/debit",
    response_model=CreditAdjustmentResponse,
    dependencies=[Depends(require_admin)]
)
async def debit_credits(
    adjustment: CreditAdjustmentRequest,
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings)
) -> CreditAdjustmentResponse:
    """Remove credits for an out-of-band purchase or correction."""
    ledger = CreditLedger(db, initial_grant=settings.initial_credit_grant)
    balance = await ledger.debit(adjustment.user_id, adjustment.amount, adjustment.reason)
    await db.commit()
    return CreditAdjustmentResponse(user_id=adjustment.user_id, balance=balance)
