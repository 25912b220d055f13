"""Credit ledger: the only code path that mutates a user's balance."""

from typing import List, Optional
from uuid import UUID
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from mockup_queue.core.exceptions import AccountNotFound, InsufficientCredits
from mockup_queue.core.logging import get_logger
from mockup_queue.core.timezone import utcnow
from mockup_queue.models import (
    CreditAccount,
    CreditLedgerEntry,
    CreditReservation,
    LedgerEntryKind,
    ReservationStatus,
)

logger = get_logger(__name__)


class CreditLedger:
    """Reserve, settle, refund, grant and debit credits with an append-only log.

    Every balance change is a conditional UPDATE plus a ledger entry inside
    the caller's transaction. The ledger flushes but never commits, so credit
    changes commit atomically with the job change that caused them.
    """

    def __init__(self, db: AsyncSession, initial_grant: int = 0):
        """Initialize ledger with database session."""
        self.db = db
        self.initial_grant = initial_grant

    async def open_account(self, user_id: str) -> CreditAccount:
        """Get the user's account, creating it on first use.

        Args:
            user_id: Account owner

        Returns:
            Credit account
        """
        account = await self.db.get(CreditAccount, user_id)
        if account:
            return account

        account = CreditAccount(user_id=user_id, balance=0)
        self.db.add(account)
        await self.db.flush()

        logger.info("Credit account opened", user_id=user_id)

        if self.initial_grant > 0:
            await self.grant(user_id, self.initial_grant, "Welcome credits")
        return account

    async def get_account(self, user_id: str) -> Optional[CreditAccount]:
        """Get an account without creating it."""
        return await self.db.get(CreditAccount, user_id)

    async def get_balance(self, user_id: str) -> int:
        """Current spendable balance (0 for unknown users)."""
        result = await self.db.execute(
            select(CreditAccount.balance).where(CreditAccount.user_id == user_id)
        )
        return result.scalar_one_or_none() or 0

    async def lock_account(self, user_id: str) -> CreditAccount:
        """Enter the per-user critical section.

        Bumps the account version with an UPDATE so the row stays write-locked
        until the surrounding transaction ends. Admissions and dispatches for
        the same user serialize here; other users are unaffected.
        """
        await self.open_account(user_id)
        await self.db.execute(
            update(CreditAccount)
            .where(CreditAccount.user_id == user_id)
            .values(version=CreditAccount.version + 1)
            .execution_options(synchronize_session=False)
        )
        account = await self.db.get(CreditAccount, user_id, populate_existing=True)
        return account

    async def reserve(
        self,
        user_id: str,
        amount: int,
        reason: str,
        job_id: Optional[UUID] = None,
    ) -> CreditReservation:
        """Hold credits for a job.

        Args:
            user_id: Account owner
            amount: Credits to hold
            reason: Ledger reason
            job_id: Job the hold backs, when already known

        Returns:
            Held reservation

        Raises:
            InsufficientCredits: If the balance does not cover the amount
        """
        if amount < 0:
            raise ValueError("Reservation amount must be non-negative")

        await self._withdraw(user_id, amount)

        reservation = CreditReservation(user_id=user_id, job_id=job_id, amount=amount)
        self.db.add(reservation)
        self._append(
            user_id,
            LedgerEntryKind.RESERVE,
            amount,
            -amount,
            reason,
            job_id=job_id,
            reservation_id=reservation.id,
        )
        await self.db.flush()

        logger.info(
            "Credits reserved",
            user_id=user_id,
            amount=amount,
            reservation_id=str(reservation.id),
            job_id=str(job_id) if job_id else None
        )
        return reservation

    async def settle(
        self,
        reservation: CreditReservation,
        actual_amount: int,
        reason: str = "Generation completed",
    ) -> bool:
        """Consume a reservation, refunding any shortfall.

        An actual amount above the reservation is clamped to the reserved
        amount; the user is never charged beyond the hold.

        Returns:
            True if this call resolved the reservation, False if it was
            already settled or released
        """
        consumed = max(0, min(actual_amount, reservation.amount))
        if actual_amount > reservation.amount:
            logger.warning(
                "Actual credits exceed reservation, clamping",
                reservation_id=str(reservation.id),
                reserved=reservation.amount,
                actual=actual_amount
            )

        if not await self._resolve(reservation, ReservationStatus.SETTLED, consumed):
            return False

        self._append(
            reservation.user_id,
            LedgerEntryKind.SETTLE,
            consumed,
            0,
            reason,
            job_id=reservation.job_id,
            reservation_id=reservation.id,
        )
        shortfall = reservation.amount - consumed
        if shortfall > 0:
            await self._deposit(reservation.user_id, shortfall)
            self._append(
                reservation.user_id,
                LedgerEntryKind.REFUND,
                shortfall,
                shortfall,
                f"{reason}: unused reservation",
                job_id=reservation.job_id,
                reservation_id=reservation.id,
            )
        await self.db.flush()

        logger.info(
            "Reservation settled",
            reservation_id=str(reservation.id),
            consumed=consumed,
            refunded=shortfall
        )
        return True

    async def release(self, reservation: CreditReservation, reason: str) -> bool:
        """Refund the full held amount of a reservation exactly once.

        Returns:
            True if credits were returned, False if already resolved
        """
        if not await self._resolve(reservation, ReservationStatus.RELEASED, 0):
            return False

        if reservation.amount > 0:
            await self._deposit(reservation.user_id, reservation.amount)
        self._append(
            reservation.user_id,
            LedgerEntryKind.REFUND,
            reservation.amount,
            reservation.amount,
            reason,
            job_id=reservation.job_id,
            reservation_id=reservation.id,
        )
        await self.db.flush()

        logger.info(
            "Reservation released",
            reservation_id=str(reservation.id),
            amount=reservation.amount,
            reason=reason
        )
        return True

    async def refund(
        self,
        user_id: str,
        amount: int,
        reason: str,
        job_id: Optional[UUID] = None,
    ) -> int:
        """Return credits to a user outside of a reservation.

        Returns:
            New balance
        """
        if amount <= 0:
            raise ValueError("Refund amount must be positive")
        await self.open_account(user_id)
        await self._deposit(user_id, amount)
        self._append(user_id, LedgerEntryKind.REFUND, amount, amount, reason, job_id=job_id)
        await self.db.flush()
        return await self.get_balance(user_id)

    async def grant(self, user_id: str, amount: int, reason: str) -> int:
        """Add purchased or promotional credits.

        Returns:
            New balance
        """
        if amount <= 0:
            raise ValueError("Grant amount must be positive")
        if await self.get_account(user_id) is None:
            self.db.add(CreditAccount(user_id=user_id, balance=0))
            await self.db.flush()
        await self._deposit(user_id, amount)
        self._append(user_id, LedgerEntryKind.GRANT, amount, amount, reason)
        await self.db.flush()

        logger.info("Credits granted", user_id=user_id, amount=amount, reason=reason)
        return await self.get_balance(user_id)

    async def debit(self, user_id: str, amount: int, reason: str) -> int:
        """Remove credits for out-of-band purchases or corrections.

        Returns:
            New balance

        Raises:
            InsufficientCredits: If the balance does not cover the amount
        """
        if amount <= 0:
            raise ValueError("Debit amount must be positive")
        if await self.get_account(user_id) is None:
            raise AccountNotFound(f"No credit account for user {user_id}")
        await self._withdraw(user_id, amount)
        self._append(user_id, LedgerEntryKind.DEBIT, amount, -amount, reason)
        await self.db.flush()

        logger.info("Credits debited", user_id=user_id, amount=amount, reason=reason)
        return await self.get_balance(user_id)

    async def get_reservation(self, reservation_id: UUID) -> Optional[CreditReservation]:
        """Get a reservation by ID."""
        return await self.db.get(CreditReservation, reservation_id, populate_existing=True)

    async def outstanding_total(self, user_id: Optional[str] = None) -> int:
        """Sum of credits currently held by unresolved reservations."""
        stmt = select(func.coalesce(func.sum(CreditReservation.amount), 0)).where(
            CreditReservation.status == ReservationStatus.HELD
        )
        if user_id is not None:
            stmt = stmt.where(CreditReservation.user_id == user_id)
        result = await self.db.execute(stmt)
        return int(result.scalar_one())

    async def list_entries(self, user_id: str, limit: int = 50) -> List[CreditLedgerEntry]:
        """Most recent ledger entries for a user, newest first."""
        result = await self.db.execute(
            select(CreditLedgerEntry)
            .where(CreditLedgerEntry.user_id == user_id)
            .order_by(CreditLedgerEntry.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def derive_balance(self, user_id: str) -> int:
        """Re-derive a balance from the entry log for auditing."""
        result = await self.db.execute(
            select(func.coalesce(func.sum(CreditLedgerEntry.delta), 0)).where(
                CreditLedgerEntry.user_id == user_id
            )
        )
        return int(result.scalar_one())

    async def _withdraw(self, user_id: str, amount: int) -> None:
        """Compare-and-set decrement that never overdraws."""
        result = await self.db.execute(
            update(CreditAccount)
            .where(CreditAccount.user_id == user_id, CreditAccount.balance >= amount)
            .values(balance=CreditAccount.balance - amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            balance = await self.get_balance(user_id)
            raise InsufficientCredits(
                "Insufficient credits",
                {"credits_needed": amount, "credits_available": balance},
            )
        await self._refresh_account(user_id)

    async def _deposit(self, user_id: str, amount: int) -> None:
        await self.db.execute(
            update(CreditAccount)
            .where(CreditAccount.user_id == user_id)
            .values(balance=CreditAccount.balance + amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self._refresh_account(user_id)

    async def _resolve(
        self,
        reservation: CreditReservation,
        status: ReservationStatus,
        settled_amount: int,
    ) -> bool:
        """Move a held reservation to its final status; False if it already moved."""
        result = await self.db.execute(
            update(CreditReservation)
            .where(
                CreditReservation.id == reservation.id,
                CreditReservation.status == ReservationStatus.HELD,
            )
            .values(status=status, settled_amount=settled_amount, resolved_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(reservation)
        if result.rowcount != 1:
            logger.info(
                "Reservation already resolved",
                reservation_id=str(reservation.id),
                status=reservation.status
            )
            return False
        return True

    async def _refresh_account(self, user_id: str) -> None:
        # Bulk UPDATEs bypass the identity map
        await self.db.get(CreditAccount, user_id, populate_existing=True)

    def _append(
        self,
        user_id: str,
        kind: LedgerEntryKind,
        amount: int,
        delta: int,
        reason: str,
        job_id: Optional[UUID] = None,
        reservation_id: Optional[UUID] = None,
    ) -> CreditLedgerEntry:
        entry = CreditLedgerEntry(
            user_id=user_id,
            kind=kind,
            amount=amount,
            delta=delta,
            reason=reason[:500],
            job_id=job_id,
            reservation_id=reservation_id,
        )
        self.db.add(entry)
        return entry
