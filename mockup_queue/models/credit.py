"""Credit account, reservation and ledger entry models."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4
from sqlmodel import Column, Field, SQLModel

from mockup_queue.core.timezone import UTCDateTime, utcnow


class ReservationStatus(str, Enum):
    """Lifecycle of a credit hold."""
    HELD = "held"
    SETTLED = "settled"
    RELEASED = "released"


class LedgerEntryKind(str, Enum):
    """Kinds of balance mutation recorded in the ledger."""
    GRANT = "grant"
    DEBIT = "debit"
    RESERVE = "reserve"
    REFUND = "refund"
    SETTLE = "settle"


class CreditAccount(SQLModel, table=True):
    """Spendable balance for one user.

    Mutated only through CreditLedger. ``version`` is bumped whenever a
    per-user critical section is entered.
    """

    __tablename__ = "credit_accounts"

    user_id: str = Field(primary_key=True, max_length=255, description="Account owner")
    balance: int = Field(default=0, ge=0, description="Spendable credits")
    version: int = Field(default=0, description="Per-user lock/version counter")
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(UTCDateTime, nullable=False),
        description="Account creation timestamp"
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(UTCDateTime, nullable=False),
        description="Last mutation timestamp"
    )


class CreditReservation(SQLModel, table=True):
    """Credits held for a job between admission and its terminal transition."""

    __tablename__ = "credit_reservations"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: str = Field(index=True, max_length=255)
    job_id: Optional[UUID] = Field(default=None, index=True)
    amount: int = Field(ge=0, description="Credits held")
    status: ReservationStatus = Field(default=ReservationStatus.HELD, index=True)
    settled_amount: Optional[int] = Field(default=None, description="Credits consumed on settle")
    created_at: datetime = Field(default_factory=utcnow, sa_column=Column(UTCDateTime, nullable=False))
    resolved_at: Optional[datetime] = Field(default=None, sa_column=Column(UTCDateTime, nullable=True))

    @property
    def is_outstanding(self) -> bool:
        """Held reservations have not been settled or released."""
        return self.status == ReservationStatus.HELD


class CreditLedgerEntry(SQLModel, table=True):
    """Immutable audit record of a credit mutation.

    ``delta`` is the signed balance change; summing it over a user's entries
    reproduces the account balance.
    """

    __tablename__ = "credit_ledger_entries"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: str = Field(index=True, max_length=255)
    kind: LedgerEntryKind = Field(description="Mutation kind")
    amount: int = Field(ge=0, description="Magnitude of the operation")
    delta: int = Field(description="Signed change applied to the balance")
    reason: str = Field(max_length=500)
    job_id: Optional[UUID] = Field(default=None, index=True)
    reservation_id: Optional[UUID] = Field(default=None, index=True)
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(UTCDateTime, nullable=False, index=True)
    )
