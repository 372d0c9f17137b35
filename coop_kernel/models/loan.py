"""
Module: coop_kernel.models.loan
Responsibility: ORM persistence for loan applications created by imports.
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from coop_kernel.db.base import TrackedBase, UUIDString


class LoanStatus(str, Enum):
    """Loan lifecycle status. Imported loans always start as DRAFT."""

    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"
    REJECTED = "REJECTED"


class Loan(TrackedBase):
    """A loan owned by a borrower (users.id)."""

    __tablename__ = "loans"

    __table_args__ = (
        Index("ix_loans_borrower", "borrower_id"),
    )

    loan_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    borrower_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    purpose: Mapped[str] = mapped_column(Text, nullable=False)
    loan_type: Mapped[str] = mapped_column(String(30), nullable=False, default="STANDARD")
    installments: Mapped[int] = mapped_column(nullable=False, default=12)
    interest_rate: Mapped[Decimal | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=LoanStatus.DRAFT.value,
    )
    disbursed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Loan {self.loan_number} {self.amount}>"
