"""
Module: coop_kernel.models.contribution
Responsibility: ORM persistence for member contributions created by imports.
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from coop_kernel.db.base import TrackedBase, UUIDString


class ContributionStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class Contribution(TrackedBase):
    """A contribution paid by a member (users.id)."""

    __tablename__ = "contributions"

    __table_args__ = (
        Index("ix_contributions_contributor", "contributor_id"),
    )

    contributor_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    contribution_type: Mapped[str] = mapped_column(
        String(30), nullable=False, default="DONATION",
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ContributionStatus.PENDING.value,
    )
    contributed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Contribution {self.contribution_type} {self.amount}>"
