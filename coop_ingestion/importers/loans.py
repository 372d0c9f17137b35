"""LOANS importer: every row creates a DRAFT loan for an existing borrower."""

from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy import select
from sqlalchemy.orm import Session

from coop_kernel.exceptions import BorrowerNotFoundError
from coop_kernel.models import Loan, LoanStatus, User

from coop_ingestion.domain.ledger import CreatedLoanIds
from coop_ingestion.domain.types import ImportType
from coop_ingestion.importers.base import (
    ApplyContext,
    RowImporter,
    RowOutcome,
    is_blank,
    reference_number,
    text_or_none,
    to_decimal,
)

DEFAULT_INSTALLMENTS = 12


def _installments(value: Any) -> int:
    if is_blank(value):
        return DEFAULT_INSTALLMENTS
    try:
        parsed = int(str(value).strip().split(".")[0])
    except ValueError:
        return DEFAULT_INSTALLMENTS
    return parsed if parsed > 0 else DEFAULT_INSTALLMENTS


class LoansImporter(RowImporter):
    import_type = ImportType.LOANS
    ledger_type = CreatedLoanIds
    model = Loan
    required_fields = ("borrowerEmail", "amount", "purpose")

    def apply_row(
        self,
        record: Mapping[str, Any],
        row_number: int,
        db: Session,
        context: ApplyContext,
    ) -> RowOutcome:
        email = str(record["borrowerEmail"]).strip()
        borrower = db.execute(
            select(User).where(User.email == email)
        ).scalar_one_or_none()
        if borrower is None:
            raise BorrowerNotFoundError(email)

        interest = record.get("interestRate")
        loan = Loan(
            loan_number=reference_number("LOAN", context.clock),
            borrower_id=borrower.id,
            amount=to_decimal(record["amount"], "amount"),
            purpose=str(record["purpose"]).strip(),
            loan_type=(text_or_none(record.get("type")) or "STANDARD").upper(),
            installments=_installments(record.get("numberOfInstallments")),
            interest_rate=None if is_blank(interest) else to_decimal(interest, "interestRate"),
            status=LoanStatus.DRAFT.value,
            created_by_id=context.actor_id,
            created_at=context.clock.now(),
            updated_at=context.clock.now(),
        )
        db.add(loan)
        db.flush()
        return RowOutcome.created(loan.id, reference=loan.loan_number)
