"""CONTRIBUTIONS importer: every row creates a contribution for an existing member."""

from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy import select
from sqlalchemy.orm import Session

from coop_kernel.exceptions import ContributorNotFoundError
from coop_kernel.models import Contribution, ContributionStatus, User

from coop_ingestion.domain.ledger import CreatedContributionIds
from coop_ingestion.domain.types import ImportType
from coop_ingestion.importers.base import (
    ApplyContext,
    RowImporter,
    RowOutcome,
    text_or_none,
    to_decimal,
)


class ContributionsImporter(RowImporter):
    import_type = ImportType.CONTRIBUTIONS
    ledger_type = CreatedContributionIds
    model = Contribution
    required_fields = ("contributorEmail", "amount")

    def apply_row(
        self,
        record: Mapping[str, Any],
        row_number: int,
        db: Session,
        context: ApplyContext,
    ) -> RowOutcome:
        email = str(record["contributorEmail"]).strip()
        contributor = db.execute(
            select(User).where(User.email == email)
        ).scalar_one_or_none()
        if contributor is None:
            raise ContributorNotFoundError(email)

        contribution = Contribution(
            contributor_id=contributor.id,
            amount=to_decimal(record["amount"], "amount"),
            contribution_type=(text_or_none(record.get("type")) or "DONATION").upper(),
            description=text_or_none(record.get("description")),
            status=ContributionStatus.PENDING.value,
            contributed_at=context.clock.now(),
            created_by_id=context.actor_id,
            created_at=context.clock.now(),
            updated_at=context.clock.now(),
        )
        db.add(contribution)
        db.flush()
        return RowOutcome.created(contribution.id, reference=email)
