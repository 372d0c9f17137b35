"""USERS importer: natural key is the email address."""

from __future__ import annotations

import secrets
from typing import Any, Mapping

import bcrypt
from sqlalchemy import select
from sqlalchemy.orm import Session

from coop_kernel.exceptions import DuplicateRecordError
from coop_kernel.models import User, UserRole

from coop_ingestion.domain.ledger import CreatedUserIds
from coop_ingestion.domain.types import DuplicateHandling, ImportType
from coop_ingestion.importers.base import ApplyContext, RowImporter, RowOutcome, text_or_none

# Canonical field -> User attribute, for both create and update.
_PROFILE_FIELDS: dict[str, str] = {
    "firstName": "first_name",
    "lastName": "last_name",
    "phone": "phone",
    "address": "address",
    "city": "city",
    "postalCode": "postal_code",
    "country": "country",
}


def _role(value: Any) -> str:
    text = text_or_none(value)
    if text and text.upper() in UserRole.__members__:
        return UserRole[text.upper()].value
    return UserRole.BORROWER.value


class UsersImporter(RowImporter):
    """Creates member accounts or refreshes the profile of existing ones.

    New accounts get a random temporary password (bcrypt hash only, the
    plaintext is discarded) and stay unverified until activated out-of-band.
    """

    import_type = ImportType.USERS
    ledger_type = CreatedUserIds
    model = User
    required_fields = ("email", "firstName", "lastName")

    def __init__(self, password_hash_rounds: int = 12):
        self._rounds = password_hash_rounds

    def _temporary_password_hash(self) -> str:
        password = secrets.token_urlsafe(16).encode("utf-8")
        return bcrypt.hashpw(password, bcrypt.gensalt(rounds=self._rounds)).decode("ascii")

    def apply_row(
        self,
        record: Mapping[str, Any],
        row_number: int,
        db: Session,
        context: ApplyContext,
    ) -> RowOutcome:
        email = str(record["email"]).strip()
        existing = db.execute(
            select(User).where(User.email == email)
        ).scalar_one_or_none()

        if existing is not None:
            handling = context.options.duplicate_handling
            if handling == DuplicateHandling.SKIP:
                return RowOutcome.skipped(f"User already exists: {email}", reference=email)
            if handling == DuplicateHandling.ERROR:
                raise DuplicateRecordError("User", email)

            for field_name, attr in _PROFILE_FIELDS.items():
                if field_name in record:
                    setattr(existing, attr, text_or_none(record[field_name]))
            if "role" in record:
                existing.role = _role(record["role"])
            existing.updated_by_id = context.actor_id
            existing.updated_at = context.clock.now()
            return RowOutcome.updated(existing.id, reference=email)

        user = User(
            email=email,
            password_hash=self._temporary_password_hash(),
            role=_role(record.get("role")),
            is_active=True,
            email_verified=False,
            created_by_id=context.actor_id,
            created_at=context.clock.now(),
            updated_at=context.clock.now(),
        )
        for field_name, attr in _PROFILE_FIELDS.items():
            setattr(user, attr, text_or_none(record.get(field_name)))
        db.add(user)
        db.flush()
        return RowOutcome.created(user.id, reference=email)
