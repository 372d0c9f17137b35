"""
TemplateService -- reusable column mappings per import type.

Contract:
    Creates, lists and fetches ImportTemplate rows.  A session created from
    a template starts with the template's mapping and rules.

Non-goals:
    - Does NOT commit; the caller owns the transaction.
"""

from __future__ import annotations

from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from coop_kernel.domain.clock import Clock, SystemClock
from coop_kernel.exceptions import ImportTemplateNotFoundError
from coop_kernel.logging_config import get_logger

from coop_ingestion.domain.types import (
    FieldMapping,
    ImportTemplate,
    ImportType,
    ValidationOptions,
    mappings_to_json,
)
from coop_ingestion.domain.validators import rules_for
from coop_ingestion.models.session import ImportTemplateModel

logger = get_logger("ingestion.template_service")


class TemplateService:
    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def create_template(
        self,
        actor_id: UUID,
        name: str,
        import_type: ImportType,
        column_mapping: Sequence[FieldMapping] = (),
        validation_rules: ValidationOptions | None = None,
        transform_rules: dict[str, Any] | None = None,
        description: str | None = None,
        is_default: bool = False,
    ) -> ImportTemplate:
        """Create an active template; a new default demotes the previous one.

        Raises:
            InvalidCustomRuleError: A custom rule in ``validation_rules`` is malformed.
        """
        if validation_rules is not None:
            rules_for(import_type, validation_rules)
        if is_default:
            self._session.execute(
                update(ImportTemplateModel)
                .where(
                    ImportTemplateModel.import_type == import_type.value,
                    ImportTemplateModel.is_default == True,  # noqa: E712
                )
                .values(is_default=False)
            )

        now = self._clock.now()
        model = ImportTemplateModel(
            name=name,
            description=description,
            import_type=import_type.value,
            is_default=is_default,
            is_active=True,
            column_mapping=mappings_to_json(column_mapping),
            validation_rules=(validation_rules or ValidationOptions()).to_json(),
            transform_rules=transform_rules,
            created_by_id=actor_id,
            created_at=now,
            updated_at=now,
        )
        self._session.add(model)
        self._session.flush()

        logger.info(
            "import_template_created",
            extra={
                "template_id": str(model.id),
                "import_type": import_type.value,
                "is_default": is_default,
            },
        )
        return model.to_dto()

    def list_templates(self, import_type: ImportType | None = None) -> tuple[ImportTemplate, ...]:
        """Active templates, defaults first, then by name."""
        query = select(ImportTemplateModel).where(
            ImportTemplateModel.is_active == True,  # noqa: E712
        )
        if import_type is not None:
            query = query.where(ImportTemplateModel.import_type == import_type.value)
        query = query.order_by(
            ImportTemplateModel.is_default.desc(),
            ImportTemplateModel.name,
        )
        return tuple(m.to_dto() for m in self._session.execute(query).scalars().all())

    def get_template(self, template_id: UUID) -> ImportTemplate:
        model = self._session.get(ImportTemplateModel, template_id)
        if model is None or not model.is_active:
            raise ImportTemplateNotFoundError(str(template_id))
        return model.to_dto()
