"""Request bodies for the import API (camelCase on the wire)."""

from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from coop_ingestion.domain.types import (
    DuplicateHandling,
    FieldMapping,
    FieldTransform,
    ImportType,
    TransformKind,
    ValidationOptions,
)
from coop_ingestion.domain.validators import RuleType


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FieldTransformBody(_CamelModel):
    type: TransformKind | None = None
    format: str | None = None
    default_value: Any = None

    def to_domain(self) -> FieldTransform:
        return FieldTransform(kind=self.type, format=self.format, default_value=self.default_value)


class FieldMappingBody(_CamelModel):
    column_name: str = Field(min_length=1)
    field_name: str = Field(min_length=1)
    transform: FieldTransformBody | None = None
    required: bool = False

    def to_domain(self) -> FieldMapping:
        return FieldMapping(
            column_name=self.column_name,
            field_name=self.field_name,
            transform=self.transform.to_domain() if self.transform else None,
            required=self.required,
        )


class CustomRuleBody(_CamelModel):
    field: str = Field(min_length=1)
    type: RuleType | None = None
    required: bool = False
    unique: bool = False
    min: float | None = None
    max: float | None = None
    pattern: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def _type_case_insensitive(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value

    @field_validator("pattern")
    @classmethod
    def _pattern_compiles(cls, value: str | None) -> str | None:
        if value is not None:
            try:
                re.compile(value)
            except re.error as exc:
                raise ValueError(f"invalid regular expression: {exc}") from None
        return value

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class ValidationRulesBody(_CamelModel):
    duplicate_handling: DuplicateHandling = DuplicateHandling.UPDATE
    email_validation: bool = True
    phone_validation: bool = True
    custom_rules: list[CustomRuleBody] = Field(default_factory=list)

    def to_domain(self) -> ValidationOptions:
        return ValidationOptions(
            duplicate_handling=self.duplicate_handling,
            email_validation=self.email_validation,
            phone_validation=self.phone_validation,
            custom_rules=tuple(rule.to_json() for rule in self.custom_rules),
        )


class UpdateMappingRequest(_CamelModel):
    mapping: list[FieldMappingBody]
    validation_rules: ValidationRulesBody | None = None


class CreateTemplateRequest(_CamelModel):
    name: str = Field(min_length=1, max_length=200)
    import_type: ImportType
    description: str | None = None
    is_default: bool = False
    column_mapping: list[FieldMappingBody] = Field(default_factory=list)
    validation_rules: ValidationRulesBody | None = None
    transform_rules: dict[str, Any] | None = None
