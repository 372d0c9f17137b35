"""
ValidationEngine: per-import-type rule evaluation over mapped records.

Pure domain code, ZERO I/O.  Each rule is evaluated per record in a fixed
order (required, type, pattern, string length, intra-batch uniqueness,
custom hook) and produces classified findings.  The engine only suggests
fixes; it never mutates the records it is given.

Storage-level duplicate detection is the ``DuplicateChecker`` extension
point.  The default checker reports nothing.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Mapping, Protocol, Sequence, runtime_checkable

from coop_kernel.exceptions import InvalidCustomRuleError

from coop_ingestion.domain.types import (
    FieldMapping,
    ImportType,
    Severity,
    ValidationFinding,
    ValidationOptions,
)


class RuleType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    EMAIL = "email"
    PHONE = "phone"
    DATE = "date"
    BOOLEAN = "boolean"


@dataclass(frozen=True)
class CustomCheck:
    """Outcome of a custom validator hook."""

    is_valid: bool
    message: str | None = None


CustomValidator = Callable[[Any, Mapping[str, Any]], "CustomCheck | bool"]


@dataclass(frozen=True)
class ValidationRule:
    """Constraints on one canonical field.

    ``min``/``max`` bound the numeric value for NUMBER rules and the string
    length for STRING (or untyped) rules.
    """

    field: str
    required: bool = False
    type: RuleType | None = None
    min: float | None = None
    max: float | None = None
    pattern: str | None = None
    unique: bool = False
    custom_validator: CustomValidator | None = None

    @classmethod
    def from_json(cls, data: Mapping[str, Any], index: int | None = None) -> ValidationRule:
        """Build a rule from a ``customRules`` entry (no callables on the wire).

        Raises:
            InvalidCustomRuleError: Missing field name, unknown type,
                non-numeric bound, or a pattern that does not compile.
        """
        if not isinstance(data, Mapping):
            raise InvalidCustomRuleError(index, "expected an object")

        name = data.get("field")
        if not isinstance(name, str) or not name.strip():
            raise InvalidCustomRuleError(index, "'field' must be a non-empty string")

        raw_type = data.get("type")
        rule_type = None
        if raw_type:
            try:
                rule_type = RuleType(str(raw_type).lower())
            except ValueError:
                raise InvalidCustomRuleError(index, f"unknown type '{raw_type}'") from None

        bounds: dict[str, float | None] = {}
        for key in ("min", "max"):
            raw = data.get(key)
            if raw is not None and (isinstance(raw, bool) or not isinstance(raw, (int, float))):
                raise InvalidCustomRuleError(index, f"'{key}' must be a number")
            bounds[key] = raw

        pattern = data.get("pattern")
        if pattern is not None:
            if not isinstance(pattern, str):
                raise InvalidCustomRuleError(index, "'pattern' must be a string")
            try:
                re.compile(pattern)
            except re.error as exc:
                raise InvalidCustomRuleError(index, f"invalid pattern: {exc}") from None

        return cls(
            field=name.strip(),
            required=bool(data.get("required", False)),
            type=rule_type,
            min=bounds["min"],
            max=bounds["max"],
            pattern=pattern or None,
            unique=bool(data.get("unique", False)),
        )


@dataclass(frozen=True)
class ValidationResult:
    """Classified findings for one validation run."""

    is_valid: bool
    errors: tuple[ValidationFinding, ...] = ()
    warnings: tuple[ValidationFinding, ...] = ()
    infos: tuple[ValidationFinding, ...] = ()
    auto_fixed_count: int = 0

    @property
    def findings(self) -> tuple[ValidationFinding, ...]:
        """All findings: errors, then warnings, then infos."""
        return self.errors + self.warnings + self.infos


# -----------------------------------------------------------------------------
# Rule sets
# -----------------------------------------------------------------------------

IMPORT_RULES: dict[ImportType, tuple[ValidationRule, ...]] = {
    ImportType.USERS: (
        ValidationRule("email", required=True, type=RuleType.EMAIL, unique=True),
        ValidationRule("firstName", required=True, type=RuleType.STRING, min=2, max=50),
        ValidationRule("lastName", required=True, type=RuleType.STRING, min=2, max=50),
        ValidationRule("phone", required=False, type=RuleType.PHONE),
    ),
    ImportType.LOANS: (
        ValidationRule("amount", required=True, type=RuleType.NUMBER, min=1),
        ValidationRule("borrowerEmail", required=True, type=RuleType.EMAIL),
        ValidationRule("purpose", required=True, type=RuleType.STRING, min=10, max=500),
    ),
    ImportType.CONTRIBUTIONS: (
        ValidationRule("amount", required=True, type=RuleType.NUMBER, min=1),
        ValidationRule("contributorEmail", required=True, type=RuleType.EMAIL),
        ValidationRule("type", required=True, type=RuleType.STRING),
    ),
    ImportType.GUARANTEES: (),
    ImportType.PAYMENTS: (),
}


def rules_for(import_type: ImportType, options: ValidationOptions | None = None) -> tuple[ValidationRule, ...]:
    """Resolve the rule set for an import type, honouring toggles and custom rules."""
    opts = options or ValidationOptions()
    rules: list[ValidationRule] = []
    for rule in IMPORT_RULES.get(import_type, ()):
        if rule.type == RuleType.EMAIL and not opts.email_validation:
            rule = ValidationRule(
                field=rule.field, required=rule.required, type=RuleType.STRING, unique=rule.unique,
            )
        elif rule.type == RuleType.PHONE and not opts.phone_validation:
            rule = ValidationRule(field=rule.field, required=rule.required, type=RuleType.STRING)
        rules.append(rule)
    rules.extend(ValidationRule.from_json(r, i) for i, r in enumerate(opts.custom_rules))
    return tuple(rules)


# -----------------------------------------------------------------------------
# Type checks (pure)
# -----------------------------------------------------------------------------

_EMAIL_RE = re.compile(
    r"^[A-Za-z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@(?:[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?\.)+[A-Za-z]{2,}$"
)
_PHONE_RE = re.compile(r"^(\+?\d{1,3}[-.\s]?)?\d{8,14}$")
_PHONE_STRIP_RE = re.compile(r"[^\d+]")
_NUMERIC_RE = re.compile(r"^[+-]?([0-9]*[.])?[0-9]+$")

COMMON_EMAIL_DOMAINS: tuple[str, ...] = ("gmail.com", "yahoo.com", "hotmail.com", "outlook.com")
BOOLEAN_TOKENS: frozenset[str] = frozenset({"true", "false", "1", "0", "yes", "no", "oui", "non"})

# Formats tried, in order, when a date does not parse as ISO 8601
_DATE_GUESS_FORMATS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"^\d{1,2}/\d{1,2}/\d{4}$"), "%m/%d/%Y"),
    (re.compile(r"^\d{1,2}-\d{1,2}-\d{4}$"), "%d-%m-%Y"),
    (re.compile(r"^\d{4}-\d{1,2}-\d{1,2}$"), "%Y-%m-%d"),
)


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance (insert, delete, substitute all cost 1)."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]


def is_email(value: str) -> bool:
    return bool(_EMAIL_RE.match(value))


def suggest_email_fix(value: str) -> str | None:
    """Suggest a common domain when the domain is within edit distance 2 of it."""
    parts = value.split("@")
    if len(parts) != 2:
        return None
    local, domain = parts
    for common in COMMON_EMAIL_DOMAINS:
        if levenshtein_distance(domain.lower(), common) <= 2:
            return f"{local}@{common}"
    return None


def clean_phone_number(value: str) -> str:
    """Drop everything but digits and '+'."""
    return _PHONE_STRIP_RE.sub("", value)


def is_phone(value: str) -> bool:
    return bool(_PHONE_RE.match(value))


def is_numeric(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value)).is_finite()
    return bool(_NUMERIC_RE.match(str(value).strip()))


def is_date(value: Any) -> bool:
    """ISO 8601 date/datetime, YYYY/MM/DD, or an actual date object."""
    if isinstance(value, (date, datetime)):
        return True
    s = str(value).strip()
    try:
        datetime.fromisoformat(s.replace("Z", "+00:00"))
        return True
    except ValueError:
        pass
    try:
        datetime.strptime(s, "%Y/%m/%d")
        return True
    except ValueError:
        return False


def suggest_date_fix(value: str) -> str | None:
    """Try MM/DD/YYYY, DD-MM-YYYY and YYYY-MM-DD; return an ISO date or None."""
    for pattern, fmt in _DATE_GUESS_FORMATS:
        if not pattern.match(value):
            continue
        try:
            return datetime.strptime(value, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def _to_number(value: Any) -> Decimal:
    return Decimal(str(value).strip())


def _bound(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


# -----------------------------------------------------------------------------
# Duplicate-against-storage extension point
# -----------------------------------------------------------------------------


@runtime_checkable
class DuplicateChecker(Protocol):
    """Finds records whose natural key already exists in storage."""

    def check(
        self,
        records: Sequence[Mapping[str, Any]],
        import_type: ImportType,
        options: ValidationOptions,
    ) -> list[ValidationFinding]:
        ...


class NullDuplicateChecker:
    """Default checker: storage duplicates are resolved at apply time instead."""

    def check(
        self,
        records: Sequence[Mapping[str, Any]],
        import_type: ImportType,
        options: ValidationOptions,
    ) -> list[ValidationFinding]:
        return []


# -----------------------------------------------------------------------------
# Engine
# -----------------------------------------------------------------------------


@dataclass
class _Findings:
    errors: list[ValidationFinding] = field(default_factory=list)
    warnings: list[ValidationFinding] = field(default_factory=list)
    infos: list[ValidationFinding] = field(default_factory=list)

    def add(self, finding: ValidationFinding) -> None:
        if finding.severity == Severity.ERROR:
            self.errors.append(finding)
        elif finding.severity == Severity.WARNING:
            self.warnings.append(finding)
        else:
            self.infos.append(finding)


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


class ValidationEngine:
    """Runs a resolved rule set over mapped records.

    Records are dicts keyed by canonical field name, in source row order;
    ``rowNumber`` of each finding is the record's 1-based position.
    """

    def __init__(self, duplicate_checker: DuplicateChecker | None = None):
        self._duplicate_checker = duplicate_checker or NullDuplicateChecker()

    def validate(
        self,
        records: Sequence[Mapping[str, Any]],
        import_type: ImportType,
        options: ValidationOptions | None = None,
        mappings: Sequence[FieldMapping] = (),
        extra_rules: Sequence[ValidationRule] = (),
    ) -> ValidationResult:
        opts = options or ValidationOptions()
        rules = rules_for(import_type, opts) + tuple(extra_rules)
        column_for = {m.field_name: m.column_name for m in mappings}
        seen: dict[str, set[str]] = {r.field: set() for r in rules if r.unique}
        out = _Findings()

        for index, record in enumerate(records):
            row_number = index + 1
            for rule in rules:
                value = record.get(rule.field)
                column_name = column_for.get(rule.field, rule.field)
                for finding in self._check_field(
                    value, rule, row_number, column_name, record, seen.get(rule.field),
                ):
                    out.add(finding)
                if rule.unique and not _is_empty(value):
                    seen[rule.field].add(str(value).strip())

        for finding in self._duplicate_checker.check(records, import_type, opts):
            out.add(finding)

        return ValidationResult(
            is_valid=not out.errors,
            errors=tuple(out.errors),
            warnings=tuple(out.warnings),
            infos=tuple(out.infos),
            auto_fixed_count=0,
        )

    def _check_field(
        self,
        value: Any,
        rule: ValidationRule,
        row_number: int,
        column_name: str,
        record: Mapping[str, Any],
        seen: set[str] | None,
    ) -> list[ValidationFinding]:
        def finding(
            code: str,
            message: str,
            severity: Severity = Severity.ERROR,
            **kwargs: Any,
        ) -> ValidationFinding:
            return ValidationFinding(
                row_number=row_number,
                column_name=column_name,
                field_name=rule.field,
                severity=severity,
                error_code=code,
                message=message,
                **kwargs,
            )

        if _is_empty(value):
            if rule.required:
                return [finding("REQUIRED_FIELD", f"{rule.field} is required", actual_value="")]
            return []

        text = str(value).strip()
        found: list[ValidationFinding] = []

        if rule.type == RuleType.EMAIL and not is_email(text):
            found.append(finding(
                "INVALID_EMAIL", "Invalid email format",
                actual_value=text, suggested_fix=suggest_email_fix(text),
            ))
        elif rule.type == RuleType.PHONE:
            cleaned = clean_phone_number(text)
            if not is_phone(cleaned):
                found.append(finding(
                    "INVALID_PHONE", "Invalid phone number format",
                    actual_value=text, suggested_fix=cleaned, can_auto_fix=True,
                ))
        elif rule.type == RuleType.NUMBER:
            if not is_numeric(value):
                found.append(finding("INVALID_NUMBER", "Value must be a number", actual_value=text))
            else:
                number = _to_number(value)
                if rule.min is not None and number < Decimal(str(rule.min)):
                    found.append(finding(
                        "VALUE_TOO_SMALL", f"Value must be at least {_bound(rule.min)}",
                        actual_value=text, expected_value=_bound(rule.min),
                    ))
                if rule.max is not None and number > Decimal(str(rule.max)):
                    found.append(finding(
                        "VALUE_TOO_LARGE", f"Value must be at most {_bound(rule.max)}",
                        actual_value=text, expected_value=_bound(rule.max),
                    ))
        elif rule.type == RuleType.DATE and not is_date(value):
            suggestion = suggest_date_fix(text)
            found.append(finding(
                "INVALID_DATE", "Invalid date format",
                actual_value=text, suggested_fix=suggestion, can_auto_fix=suggestion is not None,
            ))
        elif rule.type == RuleType.BOOLEAN and text.lower() not in BOOLEAN_TOKENS:
            found.append(finding(
                "INVALID_BOOLEAN", "Value must be true/false, yes/no, or 1/0", actual_value=text,
            ))

        if rule.pattern and not re.search(rule.pattern, text):
            found.append(finding(
                "PATTERN_MISMATCH", f"Value does not match required pattern: {rule.pattern}",
                actual_value=text,
            ))

        if rule.type in (RuleType.STRING, None):
            if rule.min is not None and len(text) < rule.min:
                found.append(finding(
                    "STRING_TOO_SHORT", f"Value should be at least {_bound(rule.min)} characters",
                    Severity.WARNING, actual_value=text, expected_value=_bound(rule.min),
                ))
            if rule.max is not None and len(text) > rule.max:
                found.append(finding(
                    "STRING_TOO_LONG", f"Value should be at most {_bound(rule.max)} characters",
                    Severity.WARNING, actual_value=text, expected_value=_bound(rule.max),
                    suggested_fix=text[: int(rule.max)], can_auto_fix=True,
                ))

        if rule.unique and seen is not None and text in seen:
            found.append(finding(
                "DUPLICATE_VALUE", "Duplicate value found in import data", actual_value=text,
            ))

        if rule.custom_validator is not None:
            outcome = rule.custom_validator(value, record)
            if isinstance(outcome, bool):
                outcome = CustomCheck(is_valid=outcome)
            if not outcome.is_valid:
                found.append(finding(
                    "CUSTOM_VALIDATION", outcome.message or "Custom validation failed",
                    actual_value=text,
                ))

        return found
