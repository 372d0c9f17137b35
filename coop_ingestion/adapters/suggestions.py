"""
Column-name heuristics for pre-filling a mapping.

Each canonical field has a list of synonyms (English and French).  A column
whose normalized name equals a synonym scores 100, one that merely contains
a synonym scores 80; the best score wins, first field on ties.
"""

from __future__ import annotations

from typing import Sequence

from coop_ingestion.adapters.base import ColumnSuggestion

UNMAPPED = "unmapped"

FIELD_SYNONYMS: dict[str, tuple[str, ...]] = {
    "email": ("email", "e-mail", "mail", "adresse email", "courriel"),
    "firstName": ("first name", "firstname", "prenom", "prénom", "given name"),
    "lastName": ("last name", "lastname", "nom", "surname", "family name"),
    "phone": ("phone", "telephone", "tel", "mobile", "cellphone"),
    "address": ("address", "adresse", "street", "rue"),
    "city": ("city", "ville", "town"),
    "postalCode": ("postal code", "zip code", "zip", "code postal"),
    "amount": ("amount", "montant", "sum", "total"),
}

EXACT_CONFIDENCE = 100
PARTIAL_CONFIDENCE = 80


def suggest_field(column_name: str) -> ColumnSuggestion:
    normalized = column_name.strip().lower()
    best_field, best_confidence = UNMAPPED, 0
    if normalized:
        for field_name, synonyms in FIELD_SYNONYMS.items():
            for synonym in synonyms:
                if synonym not in normalized:
                    continue
                confidence = EXACT_CONFIDENCE if normalized == synonym else PARTIAL_CONFIDENCE
                if confidence > best_confidence:
                    best_field, best_confidence = field_name, confidence
    return ColumnSuggestion(
        column_name=column_name,
        suggested_field=best_field,
        confidence=best_confidence,
    )


def suggest_columns(columns: Sequence[str]) -> tuple[ColumnSuggestion, ...]:
    """One suggestion per column, in column order."""
    return tuple(suggest_field(c) for c in columns)
