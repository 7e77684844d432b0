"""Header-name heuristics that suggest a field mapping for a new file."""

from ledger_import.core.models import FieldMapping, SemanticField

# Scanned in this order; within a field the first pattern that matches any header wins.
FIELD_PATTERNS: dict[SemanticField, tuple[str, ...]] = {
    SemanticField.DATE: ("date", "transaction date", "transaction_date", "created_at", "datetime"),
    SemanticField.DESCRIPTION: ("description", "memo", "details", "note", "transaction description"),
    SemanticField.AMOUNT: ("amount", "value", "price", "total", "sum", "cost"),
    SemanticField.CATEGORY: ("category", "type", "classification", "category_name"),
    SemanticField.VENDOR: ("vendor", "supplier", "merchant", "payee", "company"),
    SemanticField.RECURRING: ("recurring", "repeat", "is_recurring", "recurring_payment"),
}


def detect_columns(headers: list[str]) -> dict[SemanticField, str]:
    """Suggest which header holds each semantic field.

    Matching is a case-insensitive substring test. A header attributed to one
    field is not offered to later fields. Fields with no match are absent
    from the result. The suggestion is never authoritative: callers confirm
    or override it before starting a job.
    """
    lowered = [header.lower() for header in headers]
    taken: set[int] = set()
    detected: dict[SemanticField, str] = {}
    for field, patterns in FIELD_PATTERNS.items():
        for pattern in patterns:
            index = next(
                (i for i, header in enumerate(lowered) if i not in taken and pattern in header),
                None,
            )
            if index is not None:
                detected[field] = headers[index]
                taken.add(index)
                break
    return detected


def to_field_mapping(detected: dict[SemanticField, str]) -> FieldMapping:
    """Invert a detection result into a column -> field mapping."""
    return {header: field for field, header in detected.items()}
