"""Row mapping and validation for income/expense imports.

Row numbers reported here are spreadsheet line numbers: the first data row
is row 2 because row 1 holds the headers.
"""

import math
import re
import warnings
from datetime import date

import pandas as pd

from ledger_import.core.exceptions import MappingError
from ledger_import.core.models import (
    ExpenseRow,
    FieldMapping,
    IncomeRow,
    MappedRow,
    RecordType,
    RowIssue,
    SemanticField,
    ValidationResult,
)

HEADER_OFFSET = 2
REQUIRED_MAPPINGS = (SemanticField.AMOUNT, SemanticField.DESCRIPTION)
TRUTHY = frozenset({"true", "yes", "1", "y", "on"})

_AMOUNT_NOISE = re.compile(r"[$€£¥,\s]")
_SLASHED = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_DOTTED = re.compile(r"^(\d{1,2})\.(\d{1,2})\.(\d{4})$")
_ISO = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")

# layout name -> (pattern, order of the day/month/year groups)
DATE_LAYOUTS: dict[str, tuple[re.Pattern[str], str]] = {
    "DD/MM/YYYY": (_SLASHED, "dmy"),
    "DD.MM.YYYY": (_DOTTED, "dmy"),
    "MM/DD/YYYY": (_SLASHED, "mdy"),
    "YYYY-MM-DD": (_ISO, "ymd"),
}


def parse_amount(value: str) -> float | None:
    """Parse a money string such as '$1,234.56'; None when it is not a finite number."""
    cleaned = _AMOUNT_NOISE.sub("", value or "")
    if "_" in cleaned:
        return None
    try:
        amount = float(cleaned)
    except ValueError:
        return None
    return amount if math.isfinite(amount) else None


def _match_layout(text: str, layout: str) -> date | None:
    pattern, order = DATE_LAYOUTS[layout]
    match = pattern.match(text)
    if not match:
        return None
    parts = dict(zip(order, (int(g) for g in match.groups()), strict=True))
    try:
        return date(parts["y"], parts["m"], parts["d"])
    except ValueError:
        return None


def _native_date(text: str) -> date | None:
    """Free-form parse ('Jan 31, 2024', '2024/01/31', '31/01/2024'); day-first when ambiguous."""
    if text.isdigit():
        return None
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", UserWarning)
            parsed = pd.to_datetime(text, dayfirst=True)
    except (ValueError, OverflowError):
        return None
    if pd.isna(parsed):
        return None
    return parsed.date()


def parse_date(value: str, date_format: str | None = None) -> date | None:
    """Parse a date: explicit ``date_format``, then a free-form parse, then the layouts in priority order.

    A ``date_format`` naming one of ``DATE_LAYOUTS`` is tried first. Impossible
    calendar dates (13/13/2024) never parse.
    """
    text = (value or "").strip()
    if not text:
        return None
    if date_format and date_format.upper() in DATE_LAYOUTS:
        parsed = _match_layout(text, date_format.upper())
        if parsed is not None:
            return parsed
    parsed = _native_date(text)
    if parsed is not None:
        return parsed
    for layout in DATE_LAYOUTS:
        parsed = _match_layout(text, layout)
        if parsed is not None:
            return parsed
    return None


def parse_boolean(value: str) -> bool:
    """Spreadsheet truthiness: true/yes/1/y/on."""
    return (value or "").strip().lower() in TRUTHY


def check_mapping(mapping: FieldMapping) -> None:
    """Reject mappings that lack a required field or name an unknown one."""
    try:
        targets = {SemanticField(field) for field in mapping.values()}
    except ValueError as exc:
        msg = f"Unknown field in mapping: {exc}"
        raise MappingError(msg) from exc
    missing = [field.value for field in REQUIRED_MAPPINGS if field not in targets]
    if missing:
        msg = f"Missing required field mappings: {', '.join(missing)}"
        raise MappingError(msg)


def map_rows(rows: list[dict[str, str]], mapping: FieldMapping, record_type: RecordType) -> list[MappedRow]:
    """Project raw rows onto semantic fields, dropping rows blank in every mapped column."""
    columns: dict[SemanticField, str] = {}
    for column, field in mapping.items():
        columns.setdefault(SemanticField(field), column)
    row_model = IncomeRow if record_type is RecordType.INCOME else ExpenseRow
    allowed = set(row_model.model_fields)
    mapped: list[MappedRow] = []
    for index, raw in enumerate(rows):
        values = {
            field.value: str(raw.get(column) or "").strip()
            for field, column in columns.items()
            if field.value in allowed
        }
        if not any(str(raw.get(column) or "").strip() for column in mapping):
            continue
        mapped.append(row_model(row_number=index + HEADER_OFFSET, **values))
    return mapped


def validate_row(
    row: MappedRow, mapped_fields: set[SemanticField], date_format: str | None = None
) -> tuple[list[RowIssue], list[RowIssue]]:
    """Return (errors, warnings) for one mapped row."""
    errors: list[RowIssue] = []
    warnings: list[RowIssue] = []
    number = row.row_number

    required = [SemanticField.AMOUNT, SemanticField.DESCRIPTION]
    if row.kind == RecordType.INCOME.value:
        required.append(SemanticField.DATE)
    for field in required:
        value = getattr(row, field.value)
        if not value:
            errors.append(
                RowIssue(
                    row=number,
                    field=field.value,
                    message=f"{field.value} is required",
                    value=value if field in mapped_fields else None,
                )
            )

    if row.amount:
        amount = parse_amount(row.amount)
        if amount is None or amount <= 0:
            errors.append(
                RowIssue(row=number, field="amount", message="Amount must be a positive number", value=row.amount)
            )

    if row.date:
        parsed = parse_date(row.date, date_format)
        if parsed is None:
            errors.append(RowIssue(row=number, field="date", message="Invalid date format", value=row.date))
        elif parsed > date.today():
            warnings.append(RowIssue(row=number, field="date", message="Date is in the future", value=row.date))

    if isinstance(row, ExpenseRow) and not row.category and not row.vendor:
        warnings.append(
            RowIssue(
                row=number,
                field="category",
                message="Either category or vendor should be specified for expenses",
                value="",
            )
        )
    return errors, warnings


def validate_rows(
    rows: list[MappedRow], mapping: FieldMapping, date_format: str | None = None
) -> ValidationResult:
    """Validate already-mapped rows."""
    mapped_fields = {SemanticField(field) for field in mapping.values()}
    errors: list[RowIssue] = []
    warnings: list[RowIssue] = []
    for row in rows:
        row_errors, row_warnings = validate_row(row, mapped_fields, date_format)
        errors.extend(row_errors)
        warnings.extend(row_warnings)
    return ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)


def validate(
    rows: list[dict[str, str]],
    mapping: FieldMapping,
    record_type: RecordType,
    date_format: str | None = None,
) -> ValidationResult:
    """Validate raw parsed rows under a confirmed mapping.

    Rows blank in every mapped column are excluded silently. ``is_valid`` is
    False exactly when at least one error was found; warnings never block.
    """
    return validate_rows(map_rows(rows, mapping, record_type), mapping, date_format)
