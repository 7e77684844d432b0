"""Pydantic models shared by the parser, validator, workers and API.

Raw spreadsheet rows stay plain ``dict[str, str]`` only between the parser and
the column detector. Once a field mapping is confirmed every row becomes an
``IncomeRow`` or ``ExpenseRow`` and every extracted ledger entry an
``IncomeRecord`` or ``ExpenseRecord``.
"""

from datetime import date, datetime
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field


class RecordType(StrEnum):
    """Kind of ledger entry an import produces."""

    INCOME = "income"
    EXPENSE = "expense"


class JobStatus(StrEnum):
    """Lifecycle states of an import job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Return True for states no transition may leave."""
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})
ACTIVE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.PROCESSING})


class SemanticField(StrEnum):
    """Ledger fields a source column can be mapped to, in detection order."""

    DATE = "date"
    DESCRIPTION = "description"
    AMOUNT = "amount"
    CATEGORY = "category"
    VENDOR = "vendor"
    RECURRING = "recurring"


FieldMapping = dict[str, SemanticField]


class ImportOptions(BaseModel):
    """Per-job switches, fixed at submission."""

    model_config = ConfigDict(frozen=True)

    update_existing: bool = False
    create_categories: bool = True
    create_vendors: bool = True
    skip_invalid_rows: bool = True
    date_format: str | None = None


class RowIssue(BaseModel):
    """An error or warning attributed to an input row (row 0 means job-level)."""

    row: int
    field: str
    message: str
    value: str | None = None


class ValidationResult(BaseModel):
    """Outcome of validating a full row set."""

    is_valid: bool
    errors: list[RowIssue] = Field(default_factory=list)
    warnings: list[RowIssue] = Field(default_factory=list)


class ParsedFile(BaseModel):
    """Headers and trimmed string rows read from an uploaded spreadsheet."""

    headers: list[str]
    rows: list[dict[str, str]]
    total_rows: int
    warnings: list[str] = Field(default_factory=list)


class ImportPreview(BaseModel):
    """What the caller needs to confirm a mapping before starting a job."""

    headers: list[str]
    detected_mapping: dict[SemanticField, str]
    preview_rows: list[dict[str, str]]
    total_rows: int
    warnings: list[str] = Field(default_factory=list)


class IncomeRow(BaseModel):
    """A mapped income row, values still as entered."""

    kind: Literal["income"] = "income"
    row_number: int
    date: str = ""
    description: str = ""
    amount: str = ""
    category: str = ""
    recurring: str = ""


class ExpenseRow(BaseModel):
    """A mapped expense row, values still as entered."""

    kind: Literal["expense"] = "expense"
    row_number: int
    date: str = ""
    description: str = ""
    amount: str = ""
    category: str = ""
    vendor: str = ""
    recurring: str = ""


MappedRow = Annotated[IncomeRow | ExpenseRow, Field(discriminator="kind")]


class IncomeRecord(BaseModel):
    """An income entry ready to persist."""

    kind: Literal["income"] = "income"
    source_row: int = Field(exclude=True)
    owner_id: str
    amount: float
    description: str
    date: date
    category_id: str | None = None
    is_recurring: bool = False


class ExpenseRecord(BaseModel):
    """An expense entry ready to persist."""

    kind: Literal["expense"] = "expense"
    source_row: int = Field(exclude=True)
    owner_id: str
    amount: float
    description: str
    date: date
    category_id: str | None = None
    vendor_id: str | None = None
    is_recurring: bool = False


LedgerRecord = Annotated[IncomeRecord | ExpenseRecord, Field(discriminator="kind")]


class Reference(BaseModel):
    """A category or vendor owned by a user."""

    id: str
    name: str
    owner_id: str


class ImportResults(BaseModel):
    """Per-outcome row counters of a job."""

    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0


class ImportJob(BaseModel):
    """Serializable snapshot of an import job."""

    id: str
    status: JobStatus = JobStatus.PENDING
    record_type: RecordType
    owner_id: str
    total_rows: int = 0
    processed_rows: int = 0
    successful_rows: int = 0
    failed_rows: int = 0
    progress_percentage: int = 0
    results: ImportResults = Field(default_factory=ImportResults)
    errors: list[RowIssue] = Field(default_factory=list)
    warnings: list[RowIssue] = Field(default_factory=list)
    field_mapping: dict[str, SemanticField] = Field(default_factory=dict)
    options: ImportOptions = Field(default_factory=ImportOptions)
    created_at: datetime
    completed_at: datetime | None = None


class ProgressDelta(BaseModel):
    """Counter increments and new errors accumulated since the last flush."""

    processed: int = 0
    successful: int = 0
    failed: int = 0
    created: int = 0
    percentage: int = 0
    errors: list[RowIssue] = Field(default_factory=list)


class BulkWriteResult(BaseModel):
    """Outcome of an unordered bulk insert: how many landed and which did not."""

    inserted_count: int
    write_errors: list[tuple[int, str]] = Field(default_factory=list)
