"""Ledger importer exception hierarchy."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ledger_import.core.models import RowIssue


class LedgerImportError(Exception):
    """Base exception for all importer errors."""


class ParseError(LedgerImportError):
    """The uploaded file could not be turned into headers and rows."""


class MappingError(LedgerImportError):
    """The confirmed field mapping is unusable for the requested record type."""


class RowError(LedgerImportError):
    """A single input row could not be turned into a ledger record."""

    def __init__(self, row: int, field: str, message: str) -> None:
        self.row = row
        self.field = field
        self.message = message
        super().__init__(f"Row {row}: {message}")


class ValidationError(RowError):
    """A row failed one or more validation rules."""

    def __init__(self, row: int, issues: list[RowIssue]) -> None:
        self.issues = issues
        first = issues[0]
        super().__init__(row, first.field, "; ".join(issue.message for issue in issues))


class ResolutionError(RowError):
    """A category or vendor reference could not be created."""


class BulkWriteError(LedgerImportError):
    """The bulk insert call failed as a whole rather than per record."""


class RecordWriteError(LedgerImportError):
    """One ledger record was rejected by the record store."""


class StructuralError(LedgerImportError):
    """A backing store is unavailable; the running job cannot continue."""


class JobNotFoundError(LedgerImportError):
    """No import job exists for the given id."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Import job {job_id} not found")
