"""Store interfaces the importer consumes.

Categories, vendors and ledger records belong to the surrounding finance
application; the importer only reads and creates them through these
protocols. The job store is the importer's own durable state.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from ledger_import.core.models import (
    BulkWriteResult,
    ImportJob,
    JobStatus,
    LedgerRecord,
    ProgressDelta,
    RecordType,
    Reference,
    RowIssue,
)


class CategoryStore(Protocol):
    """Income and expense categories scoped by owner."""

    async def find_by_owner(self, record_type: RecordType, owner_id: str) -> list[Reference]: ...

    async def find_by_name_and_owner(self, record_type: RecordType, name: str, owner_id: str) -> Reference | None: ...

    async def create(
        self, record_type: RecordType, name: str, owner_id: str, description: str = ""
    ) -> Reference: ...


class VendorStore(Protocol):
    """Vendors scoped by owner."""

    async def find_by_owner(self, owner_id: str) -> list[Reference]: ...

    async def find_by_name_and_owner(self, name: str, owner_id: str) -> Reference | None: ...

    async def create(self, name: str, owner_id: str) -> Reference: ...


class RecordStore(Protocol):
    """Income and expense ledger entries."""

    async def insert_many(self, records: list[LedgerRecord]) -> BulkWriteResult:
        """Unordered bulk insert; per-record rejections are reported, not raised."""
        ...

    async def insert_one(self, record: LedgerRecord) -> str: ...


class JobStore(Protocol):
    """Durable import job state, changed only through partial updates.

    Every mutating call is a no-op returning False once the job has reached a
    terminal status.
    """

    async def create(self, job: ImportJob) -> None: ...

    async def find_by_id(self, job_id: str) -> ImportJob | None: ...

    async def find_by_owner(self, owner_id: str, limit: int) -> list[ImportJob]: ...

    async def get_status(self, job_id: str) -> JobStatus | None: ...

    async def mark_processing(self, job_id: str) -> bool: ...

    async def apply_progress(self, job_id: str, delta: ProgressDelta) -> bool: ...

    async def finish(self, job_id: str, status: JobStatus, error: RowIssue | None = None) -> bool: ...

    async def cancel(self, job_id: str) -> bool: ...

    async def delete_finished_before(self, cutoff: datetime) -> int: ...
