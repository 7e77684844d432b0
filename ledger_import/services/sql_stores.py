"""SQLAlchemy implementations of the importer's store protocols."""

import uuid
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import DataError, IntegrityError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ledger_import.core.db import Category, Expense, Income, ImportJobIssue, ImportJobRow, Vendor
from ledger_import.core.exceptions import BulkWriteError, RecordWriteError, StructuralError
from ledger_import.core.models import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    BulkWriteResult,
    ExpenseRecord,
    ImportJob,
    ImportOptions,
    ImportResults,
    JobStatus,
    LedgerRecord,
    ProgressDelta,
    RecordType,
    Reference,
    RowIssue,
)
from ledger_import.core.utils import get_logger, utcnow

logger = get_logger("ledger-import.store")

_ACTIVE = [status.value for status in ACTIVE_STATUSES]
_TERMINAL = [status.value for status in TERMINAL_STATUSES]


@asynccontextmanager
async def _session(sessions: async_sessionmaker) -> AsyncIterator[AsyncSession]:
    """Open a session, reporting connection-level failures as StructuralError."""
    try:
        async with sessions() as session:
            yield session
    except (OperationalError, InterfaceError) as exc:
        logger.exception("Database unavailable")
        msg = f"Database unavailable: {exc.orig or exc}"
        raise StructuralError(msg) from exc


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class SQLCategoryStore:
    """Categories table, one row per (record type, owner, name)."""

    def __init__(self, sessions: async_sessionmaker) -> None:
        """Initialize the store with a session factory."""
        self.sessions = sessions

    async def find_by_owner(self, record_type: RecordType, owner_id: str) -> list[Reference]:
        """Return every category of ``record_type`` owned by ``owner_id``."""
        stmt = select(Category).where(Category.record_type == record_type.value, Category.owner_id == owner_id)
        async with _session(self.sessions) as session:
            rows = (await session.scalars(stmt)).all()
        return [Reference(id=row.id, name=row.name, owner_id=row.owner_id) for row in rows]

    async def find_by_name_and_owner(self, record_type: RecordType, name: str, owner_id: str) -> Reference | None:
        """Case-insensitive lookup of a single category."""
        stmt = (
            select(Category)
            .where(
                Category.record_type == record_type.value,
                Category.owner_id == owner_id,
                func.lower(Category.name) == name.lower(),
            )
            .limit(1)
        )
        async with _session(self.sessions) as session:
            row = (await session.scalars(stmt)).first()
        if row is None:
            return None
        return Reference(id=row.id, name=row.name, owner_id=row.owner_id)

    async def create(self, record_type: RecordType, name: str, owner_id: str, description: str = "") -> Reference:
        """Insert a non-default category and return its reference."""
        row = Category(
            id=str(uuid.uuid4()),
            record_type=record_type.value,
            owner_id=owner_id,
            name=name,
            description=description,
            is_default=False,
        )
        async with _session(self.sessions) as session:
            session.add(row)
            await session.commit()
        return Reference(id=row.id, name=row.name, owner_id=row.owner_id)


class SQLVendorStore:
    """Vendors table."""

    def __init__(self, sessions: async_sessionmaker) -> None:
        """Initialize the store with a session factory."""
        self.sessions = sessions

    async def find_by_owner(self, owner_id: str) -> list[Reference]:
        """Return every vendor owned by ``owner_id``."""
        async with _session(self.sessions) as session:
            rows = (await session.scalars(select(Vendor).where(Vendor.owner_id == owner_id))).all()
        return [Reference(id=row.id, name=row.name, owner_id=row.owner_id) for row in rows]

    async def find_by_name_and_owner(self, name: str, owner_id: str) -> Reference | None:
        """Case-insensitive lookup of a single vendor."""
        stmt = select(Vendor).where(Vendor.owner_id == owner_id, func.lower(Vendor.name) == name.lower()).limit(1)
        async with _session(self.sessions) as session:
            row = (await session.scalars(stmt)).first()
        if row is None:
            return None
        return Reference(id=row.id, name=row.name, owner_id=row.owner_id)

    async def create(self, name: str, owner_id: str) -> Reference:
        """Insert a vendor with empty contact details."""
        row = Vendor(id=str(uuid.uuid4()), owner_id=owner_id, name=name, email="", phone="", address="")
        async with _session(self.sessions) as session:
            session.add(row)
            await session.commit()
        return Reference(id=row.id, name=row.name, owner_id=row.owner_id)


def _ledger_row(record: LedgerRecord) -> Income | Expense:
    fields = record.model_dump(exclude={"kind"})
    model = Expense if isinstance(record, ExpenseRecord) else Income
    return model(id=str(uuid.uuid4()), **fields)


class SQLRecordStore:
    """Incomes and expenses tables."""

    def __init__(self, sessions: async_sessionmaker) -> None:
        """Initialize the store with a session factory."""
        self.sessions = sessions

    async def insert_many(self, records: list[LedgerRecord]) -> BulkWriteResult:
        """Insert records in one transaction, each under its own savepoint.

        A record the database rejects is rolled back to its savepoint and
        reported in ``write_errors``; the remaining records still land.
        """
        if not records:
            return BulkWriteResult(inserted_count=0)
        write_errors: list[tuple[int, str]] = []
        try:
            async with _session(self.sessions) as session:
                for index, record in enumerate(records):
                    try:
                        async with session.begin_nested():
                            session.add(_ledger_row(record))
                    except (IntegrityError, DataError) as exc:
                        write_errors.append((index, str(exc.orig)))
                await session.commit()
        except StructuralError:
            raise
        except SQLAlchemyError as exc:
            msg = f"Bulk insert of {len(records)} records failed: {exc}"
            raise BulkWriteError(msg) from exc
        return BulkWriteResult(inserted_count=len(records) - len(write_errors), write_errors=write_errors)

    async def insert_one(self, record: LedgerRecord) -> str:
        """Insert a single record and return its id."""
        row = _ledger_row(record)
        try:
            async with _session(self.sessions) as session:
                session.add(row)
                await session.commit()
        except (IntegrityError, DataError) as exc:
            raise RecordWriteError(str(exc.orig)) from exc
        return row.id


def _issue_rows(job_id: str, kind: str, issues: Iterable[RowIssue]) -> list[ImportJobIssue]:
    return [
        ImportJobIssue(job_id=job_id, kind=kind, row=i.row, field=i.field, message=i.message, value=i.value)
        for i in issues
    ]


def _to_job(row: ImportJobRow, issues: list[ImportJobIssue]) -> ImportJob:
    def pick(kind: str) -> list[RowIssue]:
        return [
            RowIssue(row=i.row, field=i.field, message=i.message, value=i.value) for i in issues if i.kind == kind
        ]

    return ImportJob(
        id=row.id,
        status=JobStatus(row.status),
        record_type=RecordType(row.record_type),
        owner_id=row.owner_id,
        total_rows=row.total_rows,
        processed_rows=row.processed_rows,
        successful_rows=row.successful_rows,
        failed_rows=row.failed_rows,
        progress_percentage=row.progress_percentage,
        results=ImportResults(
            created=row.created_count,
            updated=row.updated_count,
            skipped=row.skipped_count,
            failed=row.failed_count,
        ),
        errors=pick("error"),
        warnings=pick("warning"),
        field_mapping=row.field_mapping or {},
        options=ImportOptions(**(row.options or {})),
        created_at=_aware(row.created_at),
        completed_at=_aware(row.completed_at),
    )


class SQLJobStore:
    """Import jobs and their issue lists.

    Status guards live in the WHERE clause of each UPDATE, so a job that has
    reached a terminal status is never modified again regardless of how
    progress writes interleave.
    """

    def __init__(self, sessions: async_sessionmaker) -> None:
        """Initialize the store with a session factory."""
        self.sessions = sessions

    async def create(self, job: ImportJob) -> None:
        """Persist a freshly submitted job together with its warnings."""
        row = ImportJobRow(
            id=job.id,
            status=job.status.value,
            record_type=job.record_type.value,
            owner_id=job.owner_id,
            total_rows=job.total_rows,
            processed_rows=job.processed_rows,
            successful_rows=job.successful_rows,
            failed_rows=job.failed_rows,
            progress_percentage=job.progress_percentage,
            created_count=job.results.created,
            updated_count=job.results.updated,
            skipped_count=job.results.skipped,
            failed_count=job.results.failed,
            field_mapping={column: field.value for column, field in job.field_mapping.items()},
            options=job.options.model_dump(),
            created_at=job.created_at,
            completed_at=job.completed_at,
        )
        async with _session(self.sessions) as session:
            session.add(row)
            await session.flush()
            session.add_all(_issue_rows(job.id, "warning", job.warnings))
            session.add_all(_issue_rows(job.id, "error", job.errors))
            await session.commit()

    async def find_by_id(self, job_id: str) -> ImportJob | None:
        """Load a job snapshot, or None when the id is unknown."""
        async with _session(self.sessions) as session:
            row = await session.get(ImportJobRow, job_id)
            if row is None:
                return None
            stmt = select(ImportJobIssue).where(ImportJobIssue.job_id == job_id).order_by(ImportJobIssue.id)
            issues = list((await session.scalars(stmt)).all())
        return _to_job(row, issues)

    async def find_by_owner(self, owner_id: str, limit: int) -> list[ImportJob]:
        """Most recent jobs of an owner, newest first."""
        stmt = (
            select(ImportJobRow)
            .where(ImportJobRow.owner_id == owner_id)
            .order_by(ImportJobRow.created_at.desc())
            .limit(limit)
        )
        async with _session(self.sessions) as session:
            rows = list((await session.scalars(stmt)).all())
            if not rows:
                return []
            issue_stmt = (
                select(ImportJobIssue)
                .where(ImportJobIssue.job_id.in_([row.id for row in rows]))
                .order_by(ImportJobIssue.id)
            )
            issues = list((await session.scalars(issue_stmt)).all())
        return [_to_job(row, [i for i in issues if i.job_id == row.id]) for row in rows]

    async def get_status(self, job_id: str) -> JobStatus | None:
        """Cheap status read used at batch boundaries."""
        async with _session(self.sessions) as session:
            value = await session.scalar(select(ImportJobRow.status).where(ImportJobRow.id == job_id))
        return JobStatus(value) if value is not None else None

    async def _transition(self, job_id: str, allowed: Iterable[str], **values: object) -> bool:
        stmt = (
            update(ImportJobRow)
            .where(ImportJobRow.id == job_id, ImportJobRow.status.in_(list(allowed)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with _session(self.sessions) as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount > 0

    async def mark_processing(self, job_id: str) -> bool:
        """pending -> processing."""
        return await self._transition(job_id, [JobStatus.PENDING.value], status=JobStatus.PROCESSING.value)

    async def apply_progress(self, job_id: str, delta: ProgressDelta) -> bool:
        """Increment counters and append errors in one transaction."""
        stmt = (
            update(ImportJobRow)
            .where(ImportJobRow.id == job_id, ImportJobRow.status.in_(_ACTIVE))
            .values(
                processed_rows=ImportJobRow.processed_rows + delta.processed,
                successful_rows=ImportJobRow.successful_rows + delta.successful,
                failed_rows=ImportJobRow.failed_rows + delta.failed,
                created_count=ImportJobRow.created_count + delta.created,
                failed_count=ImportJobRow.failed_count + delta.failed,
                progress_percentage=delta.percentage,
            )
            .execution_options(synchronize_session=False)
        )
        async with _session(self.sessions) as session:
            result = await session.execute(stmt)
            if result.rowcount == 0:
                await session.rollback()
                return False
            session.add_all(_issue_rows(job_id, "error", delta.errors))
            await session.commit()
        return True

    async def finish(self, job_id: str, status: JobStatus, error: RowIssue | None = None) -> bool:
        """Move an active job to a terminal status, optionally recording a job-level error."""
        values: dict[str, object] = {"status": status.value, "completed_at": utcnow()}
        if status is JobStatus.COMPLETED:
            values["progress_percentage"] = 100
        stmt = (
            update(ImportJobRow)
            .where(ImportJobRow.id == job_id, ImportJobRow.status.in_(_ACTIVE))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with _session(self.sessions) as session:
            result = await session.execute(stmt)
            if result.rowcount == 0:
                await session.rollback()
                return False
            if error is not None:
                session.add_all(_issue_rows(job_id, "error", [error]))
            await session.commit()
        return True

    async def cancel(self, job_id: str) -> bool:
        """pending|processing -> cancelled."""
        return await self._transition(
            job_id, _ACTIVE, status=JobStatus.CANCELLED.value, completed_at=utcnow()
        )

    async def delete_finished_before(self, cutoff: datetime) -> int:
        """Delete terminal jobs completed before ``cutoff``; return how many."""
        stmt = select(ImportJobRow.id).where(
            ImportJobRow.status.in_(_TERMINAL), ImportJobRow.completed_at < cutoff
        )
        async with _session(self.sessions) as session:
            job_ids = list((await session.scalars(stmt)).all())
            if job_ids:
                await session.execute(delete(ImportJobIssue).where(ImportJobIssue.job_id.in_(job_ids)))
                await session.execute(delete(ImportJobRow).where(ImportJobRow.id.in_(job_ids)))
                await session.commit()
        return len(job_ids)
