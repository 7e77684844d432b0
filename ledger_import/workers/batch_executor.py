"""Batch execution of import jobs.

Batches run one after another. Inside a batch every row is validated,
coerced and resolved concurrently, then all good records go to the record
store in a single unordered bulk insert. Progress reaches the job store as
counter increments at a sampled cadence, and a cancel request is noticed at
the next batch boundary.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import date

from ledger_import.core.exceptions import BulkWriteError, RecordWriteError, RowError, ValidationError
from ledger_import.core.models import (
    ExpenseRecord,
    ExpenseRow,
    ImportJob,
    IncomeRecord,
    JobStatus,
    LedgerRecord,
    MappedRow,
    ProgressDelta,
    RowIssue,
    SemanticField,
)
from ledger_import.core.utils import elapsed_ms, get_logger
from ledger_import.services.reference_resolver import ReferenceCache, ReferenceResolver
from ledger_import.services.stores import JobStore, RecordStore
from ledger_import.services.validator import parse_amount, parse_boolean, parse_date, validate_row

logger = get_logger("ledger-import.worker")

DEFAULT_BATCH_SIZE = 100
DEFAULT_PROGRESS_EVERY = 5
SLOW_EXTRACTION_MS = 100
MAX_LOGGED_WRITE_ERRORS = 3


@dataclass
class Extraction:
    """Outcome of turning one mapped row into a ledger record."""

    row_number: int
    record: LedgerRecord | None = None
    issues: list[RowIssue] = field(default_factory=list)


@dataclass
class BatchOutcome:
    """Counts and issues produced by one batch."""

    size: int
    created: int = 0
    failures: list[RowIssue] = field(default_factory=list)
    failed_rows: set[int] = field(default_factory=set)

    @property
    def failed(self) -> int:
        """Distinct rows that failed in extraction or on write."""
        return len(self.failed_rows)


def partition(rows: list[MappedRow], size: int) -> list[list[MappedRow]]:
    """Split rows into consecutive batches of at most ``size``."""
    return [rows[start : start + size] for start in range(0, len(rows), size)]


class BatchExecutor:
    """Runs a single import job from pending to a terminal status."""

    def __init__(
        self,
        jobs: JobStore,
        records: RecordStore,
        resolver: ReferenceResolver,
        batch_size: int = DEFAULT_BATCH_SIZE,
        progress_every: int = DEFAULT_PROGRESS_EVERY,
    ) -> None:
        """Initialize the executor with its stores and batching parameters."""
        self.jobs = jobs
        self.records = records
        self.resolver = resolver
        self.batch_size = max(1, batch_size)
        self.progress_every = max(1, progress_every)

    async def run(self, job: ImportJob, rows: list[MappedRow]) -> JobStatus | None:
        """Process every batch of ``job`` and return the status it ended in.

        Row-level failures are recorded on the job. StructuralError and any
        other unexpected exception propagate to the caller, which marks the
        job failed.
        """
        job_id = job.id
        if not await self.jobs.mark_processing(job_id):
            logger.info(f"Job {job_id} is no longer pending; skipping")
            return await self.jobs.get_status(job_id)

        cache = await self.resolver.preload(job.record_type, job.owner_id)
        mapped_fields = set(job.field_mapping.values())
        batches = partition(rows, self.batch_size)
        total = len(rows)
        processed = 0
        delta = ProgressDelta()
        started = time.perf_counter()
        logger.info(f"Job {job_id}: {total} rows in {len(batches)} batches of up to {self.batch_size}")

        for index, batch in enumerate(batches):
            status = await self.jobs.get_status(job_id)
            if status is not JobStatus.PROCESSING:
                logger.info(f"Job {job_id} is {status}; stopping before batch {index + 1}/{len(batches)}")
                return status

            batch_started = time.perf_counter()
            outcome = await self._run_batch(job, batch, cache, mapped_fields)
            processed += outcome.size
            delta.processed += outcome.size
            delta.successful += outcome.created
            delta.created += outcome.created
            delta.failed += outcome.failed
            delta.errors.extend(outcome.failures)
            logger.info(
                f"Job {job_id}: batch {index + 1}/{len(batches)} done in {elapsed_ms(batch_started)}ms "
                f"({outcome.created} created, {outcome.failed} failed)"
            )

            abort = outcome.failures[0] if outcome.failures and not job.options.skip_invalid_rows else None
            is_last = index == len(batches) - 1
            if index % self.progress_every == 0 or is_last or abort is not None:
                delta.percentage = round(processed * 100 / total) if total else 100
                if not await self.jobs.apply_progress(job_id, delta):
                    logger.info(f"Job {job_id} reached a terminal status during batch {index + 1}; stopping")
                    return await self.jobs.get_status(job_id)
                logger.info(f"Job {job_id}: progress {processed}/{total} rows ({delta.percentage}%)")
                delta = ProgressDelta()

            if abort is not None:
                message = f"Row {abort.row}: {abort.message}"
                logger.warning(f"Job {job_id} aborted, invalid rows are not being skipped. {message}")
                await self.jobs.finish(job_id, JobStatus.FAILED, RowIssue(row=0, field="general", message=message))
                return JobStatus.FAILED

        if await self.jobs.finish(job_id, JobStatus.COMPLETED):
            logger.info(
                f"Job {job_id} completed in {elapsed_ms(started)}ms "
                f"({cache.created_categories} categories and {cache.created_vendors} vendors created)"
            )
            return JobStatus.COMPLETED
        return await self.jobs.get_status(job_id)

    async def _run_batch(
        self, job: ImportJob, batch: list[MappedRow], cache: ReferenceCache, mapped_fields: set[SemanticField]
    ) -> BatchOutcome:
        results = await asyncio.gather(
            *(self.extract(row, job, cache, mapped_fields) for row in batch), return_exceptions=True
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

        outcome = BatchOutcome(size=len(batch))
        good: list[LedgerRecord] = []
        for extraction in results:
            if extraction.record is not None:
                good.append(extraction.record)
            else:
                outcome.failures.extend(extraction.issues)
                outcome.failed_rows.add(extraction.row_number)

        if good:
            created, write_failures = await self._persist(job, good)
            outcome.created = created
            outcome.failures.extend(write_failures)
            outcome.failed_rows.update(issue.row for issue in write_failures)
        outcome.failures.sort(key=lambda issue: issue.row)
        return outcome

    async def extract(
        self, row: MappedRow, job: ImportJob, cache: ReferenceCache, mapped_fields: set[SemanticField]
    ) -> Extraction:
        """Validate, coerce and resolve one row; row-level problems become issues."""
        started = time.perf_counter()
        try:
            record = await self._build_record(row, job, cache, mapped_fields)
        except ValidationError as exc:
            return Extraction(row_number=row.row_number, issues=exc.issues)
        except RowError as exc:
            issue = RowIssue(row=row.row_number, field=exc.field, message=exc.message)
            return Extraction(row_number=row.row_number, issues=[issue])
        duration = elapsed_ms(started)
        if duration > SLOW_EXTRACTION_MS:
            logger.warning(f"Slow data extraction: {duration}ms for row {row.row_number}")
        return Extraction(row_number=row.row_number, record=record)

    async def _build_record(
        self, row: MappedRow, job: ImportJob, cache: ReferenceCache, mapped_fields: set[SemanticField]
    ) -> LedgerRecord:
        options = job.options
        errors, _ = validate_row(row, mapped_fields, options.date_format)
        if errors:
            raise ValidationError(row.row_number, errors)

        category_id = await self.resolver.resolve_category(
            row.category, cache, create=options.create_categories, row=row.row_number
        )
        common = {
            "source_row": row.row_number,
            "owner_id": job.owner_id,
            "amount": parse_amount(row.amount),
            "description": row.description.strip(),
            "date": parse_date(row.date, options.date_format) or date.today(),
            "category_id": category_id,
            "is_recurring": parse_boolean(row.recurring),
        }
        if isinstance(row, ExpenseRow):
            vendor_id = await self.resolver.resolve_vendor(
                row.vendor, cache, create=options.create_vendors, row=row.row_number
            )
            return ExpenseRecord(vendor_id=vendor_id, **common)
        return IncomeRecord(**common)

    async def _persist(self, job: ImportJob, records: list[LedgerRecord]) -> tuple[int, list[RowIssue]]:
        """Bulk insert ``records``; fall back to one-by-one when the bulk call fails outright."""
        started = time.perf_counter()
        try:
            result = await self.records.insert_many(records)
        except BulkWriteError:
            logger.exception(f"Job {job.id}: bulk insert of {len(records)} records failed; inserting individually")
            return await self._persist_individually(records)

        failures = [
            RowIssue(row=records[index].source_row, field="general", message=message)
            for index, message in result.write_errors
        ]
        if failures:
            logger.warning(
                f"Job {job.id}: bulk insert partially completed in {elapsed_ms(started)}ms "
                f"({result.inserted_count} inserted, {len(failures)} failed); "
                f"first errors: {[f.message for f in failures[:MAX_LOGGED_WRITE_ERRORS]]}"
            )
        else:
            logger.info(
                f"Job {job.id}: bulk insert of {result.inserted_count} {job.record_type} records "
                f"in {elapsed_ms(started)}ms"
            )
        return result.inserted_count, failures

    async def _persist_individually(self, records: list[LedgerRecord]) -> tuple[int, list[RowIssue]]:
        created = 0
        failures: list[RowIssue] = []
        for record in records:
            try:
                await self.records.insert_one(record)
            except RecordWriteError as exc:
                failures.append(RowIssue(row=record.source_row, field="general", message=str(exc)))
            else:
                created += 1
        return created, failures
