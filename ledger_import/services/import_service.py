"""Public entry point of the importer: preview, submit, status, cancel, cleanup.

``submit`` records a pending job and returns its id straight away; the job
itself runs as an independent asyncio task. Jobs of different owners share
nothing but the job store.
"""

import asyncio
import uuid
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncEngine

from ledger_import.core.db import get_sessionmaker
from ledger_import.core.exceptions import JobNotFoundError
from ledger_import.core.models import (
    FieldMapping,
    ImportJob,
    ImportOptions,
    ImportPreview,
    ImportResults,
    JobStatus,
    RecordType,
    RowIssue,
    SemanticField,
    ValidationResult,
)
from ledger_import.core.settings import Settings, get_settings
from ledger_import.core.utils import get_logger, utcnow
from ledger_import.services.column_detector import detect_columns
from ledger_import.services.file_parser import parse_file
from ledger_import.services.reference_resolver import ReferenceResolver
from ledger_import.services.sql_stores import SQLCategoryStore, SQLJobStore, SQLRecordStore, SQLVendorStore
from ledger_import.services.stores import CategoryStore, JobStore, RecordStore, VendorStore
from ledger_import.services.validator import check_mapping, map_rows, validate, validate_rows
from ledger_import.workers.batch_executor import BatchExecutor

logger = get_logger("ledger-import.service")


class ImportService:
    """Ties parsing, validation and batch execution to the job store."""

    def __init__(
        self,
        jobs: JobStore,
        categories: CategoryStore,
        vendors: VendorStore,
        records: RecordStore,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the service with its stores and settings."""
        self.settings = settings or get_settings()
        self.jobs = jobs
        self.resolver = ReferenceResolver(categories, vendors)
        self.executor = BatchExecutor(
            jobs,
            records,
            self.resolver,
            batch_size=self.settings.batch_size,
            progress_every=self.settings.progress_every_batches,
        )
        self._tasks: dict[str, asyncio.Task] = {}

    async def preview_import(self, data: bytes, file_format: str) -> ImportPreview:
        """Parse a file and suggest a mapping; nothing is persisted."""
        parsed = await parse_file(data, file_format)
        return ImportPreview(
            headers=parsed.headers,
            detected_mapping=detect_columns(parsed.headers),
            preview_rows=parsed.rows[: self.settings.preview_rows],
            total_rows=parsed.total_rows,
            warnings=parsed.warnings,
        )

    def validate(
        self,
        rows: list[dict[str, str]],
        mapping: FieldMapping,
        record_type: RecordType,
        date_format: str | None = None,
    ) -> ValidationResult:
        """Validate rows under a confirmed mapping without starting a job."""
        check_mapping(mapping)
        return validate(rows, mapping, record_type, date_format)

    async def submit(
        self,
        rows: list[dict[str, str]],
        mapping: FieldMapping,
        record_type: RecordType,
        owner_id: str,
        options: ImportOptions | None = None,
    ) -> str:
        """Create a pending job for ``rows`` and start processing it in the background."""
        check_mapping(mapping)
        options = options or ImportOptions()
        mapping = {column: SemanticField(field) for column, field in mapping.items()}
        mapped = map_rows(rows, mapping, record_type)
        validation = validate_rows(mapped, mapping, options.date_format)
        job = ImportJob(
            id=str(uuid.uuid4()),
            record_type=record_type,
            owner_id=owner_id,
            total_rows=len(mapped),
            results=ImportResults(skipped=len(rows) - len(mapped)),
            warnings=validation.warnings,
            field_mapping=mapping,
            options=options,
            created_at=utcnow(),
        )
        await self.jobs.create(job)
        logger.info(
            f"Created {record_type} import job {job.id} for owner {owner_id}: "
            f"{job.total_rows} rows, {job.results.skipped} blank rows skipped"
        )
        task = asyncio.create_task(self._run(job, mapped), name=f"import-{job.id}")
        self._tasks[job.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job.id, None))
        return job.id

    start_import_job = submit

    async def _run(self, job: ImportJob, rows: list) -> None:
        try:
            status = await self.executor.run(job, rows)
            logger.info(f"Import job {job.id} finished with status {status}")
        except asyncio.CancelledError:
            logger.warning(f"Import job {job.id} interrupted by shutdown")
            await self._mark_failed(job.id, "Import interrupted by server shutdown")
            raise
        except Exception as exc:
            logger.exception(f"Import job {job.id} failed")
            await self._mark_failed(job.id, str(exc) or type(exc).__name__)

    async def _mark_failed(self, job_id: str, message: str) -> None:
        try:
            await self.jobs.finish(job_id, JobStatus.FAILED, RowIssue(row=0, field="general", message=message))
        except Exception:
            logger.exception(f"Failed to update job {job_id} status")

    async def get_status(self, job_id: str) -> ImportJob:
        """Current snapshot of a job."""
        job = await self.jobs.find_by_id(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    get_import_job_status = get_status

    async def cancel_if_pending(self, job_id: str) -> bool:
        """Request cancellation; a running batch finishes before the job stops."""
        cancelled = await self.jobs.cancel(job_id)
        if cancelled:
            logger.info(f"Import job {job_id} cancelled")
        return cancelled

    cancel_import_job = cancel_if_pending

    async def list_jobs(self, owner_id: str, limit: int | None = None) -> list[ImportJob]:
        """Recent jobs of an owner, newest first."""
        return await self.jobs.find_by_owner(owner_id, limit or self.settings.list_jobs_limit)

    async def cleanup_older_than(self, hours: float) -> int:
        """Delete terminal jobs that finished more than ``hours`` ago."""
        removed = await self.jobs.delete_finished_before(utcnow() - timedelta(hours=hours))
        logger.info(f"Removed {removed} old import jobs")
        return removed

    async def join(self, job_id: str) -> None:
        """Wait until the background task of ``job_id`` (if any) has finished."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait([task])

    async def run_cleanup_loop(self, interval_minutes: float, retention_hours: float) -> None:
        """Periodically purge stale terminal jobs until cancelled."""
        while True:
            await asyncio.sleep(interval_minutes * 60)
            try:
                await self.cleanup_older_than(retention_hours)
            except Exception:
                logger.exception("Periodic import job cleanup failed")

    async def aclose(self) -> None:
        """Cancel running jobs; each is marked failed on its way out."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


def create_import_service(engine: AsyncEngine, settings: Settings | None = None) -> ImportService:
    """Wire an ImportService to SQLAlchemy-backed stores on ``engine``."""
    sessions = get_sessionmaker(engine)
    return ImportService(
        jobs=SQLJobStore(sessions),
        categories=SQLCategoryStore(sessions),
        vendors=SQLVendorStore(sessions),
        records=SQLRecordStore(sessions),
        settings=settings,
    )
