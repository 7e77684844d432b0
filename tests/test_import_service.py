"""Tests for the import service orchestration, using in-memory stores."""

import asyncio
from datetime import timedelta

import pytest

from factories import INCOME_MAPPING, OWNER, Stores, income_rows
from ledger_import.core.exceptions import JobNotFoundError, MappingError
from ledger_import.core.models import ImportJob, ImportOptions, JobStatus, RecordType, SemanticField
from ledger_import.core.settings import Settings
from ledger_import.services.import_service import ImportService


def _service(stores: Stores, **overrides: object) -> ImportService:
    settings = Settings(**{"batch_size": 100, "progress_every_batches": 5, **overrides})
    return ImportService(stores.jobs, stores.categories, stores.vendors, stores.records, settings)


def _import(service: ImportService, rows: list[dict[str, str]], **kwargs: object) -> ImportJob:
    async def scenario() -> ImportJob:
        job_id = await service.submit(rows, INCOME_MAPPING, RecordType.INCOME, OWNER, **kwargs)
        await service.join(job_id)
        return await service.get_status(job_id)

    return asyncio.run(scenario())


def test_submit_returns_before_processing() -> None:
    """The job exists as pending when submit returns."""
    stores = Stores()
    service = _service(stores)

    async def scenario() -> tuple[JobStatus, ImportJob]:
        job_id = await service.start_import_job(income_rows(5), INCOME_MAPPING, RecordType.INCOME, OWNER)
        pending = (await service.get_import_job_status(job_id)).status
        await service.join(job_id)
        return pending, await service.get_status(job_id)

    pending, job = asyncio.run(scenario())
    if pending is not JobStatus.PENDING or job.status is not JobStatus.COMPLETED:
        msg = f"Expected pending then completed, got {pending} then {job.status}"
        raise AssertionError(msg)


def test_counters_after_completion() -> None:
    """processed equals the mapped row count; blank rows count as skipped."""
    stores = Stores()
    rows = income_rows(30)
    rows.insert(10, {"Date": "", "Description": "", "Amount": "", "Category": ""})
    rows[20]["Amount"] = "0"
    job = _import(_service(stores), rows)
    if (job.total_rows, job.processed_rows) != (30, 30):
        msg = f"Unexpected totals: {job.total_rows}/{job.processed_rows}"
        raise AssertionError(msg)
    if (job.results.created, job.results.failed, job.results.skipped, job.results.updated) != (29, 1, 1, 0):
        msg = f"Unexpected results: {job.results}"
        raise AssertionError(msg)
    if job.successful_rows + job.failed_rows != job.processed_rows:
        msg = "successful + failed != processed"
        raise AssertionError(msg)


def test_reimport_creates_duplicates() -> None:
    """Nothing deduplicates: the same file twice yields two copies."""
    stores = Stores()
    service = _service(stores)
    _import(service, income_rows(7))
    _import(service, income_rows(7))
    if len(stores.records.records) != 14:  # noqa: PLR2004
        msg = f"Expected 14 records, got {len(stores.records.records)}"
        raise AssertionError(msg)


def test_submit_stores_validation_warnings() -> None:
    """Warnings found at submission travel with the job."""
    stores = Stores()
    rows = income_rows(2)
    rows[0]["Date"] = "2999-01-01"
    job = _import(_service(stores), rows)
    if [(w.row, w.message) for w in job.warnings] != [(2, "Date is in the future")]:
        msg = f"Unexpected warnings: {job.warnings}"
        raise AssertionError(msg)


def test_unavailable_store_fails_the_job() -> None:
    """A structural failure ends the job with one job-level error."""
    stores = Stores()
    stores.records.unavailable = True
    job = _import(_service(stores), income_rows(5))
    if job.status is not JobStatus.FAILED or job.completed_at is None:
        msg = f"Expected failed, got {job.status}"
        raise AssertionError(msg)
    if [(e.row, e.field) for e in job.errors] != [(0, "general")]:
        msg = f"Unexpected errors: {job.errors}"
        raise AssertionError(msg)


def test_missing_mapping_is_rejected() -> None:
    """No job is created without amount and description mappings."""
    stores = Stores()
    service = _service(stores)
    with pytest.raises(MappingError):
        asyncio.run(service.submit(income_rows(1), {"Date": SemanticField.DATE}, RecordType.INCOME, OWNER))
    if stores.jobs.jobs:
        msg = "Expected no job to be stored"
        raise AssertionError(msg)


def test_cancel_terminal_job_is_a_noop() -> None:
    """Cancelling a finished job reports False and keeps its status."""
    stores = Stores()
    service = _service(stores)
    job = _import(service, income_rows(3))
    if asyncio.run(service.cancel_import_job(job.id)):
        msg = "Expected cancel of a completed job to return False"
        raise AssertionError(msg)
    if asyncio.run(service.get_status(job.id)).status is not JobStatus.COMPLETED:
        msg = "Status changed after cancelling a completed job"
        raise AssertionError(msg)


def test_cancel_pending_job() -> None:
    """A job cancelled right after submission never writes a record."""
    stores = Stores()
    service = _service(stores)

    async def scenario() -> tuple[bool, ImportJob]:
        job_id = await service.submit(income_rows(50), INCOME_MAPPING, RecordType.INCOME, OWNER)
        cancelled = await service.cancel_if_pending(job_id)
        await service.join(job_id)
        return cancelled, await service.get_status(job_id)

    cancelled, job = asyncio.run(scenario())
    if not cancelled or job.status is not JobStatus.CANCELLED or job.processed_rows != 0:
        msg = f"Unexpected outcome: cancelled={cancelled} status={job.status} processed={job.processed_rows}"
        raise AssertionError(msg)
    if stores.records.records:
        msg = "Expected no records"
        raise AssertionError(msg)


def test_unknown_job() -> None:
    """Looking up a missing id raises JobNotFoundError."""
    with pytest.raises(JobNotFoundError):
        asyncio.run(_service(Stores()).get_status("missing"))


def test_list_and_cleanup() -> None:
    """Jobs are listed per owner; finished jobs past retention are removed."""
    stores = Stores()
    service = _service(stores)
    first = _import(service, income_rows(1))
    _import(service, income_rows(1), options=ImportOptions(create_categories=False))
    listed = asyncio.run(service.list_jobs(OWNER))
    if len(listed) != 2 or asyncio.run(service.list_jobs("nobody")):  # noqa: PLR2004
        msg = f"Unexpected listing: {listed}"
        raise AssertionError(msg)
    stores.jobs.jobs[first.id].completed_at -= timedelta(hours=48)
    if asyncio.run(service.cleanup_older_than(24)) != 1:
        msg = "Expected one job removed"
        raise AssertionError(msg)
    if first.id in stores.jobs.jobs:
        msg = "Expected the old job to be gone"
        raise AssertionError(msg)


def test_preview_import() -> None:
    """Preview returns detected mapping and the first five rows."""
    data = "Date,Description,Amount\n" + "".join(f"2024-01-{d:02d},Item {d},{d}.00\n" for d in range(1, 9))
    preview = asyncio.run(_service(Stores()).preview_import(data.encode(), "upload.csv"))
    if preview.total_rows != 8 or len(preview.preview_rows) != 5:  # noqa: PLR2004
        msg = f"Unexpected preview sizes: {preview.total_rows}, {len(preview.preview_rows)}"
        raise AssertionError(msg)
    if preview.detected_mapping[SemanticField.AMOUNT] != "Amount":
        msg = f"Unexpected mapping: {preview.detected_mapping}"
        raise AssertionError(msg)


def test_concurrent_owners_get_their_own_categories() -> None:
    """Two owners importing the same category name at once each get a category of their own."""
    stores = Stores()
    service = _service(stores)
    rows_a = income_rows(20, category="Travel")
    rows_b = income_rows(30, category="travel")

    async def scenario() -> list[ImportJob]:
        job_ids = await asyncio.gather(
            service.submit(rows_a, INCOME_MAPPING, RecordType.INCOME, "owner-a"),
            service.submit(rows_b, INCOME_MAPPING, RecordType.INCOME, "owner-b"),
        )
        await asyncio.gather(*(service.join(job_id) for job_id in job_ids))
        return [await service.get_status(job_id) for job_id in job_ids]

    job_a, job_b = asyncio.run(scenario())
    if stores.categories.create_calls != 2:  # noqa: PLR2004
        msg = f"Expected one category per owner, got {stores.categories.create_calls} creates"
        raise AssertionError(msg)
    owned = {}
    for owner, name in [("owner-a", "Travel"), ("owner-b", "travel")]:
        refs = asyncio.run(stores.categories.find_by_owner(RecordType.INCOME, owner))
        if [ref.name for ref in refs] != [name]:
            msg = f"Unexpected categories for {owner}: {refs}"
            raise AssertionError(msg)
        owned[owner] = refs[0].id
    for job, expected in [(job_a, 20), (job_b, 30)]:
        if job.status is not JobStatus.COMPLETED or job.results.created != expected:
            msg = f"Unexpected outcome for {job.owner_id}: {job.status} {job.results}"
            raise AssertionError(msg)
        records = [record for record in stores.records.records if record.owner_id == job.owner_id]
        if len(records) != expected or {record.category_id for record in records} != {owned[job.owner_id]}:
            msg = f"Records of {job.owner_id} do not point at its own category"
            raise AssertionError(msg)
