"""Builders shared by the unit tests."""

from fakes import MemoryCategoryStore, MemoryJobStore, MemoryRecordStore, MemoryVendorStore
from ledger_import.core.models import ImportJob, ImportOptions, RecordType, SemanticField
from ledger_import.core.utils import utcnow

OWNER = "owner-1"
INCOME_MAPPING = {
    "Date": SemanticField.DATE,
    "Description": SemanticField.DESCRIPTION,
    "Amount": SemanticField.AMOUNT,
    "Category": SemanticField.CATEGORY,
}
EXPENSE_MAPPING = {**INCOME_MAPPING, "Vendor": SemanticField.VENDOR}


def income_rows(count: int, category: str = "Salary") -> list[dict[str, str]]:
    """``count`` valid income rows."""
    return [
        {"Date": "2024-01-15", "Description": f"Payment {i}", "Amount": f"{100 + i}.00", "Category": category}
        for i in range(count)
    ]


def make_job(
    job_id: str = "job-1",
    record_type: RecordType = RecordType.INCOME,
    total: int = 0,
    options: ImportOptions | None = None,
    mapping: dict | None = None,
) -> ImportJob:
    """A pending job owned by OWNER."""
    return ImportJob(
        id=job_id,
        record_type=record_type,
        owner_id=OWNER,
        total_rows=total,
        field_mapping=mapping or (INCOME_MAPPING if record_type is RecordType.INCOME else EXPENSE_MAPPING),
        options=options or ImportOptions(),
        created_at=utcnow(),
    )


class Stores:
    """One set of memory stores."""

    def __init__(self) -> None:
        self.jobs = MemoryJobStore()
        self.categories = MemoryCategoryStore()
        self.vendors = MemoryVendorStore()
        self.records = MemoryRecordStore()
