"""Category and vendor resolution for import rows.

Every job owns one ``ReferenceCache``. It is filled once before the first
batch with all of the owner's categories (and vendors, for expenses), keyed
by lower-cased name, so row extraction never queries the stores for names
that already exist. The cache is passed explicitly to every call and never
shared between jobs.
"""

import asyncio
import time
from dataclasses import dataclass, field

from ledger_import.core.exceptions import ResolutionError, StructuralError
from ledger_import.core.models import RecordType
from ledger_import.core.utils import elapsed_ms, get_logger
from ledger_import.services.stores import CategoryStore, VendorStore

logger = get_logger("ledger-import.resolver")

AUTO_CREATED_DESCRIPTION = "Auto-created during import"


@dataclass
class ReferenceCache:
    """Name -> id lookups for one job, scoped to (record type, owner)."""

    record_type: RecordType
    owner_id: str
    categories: dict[str, str] = field(default_factory=dict)
    vendors: dict[str, str] = field(default_factory=dict)
    created_categories: int = 0
    created_vendors: int = 0
    _locks: dict[str, asyncio.Lock] = field(default_factory=dict, repr=False)

    def lock(self, key: str) -> asyncio.Lock:
        """Per-name lock so concurrent rows create a missing name only once."""
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]


class ReferenceResolver:
    """Turns free-text category/vendor names into ids, creating them on demand."""

    def __init__(self, categories: CategoryStore, vendors: VendorStore) -> None:
        """Initialize the resolver with the category and vendor stores."""
        self.categories = categories
        self.vendors = vendors

    async def preload(self, record_type: RecordType, owner_id: str) -> ReferenceCache:
        """Build a job's cache from everything the owner already has."""
        started = time.perf_counter()
        cache = ReferenceCache(record_type=record_type, owner_id=owner_id)
        for ref in await self.categories.find_by_owner(record_type, owner_id):
            cache.categories.setdefault(ref.name.lower(), ref.id)
        if record_type is RecordType.EXPENSE:
            for ref in await self.vendors.find_by_owner(owner_id):
                cache.vendors.setdefault(ref.name.lower(), ref.id)
        logger.info(
            f"Pre-cached {len(cache.categories)} categories and {len(cache.vendors)} vendors "
            f"for owner {owner_id} in {elapsed_ms(started)}ms"
        )
        return cache

    async def resolve_category(
        self, name: str, cache: ReferenceCache, *, create: bool, row: int = 0
    ) -> str | None:
        """Return the id for ``name``; None when it is unknown and creation is off."""
        key = name.strip().lower()
        if not key:
            return None
        if key in cache.categories:
            return cache.categories[key]
        if not create:
            return None
        async with cache.lock(f"category:{key}"):
            if key in cache.categories:
                return cache.categories[key]
            started = time.perf_counter()
            try:
                ref = await self.categories.create(
                    cache.record_type, name.strip(), cache.owner_id, description=AUTO_CREATED_DESCRIPTION
                )
            except StructuralError:
                raise
            except Exception as exc:
                raise ResolutionError(row, "category", f"Could not create category '{name.strip()}': {exc}") from exc
            cache.categories[key] = ref.id
            cache.created_categories += 1
        logger.info(f"Created new category '{ref.name}' in {elapsed_ms(started)}ms")
        return ref.id

    async def resolve_vendor(self, name: str, cache: ReferenceCache, *, create: bool, row: int = 0) -> str | None:
        """Return the vendor id for ``name``; None when it is unknown and creation is off."""
        key = name.strip().lower()
        if not key:
            return None
        if key in cache.vendors:
            return cache.vendors[key]
        if not create:
            return None
        async with cache.lock(f"vendor:{key}"):
            if key in cache.vendors:
                return cache.vendors[key]
            started = time.perf_counter()
            try:
                ref = await self.vendors.create(name.strip(), cache.owner_id)
            except StructuralError:
                raise
            except Exception as exc:
                raise ResolutionError(row, "vendor", f"Could not create vendor '{name.strip()}': {exc}") from exc
            cache.vendors[key] = ref.id
            cache.created_vendors += 1
        logger.info(f"Created new vendor '{ref.name}' in {elapsed_ms(started)}ms")
        return ref.id
