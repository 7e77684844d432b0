"""Core package: provides models, database helpers, settings, exceptions, and shared utilities."""

from .db import get_engine, init_models  # noqa: F401
from .exceptions import LedgerImportError  # noqa: F401
from .models import ImportJob, JobStatus, RecordType  # noqa: F401
from .settings import Settings  # noqa: F401
from .utils import get_logger  # noqa: F401
