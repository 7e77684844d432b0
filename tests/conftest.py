"""Shared pytest configuration: point the app at a throwaway SQLite database."""

import os
import tempfile
from pathlib import Path

_TMP = Path(tempfile.mkdtemp(prefix="ledger-import-tests-"))
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TMP / 'ledger_import.db'}")
os.environ.setdefault("LOG_FILE", str(_TMP / "ledger_import.log"))
