"""Spreadsheet parsing: CSV and Excel bytes into trimmed headers and string rows.

The first row is always the header row. Header names are trimmed and made
unique; blank header cells drop their column. Cell values come back as
trimmed strings, and rows that are blank in every column are dropped.
"""

import asyncio
import csv
import io
from pathlib import PurePath

import pandas as pd

from ledger_import.core.exceptions import ParseError
from ledger_import.core.models import ParsedFile
from ledger_import.core.utils import get_logger

logger = get_logger("ledger-import.parser")

EXCEL_ENGINES = {"xlsx": "openpyxl", "xls": "xlrd"}
SUPPORTED_FORMATS = frozenset({"csv", *EXCEL_ENGINES})


def normalize_format(file_format: str) -> str:
    """Reduce 'CSV', '.csv' or 'statement.csv' to 'csv'."""
    value = file_format.strip().lower()
    suffix = PurePath(value).suffix
    return suffix[1:] if suffix else value.lstrip(".")


def _cell(value: object) -> str:
    if value is None:
        return ""
    try:
        if pd.isna(value):
            return ""
    except (TypeError, ValueError):
        pass
    return str(value).strip()


def _unique_headers(raw: list[object]) -> list[tuple[int, str]]:
    """Return (column position, header) pairs for every non-blank header cell."""
    seen: dict[str, int] = {}
    headers: list[tuple[int, str]] = []
    for position, value in enumerate(raw):
        name = _cell(value)
        if not name:
            continue
        if name in seen:
            seen[name] += 1
            name = f"{name}.{seen[name]}"
        else:
            seen[name] = 0
        headers.append((position, name))
    return headers


def _frame_to_parsed(frame: pd.DataFrame, kind: str, warnings: list[str]) -> ParsedFile:
    if frame.empty:
        msg = f"No headers found in {kind} file"
        raise ParseError(msg)
    columns = _unique_headers(list(frame.iloc[0]))
    if not columns:
        msg = f"No headers found in {kind} file"
        raise ParseError(msg)
    rows: list[dict[str, str]] = []
    for values in frame.iloc[1:].itertuples(index=False, name=None):
        row = {name: _cell(values[pos]) if pos < len(values) else "" for pos, name in columns}
        if any(row.values()):
            rows.append(row)
    if not rows:
        msg = f"No data rows found in {kind} file"
        raise ParseError(msg)
    return ParsedFile(
        headers=[name for _, name in columns],
        rows=rows,
        total_rows=len(rows),
        warnings=warnings,
    )


def parse_csv(data: bytes) -> ParsedFile:
    """Parse comma-delimited bytes; lines with surplus fields are skipped with a warning."""
    warnings: list[str] = []

    def on_bad_line(fields: list[str]) -> None:
        warnings.append(f"Skipped malformed line with {len(fields)} fields: {','.join(fields)[:80]}")

    try:
        frame = pd.read_csv(
            io.BytesIO(data),
            header=None,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            encoding="utf-8-sig",
            engine="python",
            on_bad_lines=on_bad_line,
        )
    except pd.errors.EmptyDataError as exc:
        msg = "No headers found in CSV file"
        raise ParseError(msg) from exc
    except (pd.errors.ParserError, csv.Error, UnicodeDecodeError) as exc:
        msg = f"CSV parsing error: {exc}"
        raise ParseError(msg) from exc
    return _frame_to_parsed(frame, "CSV", warnings)


def parse_excel(data: bytes, file_format: str) -> ParsedFile:
    """Parse the first worksheet of an XLSX/XLS workbook."""
    try:
        frame = pd.read_excel(
            io.BytesIO(data),
            sheet_name=0,
            header=None,
            dtype=object,
            engine=EXCEL_ENGINES[file_format],
        )
    except Exception as exc:
        msg = f"Failed to parse Excel file: {exc}"
        raise ParseError(msg) from exc
    return _frame_to_parsed(frame, "Excel", [])


def parse_bytes(data: bytes, file_format: str) -> ParsedFile:
    """Synchronous parse of ``data`` declared as ``file_format``."""
    kind = normalize_format(file_format)
    if kind not in SUPPORTED_FORMATS:
        msg = "Unsupported file format. Please use CSV or Excel files."
        raise ParseError(msg)
    if not data:
        msg = "Uploaded file is empty"
        raise ParseError(msg)
    if kind == "csv":
        return parse_csv(data)
    return parse_excel(data, kind)


async def parse_file(data: bytes, file_format: str) -> ParsedFile:
    """Parse an uploaded spreadsheet off the event loop.

    Raises:
        ParseError: unsupported format, no headers, no data rows, or a
            structural error reported by pandas.
    """
    parsed = await asyncio.to_thread(parse_bytes, data, file_format)
    logger.info(
        f"Parsed {normalize_format(file_format).upper()} file: "
        f"{len(parsed.headers)} columns, {parsed.total_rows} rows, {len(parsed.warnings)} warnings"
    )
    return parsed
