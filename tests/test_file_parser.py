"""Tests for CSV/Excel parsing."""

import asyncio
import io

import pandas as pd
import pytest

from ledger_import.core.exceptions import ParseError
from ledger_import.services.file_parser import normalize_format, parse_bytes, parse_file


def test_csv_headers_are_trimmed_and_unique() -> None:
    """Header cells are trimmed, duplicates suffixed, blank headers dropped."""
    parsed = parse_bytes(b" Name ,Name,,Amount\n x ,y,z, 1 \n", "csv")
    if parsed.headers != ["Name", "Name.1", "Amount"]:
        msg = f"Unexpected headers: {parsed.headers}"
        raise AssertionError(msg)
    if parsed.rows != [{"Name": "x", "Name.1": "y", "Amount": "1"}]:
        msg = f"Unexpected rows: {parsed.rows}"
        raise AssertionError(msg)


def test_csv_blank_rows_are_dropped() -> None:
    """Rows blank in every column are not counted."""
    parsed = parse_bytes(b"a,b\n1,2\n,\n3,4\n", "statement.CSV")
    if parsed.total_rows != 2:  # noqa: PLR2004
        msg = f"Expected 2 rows, got {parsed.total_rows}"
        raise AssertionError(msg)
    if parsed.rows[1] != {"a": "3", "b": "4"}:
        msg = f"Unexpected second row: {parsed.rows[1]}"
        raise AssertionError(msg)


def test_csv_keeps_values_as_strings() -> None:
    """Numbers and NA-like cells come back verbatim."""
    parsed = parse_bytes(b"amount,note\n0012.50,NA\n", "csv")
    if parsed.rows[0] != {"amount": "0012.50", "note": "NA"}:
        msg = f"Unexpected row: {parsed.rows[0]}"
        raise AssertionError(msg)


def test_csv_malformed_line_is_skipped_with_warning() -> None:
    """A line with surplus fields is dropped and reported."""
    parsed = parse_bytes(b"a,b\n1,2\n3,4,5\n6,7\n", "csv")
    if parsed.total_rows != 2:  # noqa: PLR2004
        msg = f"Expected 2 rows, got {parsed.total_rows}"
        raise AssertionError(msg)
    if len(parsed.warnings) != 1:
        msg = f"Expected one warning, got {parsed.warnings}"
        raise AssertionError(msg)


def test_csv_without_data_rows() -> None:
    """A header-only file is rejected."""
    with pytest.raises(ParseError, match="No data rows found in CSV file"):
        parse_bytes(b"date,amount\n", "csv")


def test_csv_without_headers() -> None:
    """A file of blank lines has no headers."""
    with pytest.raises(ParseError, match="No headers found"):
        parse_bytes(b"\n\n", "csv")


def test_unsupported_format() -> None:
    """Only CSV and Excel are accepted."""
    with pytest.raises(ParseError, match="Unsupported file format"):
        parse_bytes(b"a,b\n1,2\n", "pdf")


def test_empty_upload() -> None:
    """Zero bytes is an error rather than an empty result."""
    with pytest.raises(ParseError):
        parse_bytes(b"", "csv")


def test_normalize_format() -> None:
    """Extensions and file names reduce to the bare format."""
    for value, expected in [("CSV", "csv"), (".xlsx", "xlsx"), ("report.final.XLS", "xls")]:
        if normalize_format(value) != expected:
            msg = f"normalize_format({value!r}) returned {normalize_format(value)!r}"
            raise AssertionError(msg)


def test_xlsx_first_sheet() -> None:
    """An xlsx workbook is read from its first sheet, cells as strings."""
    buffer = io.BytesIO()
    pd.DataFrame(
        {"Date": ["2024-01-15", None], "Description": ["Rent", None], "Amount": [1200.5, None]}
    ).to_excel(buffer, index=False)
    parsed = asyncio.run(parse_file(buffer.getvalue(), "xlsx"))
    if parsed.headers != ["Date", "Description", "Amount"]:
        msg = f"Unexpected headers: {parsed.headers}"
        raise AssertionError(msg)
    if parsed.rows != [{"Date": "2024-01-15", "Description": "Rent", "Amount": "1200.5"}]:
        msg = f"Unexpected rows: {parsed.rows}"
        raise AssertionError(msg)


def test_corrupt_excel() -> None:
    """Bytes that are not a workbook surface as ParseError."""
    with pytest.raises(ParseError, match="Failed to parse Excel file"):
        parse_bytes(b"definitely not a workbook", "xlsx")
