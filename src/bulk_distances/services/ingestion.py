from __future__ import annotations

import io
import logging
from pathlib import PurePath
from typing import Any

import polars as pl
from django.conf import settings

from bulk_distances.exceptions import (
    FileTooLargeError,
    MissingColumnsError,
    ParseError,
    UnsupportedFormatError,
)
from bulk_distances.services.types import FROM_COLUMN, TO_COLUMN, FileKind

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = {FROM_COLUMN, TO_COLUMN}

_KINDS_BY_EXTENSION = {
    ".xlsx": FileKind.SPREADSHEET,
    ".csv": FileKind.DELIMITED_TEXT,
}


def detect_file_kind(filename: str) -> FileKind:
    suffix = PurePath(filename).suffix.lower()
    try:
        return _KINDS_BY_EXTENSION[suffix]
    except KeyError:
        raise UnsupportedFormatError("Only .xlsx or .csv files are supported") from None


def ingest(
    file_bytes: bytes,
    file_kind: FileKind | str,
    *,
    max_bytes: int | None = None,
) -> list[dict[str, Any]]:
    """Parse an uploaded file into one record per data line, keyed by header.

    Only the first worksheet of a spreadsheet is read. Every cell is returned as
    text (or ``None`` when empty) and fully blank lines are skipped. The whole
    file is rejected on the first problem; nothing is returned partially.
    """
    limit = settings.MAX_UPLOAD_BYTES if max_bytes is None else max_bytes
    if len(file_bytes) > limit:
        raise FileTooLargeError(f"File exceeds the {limit // (1024 * 1024)} MB limit")

    try:
        kind = FileKind(file_kind)
    except ValueError:
        raise UnsupportedFormatError(f"Unsupported file kind: {file_kind}") from None

    if kind is FileKind.DELIMITED_TEXT:
        frame = _read_delimited_text(file_bytes)
    else:
        frame = _read_spreadsheet(file_bytes)

    missing_columns = REQUIRED_COLUMNS.difference(frame.columns)
    if missing_columns:
        raise MissingColumnsError(f"Missing expected columns: {sorted(missing_columns)}")

    normalized = frame.with_columns(pl.all().cast(pl.Utf8, strict=False)).filter(
        ~pl.all_horizontal(pl.all().fill_null("").str.strip_chars() == "")
    )
    records = normalized.to_dicts()
    logger.info("Ingested %d records from %s input", len(records), kind.value)
    return records


def _read_delimited_text(file_bytes: bytes) -> pl.DataFrame:
    try:
        text = file_bytes.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ParseError("CSV files must be UTF-8 encoded") from exc

    if not text.strip():
        raise ParseError("File is empty")

    try:
        return pl.read_csv(
            io.BytesIO(text.encode("utf-8")),
            has_header=True,
            infer_schema_length=0,
            truncate_ragged_lines=True,
        )
    except pl.exceptions.PolarsError as exc:
        raise ParseError("Could not parse CSV file") from exc


def _read_spreadsheet(file_bytes: bytes) -> pl.DataFrame:
    if not file_bytes:
        raise ParseError("File is empty")

    try:
        return pl.read_excel(io.BytesIO(file_bytes), sheet_id=1)
    except Exception as exc:
        # The Excel engine raises its own error types for corrupt workbooks.
        raise ParseError("Could not parse spreadsheet file") from exc
