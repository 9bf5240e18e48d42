from __future__ import annotations

import io
from collections.abc import Sequence
from typing import Any

import polars as pl

from bulk_distances.services.types import FROM_COLUMN, TO_COLUMN, ResultRow

RESULTS_SHEET = "Results"
TEMPLATE_SHEET = "Distances"

DISTANCE_COLUMN = "Distance"
VEHICLE_COLUMN = "Vehicle"
CO2_COLUMN = "CO2"
CO2_SAVED_COLUMN = "CO2_Saved"

NUMERIC_COLUMNS = (CO2_COLUMN, CO2_SAVED_COLUMN)


def result_record(result: ResultRow) -> dict[str, Any]:
    record: dict[str, Any] = dict(result.row.as_record())
    record[DISTANCE_COLUMN] = result.outcome.label
    if result.vehicle_type is not None:
        record[VEHICLE_COLUMN] = result.vehicle_type
        record[CO2_COLUMN] = result.co2_kg
        record[CO2_SAVED_COLUMN] = result.co2_saved_kg
    return record


def export_results(results: Sequence[ResultRow]) -> bytes:
    records = [result_record(result) for result in results]

    columns: list[str] = [FROM_COLUMN, TO_COLUMN]
    for record in records:
        columns.extend(name for name in record if name not in columns)
    if DISTANCE_COLUMN not in columns:
        columns.append(DISTANCE_COLUMN)

    schema = {
        name: pl.Float64 if name in NUMERIC_COLUMNS else pl.Utf8 for name in columns
    }
    frame = pl.from_dicts(records, schema=schema) if records else pl.DataFrame(schema=schema)
    return _write_workbook(frame, RESULTS_SHEET)


def build_template() -> bytes:
    frame = pl.DataFrame(
        {
            FROM_COLUMN: ["Riga, Latvia"],
            TO_COLUMN: ["Vilnius, Lithuania"],
        }
    )
    return _write_workbook(frame, TEMPLATE_SHEET)


def read_exported(content: bytes, sheet_name: str = RESULTS_SHEET) -> list[dict[str, Any]]:
    frame = pl.read_excel(io.BytesIO(content), sheet_name=sheet_name)
    return frame.to_dicts()


def _write_workbook(frame: pl.DataFrame, worksheet: str) -> bytes:
    buffer = io.BytesIO()
    frame.write_excel(workbook=buffer, worksheet=worksheet, autofit=True)
    return buffer.getvalue()
