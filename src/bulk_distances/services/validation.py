from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from bulk_distances.services.types import FROM_COLUMN, TO_COLUMN, Row, ValidationReport

UNSAFE_CHARACTERS = re.compile(r"[<>&\"'/]")
CENTS = Decimal("0.01")


def sanitize(value: Any) -> str:
    if value is None:
        return ""
    return UNSAFE_CHARACTERS.sub("", str(value)).strip()


def billable_rows(total_rows: int, free_row_allowance: int) -> int:
    return max(0, total_rows - free_row_allowance)


def price_for_rows(row_count: int, per_row_price: Decimal) -> Decimal:
    return (Decimal(row_count) * Decimal(per_row_price)).quantize(CENTS, rounding=ROUND_HALF_UP)


def sanitize_and_validate(
    records: Iterable[dict[str, Any]],
    *,
    free_row_allowance: int,
    per_row_price: Decimal,
    currency: str,
) -> tuple[list[Row], ValidationReport]:
    rows: list[Row] = []
    for record in records:
        from_location = sanitize(record.get(FROM_COLUMN))
        to_location = sanitize(record.get(TO_COLUMN))
        if not from_location or not to_location:
            continue

        extra = tuple(
            (str(name), "" if value is None else str(value))
            for name, value in record.items()
            if name not in (FROM_COLUMN, TO_COLUMN)
        )
        rows.append(Row(from_location=from_location, to_location=to_location, extra=extra))

    key_counts = Counter(row.key for row in rows)
    duplicate_keys = frozenset(key for key, count in key_counts.items() if count > 1)

    billable = billable_rows(len(rows), free_row_allowance)
    report = ValidationReport(
        duplicate_keys=duplicate_keys,
        total_rows=len(rows),
        billable_row_count=billable,
        price_due=price_for_rows(billable, per_row_price),
        currency=currency,
    )
    return rows, report
