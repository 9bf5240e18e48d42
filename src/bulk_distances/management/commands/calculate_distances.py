from __future__ import annotations

from decimal import Decimal
from pathlib import Path
from typing import Any

from asgiref.sync import async_to_sync
from django.conf import settings
from django.core.management.base import BaseCommand, CommandError

from bulk_distances.exceptions import (
    BulkDistanceError,
    ParseError,
    QuotaExceededError,
    UnsupportedFormatError,
)
from bulk_distances.services.export import export_results
from bulk_distances.services.ingestion import detect_file_kind, ingest
from bulk_distances.services.quota import InMemoryLedgerStore, QuotaLedger
from bulk_distances.services.resolver import DistanceResolver
from bulk_distances.services.types import Distance
from bulk_distances.services.validation import sanitize_and_validate


class Command(BaseCommand):
    help = "Calculate driving distances for every From/To row of a spreadsheet."

    def add_arguments(self, parser: Any) -> None:
        parser.add_argument("input_path", type=str, help="Path to the .xlsx or .csv file")
        parser.add_argument(
            "--output",
            type=str,
            default=settings.EXPORT_FILENAME,
            help="Where to write the results workbook",
        )
        parser.add_argument(
            "--vehicle",
            type=str,
            default=None,
            help="Vehicle type used for CO2 estimates (omit to skip CO2)",
        )
        parser.add_argument(
            "--paid-rows",
            type=int,
            default=0,
            help="Previously purchased rows on top of the free allowance",
        )

    def handle(self, *_: Any, **options: Any) -> None:
        input_path = Path(options["input_path"])
        if not input_path.exists():
            raise CommandError(f"Input file does not exist: {input_path}")

        try:
            records = ingest(input_path.read_bytes(), detect_file_kind(input_path.name))
        except (UnsupportedFormatError, ParseError) as exc:
            raise CommandError(str(exc)) from exc

        rows, report = sanitize_and_validate(
            records,
            free_row_allowance=settings.FREE_ROW_ALLOWANCE,
            per_row_price=Decimal(settings.PER_ROW_PRICE),
            currency=settings.PAYMENT_CURRENCY,
        )
        self.stdout.write(
            f"Validated {report.total_rows} rows: "
            f"{len(report.duplicate_keys)} duplicate pairs, "
            f"{report.billable_row_count} billable ({report.price_due} {report.currency})"
        )
        for key in sorted(report.duplicate_keys):
            self.stdout.write(self.style.WARNING(f"Duplicate: {key.replace('|', ' - ')}"))

        ledger = QuotaLedger(
            InMemoryLedgerStore(max(0, options["paid_rows"])),
            free_row_allowance=settings.FREE_ROW_ALLOWANCE,
        )
        try:
            ledger.ensure_within_quota(report.total_rows)
        except QuotaExceededError as exc:
            raise CommandError(f"{exc}; buy {exc.shortfall} more rows") from exc

        try:
            results = async_to_sync(DistanceResolver().resolve_batch)(
                rows, vehicle_type=options["vehicle"]
            )
        except BulkDistanceError as exc:
            raise CommandError(str(exc)) from exc

        output_path = Path(options["output"])
        output_path.write_bytes(export_results(results))

        resolved = sum(1 for result in results if isinstance(result.outcome, Distance))
        self.stdout.write(
            self.style.SUCCESS(
                f"Distance run complete: {resolved} resolved, "
                f"{len(results) - resolved} failed, written to {output_path}"
            )
        )
