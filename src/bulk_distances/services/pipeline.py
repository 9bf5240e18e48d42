from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

from asgiref.sync import async_to_sync
from django.conf import settings

from bulk_distances.exceptions import (
    BatchCancelledError,
    BulkDistanceError,
    InvalidStateError,
    ParseError,
    QuotaExceededError,
    UnsupportedFormatError,
)
from bulk_distances.services.export import export_results
from bulk_distances.services.ingestion import detect_file_kind, ingest
from bulk_distances.services.payment import PaymentGateway
from bulk_distances.services.quota import QuotaLedger, SessionLedgerStore
from bulk_distances.services.resolver import DistanceResolver
from bulk_distances.services.types import PaymentRequest, ResultRow, Row, ValidationReport
from bulk_distances.services.validation import sanitize_and_validate

logger = logging.getLogger(__name__)

BATCH_SESSION_KEY = "batch"


class UploadState(str, Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    VALIDATED = "validated"
    WITHIN_QUOTA = "within_quota"
    OVER_QUOTA = "over_quota"
    AWAITING_PAYMENT = "awaiting_payment"
    PAYMENT_CONFIRMED = "payment_confirmed"
    PAYMENT_FAILED = "payment_failed"
    CALCULATING = "calculating"
    DONE = "done"
    ERROR = "error"


ALLOWED_TRANSITIONS: dict[UploadState, set[UploadState]] = {
    UploadState.IDLE: {UploadState.UPLOADING},
    UploadState.UPLOADING: {UploadState.VALIDATED, UploadState.ERROR},
    UploadState.VALIDATED: {UploadState.WITHIN_QUOTA, UploadState.OVER_QUOTA},
    UploadState.WITHIN_QUOTA: {UploadState.CALCULATING},
    UploadState.OVER_QUOTA: {UploadState.AWAITING_PAYMENT},
    UploadState.AWAITING_PAYMENT: {UploadState.PAYMENT_CONFIRMED, UploadState.PAYMENT_FAILED},
    UploadState.PAYMENT_FAILED: {UploadState.AWAITING_PAYMENT},
    UploadState.PAYMENT_CONFIRMED: {UploadState.CALCULATING},
    UploadState.CALCULATING: {UploadState.DONE, UploadState.ERROR},
    UploadState.DONE: {UploadState.CALCULATING},
    UploadState.ERROR: set(),
}

CALCULABLE_STATES = {UploadState.WITHIN_QUOTA, UploadState.PAYMENT_CONFIRMED, UploadState.DONE}


@dataclass(slots=True, frozen=True)
class UploadOutcome:
    state: UploadState
    report: ValidationReport
    paid_rows: int
    allowed_rows: int
    shortfall: int


class UploadSession:
    """State of the visitor's current batch, kept in the Django session."""

    def __init__(self, session: Any) -> None:
        self.session = session

    @property
    def data(self) -> dict[str, Any]:
        return self.session.get(BATCH_SESSION_KEY) or {"state": UploadState.IDLE.value}

    @property
    def state(self) -> UploadState:
        return UploadState(self.data["state"])

    def transition(self, target: UploadState) -> None:
        current = self.state
        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidStateError(f"Cannot move from {current.value} to {target.value}")
        self.update(state=target.value)

    def reset(self) -> None:
        self.session[BATCH_SESSION_KEY] = {
            "state": UploadState.UPLOADING.value,
            "batch_id": uuid.uuid4().hex,
        }

    def update(self, **values: Any) -> None:
        data = dict(self.data)
        data.update(values)
        self.session[BATCH_SESSION_KEY] = data

    @property
    def rows(self) -> list[Row]:
        return [Row.from_record(record) for record in self.data.get("rows", [])]

    @property
    def results(self) -> list[ResultRow]:
        return [ResultRow.from_payload(payload) for payload in self.data.get("results", [])]

    @property
    def report(self) -> ValidationReport | None:
        report = self.data.get("report")
        if report is None:
            return None
        return ValidationReport(
            duplicate_keys=frozenset(report["duplicate_keys"]),
            total_rows=report["total_rows"],
            billable_row_count=report["billable_row_count"],
            price_due=Decimal(report["price_due"]),
            currency=report["currency"],
        )


class BatchRegistry:
    """Process-local cancel signals for in-flight batches, one per session."""

    def __init__(self) -> None:
        self._events: dict[str, threading.Event] = {}
        self._lock = threading.Lock()

    def begin(self, owner: str) -> threading.Event:
        event = threading.Event()
        with self._lock:
            previous = self._events.get(owner)
            if previous is not None:
                previous.set()
            self._events[owner] = event
        return event

    def cancel(self, owner: str) -> None:
        with self._lock:
            event = self._events.pop(owner, None)
        if event is not None:
            event.set()
            logger.info("Cancelled in-flight batch for a new upload")

    def finish(self, owner: str, event: threading.Event) -> None:
        with self._lock:
            if self._events.get(owner) is event:
                del self._events[owner]


class BulkDistanceService:
    def __init__(
        self,
        session: Any,
        *,
        owner: str,
        ledger: QuotaLedger | None = None,
        resolver: DistanceResolver | None = None,
        gateway: PaymentGateway | None = None,
        registry: BatchRegistry | None = None,
    ) -> None:
        self.upload_session = UploadSession(session)
        self.owner = owner
        self.ledger = ledger or QuotaLedger(
            SessionLedgerStore(session), free_row_allowance=settings.FREE_ROW_ALLOWANCE
        )
        self.resolver = resolver or DistanceResolver()
        self.gateway = gateway or PaymentGateway()
        self.registry = registry or BatchRegistry()

    @property
    def state(self) -> UploadState:
        return self.upload_session.state

    def upload(self, filename: str, content: bytes) -> UploadOutcome:
        self.registry.cancel(self.owner)
        self.upload_session.reset()

        try:
            kind = detect_file_kind(filename)
            records = ingest(content, kind)
        except (UnsupportedFormatError, ParseError) as exc:
            self.upload_session.update(state=UploadState.ERROR.value, error=str(exc))
            logger.warning("Upload rejected: %s", exc)
            raise

        rows, report = sanitize_and_validate(
            records,
            free_row_allowance=self.ledger.free_row_allowance,
            per_row_price=self.gateway.per_row_price,
            currency=self.gateway.currency,
        )
        self.upload_session.update(
            rows=[row.as_record() for row in rows],
            report={
                "duplicate_keys": sorted(report.duplicate_keys),
                "total_rows": report.total_rows,
                "billable_row_count": report.billable_row_count,
                "price_due": str(report.price_due),
                "currency": report.currency,
            },
        )
        self.upload_session.transition(UploadState.VALIDATED)

        shortfall = self.ledger.shortfall(report.total_rows)
        self.upload_session.transition(
            UploadState.OVER_QUOTA if shortfall else UploadState.WITHIN_QUOTA
        )
        logger.info(
            "Validated %d rows (%d duplicate pairs, shortfall %d)",
            report.total_rows,
            len(report.duplicate_keys),
            shortfall,
        )
        return UploadOutcome(
            state=self.state,
            report=report,
            paid_rows=self.ledger.paid_rows,
            allowed_rows=self.ledger.allowed_rows(),
            shortfall=shortfall,
        )

    def begin_payment(self) -> PaymentRequest:
        if self.state is UploadState.PAYMENT_FAILED or self.state is UploadState.OVER_QUOTA:
            self.upload_session.transition(UploadState.AWAITING_PAYMENT)
        elif self.state is not UploadState.AWAITING_PAYMENT:
            raise InvalidStateError("No payment is needed for the current batch")

        request = self.gateway.request_payment(len(self.upload_session.rows), self.ledger.paid_rows)
        self.upload_session.update(pending_payment_rows=request.rows)
        return request

    def confirm_payment(self, rows: int) -> int:
        if self.state is not UploadState.AWAITING_PAYMENT:
            raise InvalidStateError("No payment is pending for the current batch")

        pending_rows = self.upload_session.data.get("pending_payment_rows")
        balance = self.gateway.confirm(self.ledger, rows, pending_rows)
        self.upload_session.update(pending_payment_rows=None)
        self.upload_session.transition(UploadState.PAYMENT_CONFIRMED)
        return balance

    def fail_payment(self, reason: str = "Payment was cancelled or failed") -> None:
        self.upload_session.transition(UploadState.PAYMENT_FAILED)
        self.upload_session.update(error=reason)
        logger.warning("Payment failed: %s", reason)

    def calculate(self, vehicle_type: str | None = None) -> list[ResultRow]:
        state = self.state
        rows = self.upload_session.rows
        if state not in CALCULABLE_STATES:
            if state in {
                UploadState.OVER_QUOTA,
                UploadState.AWAITING_PAYMENT,
                UploadState.PAYMENT_FAILED,
            }:
                raise QuotaExceededError(self.ledger.shortfall(len(rows)))
            raise InvalidStateError(f"Cannot calculate while {state.value}")

        self.ledger.ensure_within_quota(len(rows))
        if vehicle_type is not None:
            self.resolver.emissions.ensure_known(vehicle_type)
        self.upload_session.transition(UploadState.CALCULATING)

        cancel_event = self.registry.begin(self.owner)
        try:
            results = async_to_sync(self.resolver.resolve_batch)(
                rows, vehicle_type=vehicle_type, cancel_event=cancel_event
            )
            # A newer upload may have arrived while the last rows were resolving.
            if cancel_event.is_set():
                raise BatchCancelledError("Batch was superseded by a newer upload")
        except BatchCancelledError:
            logger.info("Discarded results of a superseded batch")
            raise
        except BulkDistanceError as exc:
            self.upload_session.update(state=UploadState.ERROR.value, error=str(exc))
            raise
        finally:
            self.registry.finish(self.owner, cancel_event)

        self.upload_session.update(results=[result.to_payload() for result in results])
        self.upload_session.transition(UploadState.DONE)
        return results

    def export(self) -> bytes:
        if self.state is not UploadState.DONE:
            raise InvalidStateError("Results are not available yet")
        return export_results(self.upload_session.results)
