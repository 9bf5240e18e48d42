from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar

FROM_COLUMN = "From"
TO_COLUMN = "To"


class FileKind(str, Enum):
    SPREADSHEET = "spreadsheet"
    DELIMITED_TEXT = "delimited-text"


@dataclass(slots=True, frozen=True)
class GeoPoint:
    latitude: float
    longitude: float


@dataclass(slots=True, frozen=True)
class RouteData:
    distance_meters: float
    duration_seconds: float | None


@dataclass(slots=True, frozen=True)
class Row:
    from_location: str
    to_location: str
    # Remaining input columns in their original order, values as text.
    extra: tuple[tuple[str, str], ...] = ()

    @property
    def key(self) -> str:
        return f"{self.from_location}|{self.to_location}"

    def as_record(self) -> dict[str, str]:
        record = {FROM_COLUMN: self.from_location, TO_COLUMN: self.to_location}
        for name, value in self.extra:
            record.setdefault(name, value)
        return record

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Row:
        extra = tuple(
            (str(name), "" if value is None else str(value))
            for name, value in record.items()
            if name not in (FROM_COLUMN, TO_COLUMN)
        )
        return cls(
            from_location=str(record[FROM_COLUMN]),
            to_location=str(record[TO_COLUMN]),
            extra=extra,
        )


@dataclass(slots=True, frozen=True)
class ValidationReport:
    duplicate_keys: frozenset[str]
    total_rows: int
    billable_row_count: int
    price_due: Decimal
    currency: str


@dataclass(slots=True, frozen=True)
class Distance:
    status: ClassVar[str] = "ok"

    kilometers: float
    duration_seconds: float | None = None

    @property
    def label(self) -> str:
        return f"{self.kilometers:.2f} km"


@dataclass(slots=True, frozen=True)
class GeocodeFailed:
    status: ClassVar[str] = "geocode_failed"
    label: ClassVar[str] = "Geocode failed"


@dataclass(slots=True, frozen=True)
class RouteError:
    status: ClassVar[str] = "route_error"
    label: ClassVar[str] = "Error"


@dataclass(slots=True, frozen=True)
class NoRouteFound:
    status: ClassVar[str] = "no_route"
    label: ClassVar[str] = "No route"


DistanceOutcome = Distance | GeocodeFailed | RouteError | NoRouteFound

_MARKERS: dict[str, DistanceOutcome] = {
    marker.status: marker for marker in (GeocodeFailed(), RouteError(), NoRouteFound())
}


@dataclass(slots=True, frozen=True)
class ResultRow:
    row: Row
    outcome: DistanceOutcome
    vehicle_type: str | None = None
    co2_kg: float | None = None
    co2_saved_kg: float | None = None

    @property
    def distance_km(self) -> float | None:
        match self.outcome:
            case Distance(kilometers=kilometers):
                return kilometers
            case _:
                return None

    @property
    def duration_minutes(self) -> float | None:
        match self.outcome:
            case Distance(duration_seconds=seconds) if seconds is not None:
                return round(seconds / 60.0, 2)
            case _:
                return None

    def to_payload(self) -> dict[str, Any]:
        return {
            "row": self.row.as_record(),
            "status": self.outcome.status,
            "distance_km": self.distance_km,
            "duration_seconds": getattr(self.outcome, "duration_seconds", None),
            "vehicle_type": self.vehicle_type,
            "co2_kg": self.co2_kg,
            "co2_saved_kg": self.co2_saved_kg,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ResultRow:
        status = payload["status"]
        if status == Distance.status:
            outcome: DistanceOutcome = Distance(
                kilometers=float(payload["distance_km"]),
                duration_seconds=payload.get("duration_seconds"),
            )
        else:
            outcome = _MARKERS[status]
        return cls(
            row=Row.from_record(payload["row"]),
            outcome=outcome,
            vehicle_type=payload.get("vehicle_type"),
            co2_kg=payload.get("co2_kg"),
            co2_saved_kg=payload.get("co2_saved_kg"),
        )


@dataclass(slots=True, frozen=True)
class PaymentRequest:
    amount: Decimal
    currency: str
    rows: int
    description: str
    redirect_url: str


@dataclass(slots=True)
class BatchProgress:
    total: int
    completed: int = 0
    failures: dict[str, int] = field(default_factory=dict)

    def record(self, outcome: DistanceOutcome) -> None:
        self.completed += 1
        if not isinstance(outcome, Distance):
            self.failures[outcome.status] = self.failures.get(outcome.status, 0) + 1
