from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from django.conf import settings

from bulk_distances.exceptions import UnknownVehicleError


@dataclass(slots=True, frozen=True)
class EmissionEstimate:
    vehicle_type: str
    co2_kg: float
    co2_saved_kg: float


class EmissionsCalculator:
    """CO2 estimates from a fixed per-kilometre emission factor table."""

    def __init__(
        self,
        factors: Mapping[str, float] | None = None,
        reference_vehicle: str | None = None,
    ) -> None:
        self.factors = dict(factors if factors is not None else settings.EMISSION_FACTORS_KG_PER_KM)
        self.reference_vehicle = reference_vehicle or settings.REFERENCE_VEHICLE
        if self.reference_vehicle not in self.factors:
            raise UnknownVehicleError(f"Unknown reference vehicle: {self.reference_vehicle}")

    @property
    def vehicle_types(self) -> list[str]:
        return list(self.factors)

    def ensure_known(self, vehicle_type: str) -> None:
        if vehicle_type not in self.factors:
            raise UnknownVehicleError(f"Unknown vehicle type: {vehicle_type}")

    def estimate(self, distance_km: float, vehicle_type: str) -> EmissionEstimate:
        self.ensure_known(vehicle_type)
        co2_kg = round(distance_km * self.factors[vehicle_type], 3)
        reference_kg = distance_km * self.factors[self.reference_vehicle]
        return EmissionEstimate(
            vehicle_type=vehicle_type,
            co2_kg=co2_kg,
            co2_saved_kg=round(reference_kg - co2_kg, 3),
        )
