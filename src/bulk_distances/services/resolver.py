from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Sequence

import httpx
from django.conf import settings

from bulk_distances.exceptions import (
    BatchCancelledError,
    ExternalServiceError,
    InvalidLocationError,
    NoRouteFoundError,
)
from bulk_distances.services.emissions import EmissionsCalculator
from bulk_distances.services.geocoding import GeocodingClient
from bulk_distances.services.routing import RoutingClient
from bulk_distances.services.types import (
    BatchProgress,
    Distance,
    DistanceOutcome,
    GeocodeFailed,
    GeoPoint,
    NoRouteFound,
    ResultRow,
    RouteError,
    Row,
)

logger = logging.getLogger(__name__)

METERS_PER_KILOMETER = 1000.0


class DistanceResolver:
    """Turns From/To rows into driving distances, one result per input row.

    Every row goes through geocode(from), geocode(to) and a route request in
    that order. Upstream failures never escape: they are reported in the
    row's outcome and the batch moves on. Rows are handed to at most
    ``concurrency`` workers; with the default of one worker they are resolved
    strictly in input order. Results always line up with the input rows.
    """

    def __init__(
        self,
        geocoding_client: GeocodingClient | None = None,
        routing_client: RoutingClient | None = None,
        emissions: EmissionsCalculator | None = None,
        *,
        concurrency: int | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.geocoding_client = geocoding_client or GeocodingClient()
        self.routing_client = routing_client or RoutingClient()
        self.emissions = emissions or EmissionsCalculator()
        self.concurrency = max(1, concurrency or settings.RESOLVER_CONCURRENCY)
        self.timeout = timeout if timeout is not None else settings.GEOAPIFY_TIMEOUT_SECONDS
        self.transport = transport

    async def resolve_batch(
        self,
        rows: Sequence[Row],
        *,
        vehicle_type: str | None = None,
        cancel_event: threading.Event | None = None,
    ) -> list[ResultRow]:
        if vehicle_type is not None:
            self.emissions.ensure_known(vehicle_type)

        results: list[ResultRow | None] = [None] * len(rows)
        progress = BatchProgress(total=len(rows))
        pending = iter(enumerate(rows))

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:

            async def worker() -> None:
                for index, row in pending:
                    if cancel_event is not None and cancel_event.is_set():
                        raise BatchCancelledError("Batch was superseded by a newer upload")
                    result = await self.resolve_row(row, client=client, vehicle_type=vehicle_type)
                    if not isinstance(result.outcome, Distance):
                        logger.warning("Row %d resolved as %s", index, result.outcome.status)
                    results[index] = result
                    progress.record(result.outcome)

            workers = [
                asyncio.create_task(worker()) for _ in range(min(self.concurrency, len(rows)))
            ]
            try:
                await asyncio.gather(*workers)
            except BaseException:
                for task in workers:
                    task.cancel()
                await asyncio.gather(*workers, return_exceptions=True)
                raise

        logger.info(
            "Resolved %d rows (%d failed: %s)",
            progress.completed,
            sum(progress.failures.values()),
            progress.failures or "none",
        )
        return [result for result in results if result is not None]

    async def resolve_row(
        self,
        row: Row,
        *,
        client: httpx.AsyncClient,
        vehicle_type: str | None = None,
    ) -> ResultRow:
        outcome = await self._resolve_distance(row, client)
        if vehicle_type is None or not isinstance(outcome, Distance):
            return ResultRow(row=row, outcome=outcome, vehicle_type=vehicle_type)

        estimate = self.emissions.estimate(outcome.kilometers, vehicle_type)
        return ResultRow(
            row=row,
            outcome=outcome,
            vehicle_type=vehicle_type,
            co2_kg=estimate.co2_kg,
            co2_saved_kg=estimate.co2_saved_kg,
        )

    async def _resolve_distance(self, row: Row, client: httpx.AsyncClient) -> DistanceOutcome:
        start = await self._geocode(row.from_location, client)
        finish = await self._geocode(row.to_location, client)
        if start is None or finish is None:
            return GeocodeFailed()

        try:
            route = await self.routing_client.route(start, finish, client=client)
        except NoRouteFoundError:
            return NoRouteFound()
        except ExternalServiceError:
            return RouteError()

        return Distance(
            kilometers=round(route.distance_meters / METERS_PER_KILOMETER, 2),
            duration_seconds=route.duration_seconds,
        )

    async def _geocode(self, query: str, client: httpx.AsyncClient) -> GeoPoint | None:
        try:
            return await self.geocoding_client.geocode(query, client=client)
        except (InvalidLocationError, ExternalServiceError):
            return None
