from __future__ import annotations

import asyncio
import hashlib
from typing import Any

import httpx
from django.conf import settings
from django.core.cache import cache

from bulk_distances.exceptions import ExternalServiceError, NoRouteFoundError
from bulk_distances.services.types import GeoPoint, RouteData


class RoutingClient:
    def __init__(self) -> None:
        self.base_url = settings.GEOAPIFY_BASE_URL.rstrip("/")
        self.api_key = settings.GEOAPIFY_API_KEY
        self.retry_count = settings.GEOAPIFY_RETRY_COUNT
        self.mode = settings.ROUTING_MODE

    async def route(
        self, start: GeoPoint, finish: GeoPoint, *, client: httpx.AsyncClient
    ) -> RouteData:
        cache_key = self._cache_key(start, finish, self.mode)
        cached = await cache.aget(cache_key)
        if cached:
            return RouteData(
                distance_meters=cached["distance_meters"],
                duration_seconds=cached["duration_seconds"],
            )

        waypoints = "|".join(
            f"{point.latitude:.6f},{point.longitude:.6f}" for point in (start, finish)
        )
        params = {
            "waypoints": waypoints,
            "mode": self.mode,
            "apiKey": self.api_key,
        }

        for attempt in range(self.retry_count + 1):
            try:
                response = await client.get(
                    f"{self.base_url}/v1/routing",
                    params=params,
                    headers={"Accept": "application/json"},
                )
                response.raise_for_status()
                route_data = self._parse_response(response.json())
                await cache.aset(
                    cache_key,
                    {
                        "distance_meters": route_data.distance_meters,
                        "duration_seconds": route_data.duration_seconds,
                    },
                    timeout=settings.ROUTE_CACHE_TTL_SECONDS,
                )
                return route_data
            except NoRouteFoundError:
                raise
            except (httpx.HTTPError, ValueError) as exc:
                if attempt >= self.retry_count:
                    raise ExternalServiceError("Routing request failed") from exc
                await asyncio.sleep(0.3 * (attempt + 1))

        raise ExternalServiceError("Routing request failed")

    @staticmethod
    def _cache_key(start: GeoPoint, finish: GeoPoint, mode: str) -> str:
        encoded = "|".join(
            f"{point.latitude:.5f}:{point.longitude:.5f}" for point in (start, finish)
        )
        digest = hashlib.sha256(f"{mode}|{encoded}".encode()).hexdigest()
        return f"route:{digest}"

    @staticmethod
    def _parse_response(payload: Any) -> RouteData:
        features = payload.get("features") if isinstance(payload, dict) else None
        if not isinstance(features, list) or not features:
            raise NoRouteFoundError("Could not compute route")

        first = features[0] if isinstance(features[0], dict) else {}
        properties = first.get("properties")
        if not isinstance(properties, dict):
            raise NoRouteFoundError("Invalid routing response")

        distance = properties.get("distance")
        if distance is None:
            raise NoRouteFoundError("Route distance unavailable")

        duration = properties.get("time")
        try:
            return RouteData(
                distance_meters=float(distance),
                duration_seconds=float(duration) if duration is not None else None,
            )
        except (TypeError, ValueError) as exc:
            raise NoRouteFoundError("Invalid routing response") from exc
