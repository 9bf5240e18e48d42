from __future__ import annotations

import asyncio
import hashlib
from typing import Any

import httpx
from django.conf import settings
from django.core.cache import cache

from bulk_distances.exceptions import ExternalServiceError, InvalidLocationError
from bulk_distances.services.types import GeoPoint


class GeocodingClient:
    def __init__(self) -> None:
        self.base_url = settings.GEOAPIFY_BASE_URL.rstrip("/")
        self.api_key = settings.GEOAPIFY_API_KEY
        self.retry_count = settings.GEOAPIFY_RETRY_COUNT

    async def geocode(self, query: str, *, client: httpx.AsyncClient) -> GeoPoint:
        cache_key = self._cache_key(query)
        cached = await cache.aget(cache_key)
        if cached:
            return GeoPoint(latitude=cached["latitude"], longitude=cached["longitude"])

        params = {
            "text": query,
            "limit": 1,
            "apiKey": self.api_key,
        }

        for attempt in range(self.retry_count + 1):
            try:
                response = await client.get(
                    f"{self.base_url}/v1/geocode/search",
                    params=params,
                    headers={"Accept": "application/json"},
                )
                response.raise_for_status()
                point = self._parse_result(response.json())
                await cache.aset(
                    cache_key,
                    {"latitude": point.latitude, "longitude": point.longitude},
                    timeout=settings.GEOCODE_CACHE_TTL_SECONDS,
                )
                return point
            except InvalidLocationError:
                raise
            except (httpx.HTTPError, ValueError) as exc:
                if attempt >= self.retry_count:
                    raise ExternalServiceError("Geocoding request failed") from exc
                await asyncio.sleep(0.3 * (attempt + 1))

        raise ExternalServiceError("Geocoding request failed")

    @staticmethod
    def _cache_key(query: str) -> str:
        digest = hashlib.sha256(query.lower().encode()).hexdigest()
        return f"geocode:{digest}"

    @staticmethod
    def _parse_result(payload: Any) -> GeoPoint:
        features = payload.get("features") if isinstance(payload, dict) else None
        if not isinstance(features, list) or not features:
            raise InvalidLocationError("Location could not be resolved")

        # Features come back ranked; the first one wins.
        geometry = features[0].get("geometry") if isinstance(features[0], dict) else None
        coordinates = geometry.get("coordinates") if isinstance(geometry, dict) else None
        if not isinstance(coordinates, list):
            raise InvalidLocationError("Invalid geocoding response")

        try:
            longitude, latitude = coordinates[:2]
            return GeoPoint(latitude=float(latitude), longitude=float(longitude))
        except (TypeError, ValueError) as exc:
            raise InvalidLocationError("Invalid geocoding response") from exc
