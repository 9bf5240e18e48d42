from __future__ import annotations

from collections.abc import Callable

import httpx
import pytest
from django.contrib.sessions.backends.cache import SessionStore
from django.core.cache import cache
from django.test import Client

from bulk_distances.services.resolver import DistanceResolver
from fakes import geoapify_handler


@pytest.fixture(autouse=True)
def clear_cache() -> None:
    cache.clear()


@pytest.fixture()
def api_client() -> Client:
    return Client()


@pytest.fixture()
def session() -> SessionStore:
    store = SessionStore()
    store.create()
    return store


@pytest.fixture()
def make_resolver() -> Callable[..., DistanceResolver]:
    def build(*, concurrency: int = 1, **handler_options) -> DistanceResolver:
        return DistanceResolver(
            concurrency=concurrency,
            transport=httpx.MockTransport(geoapify_handler(**handler_options)),
        )

    return build
