from __future__ import annotations

import logging
from typing import Any, Protocol

from bulk_distances.exceptions import QuotaExceededError

logger = logging.getLogger(__name__)

DEFAULT_FREE_ROW_ALLOWANCE = 10
PAID_ROWS_SESSION_KEY = "paid_rows"


def allowed_rows(paid_rows: int, free_row_allowance: int = DEFAULT_FREE_ROW_ALLOWANCE) -> int:
    return free_row_allowance + paid_rows


def remaining_shortfall(
    row_count: int,
    paid_rows: int,
    free_row_allowance: int = DEFAULT_FREE_ROW_ALLOWANCE,
) -> int:
    return max(0, row_count - allowed_rows(paid_rows, free_row_allowance))


def credit(paid_rows: int, extra_rows: int) -> int:
    if extra_rows <= 0:
        return paid_rows
    return paid_rows + extra_rows


class LedgerStore(Protocol):
    def load(self) -> int | None: ...

    def save(self, paid_rows: int) -> None: ...


class InMemoryLedgerStore:
    def __init__(self, paid_rows: int | None = None) -> None:
        self.paid_rows = paid_rows

    def load(self) -> int | None:
        return self.paid_rows

    def save(self, paid_rows: int) -> None:
        self.paid_rows = paid_rows


class SessionLedgerStore:
    """Keeps the paid-row balance in the visitor's Django session."""

    def __init__(self, session: Any, key: str = PAID_ROWS_SESSION_KEY) -> None:
        self.session = session
        self.key = key

    def load(self) -> int | None:
        return self.session.get(self.key)

    def save(self, paid_rows: int) -> None:
        self.session[self.key] = paid_rows
        self.session.save()


class QuotaLedger:
    """Free-row allowance plus a persisted, credit-only balance of paid rows."""

    def __init__(
        self,
        store: LedgerStore,
        free_row_allowance: int = DEFAULT_FREE_ROW_ALLOWANCE,
    ) -> None:
        self.store = store
        self.free_row_allowance = free_row_allowance
        self._paid_rows = self._coerce(store.load())

    @property
    def paid_rows(self) -> int:
        return self._paid_rows

    def allowed_rows(self) -> int:
        return allowed_rows(self._paid_rows, self.free_row_allowance)

    def shortfall(self, row_count: int) -> int:
        return remaining_shortfall(row_count, self._paid_rows, self.free_row_allowance)

    def ensure_within_quota(self, row_count: int) -> None:
        shortfall = self.shortfall(row_count)
        if shortfall:
            raise QuotaExceededError(shortfall)

    def credit(self, extra_rows: int) -> int:
        updated = credit(self._paid_rows, extra_rows)
        if updated == self._paid_rows:
            return updated

        self.store.save(updated)
        self._paid_rows = updated
        logger.info("Credited %d paid rows (balance %d)", extra_rows, updated)
        return updated

    @staticmethod
    def _coerce(value: Any) -> int:
        try:
            paid_rows = int(value)
        except (TypeError, ValueError):
            return 0
        return max(paid_rows, 0)
