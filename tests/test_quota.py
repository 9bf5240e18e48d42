from __future__ import annotations

import pytest

from bulk_distances.exceptions import QuotaExceededError
from bulk_distances.services.quota import (
    PAID_ROWS_SESSION_KEY,
    InMemoryLedgerStore,
    QuotaLedger,
    SessionLedgerStore,
    allowed_rows,
    credit,
    remaining_shortfall,
)


@pytest.mark.parametrize(
    ("total_rows", "paid_rows", "expected"),
    [
        (15, 0, 5),
        (8, 0, 0),
        (10, 0, 0),
        (12, 2, 0),
        (30, 5, 15),
        (0, 0, 0),
    ],
)
def test_remaining_shortfall(total_rows: int, paid_rows: int, expected: int) -> None:
    assert remaining_shortfall(total_rows, paid_rows) == expected
    assert remaining_shortfall(total_rows, paid_rows) == max(0, total_rows - 10 - paid_rows)


def test_allowed_rows_adds_free_allowance() -> None:
    assert allowed_rows(0) == 10
    assert allowed_rows(7) == 17


def test_credit_ignores_non_positive_amounts() -> None:
    assert credit(4, 3) == 7
    assert credit(4, 0) == 4
    assert credit(4, -2) == 4


def test_ledger_is_monotonic_under_credits() -> None:
    ledger = QuotaLedger(InMemoryLedgerStore())
    observed = [ledger.paid_rows]

    for amount in (2, 0, 5, -3, 1):
        ledger.credit(amount)
        observed.append(ledger.paid_rows)

    assert observed == sorted(observed)
    assert ledger.paid_rows == 8


def test_ledger_defaults_to_zero_and_ignores_invalid_persisted_values() -> None:
    assert QuotaLedger(InMemoryLedgerStore()).paid_rows == 0
    assert QuotaLedger(InMemoryLedgerStore(-4)).paid_rows == 0
    assert QuotaLedger(InMemoryLedgerStore("junk")).paid_rows == 0  # type: ignore[arg-type]


def test_ledger_writes_through_before_updating_memory() -> None:
    store = InMemoryLedgerStore(3)
    ledger = QuotaLedger(store)

    ledger.credit(2)

    assert store.paid_rows == 5
    assert QuotaLedger(store).paid_rows == 5


def test_over_quota_batch_is_blocked_until_credit() -> None:
    ledger = QuotaLedger(InMemoryLedgerStore())

    with pytest.raises(QuotaExceededError) as exc_info:
        ledger.ensure_within_quota(12)
    assert exc_info.value.shortfall == 2

    ledger.credit(2)

    ledger.ensure_within_quota(12)
    assert ledger.shortfall(12) == 0


def test_session_store_survives_a_new_ledger_instance(session) -> None:
    QuotaLedger(SessionLedgerStore(session)).credit(4)

    reloaded = session.__class__(session_key=session.session_key)

    assert reloaded[PAID_ROWS_SESSION_KEY] == 4
    assert QuotaLedger(SessionLedgerStore(reloaded)).paid_rows == 4
