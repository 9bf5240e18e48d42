from __future__ import annotations

import logging
from decimal import Decimal
from urllib.parse import urlencode

from django.conf import settings

from bulk_distances.exceptions import PaymentFailedError, PaymentNotRequiredError
from bulk_distances.services.quota import QuotaLedger, remaining_shortfall
from bulk_distances.services.types import PaymentRequest
from bulk_distances.services.validation import price_for_rows

logger = logging.getLogger(__name__)

PAID_QUERY_PARAM = "paid"


class PaymentGateway:
    """Builds PayPal checkout requests for a row shortfall and credits confirmed payments.

    The provider's own protocol stays on the provider side: this adapter only
    prices the shortfall, builds the redirect, and turns a confirmed capture
    into a ledger credit for exactly the rows that were priced.
    """

    def __init__(
        self,
        *,
        per_row_price: Decimal | str | None = None,
        currency: str | None = None,
        recipient: str | None = None,
        checkout_url: str | None = None,
        public_base_url: str | None = None,
        free_row_allowance: int | None = None,
    ) -> None:
        self.per_row_price = Decimal(
            str(per_row_price if per_row_price is not None else settings.PER_ROW_PRICE)
        )
        self.currency = currency or settings.PAYMENT_CURRENCY
        self.recipient = recipient if recipient is not None else settings.PAYPAL_RECIPIENT
        self.checkout_url = checkout_url or settings.PAYPAL_CHECKOUT_URL
        self.public_base_url = (public_base_url or settings.PUBLIC_BASE_URL).rstrip("/")
        self.free_row_allowance = (
            free_row_allowance if free_row_allowance is not None else settings.FREE_ROW_ALLOWANCE
        )

    def request_payment(self, row_count: int, paid_rows: int) -> PaymentRequest:
        shortfall = remaining_shortfall(row_count, paid_rows, self.free_row_allowance)
        if shortfall <= 0:
            raise PaymentNotRequiredError("Batch is within the row allowance")

        amount = price_for_rows(shortfall, self.per_row_price)
        description = f"Unlock {shortfall} extra row{'s' if shortfall > 1 else ''}"
        params = {
            "cmd": "_xclick",
            "business": self.recipient,
            "item_name": description,
            "amount": f"{amount:.2f}",
            "currency_code": self.currency,
            "no_shipping": 1,
            "return": f"{self.public_base_url}/?{urlencode({PAID_QUERY_PARAM: shortfall})}",
            "cancel_return": f"{self.public_base_url}/?payment=cancelled",
        }
        return PaymentRequest(
            amount=amount,
            currency=self.currency,
            rows=shortfall,
            description=description,
            redirect_url=f"{self.checkout_url}?{urlencode(params)}",
        )

    def confirm(self, ledger: QuotaLedger, rows: int, expected_rows: int | None) -> int:
        if not expected_rows or expected_rows <= 0:
            raise PaymentFailedError("No payment is pending for this batch")
        if rows != expected_rows:
            raise PaymentFailedError(
                f"Paid for {rows} rows but {expected_rows} rows are outstanding"
            )

        balance = ledger.credit(rows)
        logger.info("Payment confirmed for %d rows", rows)
        return balance

    @staticmethod
    def parse_paid_rows(value: str | None) -> int | None:
        if value is None:
            return None
        try:
            rows = int(value)
        except ValueError:
            return None
        return rows if rows > 0 else None
