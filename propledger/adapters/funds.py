"""Funds movement (card / bank / payout rails) used by the ledger."""
import logging
import secrets
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Protocol, runtime_checkable

import stripe

from ..errors import FundsProviderError

logger = logging.getLogger(__name__)


def to_cents(amount):
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@runtime_checkable
class FundsProvider(Protocol):
    def payout(self, destination: str, amount: Decimal, metadata: Optional[dict] = None) -> str: ...

    def charge(self, source: str, amount: Decimal, customer_id: Optional[str] = None,
               metadata: Optional[dict] = None) -> str: ...


class NullFundsProvider:
    """No external rails; loan proceeds fall back to a vault credit."""

    def payout(self, destination, amount, metadata=None):
        raise FundsProviderError("No external payout path configured")

    def charge(self, source, amount, customer_id=None, metadata=None):
        raise FundsProviderError("No external payment path configured")


class DemoFundsProvider(NullFundsProvider):
    """Demo mode: charges always succeed, payouts land in the vault."""

    def charge(self, source, amount, customer_id=None, metadata=None):
        return f"demo_pi_{secrets.token_hex(8)}"


class StripeFundsProvider:
    def __init__(self, api_key):
        stripe.api_key = api_key

    def payout(self, destination, amount, metadata=None):
        if not destination:
            raise FundsProviderError("No payout destination")
        try:
            transfer = stripe.Transfer.create(
                amount=to_cents(amount),
                currency="usd",
                destination=destination,
                metadata=metadata or {},
            )
        except stripe.StripeError as e:
            raise FundsProviderError(str(e)) from e
        return transfer.id

    def charge(self, source, amount, customer_id=None, metadata=None):
        try:
            intent = stripe.PaymentIntent.create(
                amount=to_cents(amount),
                currency="usd",
                customer=customer_id,
                payment_method=source,
                confirm=True,
                off_session=True,
                metadata=metadata or {},
            )
        except stripe.StripeError as e:
            raise FundsProviderError(str(e)) from e
        if intent.status not in ("succeeded", "processing"):
            raise FundsProviderError(f"Payment {intent.id} ended in status {intent.status}")
        return intent.id
