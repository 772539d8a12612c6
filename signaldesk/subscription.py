"""
Subscription Flow
=================

Pricing for the PRO plan and the (simulated) upgrade step.

No real payment is processed: an upgrade records a transaction and
switches the account plan.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from signaldesk.auth_store import AuthStore, PaymentMethod, Transaction, User, UserPlan


logger = logging.getLogger(__name__)


class BillingCycle(str, Enum):
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class BankRegion(str, Enum):
    UPI = "UPI"
    EU = "EU"
    US = "US"


# currency -> (monthly, yearly)
PRICE_TABLE = {
    "USD": (29.0, 290.0),
    "INR": (2499.0, 24990.0),
    "EUR": (29.0, 290.0),
}


@dataclass(frozen=True)
class Quote:
    currency: str
    amount: float

    def to_dict(self) -> dict:
        return {"currency": self.currency, "amount": self.amount}


def quote_subscription(
    method: PaymentMethod | str,
    cycle: BillingCycle | str = BillingCycle.MONTHLY,
    bank_region: BankRegion | str | None = None,
) -> Quote:
    """
    Price of the PRO plan for a payment method and billing cycle.

    Bank transfers are billed in the local currency of the bank region
    (INR for UPI, EUR for SEPA); everything else is billed in USD.
    """
    method = PaymentMethod(method)
    cycle = BillingCycle(cycle)
    currency = "USD"
    if method is PaymentMethod.BANK and bank_region is not None:
        region = BankRegion(bank_region)
        if region is BankRegion.UPI:
            currency = "INR"
        elif region is BankRegion.EU:
            currency = "EUR"
    monthly, yearly = PRICE_TABLE[currency]
    return Quote(currency=currency, amount=monthly if cycle is BillingCycle.MONTHLY else yearly)


class SubscriptionService:
    """Upgrades accounts to PRO against an AuthStore."""

    def __init__(self, auth_store: AuthStore):
        self._auth = auth_store

    def upgrade(
        self,
        uid: str,
        method: PaymentMethod | str,
        cycle: BillingCycle | str = BillingCycle.MONTHLY,
        bank_region: BankRegion | str | None = None,
    ) -> tuple[User, Transaction]:
        """Record the payment and switch the plan to PRO."""
        quote = quote_subscription(method, cycle, bank_region)
        metadata = {"plan": UserPlan.PRO.value, "cycle": BillingCycle(cycle).value}
        if bank_region is not None:
            metadata["bank_region"] = BankRegion(bank_region).value

        txn = self._auth.record_transaction(uid, quote.amount, quote.currency, PaymentMethod(method), metadata)
        user = self._auth.update_plan(uid, UserPlan.PRO)
        logger.info(f"User {uid} upgraded to PRO ({quote.amount} {quote.currency}, txn {txn.id})")
        return user, txn
