"""
Billing Service

The pipeline only needs ``debit`` and ``refund``. ``MockBillingService``
keeps balances in memory and is what development and tests run against;
a real ledger would implement ``IBillingService`` against its payment
provider.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Dict

from homedecor.core.logging import get_logger

logger = get_logger(__name__)


class IBillingService(ABC):

    @abstractmethod
    async def debit(self, user_id: str, amount: int) -> bool:
        """Take ``amount`` credits from the user. False when the balance is short."""
        pass

    @abstractmethod
    async def refund(self, user_id: str, amount: int) -> None:
        """Give ``amount`` credits back."""
        pass

    @abstractmethod
    async def get_balance(self, user_id: str) -> int:
        pass


class MockBillingService(IBillingService):
    """In-memory balances; every unknown user starts with ``starting_credits``."""

    def __init__(self, starting_credits: int = 10):
        self.starting_credits = starting_credits
        self._balances: Dict[str, int] = {}
        self._lock = asyncio.Lock()

    def _balance(self, user_id: str) -> int:
        return self._balances.setdefault(user_id, self.starting_credits)

    async def debit(self, user_id: str, amount: int) -> bool:
        if amount < 0:
            raise ValueError("amount must not be negative")
        async with self._lock:
            balance = self._balance(user_id)
            if balance < amount:
                logger.info("credit_debit_refused", user_id=user_id, amount=amount, balance=balance)
                return False
            self._balances[user_id] = balance - amount
        logger.info("credits_debited", user_id=user_id, amount=amount, balance=self._balances[user_id])
        return True

    async def refund(self, user_id: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("amount must not be negative")
        async with self._lock:
            self._balances[user_id] = self._balance(user_id) + amount
        logger.info("credits_refunded", user_id=user_id, amount=amount, balance=self._balances[user_id])

    async def get_balance(self, user_id: str) -> int:
        async with self._lock:
            return self._balance(user_id)

