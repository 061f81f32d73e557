"""Simulated in-process venue for dry runs and tests."""

import asyncio
import itertools
import random
from typing import Any, AsyncIterator, Optional

import structlog

from ..errors import InsufficientBalance, VenueConnectionError
from ..utils.time import utc_now
from .transport import VenueTransport

logger = structlog.get_logger(__name__)


class PaperTransport(VenueTransport):
    """
    Venue transport that settles contracts against a seeded random source.

    Args:
        win_probability: Chance that a contract wins
        payout_ratio: Profit per unit of stake on a win
        settle_delay: Seconds between purchase and settlement
        balance: Starting account balance
        currency: Account currency
        seed: Random seed for reproducible runs
        outcomes: Optional fixed win/loss sequence consumed before the
            random source is used
    """

    def __init__(self, win_probability: float = 0.5, payout_ratio: float = 0.95,
                 settle_delay: float = 0.0, balance: float = 10_000.0,
                 currency: str = "USD", seed: Optional[int] = None,
                 outcomes: Optional[list[bool]] = None):
        super().__init__("paper")
        self.win_probability = win_probability
        self.payout_ratio = payout_ratio
        self.settle_delay = settle_delay
        self.balance = balance
        self.currency = currency
        self.outcomes = list(outcomes or [])
        self.is_open = False
        self.purchases: list[dict[str, Any]] = []
        self.forgotten: list[str] = []
        self._rng = random.Random(seed)
        self._contracts: dict[str, dict[str, Any]] = {}
        self._ids = itertools.count(1000)

    async def open(self) -> None:
        self.is_open = True

    async def close(self) -> None:
        self.is_open = False

    async def ping(self) -> None:
        self._require_open()

    async def authorize(self, token: str) -> dict[str, Any]:
        self._require_open()
        return {"loginid": "VRTC0000000", "currency": self.currency, "balance": self.balance}

    async def buy(self, parameters: dict[str, Any]) -> dict[str, Any]:
        self._require_open()
        stake = float(parameters["amount"])
        if stake > self.balance:
            raise InsufficientBalance(
                f"Balance {self.balance:.2f} does not cover stake {stake:.2f}",
                code="InsufficientBalance"
            )

        won = self.outcomes.pop(0) if self.outcomes else self._rng.random() < self.win_probability
        contract_id = str(next(self._ids))
        purchase_time = int(utc_now().timestamp())
        self.balance -= stake
        self._contracts[contract_id] = {
            "parameters": dict(parameters),
            "won": won,
            "stake": stake,
            "purchase_time": purchase_time,
        }
        self.purchases.append(dict(parameters))
        return {"contract_id": contract_id, "buy_price": stake, "start_time": purchase_time}

    async def contract_updates(self, contract_id: str) -> AsyncIterator[dict[str, Any]]:
        contract = self._contracts[contract_id]
        yield self._settlement(contract_id, contract, settled=False)
        await asyncio.sleep(self.settle_delay)
        self._require_open()
        yield self._settlement(contract_id, contract, settled=True)

    async def forget(self, contract_id: str) -> None:
        self._contracts.pop(contract_id, None)
        self.forgotten.append(contract_id)

    def drop_connection(self) -> None:
        """Simulate the venue closing the connection."""
        self.is_open = False
        self._notify_disconnect(VenueConnectionError("Paper venue dropped the connection"))

    def _require_open(self) -> None:
        if not self.is_open:
            raise VenueConnectionError("Paper venue connection is closed")

    def _settlement(self, contract_id: str, contract: dict[str, Any], settled: bool) -> dict[str, Any]:
        parameters = contract["parameters"]
        stake = contract["stake"]
        won = contract["won"]
        payout = round(stake * (1 + self.payout_ratio), 2)
        profit = round(stake * self.payout_ratio, 2) if won else stake
        sell_price = payout if won else 0.0

        if settled:
            self.balance += sell_price

        return {
            "contract_id": contract_id,
            "symbol": {"short": parameters.get("symbol"), "full": parameters.get("symbol")},
            "status": ("won" if won else "lost") if settled else "open",
            "is_sold": settled,
            "purchase_time": contract["purchase_time"],
            "start_time": contract["purchase_time"],
            "expiry_time": contract["purchase_time"] + 1,
            "buy_price": {"currency": self.currency, "value": stake},
            "sell_price": {"currency": self.currency, "value": sell_price},
            "payout": {"currency": self.currency, "value": payout},
            "profit": {
                "value": profit,
                "sign": 1 if won else -1,
                "is_win": won,
                "percentage": round(self.payout_ratio * 100 if won else -100.0, 2),
                "currency": self.currency,
            },
            "longcode": f"Paper {parameters.get('contract_type')} on {parameters.get('symbol')}",
        }
