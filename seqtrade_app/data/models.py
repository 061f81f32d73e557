"""
Trade result data models.

Settlement is the flat, unit-normalized form of a venue settlement
payload; TradeOutcome is the minimal result fed back into the stake
strategy.
"""

from dataclasses import asdict, dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class TradeOutcome:
    """Win/loss result of one settled contract."""
    won: bool
    stake: float
    profit: float
    signed_profit: float

    @classmethod
    def from_result(cls, won: bool, stake: float, profit: float) -> "TradeOutcome":
        """Build an outcome; a lost contract forfeits its stake."""
        return cls(
            won=won,
            stake=stake,
            profit=profit,
            signed_profit=profit if won else -stake,
        )


@dataclass(frozen=True)
class Settlement:
    """Flattened settlement record with all times in epoch seconds."""
    symbol_short: str
    status: str
    buy_price_value: float
    payout: float
    profit_value: float
    profit_sign: int
    signed_profit: float
    profit_is_win: bool

    symbol_full: Optional[str] = None
    contract_id: Optional[str] = None
    start_time: Optional[int] = None
    expiry_time: Optional[int] = None
    purchase_time: Optional[int] = None
    entry_spot_value: Optional[float] = None
    entry_spot_time: Optional[int] = None
    exit_spot_value: Optional[float] = None
    exit_spot_time: Optional[int] = None
    ask_price_value: Optional[float] = None
    ask_price_currency: Optional[str] = None
    buy_price_currency: Optional[str] = None
    bid_price_value: Optional[float] = None
    bid_price_currency: Optional[str] = None
    sell_price_value: Optional[float] = None
    sell_price_currency: Optional[str] = None
    sell_spot: Optional[float] = None
    sell_spot_time: Optional[int] = None
    payout_currency: Optional[str] = None
    profit_currency: Optional[str] = None
    profit_percentage: Optional[float] = None
    longcode: Optional[str] = None
    proposal_id: Optional[str] = None
    buy_transaction: Optional[str] = None
    sell_transaction: Optional[str] = None
    tick_count: int = 0

    @property
    def stake(self) -> float:
        return self.buy_price_value

    def to_outcome(self) -> TradeOutcome:
        return TradeOutcome.from_result(
            won=self.profit_is_win,
            stake=self.buy_price_value,
            profit=self.profit_value,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
