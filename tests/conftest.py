"""Pytest configuration and shared fixtures."""

import pytest
from typing import Dict, Any, Callable
from datetime import datetime, timezone


NOON_UTC = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def noon_clock() -> Callable[[], datetime]:
    """Clock fixed inside the trading-hours window."""
    return lambda: NOON_UTC


@pytest.fixture
def night_clock() -> Callable[[], datetime]:
    """Clock fixed outside the trading-hours window."""
    return lambda: datetime(2024, 1, 1, 23, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def sample_settlement() -> Dict[str, Any]:
    """Raw settlement payload for a won contract."""
    return {
        "contract_id": 273552772428,
        "symbol": {"short": "R_100", "full": "Volatility 100 Index"},
        "status": "won",
        "is_sold": True,
        "start_time": {"epoch": 1740429375},
        "expiry_time": 1740429380000,
        "purchase_time": "2025-02-24T20:36:15Z",
        "entry_spot": {"value": 1234.56, "time": 1740429376},
        "exit_spot": {"value": 1234.12, "time": 1740429380},
        "buy_price": {"currency": "USD", "value": 10.0},
        "sell_price": {"currency": "USD", "value": 19.5},
        "payout": {"currency": "USD", "value": 19.5},
        "profit": {"value": 9.5, "sign": 1, "is_win": True, "percentage": 95.0, "currency": "USD"},
        "longcode": "Win payout if the last digit is not 5.",
        "buy_transaction": "547294814948",
        "sell_transaction": "547294849768",
        "audit_details": {"all_ticks": [{"epoch": 1740429376, "tick": 1234.56},
                                        {"epoch": 1740429378, "tick": 1234.3}]},
    }


@pytest.fixture
def sample_session_params() -> Dict[str, Any]:
    """Session parameters as collected by the chat front end."""
    return {
        "market": "Volatility 100 📈",
        "contract_type": "CALL",
        "stake": 5,
        "take_profit": 100,
        "stop_loss": 50,
        "trade_duration": "1hr",
        "update_frequency": "1min",
        "contract_duration_unit": "t",
        "contract_duration_value": 1,
        "trading_mode": "auto",
        "account_token": "a1-test-token",
    }
