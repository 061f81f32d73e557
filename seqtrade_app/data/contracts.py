"""
Contract kinds and venue purchase parameters.

Every purchasable contract kind is a member of ContractKind, and each
member maps to exactly one template. Codes the venue front end sends
that are not recognized resolve to ContractKind.DEFAULT, a random-digit
DIGITDIFF contract.
"""

import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)

DEFAULT_MARKET = "R_100"

_VOLATILITY_INDICES = (10, 25, 50, 75, 100)

# Display names used by the chat front end, mapped to venue symbols
MARKET_SYMBOLS: dict[str, str] = {}
for _index in _VOLATILITY_INDICES:
    MARKET_SYMBOLS[f"Volatility {_index}"] = f"R_{_index}"
    MARKET_SYMBOLS[f"Volatility {_index}(1s)"] = f"1HZ{_index}V"


class ContractKind(str, Enum):
    """Purchasable contract kinds."""
    RISE = "CALL"
    FALL = "PUT"
    AUTO_RISE_FALL = "AUTO_RISE_FALL"
    EVEN = "DIGITEVEN"
    ODD = "DIGITODD"
    AUTO_EVEN_ODD = "AUTO_EVEN_ODD"
    DIGIT_UNDER_9 = "DIGITUNDER_9"
    DIGIT_UNDER_8 = "DIGITUNDER_8"
    DIGIT_UNDER_7 = "DIGITUNDER_7"
    DIGIT_UNDER_6 = "DIGITUNDER_6"
    DIGIT_OVER_0 = "DIGITOVER_0"
    DIGIT_OVER_1 = "DIGITOVER_1"
    DIGIT_OVER_2 = "DIGITOVER_2"
    DIGIT_OVER_3 = "DIGITOVER_3"
    DIGIT_DIFF = "DIGITDIFF"
    DEFAULT = "DEFAULT"

    @classmethod
    def parse(cls, code: Optional[str]) -> "ContractKind":
        """
        Resolve a contract code to its kind.

        Accepts member values and names case-insensitively; anything
        else resolves to DEFAULT.
        """
        if code:
            normalized = code.strip().upper().replace(" ", "_")
            for kind in cls:
                if normalized in (kind.value, kind.name):
                    return kind

        logger.warning("Unknown contract code, using default contract", code=code)
        return cls.DEFAULT


@dataclass(frozen=True)
class ContractTemplate:
    """Venue contract type and barrier for one kind; choices are resolved per purchase."""
    contract_types: tuple[str, ...]
    barrier: Optional[int] = None
    random_digit_barrier: bool = False


CONTRACT_TEMPLATES: dict[ContractKind, ContractTemplate] = {
    ContractKind.RISE: ContractTemplate(("CALL",)),
    ContractKind.FALL: ContractTemplate(("PUT",)),
    ContractKind.AUTO_RISE_FALL: ContractTemplate(("CALL", "PUT")),
    ContractKind.EVEN: ContractTemplate(("DIGITEVEN",)),
    ContractKind.ODD: ContractTemplate(("DIGITODD",)),
    ContractKind.AUTO_EVEN_ODD: ContractTemplate(("DIGITEVEN", "DIGITODD")),
    ContractKind.DIGIT_UNDER_9: ContractTemplate(("DIGITUNDER",), barrier=9),
    ContractKind.DIGIT_UNDER_8: ContractTemplate(("DIGITUNDER",), barrier=8),
    ContractKind.DIGIT_UNDER_7: ContractTemplate(("DIGITUNDER",), barrier=7),
    ContractKind.DIGIT_UNDER_6: ContractTemplate(("DIGITUNDER",), barrier=6),
    ContractKind.DIGIT_OVER_0: ContractTemplate(("DIGITOVER",), barrier=0),
    ContractKind.DIGIT_OVER_1: ContractTemplate(("DIGITOVER",), barrier=1),
    ContractKind.DIGIT_OVER_2: ContractTemplate(("DIGITOVER",), barrier=2),
    ContractKind.DIGIT_OVER_3: ContractTemplate(("DIGITOVER",), barrier=3),
    ContractKind.DIGIT_DIFF: ContractTemplate(("DIGITDIFF",), random_digit_barrier=True),
    ContractKind.DEFAULT: ContractTemplate(("DIGITDIFF",), random_digit_barrier=True),
}


def resolve_market_symbol(market: str) -> str:
    """
    Map a market display name to its venue symbol.

    ``"Volatility 10 📈"`` becomes ``R_10`` and ``"Volatility 10(1s) 📈"``
    becomes ``1HZ10V``. Venue symbols and unknown names pass through.
    """
    name = "".join(ch for ch in market if ch.isascii()).strip()
    return MARKET_SYMBOLS.get(name, name or DEFAULT_MARKET)


def build_contract_parameters(
    kind: ContractKind,
    amount: float,
    symbol: str,
    duration: int,
    duration_unit: str,
    currency: str = "USD",
    rng: Optional[Callable[[], float]] = None
) -> dict[str, Any]:
    """
    Build venue purchase parameters for one contract.

    Args:
        kind: Contract kind
        amount: Stake amount
        symbol: Venue market symbol
        duration: Contract duration value
        duration_unit: Contract duration unit (t, s, m, h, d)
        currency: Account currency
        rng: Returns floats in [0, 1); used for auto kinds and random digits

    Returns:
        Purchase parameters as sent to the venue
    """
    rng = rng or random.random
    template = CONTRACT_TEMPLATES[kind]

    contract_type = template.contract_types[int(rng() * len(template.contract_types))]
    parameters: dict[str, Any] = {
        "amount": amount,
        "basis": "stake",
        "contract_type": contract_type,
        "currency": currency,
        "duration": duration,
        "duration_unit": duration_unit,
        "symbol": symbol,
    }

    if template.random_digit_barrier:
        parameters["barrier"] = str(int(rng() * 10))
    elif template.barrier is not None:
        parameters["barrier"] = str(template.barrier)

    return parameters
