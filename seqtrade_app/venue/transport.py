"""Base class for venue transports."""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Callable, Optional

DisconnectCallback = Callable[[Optional[Exception]], None]


class VenueTransport(ABC):
    """
    Black-box client for one venue connection.

    A transport only has to open and close a connection, answer pings,
    authorize an account, buy a contract and stream that contract's
    updates until it settles. VenueConnection owns state, heartbeat and
    reconnect policy on top of it.
    """

    def __init__(self, name: str):
        self.name = name
        # Set by VenueConnection; called when the connection drops on its own
        self.on_disconnect: Optional[DisconnectCallback] = None

    @abstractmethod
    async def open(self) -> None:
        """
        Open the underlying connection.

        Raises:
            VenueConnectionError: If the connection cannot be established
        """

    @abstractmethod
    async def close(self) -> None:
        """Close the underlying connection; safe to call when already closed."""

    @abstractmethod
    async def ping(self) -> None:
        """Send a keep-alive ping and wait for the pong."""

    @abstractmethod
    async def authorize(self, token: str) -> dict[str, Any]:
        """
        Authorize the account behind an opaque token.

        Returns:
            Account details with ``loginid``, ``currency`` and ``balance``
        """

    @abstractmethod
    async def buy(self, parameters: dict[str, Any]) -> dict[str, Any]:
        """
        Purchase a contract.

        Args:
            parameters: Purchase parameters from build_contract_parameters

        Returns:
            Purchase receipt containing at least ``contract_id``
        """

    @abstractmethod
    def contract_updates(self, contract_id: str) -> AsyncIterator[dict[str, Any]]:
        """
        Stream lifecycle updates of a purchased contract.

        Each update is a settlement-shaped dict (see
        data.parsers.parse_settlement) with an ``is_sold`` flag.
        """

    @abstractmethod
    async def forget(self, contract_id: str) -> None:
        """Stop the lifecycle subscription of a contract."""

    def _notify_disconnect(self, error: Optional[Exception]) -> None:
        if self.on_disconnect is not None:
            self.on_disconnect(error)
