"""
Resilient venue connection manager.

VenueConnection keeps exactly one logical connection to the trading
venue open: bounded connect attempts, a keep-alive heartbeat, reconnect
after transport failures and purchase-to-settlement translation with a
contract creation timeout.
"""

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from ..config.defaults import ConnectionParams
from ..data.parsers import TERMINAL_STATUSES
from ..errors import (
    ConnectionAttemptsExhausted,
    ContractCreationTimeout,
    HeartbeatTimeout,
    VenueConnectionError,
    VenueError,
)
from ..logging.config import get_venue_logger, log_state_transition
from .transport import VenueTransport

# Errors a transport may raise for a failed network operation
TRANSPORT_ERRORS = (OSError, asyncio.TimeoutError, VenueError)


class ConnectionState(str, Enum):
    """Lifecycle states of a venue connection."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"


def is_settled(update: dict[str, Any]) -> bool:
    """True when a contract update describes a terminal, settled contract."""
    if update.get("is_sold"):
        return True
    return str(update.get("status") or "").lower() in TERMINAL_STATUSES


class VenueConnection:
    """
    One logical connection to the venue.

    State transitions are serialized through a lock, so at most one
    connect or disconnect runs at a time. Reconnects triggered by
    heartbeat failures or dropped connections run as owned tasks and
    are cancelled by ``disconnect``.

    Args:
        transport: Venue transport implementation
        params: Connection parameters
        name: Connection name used in logs
        sleep: Awaitable used for connect retry and reconnect pauses
    """

    def __init__(self, transport: VenueTransport,
                 params: Optional[ConnectionParams] = None,
                 name: str = "venue",
                 sleep: Optional[Callable[[float], Awaitable[Any]]] = None):
        self.transport = transport
        self.params = params or ConnectionParams()
        self.name = name
        self._sleep = sleep or asyncio.sleep
        self.logger = get_venue_logger(__name__).bind(connection=name)

        self._state = ConnectionState.DISCONNECTED
        self._lock = asyncio.Lock()
        self._opened = asyncio.Event()
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._trading_active = False
        self._stopped = False
        self._token: Optional[str] = None
        self.account: dict[str, Any] = {}
        self.last_error: Optional[Exception] = None
        self.reconnect_count = 0

        transport.on_disconnect = self._handle_transport_closed

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == ConnectionState.OPEN

    def set_trading_active(self, active: bool) -> None:
        """Reconnects after dropped connections only happen while trading is active."""
        self._trading_active = active

    def _set_state(self, new_state: ConnectionState, trigger: str) -> None:
        if new_state == self._state:
            return
        log_state_transition(self.logger, self.name, self._state.value, new_state.value, trigger)
        self._state = new_state
        if new_state == ConnectionState.OPEN:
            self._opened.set()
        else:
            self._opened.clear()

    # ------------------------------------------------------------------
    # Connect / disconnect
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """
        Open the connection, retrying up to ``max_attempts`` times.

        A call while already connecting or open is a no-op. A stored
        account token is re-authorized after every successful connect.

        Raises:
            ConnectionAttemptsExhausted: If every attempt failed
        """
        if self._state in (ConnectionState.CONNECTING, ConnectionState.OPEN):
            return

        async with self._lock:
            if self._state in (ConnectionState.CONNECTING, ConnectionState.OPEN):
                return

            self._stopped = False
            self._set_state(ConnectionState.CONNECTING, "connect")
            try:
                await self._open_with_retries()
            except asyncio.CancelledError:
                self._set_state(ConnectionState.DISCONNECTED, "connect_cancelled")
                raise
            self._set_state(ConnectionState.OPEN, "transport_open")
            self._start_heartbeat()

        if self._token is not None:
            await self.authorize(self._token)

    async def _open_with_retries(self) -> None:
        max_attempts = self.params.max_attempts
        last_error: Optional[Exception] = None

        for attempt in range(1, max_attempts + 1):
            try:
                await self.transport.open()
                if attempt > 1:
                    self.logger.info("Connected after retry", attempt=attempt)
                return
            except TRANSPORT_ERRORS as e:
                last_error = e
                self.logger.warning(
                    "Connection attempt failed",
                    attempt=attempt,
                    max_attempts=max_attempts,
                    error=str(e)
                )
                if attempt < max_attempts:
                    await self._sleep(self.params.retry_delay_seconds)

        self._set_state(ConnectionState.DISCONNECTED, "attempts_exhausted")
        error = ConnectionAttemptsExhausted(
            f"Could not connect after {max_attempts} attempts",
            attempts=max_attempts,
            context={"last_error": str(last_error)}
        )
        self.last_error = error
        raise error from last_error

    async def disconnect(self) -> None:
        """Close the connection for good; no reconnect follows."""
        self._stopped = True
        self._trading_active = False

        task = self._reconnect_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._reconnect_task = None

        await self._close_transport("disconnect")

    async def reconnect(self) -> None:
        """Close the transport, pause briefly, then connect again."""
        self.reconnect_count += 1
        self.logger.info("Reconnecting", reconnect_count=self.reconnect_count)
        await self._close_transport("reconnect")
        await self._sleep(self.params.reconnect_pause_seconds)
        await self.connect()

    async def _close_transport(self, trigger: str) -> None:
        async with self._lock:
            if self._state == ConnectionState.DISCONNECTED:
                return

            self._set_state(ConnectionState.CLOSING, trigger)
            self._stop_heartbeat()
            try:
                await self.transport.close()
            except TRANSPORT_ERRORS as e:
                self.logger.warning("Error closing transport", error=str(e))
            self._set_state(ConnectionState.DISCONNECTED, trigger)

    # ------------------------------------------------------------------
    # Heartbeat and failure handling
    # ------------------------------------------------------------------

    def _start_heartbeat(self) -> None:
        self._stop_heartbeat()
        self._heartbeat_task = asyncio.get_running_loop().create_task(self._heartbeat_loop())

    def _stop_heartbeat(self) -> None:
        task = self._heartbeat_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._heartbeat_task = None

    async def _heartbeat_loop(self) -> None:
        interval = self.params.ping_interval_seconds
        timeout = self.params.pong_timeout_seconds

        while self._state == ConnectionState.OPEN:
            await asyncio.sleep(interval)
            if self._state != ConnectionState.OPEN:
                return

            try:
                await asyncio.wait_for(self.transport.ping(), timeout)
            except asyncio.TimeoutError:
                error: VenueConnectionError = HeartbeatTimeout(
                    f"No pong within {timeout}s", timeout_seconds=timeout
                )
            except TRANSPORT_ERRORS as e:
                error = VenueConnectionError(f"Heartbeat failed: {e}")
            else:
                continue

            self.logger.warning("Heartbeat failed", error=str(error))
            self.last_error = error
            self._heartbeat_task = None
            self._schedule_reconnect(error, require_trading=False)
            return

    def _handle_transport_closed(self, error: Optional[Exception]) -> None:
        if self._state in (ConnectionState.CLOSING, ConnectionState.DISCONNECTED):
            return

        self.logger.warning("Connection closed unexpectedly", error=str(error) if error else None)
        self.last_error = error
        self._stop_heartbeat()
        self._set_state(ConnectionState.DISCONNECTED, "unexpected_close")
        self._schedule_reconnect(error, require_trading=True)

    def _schedule_reconnect(self, error: Optional[Exception], require_trading: bool) -> None:
        if self._stopped:
            self.logger.info("Connection stopped, not reconnecting")
            return
        if require_trading and not self._trading_active:
            self.logger.info("Trading inactive, not reconnecting")
            return
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return

        self._reconnect_task = asyncio.get_running_loop().create_task(
            self._reconnect_after_delay(error)
        )

    async def _reconnect_after_delay(self, error: Optional[Exception]) -> None:
        await self._sleep(self.params.retry_delay_seconds)
        if self._stopped:
            return
        try:
            await self.reconnect()
        except TRANSPORT_ERRORS as e:
            self.logger.error("Reconnect failed", error=str(e), cause=str(error))
            self.last_error = e

    async def wait_until_open(self, timeout: Optional[float] = None) -> None:
        """
        Wait for the connection to be open, connecting if nothing else is.

        Raises:
            VenueConnectionError: If the connection is not open in time
            ConnectionAttemptsExhausted: If connecting failed
        """
        if self._state == ConnectionState.DISCONNECTED and (
                self._reconnect_task is None or self._reconnect_task.done()):
            await self.connect()

        if self._state == ConnectionState.OPEN:
            return

        timeout = self.params.request_timeout_seconds if timeout is None else timeout
        try:
            await asyncio.wait_for(self._opened.wait(), timeout)
        except asyncio.TimeoutError as e:
            if isinstance(self.last_error, ConnectionAttemptsExhausted):
                raise self.last_error from e
            raise VenueConnectionError(f"Connection not open after {timeout}s") from e

    # ------------------------------------------------------------------
    # Account and purchases
    # ------------------------------------------------------------------

    async def authorize(self, token: str) -> dict[str, Any]:
        """
        Authorize the account and remember the token for reconnects.

        Returns:
            Account details
        """
        self._token = token
        await self.wait_until_open()
        self.account = await asyncio.wait_for(
            self.transport.authorize(token), self.params.request_timeout_seconds
        )
        self.logger.info(
            "Account authorized",
            loginid=self.account.get("loginid"),
            currency=self.account.get("currency")
        )
        return self.account

    async def purchase(self, parameters: dict[str, Any]) -> dict[str, Any]:
        """
        Buy a contract and wait for its settlement.

        The purchase request races the contract creation timeout. Once
        bought, the contract's lifecycle is followed until it settles;
        the subscription is always released before returning.

        Args:
            parameters: Purchase parameters

        Returns:
            Raw settlement payload

        Raises:
            ContractCreationTimeout: If the venue does not acknowledge in time
            VenueConnectionError: If the transport fails
            VenueError: If the venue rejects the purchase
        """
        await self.wait_until_open()
        timeout = self.params.contract_creation_timeout_seconds

        try:
            receipt = await asyncio.wait_for(self.transport.buy(parameters), timeout)
        except asyncio.TimeoutError as e:
            raise ContractCreationTimeout(
                f"Contract creation timed out after {timeout}s",
                timeout_seconds=timeout,
                context={"contract_type": parameters.get("contract_type")}
            ) from e
        except OSError as e:
            raise VenueConnectionError(f"Purchase failed: {e}") from e

        contract_id = receipt.get("contract_id")
        if contract_id is None:
            raise VenueError("Purchase receipt has no contract id", context={"receipt": receipt})
        contract_id = str(contract_id)

        self.logger.info(
            "Contract purchased",
            contract_id=contract_id,
            contract_type=parameters.get("contract_type"),
            amount=parameters.get("amount")
        )

        try:
            async for update in self.transport.contract_updates(contract_id):
                if is_settled(update):
                    self.logger.info("Contract settled", contract_id=contract_id, status=update.get("status"))
                    return update
        except OSError as e:
            raise VenueConnectionError(f"Contract subscription failed: {e}") from e
        finally:
            await self._forget(contract_id)

        raise VenueConnectionError(
            "Contract subscription ended before settlement",
            context={"contract_id": contract_id}
        )

    async def _forget(self, contract_id: str) -> None:
        try:
            await self.transport.forget(contract_id)
        except TRANSPORT_ERRORS as e:
            self.logger.warning("Failed to release contract subscription",
                                contract_id=contract_id, error=str(e))
