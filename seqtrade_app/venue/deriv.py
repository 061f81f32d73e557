"""
Deriv websocket API transport.

Requests are JSON messages correlated by ``req_id``; a reader task
resolves pending requests and routes ``proposal_open_contract``
subscription messages to per-contract queues. Venue error codes are
mapped to the typed venue errors.
"""

import asyncio
import itertools
from typing import Any, AsyncIterator, Callable, Optional

import orjson
import structlog
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..errors import VenueConnectionError, VenueError, venue_error_from_code
from .transport import VenueTransport

logger = structlog.get_logger(__name__)


def proposal_to_settlement(proposal: dict[str, Any]) -> dict[str, Any]:
    """
    Convert a flat ``proposal_open_contract`` payload into the nested settlement shape.

    Args:
        proposal: ``proposal_open_contract`` object from the venue

    Returns:
        Settlement-shaped payload accepted by parse_settlement
    """
    currency = proposal.get("currency")
    status = proposal.get("status")

    profit = proposal.get("profit")
    if profit is None:
        profit_value, profit_sign = None, None
    else:
        profit = float(profit)
        profit_value = abs(profit)
        profit_sign = (profit > 0) - (profit < 0)

    if status == "won":
        is_win: Optional[bool] = True
    elif status == "lost":
        is_win = False
    else:
        is_win = None

    transaction_ids = proposal.get("transaction_ids") or {}

    def money(field: str) -> dict[str, Any]:
        return {"currency": currency, "value": proposal.get(field)}

    return {
        "contract_id": proposal.get("contract_id"),
        "symbol": {"short": proposal.get("underlying"), "full": proposal.get("display_name")},
        "status": status,
        "is_sold": bool(proposal.get("is_sold")),
        "start_time": proposal.get("date_start"),
        "expiry_time": proposal.get("date_expiry"),
        "purchase_time": proposal.get("purchase_time"),
        "entry_spot": {"value": proposal.get("entry_tick"), "time": proposal.get("entry_tick_time")},
        "exit_spot": {"value": proposal.get("exit_tick"), "time": proposal.get("exit_tick_time")},
        "sell_spot": {"value": proposal.get("sell_spot"), "time": proposal.get("sell_spot_time")},
        "buy_price": money("buy_price"),
        "bid_price": money("bid_price"),
        "sell_price": money("sell_price"),
        "payout": money("payout"),
        "profit": {
            "value": profit_value,
            "sign": profit_sign,
            "is_win": is_win,
            "percentage": proposal.get("profit_percentage"),
            "currency": currency,
        },
        "longcode": proposal.get("longcode"),
        "proposal_id": proposal.get("id"),
        "buy_transaction": transaction_ids.get("buy"),
        "sell_transaction": transaction_ids.get("sell"),
        "audit_details": proposal.get("audit_details") or {},
    }


class DerivTransport(VenueTransport):
    """
    Venue transport over the Deriv websocket API.

    Args:
        endpoint: Websocket endpoint URL
        app_id: Registered application id
        request_timeout: Seconds to wait for a request's reply
        connect: Websocket connect function, replaceable in tests
    """

    def __init__(self, endpoint: str, app_id: str, request_timeout: float = 30.0,
                 connect: Callable[..., Any] = websockets.connect):
        super().__init__("deriv")
        self.url = f"{endpoint}?app_id={app_id}"
        self.request_timeout = request_timeout
        self._connect = connect
        self._ws = None
        self._reader_task: Optional[asyncio.Task] = None
        self._pending: dict[int, asyncio.Future] = {}
        self._subscriptions: dict[str, asyncio.Queue] = {}
        self._subscription_ids: dict[str, str] = {}
        self._req_ids = itertools.count(1)

    async def open(self) -> None:
        try:
            self._ws = await self._connect(self.url)
        except (OSError, WebSocketException) as e:
            raise VenueConnectionError(f"Could not open websocket: {e}") from e

        self._reader_task = asyncio.get_running_loop().create_task(self._read_loop(self._ws))
        logger.info("Websocket opened", url=self.url)

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        reader, self._reader_task = self._reader_task, None

        if reader is not None and not reader.done():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass

        if ws is not None:
            try:
                await ws.close()
            except (OSError, WebSocketException) as e:
                logger.warning("Websocket close failed", error=str(e))

        self._fail_pending(VenueConnectionError("Connection closed"))

    async def ping(self) -> None:
        await self._request({"ping": 1})

    async def authorize(self, token: str) -> dict[str, Any]:
        reply = await self._request({"authorize": token})
        account = reply.get("authorize") or {}
        return {
            "loginid": account.get("loginid"),
            "currency": account.get("currency"),
            "balance": account.get("balance"),
        }

    async def buy(self, parameters: dict[str, Any]) -> dict[str, Any]:
        reply = await self._request({
            "buy": 1,
            "price": parameters["amount"],
            "parameters": parameters,
        })
        receipt = reply.get("buy") or {}
        return {
            "contract_id": receipt.get("contract_id"),
            "buy_price": receipt.get("buy_price"),
            "start_time": receipt.get("start_time"),
            "longcode": receipt.get("longcode"),
            "transaction_id": receipt.get("transaction_id"),
        }

    async def contract_updates(self, contract_id: str) -> AsyncIterator[dict[str, Any]]:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscriptions[contract_id] = queue
        try:
            await self._send({
                "proposal_open_contract": 1,
                "contract_id": int(contract_id) if contract_id.isdigit() else contract_id,
                "subscribe": 1,
            })
            while True:
                item = await queue.get()
                if isinstance(item, Exception):
                    raise item
                yield proposal_to_settlement(item)
        finally:
            self._subscriptions.pop(contract_id, None)

    async def forget(self, contract_id: str) -> None:
        subscription_id = self._subscription_ids.pop(contract_id, None)
        if subscription_id is not None and self._ws is not None:
            await self._request({"forget": subscription_id})

    async def _send(self, payload: dict[str, Any]) -> None:
        if self._ws is None:
            raise VenueConnectionError("Websocket is not open")
        try:
            await self._ws.send(orjson.dumps(payload).decode())
        except ConnectionClosed as e:
            raise VenueConnectionError(f"Websocket closed while sending: {e}") from e

    async def _request(self, payload: dict[str, Any]) -> dict[str, Any]:
        req_id = next(self._req_ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[req_id] = future
        try:
            await self._send({**payload, "req_id": req_id})
            return await asyncio.wait_for(future, self.request_timeout)
        finally:
            self._pending.pop(req_id, None)

    async def _read_loop(self, ws) -> None:
        error: Exception
        try:
            async for message in ws:
                try:
                    self._dispatch(orjson.loads(message))
                except orjson.JSONDecodeError as e:
                    logger.warning("Discarding undecodable message", error=str(e))
        except ConnectionClosed as e:
            error = VenueConnectionError(f"Websocket closed: {e}")
        else:
            error = VenueConnectionError("Websocket closed by venue")

        if ws is not self._ws:
            return

        self._ws = None
        self._reader_task = None
        logger.warning("Websocket connection lost", error=str(error))
        self._fail_pending(error)
        self._notify_disconnect(error)

    def _dispatch(self, message: dict[str, Any]) -> None:
        error = message.get("error")
        msg_type = message.get("msg_type")

        if msg_type == "proposal_open_contract":
            echo = message.get("echo_req") or {}
            proposal = message.get("proposal_open_contract") or {}
            contract_id = str(proposal.get("contract_id") or echo.get("contract_id"))
            subscription = message.get("subscription") or {}
            if subscription.get("id"):
                self._subscription_ids[contract_id] = subscription["id"]

            queue = self._subscriptions.get(contract_id)
            if queue is not None:
                queue.put_nowait(self._error(error, msg_type) if error else proposal)
            return

        future = self._pending.get(message.get("req_id"))
        if future is None or future.done():
            return

        if error:
            future.set_exception(self._error(error, msg_type))
        else:
            future.set_result(message)

    @staticmethod
    def _error(error: dict[str, Any], msg_type: Optional[str]) -> VenueError:
        return venue_error_from_code(
            error.get("code"),
            error.get("message", "Venue error"),
            context={"msg_type": msg_type}
        )

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        for queue in self._subscriptions.values():
            queue.put_nowait(error)
