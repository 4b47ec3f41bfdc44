"""Solana ledger gateway.

Typed RPC calls go through solana-py's AsyncClient, log subscriptions
through its websocket client. Parsed transaction lookups are issued as raw
JSON-RPC over httpx so the ``jsonParsed`` instruction tree can be read
directly.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException, UnconfirmedTxError
from solana.rpc.types import TxOpts
from solana.rpc.websocket_api import connect
from solders.hash import Hash
from solders.message import Message
from solders.pubkey import Pubkey
from solders.rpc.config import RpcTransactionLogsFilterMentions
from solders.rpc.responses import LogsNotification
from solders.signature import Signature
from websockets.exceptions import WebSocketException

from forwarder.config import Settings
from forwarder.errors import SubmitError, TransportError
from forwarder.gateway.base import (
    CONFIRMED,
    LedgerEvent,
    LedgerGateway,
    ParsedTransaction,
    SimulationResult,
    Transfer,
)
from forwarder.transactions.bundle import SignedTransaction
from forwarder.utils.ratelimit import AsyncRateLimiter

logger = logging.getLogger(__name__)

SYSTEM_PROGRAM = "system"
TRANSFER_TYPES = ("transfer", "transferWithSeed")

# Exceptions raised by solana-py / httpx when the node is unreachable
_TRANSPORT_ERRORS = (SolanaRpcException, httpx.HTTPError, OSError)


def parse_transaction(signature: str, result: Optional[dict]) -> Optional[ParsedTransaction]:
    """Reduce a ``getTransaction`` jsonParsed result to a ParsedTransaction.

    Both top-level and inner (CPI) system transfers are collected.
    """
    if not result:
        return None

    meta = result.get("meta") or {}
    message = (result.get("transaction") or {}).get("message") or {}

    instructions: list[dict] = list(message.get("instructions") or [])
    for inner in meta.get("innerInstructions") or []:
        instructions.extend(inner.get("instructions") or [])

    transfers = []
    for ix in instructions:
        parsed = ix.get("parsed")
        if ix.get("program") != SYSTEM_PROGRAM or not isinstance(parsed, dict):
            continue
        if parsed.get("type") not in TRANSFER_TYPES:
            continue
        info = parsed.get("info") or {}
        try:
            transfers.append(
                Transfer(
                    source=info["source"],
                    destination=info["destination"],
                    lamports=int(info["lamports"]),
                )
            )
        except (KeyError, TypeError, ValueError):
            logger.debug(f"Skipping malformed transfer in {signature}: {info}")

    return ParsedTransaction(
        signature=signature,
        error=meta.get("err"),
        fee=int(meta.get("fee") or 0),
        transfers=transfers,
    )


class SolanaGateway(LedgerGateway):
    """Ledger gateway backed by a Solana RPC node.

    One instance is shared by every payment monitor; the underlying HTTP
    clients pool connections and all RPC calls share one rate limiter.
    """

    def __init__(
        self,
        rpc_url: str,
        ws_url: str,
        limiter: Optional[AsyncRateLimiter] = None,
        timeout: float = 30.0,
    ):
        """Initialize Solana gateway.

        Args:
            rpc_url: HTTP JSON-RPC endpoint
            ws_url: Websocket endpoint for subscriptions
            limiter: Shared rate limiter for RPC calls
            timeout: HTTP timeout in seconds
        """
        self.rpc_url = rpc_url
        self.ws_url = ws_url
        self.limiter = limiter or AsyncRateLimiter(every=0)
        self._client = AsyncClient(rpc_url, commitment=Confirmed, timeout=timeout)
        self._http = httpx.AsyncClient(timeout=timeout)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SolanaGateway":
        limiter = AsyncRateLimiter(
            every=settings.rpc_rate_limit_every,
            burst=settings.rpc_rate_limit_burst,
            name=settings.solana_rpc_url,
        )
        return cls(settings.solana_rpc_url, settings.solana_ws_url, limiter=limiter)

    async def balance_of(self, address: str) -> int:
        try:
            async with self.limiter:
                resp = await self._client.get_balance(Pubkey.from_string(address), commitment=Confirmed)
        except _TRANSPORT_ERRORS as e:
            raise TransportError(f"getBalance failed for {address}: {e}") from e
        return resp.value

    async def latest_blockhash(self) -> Hash:
        try:
            async with self.limiter:
                resp = await self._client.get_latest_blockhash(commitment=Confirmed)
        except _TRANSPORT_ERRORS as e:
            raise TransportError(f"getLatestBlockhash failed: {e}") from e
        return resp.value.blockhash

    async def estimate_fee(self, message: Message) -> Optional[int]:
        try:
            async with self.limiter:
                resp = await self._client.get_fee_for_message(message, commitment=Confirmed)
        except RPCException as e:
            logger.warning(f"getFeeForMessage rejected: {e}")
            return None
        except _TRANSPORT_ERRORS as e:
            raise TransportError(f"getFeeForMessage failed: {e}") from e
        return resp.value

    async def submit(self, signed: SignedTransaction) -> str:
        opts = TxOpts(skip_preflight=False, preflight_commitment=Confirmed)
        try:
            async with self.limiter:
                resp = await self._client.send_transaction(signed.transaction, opts=opts)
        except RPCException as e:
            raise SubmitError(f"sendTransaction rejected: {e}") from e
        except _TRANSPORT_ERRORS as e:
            raise TransportError(f"sendTransaction failed: {e}") from e
        return str(resp.value)

    async def simulate(self, signed: SignedTransaction) -> SimulationResult:
        try:
            async with self.limiter:
                resp = await self._client.simulate_transaction(
                    signed.transaction, sig_verify=True, commitment=Confirmed
                )
        except RPCException as e:
            return SimulationResult(failed=True, error=str(e))
        except _TRANSPORT_ERRORS as e:
            raise TransportError(f"simulateTransaction failed: {e}") from e

        value = resp.value
        return SimulationResult(
            failed=value.err is not None,
            units_consumed=value.units_consumed,
            error=value.err,
        )

    @asynccontextmanager
    async def subscribe_logs(
        self, address: str, commitment: str = CONFIRMED
    ) -> AsyncIterator[AsyncIterator[LedgerEvent]]:
        try:
            websocket = await connect(self.ws_url)
        except (WebSocketException, OSError) as e:
            raise TransportError(f"Websocket connect failed: {e}") from e

        subscription_id: Optional[int] = None
        try:
            try:
                await websocket.logs_subscribe(
                    RpcTransactionLogsFilterMentions(Pubkey.from_string(address)),
                    commitment=commitment,
                )
                first = await websocket.recv()
                subscription_id = first[0].result
            except (WebSocketException, OSError) as e:
                raise TransportError(f"logsSubscribe failed for {address}: {e}") from e

            logger.debug(f"Subscribed to logs for {address} (subscription {subscription_id})")
            yield self._events(websocket, address)
        finally:
            await self._release(websocket, subscription_id, address)

    @staticmethod
    async def _events(websocket: Any, address: str) -> AsyncIterator[LedgerEvent]:
        while True:
            try:
                messages = await websocket.recv()
            except (WebSocketException, OSError) as e:
                raise TransportError(f"Log subscription for {address} dropped: {e}") from e

            for msg in messages:
                if not isinstance(msg, LogsNotification):
                    continue
                value = msg.result.value
                yield LedgerEvent(signature=str(value.signature), error=value.err)

    @staticmethod
    async def _release(websocket: Any, subscription_id: Optional[int], address: str) -> None:
        try:
            if subscription_id is not None:
                await websocket.logs_unsubscribe(subscription_id)
        except (WebSocketException, OSError) as e:
            logger.debug(f"logsUnsubscribe failed for {address}: {e}")
        finally:
            await websocket.close()
            logger.debug(f"Released log subscription for {address}")

    async def fetch_transaction(self, signature: str) -> Optional[ParsedTransaction]:
        payload = {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "getTransaction",
            "params": [
                signature,
                {
                    "encoding": "jsonParsed",
                    "commitment": CONFIRMED,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        }
        try:
            async with self.limiter:
                resp = await self._http.post(self.rpc_url, json=payload)
            resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TransportError(f"getTransaction failed for {signature}: {e}") from e

        if "error" in data:
            raise TransportError(f"getTransaction error for {signature}: {data['error']}")

        return parse_transaction(signature, data.get("result"))

    async def confirm_transaction(self, signature: str) -> None:
        try:
            await self._client.confirm_transaction(
                Signature.from_string(signature), commitment=Confirmed
            )
        except UnconfirmedTxError as e:
            raise TransportError(f"Transaction {signature} was not confirmed: {e}") from e
        except _TRANSPORT_ERRORS as e:
            raise TransportError(f"confirmTransaction failed for {signature}: {e}") from e

    async def close(self) -> None:
        await self._client.close()
        await self._http.aclose()
