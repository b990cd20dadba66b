"""
Solana JSON-RPC reader for the SolPlay program.

Wraps the four read paths the sync service needs:

    - ``getTransaction``           -> :meth:`LedgerReader.get_transaction`
    - ``getAccountInfo``           -> :meth:`LedgerReader.get_account`
    - ``getSignaturesForAddress``  -> :meth:`LedgerReader.list_recent_signatures`
    - ``logsSubscribe`` (websocket) -> :meth:`LedgerReader.subscribe`

Every network or node failure surfaces as :class:`LedgerUnavailable`, which
callers treat as transient. "Not found" results are returned as ``None``.

The reader is meant to be used as an async context manager so the HTTP
connection pool is always closed:

    async with LedgerReader(rpc_url, ws_url) as reader:
        tx = await reader.get_transaction(signature)
"""

from __future__ import annotations

import asyncio
import base64
import itertools
import json
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any, TypeVar

import base58
import httpx
import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from solplay_sync.ledger.errors import AccountDecodeError, LedgerUnavailable
from solplay_sync.ledger.types import RawInstruction, SignatureInfo, SignatureNotice, Transaction

logger = logging.getLogger(__name__)

SUBSCRIBE_CONFIRM_TIMEOUT = 10.0

# Status codes worth retrying on the next cycle; anything else non-2xx is
# still reported as unavailable since the caller cannot act on it either.
RETRYABLE_STATUS = {429, 500, 502, 503, 504}


A = TypeVar("A")


class LedgerReader:
    """
    Async JSON-RPC client bound to one RPC endpoint.

    Args:
        rpc_url: HTTP(S) JSON-RPC endpoint.
        ws_url: Websocket endpoint for push subscriptions. Optional; without
            it :meth:`subscribe` raises :class:`LedgerUnavailable`.
        commitment: Commitment level passed on every request.
        timeout: Per-request timeout in seconds.
        http_client: Pre-built client (tests inject one); the reader only
            closes clients it created itself.
    """

    def __init__(
        self,
        rpc_url: str,
        ws_url: str | None = None,
        *,
        commitment: str = "confirmed",
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self.ws_url = ws_url
        self.commitment = commitment
        self.timeout = timeout
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self._request_ids = itertools.count(1)

    async def __aenter__(self) -> LedgerReader:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the HTTP connection pool if this reader created it."""
        if self._owns_client:
            await self._http_client.aclose()

    # -------------------------------------------------------------------------
    # JSON-RPC plumbing
    # -------------------------------------------------------------------------

    async def _rpc(self, method: str, params: list[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._request_ids),
            "method": method,
            "params": params,
        }
        try:
            response = await self._http_client.post(self.rpc_url, json=payload)
        except httpx.HTTPError as exc:
            raise LedgerUnavailable(f"{method} request failed: {exc}") from exc

        if response.status_code != 200:
            kind = "retryable" if response.status_code in RETRYABLE_STATUS else "unexpected"
            raise LedgerUnavailable(f"{method} returned {kind} HTTP {response.status_code}")

        try:
            body = response.json()
        except ValueError as exc:
            raise LedgerUnavailable(f"{method} returned a non-JSON body") from exc

        if body.get("error"):
            error = body["error"]
            raise LedgerUnavailable(
                f"{method} RPC error {error.get('code')}: {error.get('message', 'unknown')}"
            )
        return body.get("result")

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_transaction(self, signature: str) -> Transaction | None:
        """Fetch a confirmed transaction, or ``None`` if the node does not know it."""
        result = await self._rpc(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "jsonParsed",
                    "maxSupportedTransactionVersion": 0,
                    "commitment": self.commitment,
                },
            ],
        )
        if result is None:
            return None
        return _parse_transaction(signature, result)

    async def get_account(self, address: str, schema: type[A]) -> A | None:
        """Fetch an account and decode it with ``schema.from_bytes``.

        Raises:
            LedgerUnavailable: On network/node failure.
            AccountDecodeError: When the data does not match ``schema``.
        """
        result = await self._rpc(
            "getAccountInfo",
            [address, {"encoding": "base64", "commitment": self.commitment}],
        )
        value = (result or {}).get("value")
        if value is None:
            return None

        data_field = value.get("data")
        if not isinstance(data_field, list) or not data_field:
            raise AccountDecodeError(f"account {address} returned no base64 data")
        try:
            raw = base64.b64decode(data_field[0])
        except ValueError as exc:
            raise AccountDecodeError(f"account {address} data is not valid base64") from exc
        return schema.from_bytes(raw)  # type: ignore[attr-defined]

    async def list_recent_signatures(self, address: str, limit: int = 10) -> list[SignatureInfo]:
        """Most recent signatures touching ``address``, newest first."""
        result = await self._rpc(
            "getSignaturesForAddress",
            [address, {"limit": limit, "commitment": self.commitment}],
        )
        return [
            SignatureInfo(
                signature=entry["signature"],
                slot=int(entry.get("slot", 0)),
                failed=entry.get("err") is not None,
                block_time=entry.get("blockTime"),
            )
            for entry in result or []
        ]

    # -------------------------------------------------------------------------
    # Push subscription
    # -------------------------------------------------------------------------

    async def subscribe(
        self, program_id: str, on_subscribed: Callable[[], None] | None = None
    ) -> AsyncIterator[SignatureNotice]:
        """Yield signatures of successful transactions mentioning ``program_id``.

        Opens a websocket ``logsSubscribe``. Failure to connect or to confirm
        the subscription raises :class:`LedgerUnavailable`; a dropped
        connection simply ends the iteration. The subscription is
        unsubscribed and the socket closed when the consumer stops.
        ``on_subscribed`` is called once the node confirms the subscription.
        """
        if not self.ws_url:
            raise LedgerUnavailable("no websocket endpoint configured")

        try:
            ws = await websockets.connect(self.ws_url)
        except (OSError, WebSocketException) as exc:
            raise LedgerUnavailable(f"websocket connect to {self.ws_url} failed: {exc}") from exc

        subscription_id: int | None = None
        try:
            request_id = next(self._request_ids)
            await ws.send(
                json.dumps(
                    {
                        "jsonrpc": "2.0",
                        "id": request_id,
                        "method": "logsSubscribe",
                        "params": [{"mentions": [program_id]}, {"commitment": self.commitment}],
                    }
                )
            )
            try:
                confirmation = json.loads(
                    await asyncio.wait_for(ws.recv(), timeout=SUBSCRIBE_CONFIRM_TIMEOUT)
                )
            except (TimeoutError, WebSocketException) as exc:
                raise LedgerUnavailable("logsSubscribe was not confirmed") from exc
            if "error" in confirmation:
                raise LedgerUnavailable(f"logsSubscribe rejected: {confirmation['error']}")
            subscription_id = confirmation.get("result")
            logger.info("Subscribed to program logs (subscription %s)", subscription_id)
            if on_subscribed is not None:
                on_subscribed()

            while True:
                try:
                    raw = await ws.recv()
                except ConnectionClosed as exc:
                    logger.warning("Log subscription closed: %s", exc)
                    return
                try:
                    message = json.loads(raw)
                except json.JSONDecodeError:
                    logger.warning("Ignoring non-JSON subscription message")
                    continue
                notice = _parse_log_notification(message)
                if notice is not None:
                    yield notice
        finally:
            if subscription_id is not None:
                try:
                    await ws.send(
                        json.dumps(
                            {
                                "jsonrpc": "2.0",
                                "id": next(self._request_ids),
                                "method": "logsUnsubscribe",
                                "params": [subscription_id],
                            }
                        )
                    )
                except ConnectionClosed:
                    # Socket already gone; nothing left to unsubscribe.
                    pass
            await ws.close()


# =============================================================================
# PAYLOAD PARSING
# =============================================================================


def _parse_transaction(signature: str, result: dict[str, Any]) -> Transaction:
    meta = result.get("meta") or {}
    message = (result.get("transaction") or {}).get("message") or {}

    instructions = []
    for ix in message.get("instructions", []):
        # jsonParsed renders known programs (system, token) as "parsed";
        # only raw instructions carry program data we can decode.
        if "data" not in ix:
            continue
        try:
            data = base58.b58decode(ix["data"])
        except ValueError:
            logger.warning("Skipping instruction with invalid base58 data in %s", signature)
            continue
        instructions.append(
            RawInstruction(
                program_id=ix.get("programId", ""),
                data=data,
                accounts=tuple(ix.get("accounts", [])),
            )
        )

    return Transaction(
        signature=signature,
        slot=int(result.get("slot", 0)),
        block_time=result.get("blockTime"),
        failed=meta.get("err") is not None,
        instructions=tuple(instructions),
    )


def _parse_log_notification(message: dict[str, Any]) -> SignatureNotice | None:
    if message.get("method") != "logsNotification":
        return None
    result = (message.get("params") or {}).get("result") or {}
    value = result.get("value") or {}
    signature = value.get("signature")
    if not signature or value.get("err") is not None:
        return None
    slot = int((result.get("context") or {}).get("slot", 0))
    return SignatureNotice(signature=signature, slot=slot)
