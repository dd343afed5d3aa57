import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import aiohttp
from hexbytes import HexBytes
from web3 import Web3

from .errors import MalformedDataError, NodeError
from .models import Receipt

logger = logging.getLogger(__name__)


def _quantity(value: Optional[str], name: str) -> int:
    if value is None:
        raise MalformedDataError(f"node response is missing '{name}'")
    try:
        return Web3.to_int(hexstr=value)
    except (TypeError, ValueError) as e:
        raise MalformedDataError(f"node response has invalid '{name}': {value!r}") from e


def _hash(value: Optional[str], name: str) -> bytes:
    if value is None:
        raise MalformedDataError(f"node response is missing '{name}'")
    try:
        return bytes(HexBytes(value))
    except (TypeError, ValueError) as e:
        raise MalformedDataError(f"node response has invalid '{name}': {value!r}") from e


def parse_receipt(result: Dict[str, Any]) -> Receipt:
    """Turns an eth_getTransactionReceipt result into a Receipt."""
    return Receipt(
        transaction_hash=_hash(result.get("transactionHash"), "transactionHash"),
        block_number=_quantity(result.get("blockNumber"), "blockNumber"),
        gas_used=_quantity(result.get("gasUsed"), "gasUsed"),
        effective_gas_price=_quantity(result.get("effectiveGasPrice"), "effectiveGasPrice"),
    )


class NodeClient:
    """
    Minimal JSON-RPC client for the three node calls the audit needs.

    Requests are plain POSTs of hand built payloads with an increasing id.
    There are no retries; any transport or RPC error becomes a NodeError.
    """
    def __init__(self, rpc_url: str, timeout_s: float = 30.0,
                 session: Optional[aiohttp.ClientSession] = None):
        self.rpc_url = rpc_url
        self.timeout_s = timeout_s
        self._session = session
        self._owns_session = session is None
        self._rpc_id_counter = 0

    async def __aenter__(self) -> "NodeClient":
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_s))
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def _call(self, method: str, params: List[Any]) -> Any:
        if self._session is None:
            raise NodeError(f"{method}: client is not open, use 'async with NodeClient(...)'")
        self._rpc_id_counter += 1
        payload = {"jsonrpc": "2.0", "method": method, "params": params, "id": self._rpc_id_counter}
        try:
            async with self._session.post(self.rpc_url, json=payload) as resp:
                if resp.status != 200:
                    raise NodeError(f"{method}: HTTP status {resp.status}")
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise NodeError(f"{method}: {e!r}") from e
        except ValueError as e:
            raise NodeError(f"{method}: invalid JSON response") from e

        if not isinstance(data, dict):
            raise NodeError(f"{method}: unexpected response {data!r}")
        if "error" in data:
            err = data["error"]
            msg = err.get("message", err) if isinstance(err, dict) else err
            raise NodeError(f"{method}: rpc error {msg}")
        logger.debug(f"{method} {params} -> ok")
        return data.get("result")

    async def block_number(self) -> int:
        result = await self._call("eth_blockNumber", [])
        return _quantity(result, "result")

    async def block_timestamp(self, block_number: int) -> datetime:
        block = await self._call("eth_getBlockByNumber", [hex(block_number), False])
        if not block:
            raise NodeError(f"eth_getBlockByNumber: block {block_number} not found")
        ts = _quantity(block.get("timestamp"), "timestamp")
        return datetime.fromtimestamp(ts, tz=timezone.utc)

    async def transaction_receipt(self, tx_hash: bytes) -> Optional[Receipt]:
        """None when the node does not know the transaction (not mined yet or pruned)."""
        result = await self._call("eth_getTransactionReceipt", [Web3.to_hex(tx_hash)])
        if result is None:
            return None
        return parse_receipt(result)
