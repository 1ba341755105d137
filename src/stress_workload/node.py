import asyncio
import logging
from typing import Any, Protocol

import httpx
from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import TransactionNotFound

import stress_workload.constants as C
from stress_workload.models import TransferRequest

log = logging.getLogger("stress_workload.node")


class LedgerClient(Protocol):
    async def chain_id(self) -> int: ...
    async def get_nonce(self, address: str) -> int: ...
    async def get_gas_price(self) -> int | None: ...
    async def get_balance(self, address: str) -> int: ...
    async def send_transfer(self, request: TransferRequest) -> str: ...
    async def get_receipt(self, tx_hash: str) -> dict[str, Any] | None: ...
    async def close(self) -> None: ...


class Web3LedgerClient:
    """LedgerClient over an EVM JSON-RPC endpoint.

    Every call is bounded by a timeout; anything the node or the transport
    raises is passed through to the caller untouched.
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        rpc_timeout: float = C.RPC_TIMEOUT,
        submit_timeout: float = C.SUBMIT_TIMEOUT,
        w3: AsyncWeb3 | None = None,
    ):
        self.rpc_url = rpc_url
        self.rpc_timeout = rpc_timeout
        self.submit_timeout = submit_timeout
        self.w3 = w3 or AsyncWeb3(AsyncHTTPProvider(rpc_url))

    async def _rpc(self, coro, *, t: float | None = None):
        return await asyncio.wait_for(coro, timeout=t or self.rpc_timeout)

    async def chain_id(self) -> int:
        return int(await self._rpc(self.w3.eth.chain_id))

    async def get_nonce(self, address: str) -> int:
        return await self._rpc(self.w3.eth.get_transaction_count(address, "pending"))

    async def get_gas_price(self) -> int | None:
        price = await self._rpc(self.w3.eth.gas_price)
        return int(price) if price else None

    async def get_balance(self, address: str) -> int:
        return await self._rpc(self.w3.eth.get_balance(address))

    async def send_transfer(self, request: TransferRequest) -> str:
        signed = Account.sign_transaction(request.to_tx(), request.sender.private_key)
        tx_hash = await self._rpc(self.w3.eth.send_raw_transaction(signed.raw_transaction), t=self.submit_timeout)
        return Web3.to_hex(tx_hash)

    async def get_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        try:
            receipt = await self._rpc(self.w3.eth.get_transaction_receipt(tx_hash))
        except TransactionNotFound:
            return None
        return dict(receipt)

    async def close(self) -> None:
        await self.w3.provider.disconnect()


async def probe_node(
    url: str,
    max_retries: int = C.PROBE_RETRIES,
    retry_delay: float = C.PROBE_RETRY_DELAY,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> int:
    """Probe the JSON-RPC endpoint with retries until it answers eth_chainId.

    Args:
        url: RPC endpoint URL
        max_retries: Maximum number of attempts (default: 30 = 1 minute with 2s delay)
        retry_delay: Seconds to wait between retries
        transport: Optional httpx transport, e.g. a MockTransport

    Returns:
        The chain id the node reports.
    """
    payload = {"jsonrpc": "2.0", "method": "eth_chainId", "params": [], "id": 1}

    for attempt in range(1, max_retries + 1):
        try:
            async with httpx.AsyncClient(timeout=C.RPC_TIMEOUT, transport=transport) as http:
                r = await http.post(url, json=payload)
                r.raise_for_status()
                body = r.json()
                if "error" in body:
                    raise RuntimeError(f"eth_chainId: {body['error']}")
                chain_id = int(body["result"], 16)
                log.info("RPC endpoint responding, chain id %s (attempt %s/%s)", chain_id, attempt, max_retries)
                return chain_id
        except Exception as e:
            if attempt < max_retries:
                log.info(
                    "RPC not ready yet (attempt %s/%s): %s - retrying in %ss...",
                    attempt, max_retries, e.__class__.__name__, retry_delay,
                )
                await asyncio.sleep(retry_delay)
            else:
                log.error("RPC failed after %s attempts", max_retries)
                raise
