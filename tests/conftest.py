"""
Shared fixtures: an in-memory ledger node, deterministic sender identities and
a fast session config (no pauses, no settle delay).
"""

import asyncio
import dataclasses
from collections import Counter, defaultdict

import pytest
from web3 import Web3

from stress_workload.config import (
    NodeConfig,
    OutputConfig,
    SessionConfig,
    StartupConfig,
    TransferConfig,
    WorkloadConfig,
)
from stress_workload.models import SenderIdentity, TransferRequest

CHAIN_ID = 4093

SENDERS = (
    SenderIdentity(label="User 4", private_key="0x" + "04" * 32, address="0x" + "e5" * 20),
    SenderIdentity(label="User 5", private_key="0x" + "05" * 32, address="0x" + "5a" * 20),
)

RECIPIENTS = (
    "0x" + "b1" * 20,
    "0x" + "b2" * 20,
    "0x" + "b3" * 20,
)


class FakeLedger:
    """In-memory stand-in for a JSON-RPC node.

    Send attempts and successful sends are numbered from 0 in the order they
    arrive; the knobs below refer to those numbers.
    """

    def __init__(self, *, chain_id: int = CHAIN_ID, gas_price: int | None = Web3.to_wei(1, "gwei")):
        self.chain = chain_id
        self.gas_price = gas_price
        self.gas_price_error = False
        self.unreachable = False
        self.balances: dict[str, int] = {}
        self.nonces: dict[str, int] = defaultdict(int)

        self.fail_attempts: set[int] = set()    # send attempts that raise a network error
        self.no_receipt: set[int] = set()       # sent txs the node never produces a receipt for
        self.reverted: set[int] = set()         # sent txs whose receipt has status 0
        self.receipt_errors: set[int] = set()   # sent txs whose receipt query raises

        self.attempts = 0
        self.sent: list[TransferRequest] = []
        self.hashes: list[str] = []
        self.receipts: dict[str, dict] = {}
        self.gas_price_calls = 0
        self.receipt_queries: Counter = Counter()
        self.on_send = None
        self.closed = False

    async def chain_id(self) -> int:
        if self.unreachable:
            raise ConnectionError("connection refused")
        return self.chain

    async def get_nonce(self, address: str) -> int:
        await asyncio.sleep(0)
        return self.nonces[address]

    async def get_gas_price(self) -> int | None:
        self.gas_price_calls += 1
        if self.gas_price_error:
            raise TimeoutError("eth_gasPrice timed out")
        return self.gas_price

    async def get_balance(self, address: str) -> int:
        if self.unreachable:
            raise ConnectionError("connection refused")
        return self.balances.get(address, Web3.to_wei(100_000, "ether"))

    async def send_transfer(self, request: TransferRequest) -> str:
        attempt = self.attempts
        self.attempts += 1
        if self.on_send is not None:
            self.on_send(attempt)
        await asyncio.sleep(0)
        if attempt in self.fail_attempts:
            raise ConnectionError("network error")
        address = request.sender.address
        if request.nonce != self.nonces[address]:
            raise ValueError(f"nonce too low/high: got {request.nonce}, expected {self.nonces[address]}")
        self.nonces[address] += 1

        idx = len(self.sent)
        tx_hash = "0x" + f"{idx + 1:064x}"
        self.sent.append(request)
        self.hashes.append(tx_hash)
        if idx not in self.no_receipt:
            self.receipts[tx_hash] = {"status": 0 if idx in self.reverted else 1, "blockNumber": 100 + idx}
        return tx_hash

    async def get_receipt(self, tx_hash: str) -> dict | None:
        self.receipt_queries[tx_hash] += 1
        if self.hashes.index(tx_hash) in self.receipt_errors:
            raise TimeoutError("eth_getTransactionReceipt timed out")
        return self.receipts.get(tx_hash)

    async def close(self) -> None:
        self.closed = True

    def nonces_used(self, address: str) -> list[int]:
        return [r.nonce for r in self.sent if r.sender.address == address]


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def make_config(tmp_path):
    """Build a WorkloadConfig; keyword arguments override SessionConfig / TransferConfig fields."""

    def _make(*, transfer: dict | None = None, **session) -> WorkloadConfig:
        session_cfg = SessionConfig(tx_per_batch=10, interval_minutes=10, duration_minutes=None, submit_pause=0, settle_delay=0)
        transfer_cfg = TransferConfig(amount=Web3.to_wei("0.01", "ether"))
        return WorkloadConfig(
            node=NodeConfig(rpc_url="http://node.invalid:9545", chain_id=CHAIN_ID),
            session=dataclasses.replace(session_cfg, **session),
            transfer=dataclasses.replace(transfer_cfg, **(transfer or {})),
            senders=SENDERS,
            recipients=RECIPIENTS,
            startup=StartupConfig(max_retries=1, retry_delay=0),
            output=OutputConfig(log_dir=tmp_path / "logs", stats_file=tmp_path / "stress-stats.json"),
        )

    return _make


@pytest.fixture
def config(make_config):
    return make_config()
