"""Domain data structures shared by the sender, composer, poller and stats."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import stress_workload.constants as C


@dataclass(frozen=True, slots=True)
class SenderIdentity:
    """A funded account we send from. The key never shows up in repr or logs."""

    label: str
    private_key: str = field(repr=False)
    address: str

    def public_view(self) -> dict[str, str]:
        return {"label": self.label, "address": self.address}


@dataclass(frozen=True, slots=True)
class TransferRequest:
    sender: SenderIdentity
    recipient: str
    amount: int  # wei
    nonce: int
    gas_price: int  # wei
    chain_id: int
    gas_limit: int = C.TRANSFER_GAS_LIMIT

    def to_tx(self) -> dict[str, Any]:
        """Legacy (type 0) transaction dict in the shape eth_account signs."""
        return {
            "to": self.recipient,
            "value": self.amount,
            "gas": self.gas_limit,
            "gasPrice": self.gas_price,
            "nonce": self.nonce,
            "chainId": self.chain_id,
        }


@dataclass(slots=True)
class TransactionRecord:
    tx_hash: str
    sender_label: str
    from_address: str
    to_address: str
    nonce: int
    amount: int
    gas_price: int
    batch_number: int
    state: C.TxState = C.TxState.PENDING
    block_number: int | None = None

    def classify(self, state: C.TxState, block_number: int | None = None) -> None:
        """Move out of PENDING. A record is classified at most once."""
        if self.state != C.TxState.PENDING:
            raise ValueError(f"{self.tx_hash} already classified as {self.state}")
        if state not in (C.TxState.CONFIRMED, C.TxState.FAILED):
            raise ValueError(f"cannot classify {self.tx_hash} as {state}")
        self.state = state
        self.block_number = block_number

    def to_dict(self) -> dict[str, Any]:
        return {
            "tx_hash": self.tx_hash,
            "sender": self.sender_label,
            "from": self.from_address,
            "to": self.to_address,
            "nonce": self.nonce,
            "amount": str(self.amount),
            "gas_price": self.gas_price,
            "batch": self.batch_number,
            "state": self.state.name,
            "block_number": self.block_number,
        }

    def __str__(self):
        return f"{self.sender_label} -- {self.tx_hash} -- nonce {self.nonce} -- {self.state}"


@dataclass(frozen=True, slots=True)
class SubmitFailure:
    """A submission that errored before the node handed back a hash."""

    index: int
    sender_label: str
    to_address: str
    message: str
    state: C.TxState = C.TxState.SUBMIT_FAILED

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "sender": self.sender_label,
            "to": self.to_address,
            "message": self.message,
            "state": self.state.name,
        }


@dataclass
class Batch:
    number: int
    size: int
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat(sep=" ", timespec="seconds"))
    records: list[TransactionRecord] = field(default_factory=list)
    failures: list[SubmitFailure] = field(default_factory=list)
    confirmed: int = 0
    sealed: bool = False

    @property
    def success(self) -> int:
        return len(self.records)

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def reverted(self) -> int:
        return sum(1 for r in self.records if r.state == C.TxState.FAILED)

    @property
    def pending(self) -> int:
        return sum(1 for r in self.records if r.state == C.TxState.PENDING)

    def add_record(self, record: TransactionRecord) -> None:
        self._check_open()
        self.records.append(record)

    def add_failure(self, failure: SubmitFailure) -> None:
        self._check_open()
        self.failures.append(failure)

    def seal(self) -> None:
        self._check_open()
        if self.success + self.failed != self.size:
            raise ValueError(f"batch {self.number}: {self.success} + {self.failed} != {self.size}")
        if self.confirmed > self.success:
            raise ValueError(f"batch {self.number}: confirmed {self.confirmed} > success {self.success}")
        self.sealed = True

    def _check_open(self) -> None:
        if self.sealed:
            raise RuntimeError(f"batch {self.number} is sealed")

    def summary(self) -> dict[str, Any]:
        return {
            "batch": self.number,
            "timestamp": self.timestamp,
            "success": self.success,
            "failed": self.failed,
            "confirmed": self.confirmed,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.summary(),
            "size": self.size,
            "reverted": self.reverted,
            "pending": self.pending,
            "sealed": self.sealed,
            "transactions": [r.to_dict() for r in self.records],
            "failures": [f.to_dict() for f in self.failures],
        }
