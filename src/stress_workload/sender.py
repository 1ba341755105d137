import asyncio
import logging
from dataclasses import dataclass

from stress_workload.fee_info import FeeInfo
from stress_workload.models import SenderIdentity, TransactionRecord, TransferRequest
from stress_workload.node import LedgerClient
import stress_workload.constants as C

log = logging.getLogger("stress_workload.sender")


@dataclass
class AccountRecord:
    lock: asyncio.Lock
    last_nonce: int | None = None
    submitted: int = 0


class NonceOrderedSender:
    """Submits one transfer at a time per sender identity.

    The nonce is fetched from the node right before signing, so two
    submissions for the same identity must never overlap. The per-account
    lock makes that hold even if a caller fans out.
    """

    def __init__(
        self,
        client: LedgerClient,
        *,
        chain_id: int,
        gas_limit: int = C.TRANSFER_GAS_LIMIT,
        fallback_gas_price: int,
    ):
        self.client = client
        self.chain_id = chain_id
        self.gas_limit = gas_limit
        self.fallback_gas_price = fallback_gas_price
        self.accounts: dict[str, AccountRecord] = {}

    def _record_for(self, addr: str) -> AccountRecord:
        rec = self.accounts.get(addr)
        if rec is None:
            rec = AccountRecord(lock=asyncio.Lock())
            self.accounts[addr] = rec
        return rec

    async def current_fee(self) -> FeeInfo:
        """Ask the node for its gas price, never cached between submissions."""
        try:
            reported = await self.client.get_gas_price()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.warning("eth_gasPrice failed (%s: %s), using floor", type(e).__name__, e)
            reported = None
        fee = FeeInfo.from_node(reported, self.fallback_gas_price)
        if fee.fallback:
            log.debug("No gas price from node, falling back to %s gwei", fee.gwei)
        return fee

    async def send(self, identity: SenderIdentity, recipient: str, amount: int, *, batch_number: int) -> TransactionRecord:
        """Fetch the pending nonce, sign and submit. Errors propagate to the caller."""
        rec = self._record_for(identity.address)
        async with rec.lock:
            nonce = await self.client.get_nonce(identity.address)
            fee = await self.current_fee()
            request = TransferRequest(
                sender=identity,
                recipient=recipient,
                amount=amount,
                nonce=nonce,
                gas_price=fee.gas_price,
                chain_id=self.chain_id,
                gas_limit=self.gas_limit,
            )
            log.debug("%s nonce=%s gas_price=%s gwei -> %s", identity.label, nonce, fee.gwei, recipient)
            tx_hash = await self.client.send_transfer(request)
            rec.last_nonce = nonce
            rec.submitted += 1

        return TransactionRecord(
            tx_hash=tx_hash,
            sender_label=identity.label,
            from_address=identity.address,
            to_address=recipient,
            nonce=nonce,
            amount=amount,
            gas_price=fee.gas_price,
            batch_number=batch_number,
        )

    def snapshot_accounts(self, identities: list[SenderIdentity] | tuple[SenderIdentity, ...]) -> list[dict]:
        out = []
        for identity in identities:
            rec = self.accounts.get(identity.address)
            out.append(
                {
                    **identity.public_view(),
                    "last_nonce": rec.last_nonce if rec else None,
                    "submitted": rec.submitted if rec else 0,
                }
            )
        return out
