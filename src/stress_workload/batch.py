"""Batch composition: who pays whom how much, submitted one after another."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Sequence

from web3 import Web3

from stress_workload.config import TransferConfig
from stress_workload.models import Batch, SenderIdentity, SubmitFailure
from stress_workload.sender import NonceOrderedSender

log = logging.getLogger("stress_workload.batch")


@dataclass(frozen=True, slots=True)
class Triple:
    index: int
    sender: SenderIdentity
    recipient: str
    amount: int  # wei


def sender_index(index: int, pool_size: int) -> int:
    return index % pool_size


def recipient_index(batch_number: int, batch_size: int, index: int, pool_size: int) -> int:
    # Keeps rotating across batches instead of starting over at recipient 0
    return (batch_number * batch_size + index) % pool_size


def select_triples(
    batch_number: int,
    senders: Sequence[SenderIdentity],
    recipients: Sequence[str],
    transfer: TransferConfig,
    size: int,
) -> list[Triple]:
    if not senders or not recipients:
        raise ValueError("sender and recipient pools must not be empty")
    return [
        Triple(
            index=i,
            sender=senders[sender_index(i, len(senders))],
            recipient=recipients[recipient_index(batch_number, size, i, len(recipients))],
            amount=transfer.amount_for(i),
        )
        for i in range(size)
    ]


async def compose_batch(
    sender: NonceOrderedSender,
    batch: Batch,
    triples: Sequence[Triple],
    *,
    submit_pause: float,
) -> Batch:
    """Submit every triple in order. A failed submission is recorded and the batch moves on."""
    for n, t in enumerate(triples):
        try:
            record = await sender.send(t.sender, t.recipient, t.amount, batch_number=batch.number)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error("  ✗ TX #%s: Failed - %s: %s", t.index + 1, type(e).__name__, e)
            batch.add_failure(
                SubmitFailure(index=t.index, sender_label=t.sender.label, to_address=t.recipient, message=str(e))
            )
        else:
            log.info(
                "  ✓ TX #%s: %s (%s -> %s... %s ETH nonce: %s)",
                t.index + 1, record.tx_hash, t.sender.label, t.recipient[:10],
                Web3.from_wei(t.amount, "ether"), record.nonce,
            )
            batch.add_record(record)

        if submit_pause and n < len(triples) - 1:
            await asyncio.sleep(submit_pause)

    log.info("  Batch result: %s success, %s failed", batch.success, batch.failed)
    return batch
