import asyncio
import logging

from stress_workload.models import Batch, TransactionRecord
from stress_workload.node import LedgerClient
import stress_workload.constants as C

log = logging.getLogger("stress_workload.finality")

RECEIPT_SUCCESS = 1
RECEIPT_REVERTED = 0


async def check_receipt(client: LedgerClient, record: TransactionRecord) -> C.TxState:
    """Query one receipt and classify the record. No receipt or a query error leaves it PENDING."""
    try:
        receipt = await client.get_receipt(record.tx_hash)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        log.debug("Receipt lookup failed for %s: %s: %s", record.tx_hash, type(e).__name__, e)
        return record.state

    if receipt is None:
        return record.state

    status = receipt.get("status")
    block = receipt.get("blockNumber")
    if status == RECEIPT_SUCCESS:
        record.classify(C.TxState.CONFIRMED, block)
    elif status == RECEIPT_REVERTED:
        log.warning("  TX %s reverted in block %s", record.tx_hash, block)
        record.classify(C.TxState.FAILED, block)
    else:
        log.warning("Receipt for %s has no usable status (%r), leaving it pending", record.tx_hash, status)
    return record.state


async def poll_batch(client: LedgerClient, batch: Batch, *, settle_delay: float, retries: int = 0) -> int:
    """Wait for the settle delay, then check every receipt of the batch once.

    With retries > 0, records still pending are checked again up to that many
    more times, each round after another settle delay. Returns the number of
    confirmed transactions, which is also stored on the batch.
    """
    pending = list(batch.records)
    for attempt in range(retries + 1):
        if not pending:
            break
        if settle_delay:
            await asyncio.sleep(settle_delay)
        for record in pending:
            await check_receipt(client, record)
        pending = [r for r in pending if r.state == C.TxState.PENDING]
        if pending and attempt < retries:
            log.debug("  %s receipts outstanding, re-checking (%s/%s)", len(pending), attempt + 1, retries)

    batch.confirmed = sum(1 for r in batch.records if r.state == C.TxState.CONFIRMED)
    if batch.records:
        log.info(
            "  Confirmed: %s/%s transactions (%s reverted, %s pending)",
            batch.confirmed, len(batch.records), batch.reverted, batch.pending,
        )
    return batch.confirmed
