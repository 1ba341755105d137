import asyncio
import contextlib
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from web3 import Web3

from stress_workload.batch import compose_batch, select_triples
from stress_workload.config import WorkloadConfig
from stress_workload.finality import poll_batch
from stress_workload.models import Batch
from stress_workload.node import LedgerClient
from stress_workload.sender import NonceOrderedSender
from stress_workload.stats import SessionStats, StatsReporter
import stress_workload.constants as C

log = logging.getLogger("stress_workload.core")


class WorkloadStartupError(RuntimeError):
    """The node or the sender accounts failed the startup checks. Nothing was sent."""


class Workload:
    """Session scheduler: IDLE -> RUNNING -> (COMPLETED | INTERRUPTED).

    One tick composes a batch, polls its receipts, seals it into the session
    stats and rewrites the snapshot. Ticks are spaced by the configured
    interval; `request_stop()` ends the session before the next tick without
    cutting the current one short.
    """

    def __init__(
        self,
        config: WorkloadConfig,
        client: LedgerClient,
        *,
        stats: SessionStats | None = None,
        log_file: Path | None = None,
    ):
        self.config = config
        self.client = client
        self.state = C.SessionState.IDLE
        self.stats = stats or SessionStats()
        self.reporter = StatsReporter(self.stats, config.output.stats_file, log_file)
        self.sender = NonceOrderedSender(
            client,
            chain_id=config.node.chain_id,
            gas_limit=config.transfer.gas_limit,
            fallback_gas_price=config.transfer.fallback_gas_price,
        )
        self.stop = asyncio.Event()
        self.balances: dict[str, int] = {}
        self.current_batch: int | None = None
        self.next_batch_at: datetime | None = None
        self.summary: list[str] | None = None

    @property
    def total_batches(self) -> int | None:
        return self.config.session.total_batches

    def request_stop(self) -> None:
        if not self.stop.is_set():
            log.info("Stop requested, no further batches will be scheduled")
        self.stop.set()

    def estimated_cost(self) -> int | None:
        """Value plus gas at the floor price for the whole bounded session, in wei."""
        total = self.total_batches
        if total is None:
            return None
        s, t = self.config.session, self.config.transfer
        per_batch = sum(t.amount_for(i) for i in range(s.tx_per_batch))
        per_batch += s.tx_per_batch * t.gas_limit * t.fallback_gas_price
        return per_batch * total

    def log_header(self) -> None:
        s, node = self.config.session, self.config.node
        duration = f"{s.duration_minutes} minutes" if s.bounded else "unbounded"
        log.info("Configuration:")
        log.info("  RPC URL: %s", node.rpc_url)
        log.info("  Chain ID: %s", node.chain_id)
        log.info("  Interval: %s minutes", s.interval_minutes)
        log.info("  Duration: %s", duration)
        log.info("  Transactions per batch: %s", s.tx_per_batch)
        log.info(
            "  Senders: %s accounts (%s)",
            len(self.config.senders), ", ".join(i.label for i in self.config.senders),
        )
        log.info("  Recipients: %s accounts", len(self.config.recipients))
        if self.reporter.log_file is not None:
            log.info("  Log file: %s", self.reporter.log_file)
        log.info("  Stats file: %s", self.reporter.stats_file)

    async def preflight(self) -> None:
        """Check the node answers on the right chain and query every sender balance."""
        try:
            chain_id = await self.client.chain_id()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise WorkloadStartupError(f"Error connecting to network: {type(e).__name__}: {e}") from e

        if chain_id != self.config.node.chain_id:
            raise WorkloadStartupError(
                f"Node reports chain id {chain_id}, configured chain id is {self.config.node.chain_id}"
            )
        log.info("Connected to network: Chain ID %s", chain_id)

        log.info("Sender balances:")
        total = 0
        for identity in self.config.senders:
            try:
                balance = await self.client.get_balance(identity.address)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                raise WorkloadStartupError(
                    f"Balance query failed for {identity.label} ({identity.address}): {type(e).__name__}: {e}"
                ) from e
            self.balances[identity.address] = balance
            total += balance
            log.info("  %s: %s ETH (%s)", identity.label, Web3.from_wei(balance, "ether"), identity.address)
        log.info("  Total available: %s ETH", Web3.from_wei(total, "ether"))

        cost = self.estimated_cost()
        if cost is not None:
            log.info("Estimated total cost: %s ETH", Web3.from_wei(cost, "ether"))
            if total < cost:
                log.warning("Total balance may be insufficient for the full session!")

    async def run_batch(self, number: int) -> Batch:
        """One tick: compose, poll, seal, record, flush."""
        s = self.config.session
        self.current_batch = number
        batch = Batch(number=number, size=s.tx_per_batch)
        log.info("[Batch #%s] %s", number, batch.timestamp)

        triples = select_triples(number, self.config.senders, self.config.recipients, self.config.transfer, s.tx_per_batch)
        await compose_batch(self.sender, batch, triples, submit_pause=s.submit_pause)
        await poll_batch(self.client, batch, settle_delay=s.settle_delay, retries=s.receipt_retries)

        batch.seal()
        self.stats.record_batch(batch)
        self.reporter.write_snapshot()
        self.current_batch = None
        return batch

    async def _sleep_interval(self) -> None:
        """Sleep until the next tick, waking early if a stop is requested."""
        seconds = self.config.session.interval_minutes * 60
        self.next_batch_at = datetime.now() + timedelta(seconds=seconds)
        log.info(
            "Waiting %s minutes until next batch (at %s)...",
            self.config.session.interval_minutes, self.next_batch_at.strftime("%H:%M:%S"),
        )
        with contextlib.suppress(TimeoutError):
            async with asyncio.timeout(seconds):
                await self.stop.wait()
        self.next_batch_at = None

    async def start(self) -> None:
        """IDLE -> RUNNING once the startup checks pass. Raises WorkloadStartupError otherwise."""
        if self.state != C.SessionState.IDLE:
            raise RuntimeError(f"workload already {self.state}")
        self.log_header()

        try:
            await self.preflight()
        except WorkloadStartupError as e:
            self.state = C.SessionState.FAILED
            log.error("%s", e)
            raise

        total = self.total_batches
        if total is None:
            log.info("Starting stress test (unbounded, runs until interrupted)")
        else:
            log.info("Starting stress test (%s batches total)", total)
            if total == 0:
                log.warning("Duration is shorter than one interval, nothing to send")
        self.state = C.SessionState.RUNNING

    async def run_session(self) -> C.SessionState:
        """Tick until the last scheduled batch or a stop request, then flush and summarise."""
        if self.state != C.SessionState.RUNNING:
            raise RuntimeError(f"workload is {self.state}, call start() first")
        total = self.total_batches
        number = 0
        try:
            while not self.stop.is_set():
                if total is not None and number >= total:
                    break
                number += 1
                await self.run_batch(number)
                if total is not None and number >= total:
                    break
                await self._sleep_interval()
        finally:
            completed = total is not None and len(self.stats.batches) >= total
            self.state = C.SessionState.COMPLETED if completed else C.SessionState.INTERRUPTED
            if completed:
                log.info("Stress test completed!")
            else:
                log.info("Stopping stress test...")
            self.finish()
        return self.state

    async def run(self) -> C.SessionState:
        await self.start()
        return await self.run_session()

    def finish(self) -> list[str]:
        """Flush the snapshot and log the final summary."""
        self.reporter.write_snapshot()
        self.summary = self.reporter.emit_summary(self.state)
        return self.summary

    def snapshot_status(self) -> dict[str, Any]:
        return {
            "state": self.state.name,
            "total_batches": self.total_batches,
            "batches_completed": len(self.stats.batches),
            "current_batch": self.current_batch,
            "next_batch_at": self.next_batch_at.isoformat(timespec="seconds") if self.next_batch_at else None,
            "stop_requested": self.stop.is_set(),
        }
