import asyncio
import json
import logging

import pytest
from web3 import Web3

from stress_workload.workload import Workload, WorkloadStartupError
import stress_workload.constants as C

from conftest import SENDERS, FakeLedger

# Powers of two keep duration // interval exact
TICK = 2 ** -10  # minutes, ~60ms


async def _wait_for(predicate, timeout=5.0):
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


async def test_bounded_session_completes(ledger, make_config):
    config = make_config(interval_minutes=TICK, duration_minutes=3 * TICK)
    workload = Workload(config, ledger)

    state = await workload.run()

    assert state == C.SessionState.COMPLETED
    assert workload.total_batches == 3
    assert [b.number for b in workload.stats.batches] == [1, 2, 3]
    assert ledger.attempts == 30
    snap = json.loads(config.output.stats_file.read_text())
    assert snap["batches_completed"] == 3
    assert snap["total_transactions_sent"] == 30
    assert snap["confirmation_rate"] == "100.00%"
    assert "   Stress Test Summary (COMPLETED)" in workload.summary


async def test_session_counters_stay_consistent(ledger, make_config):
    ledger.fail_attempts = {2, 13}
    ledger.no_receipt = {0}
    ledger.reverted = {20}
    config = make_config(interval_minutes=TICK, duration_minutes=3 * TICK)
    workload = Workload(config, ledger)
    await workload.run()

    stats = workload.stats
    assert stats.sent == 30
    assert stats.failed == 2
    assert stats.success + stats.failed == stats.sent
    assert stats.confirmed == 26
    for batch in stats.batches:
        assert batch.sealed
        assert batch.success + batch.failed == batch.size
        assert batch.confirmed <= batch.success
    for identity in SENDERS:
        used = ledger.nonces_used(identity.address)
        assert used == list(range(len(used)))


async def test_stop_during_interval_wait(ledger, make_config):
    config = make_config(interval_minutes=10, duration_minutes=60)
    workload = Workload(config, ledger)
    await workload.start()
    task = asyncio.create_task(workload.run_session())

    await _wait_for(lambda: workload.next_batch_at is not None)
    assert workload.snapshot_status()["next_batch_at"] is not None
    workload.request_stop()
    async with asyncio.timeout(5):
        state = await task

    assert state == C.SessionState.INTERRUPTED
    assert len(workload.stats.batches) == 1
    assert ledger.attempts == 10
    snap = json.loads(config.output.stats_file.read_text())
    assert snap["batches_completed"] == 1
    assert snap["total_transactions_sent"] == 10
    assert "   Stress Test Summary (INTERRUPTED)" in workload.summary
    assert workload.snapshot_status()["stop_requested"]


async def test_interrupted_summary_has_same_fields_as_completed(ledger, make_config):
    done = Workload(make_config(interval_minutes=TICK, duration_minutes=TICK), ledger)
    await done.run()

    stopped = Workload(make_config(interval_minutes=10), ledger)
    ledger.on_send = lambda attempt: stopped.request_stop()
    await stopped.run()

    def fields(lines):
        return [line.split(":")[0] for line in lines if ":" in line and "Stats file" not in line]

    assert done.state == C.SessionState.COMPLETED
    assert stopped.state == C.SessionState.INTERRUPTED
    assert fields(done.summary) == fields(stopped.summary)


async def test_stop_mid_batch_finishes_the_batch(ledger, make_config):
    config = make_config(interval_minutes=10)
    workload = Workload(config, ledger)

    def stop_at_fourth(attempt):
        if attempt == 3:
            workload.request_stop()

    ledger.on_send = stop_at_fourth
    state = await workload.run()

    assert state == C.SessionState.INTERRUPTED
    assert ledger.attempts == 10
    assert len(workload.stats.batches) == 1
    assert workload.stats.batches[0].confirmed == 10


async def test_unreachable_node_is_fatal(ledger, config):
    ledger.unreachable = True
    workload = Workload(config, ledger)

    with pytest.raises(WorkloadStartupError):
        await workload.run()

    assert workload.state == C.SessionState.FAILED
    assert ledger.attempts == 0
    assert not config.output.stats_file.exists()


async def test_wrong_chain_is_fatal(make_config):
    ledger = FakeLedger(chain_id=1)
    workload = Workload(make_config(), ledger)
    with pytest.raises(WorkloadStartupError, match="chain id"):
        await workload.start()
    assert workload.state == C.SessionState.FAILED
    assert ledger.attempts == 0


async def test_run_session_requires_start(ledger, config):
    workload = Workload(config, ledger)
    with pytest.raises(RuntimeError):
        await workload.run_session()
    assert workload.state == C.SessionState.IDLE


async def test_start_twice_rejected(ledger, config):
    workload = Workload(config, ledger)
    await workload.start()
    with pytest.raises(RuntimeError):
        await workload.start()


async def test_duration_shorter_than_interval_sends_nothing(ledger, make_config):
    workload = Workload(make_config(interval_minutes=10, duration_minutes=5), ledger)
    state = await workload.run()

    assert workload.total_batches == 0
    assert state == C.SessionState.COMPLETED
    assert ledger.attempts == 0


async def test_preflight_records_balances(ledger, config):
    ledger.balances = {SENDERS[0].address: Web3.to_wei(3, "ether")}
    workload = Workload(config, ledger)
    await workload.preflight()
    assert workload.balances == {
        SENDERS[0].address: Web3.to_wei(3, "ether"),
        SENDERS[1].address: Web3.to_wei(100_000, "ether"),
    }


async def test_low_balance_only_warns(ledger, make_config, caplog):
    ledger.balances = {s.address: 1 for s in SENDERS}
    workload = Workload(make_config(duration_minutes=480), ledger)
    with caplog.at_level(logging.WARNING, logger="stress_workload"):
        await workload.start()
    assert workload.state == C.SessionState.RUNNING
    assert "insufficient" in caplog.text


def test_estimated_cost(ledger, make_config):
    workload = Workload(make_config(duration_minutes=30), ledger)
    per_tx_gas = 21_000 * Web3.to_wei(10, "gwei")
    assert workload.estimated_cost() == 3 * 10 * (Web3.to_wei("0.01", "ether") + per_tx_gas)
    assert Workload(make_config(), ledger).estimated_cost() is None


async def test_batch_numbers_and_recipient_rotation(ledger, make_config):
    workload = Workload(make_config(), ledger)
    first = await workload.run_batch(1)
    second = await workload.run_batch(2)

    assert (first.number, second.number) == (1, 2)
    # batch 2 picks up where batch 1 left off in the recipient pool
    recipients = workload.config.recipients
    assert first.records[-1].to_address == recipients[(1 * 10 + 9) % 3]
    assert second.records[0].to_address == recipients[(2 * 10) % 3]
    assert workload.current_batch is None


async def test_start_logs_run_configuration(ledger, make_config, caplog):
    workload = Workload(make_config(duration_minutes=480), ledger, log_file=None)
    with caplog.at_level(logging.INFO, logger="stress_workload"):
        await workload.start()

    text = caplog.text
    assert "RPC URL: http://node.invalid:9545" in text
    assert "Chain ID: 4093" in text
    assert "Interval: 10 minutes" in text
    assert "Duration: 480 minutes" in text
    assert "Transactions per batch: 10" in text
    assert "Senders: 2 accounts (User 4, User 5)" in text
    assert "Recipients: 3 accounts" in text
    # The configuration block comes before the preflight checks
    assert text.index("RPC URL") < text.index("Connected to network")
    for identity in SENDERS:
        assert identity.private_key[2:] not in text
