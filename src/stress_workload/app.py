import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import APIRouter, FastAPI, HTTPException
from pydantic import BaseModel

from stress_workload.config import load_config
from stress_workload.logging_config import session_log_file, setup_logging
from stress_workload.node import Web3LedgerClient, probe_node
from stress_workload.workload import Workload
import stress_workload.constants as C

log = logging.getLogger("stress_workload.app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = getattr(app.state, "config", None) or load_config()
    log_file = session_log_file(config.output.log_dir)
    setup_logging(log_file)

    # Startup probes to make sure the node is up. Failing here aborts startup.
    log.info("Probing RPC endpoint %s...", config.node.rpc_url)
    await probe_node(config.node.rpc_url, config.startup.max_retries, config.startup.retry_delay)

    client = Web3LedgerClient(
        config.node.rpc_url,
        rpc_timeout=config.node.rpc_timeout,
        submit_timeout=config.node.submit_timeout,
    )
    workload = Workload(config, client, log_file=log_file)
    app.state.workload = workload
    try:
        await workload.start()

        async with asyncio.TaskGroup() as tg:
            tg.create_task(workload.run_session(), name="session")
            log.info("Session running. Log file: %s", log_file)
            try:
                yield
            finally:
                # The tick in progress finishes, only the next one is skipped
                log.info("Shutting down...")
                workload.request_stop()
    finally:
        await client.close()

    log.info("Shutdown complete")


app = FastAPI(
    title="Ledger Stress Workload",
    lifespan=lifespan,
    openapi_tags=[
        {"name": "State", "description": "Session statistics and tracked transactions"},
        {"name": "Workload", "description": "Session control"},
    ],
)

r_state = APIRouter(prefix="/state", tags=["State"])
r_workload = APIRouter(prefix="/workload", tags=["Workload"])


class BatchSummary(BaseModel):
    batch: int
    timestamp: str
    success: int
    failed: int
    confirmed: int


class WorkloadStatus(BaseModel):
    state: str
    total_batches: int | None
    batches_completed: int
    current_batch: int | None
    next_batch_at: str | None
    stop_requested: bool


class FeeResp(BaseModel):
    gas_price: int
    gwei: str
    reported: int | None
    fallback: bool


def _workload() -> Workload:
    w = getattr(app.state, "workload", None)
    if w is None:
        raise HTTPException(status_code=503, detail="Workload not initialized")
    return w


@app.get("/health")
def health():
    return {"status": "ok"}


@r_state.get("/summary")
async def state_summary():
    return _workload().stats.snapshot()


@r_state.get("/batches", response_model=list[BatchSummary])
async def state_batches(limit: int = 20):
    batches = _workload().stats.batches
    return [b.summary() for b in batches[-limit:]] if limit > 0 else []


@r_state.get("/batches/{number}")
async def state_batch(number: int):
    batch = _workload().stats.get_batch(number)
    if batch is None:
        raise HTTPException(404, f"batch {number} not sealed yet")
    return batch.to_dict()


@r_state.get("/tx/{tx_hash}")
async def state_tx(tx_hash: str):
    wanted = tx_hash.lower()
    for batch in _workload().stats.batches:
        for record in batch.records:
            if record.tx_hash.lower() == wanted:
                return record.to_dict()
    raise HTTPException(404, "tx not tracked")


@r_state.get("/senders")
async def state_senders():
    w = _workload()
    senders = w.sender.snapshot_accounts(w.config.senders)
    for s in senders:
        balance = w.balances.get(s["address"])
        s["starting_balance"] = str(balance) if balance is not None else None
    return {"count": len(senders), "senders": senders}


@r_state.get("/fees", response_model=FeeResp)
async def state_fees():
    """Gas price the next submission would use."""
    fee = await _workload().sender.current_fee()
    return {"gas_price": fee.gas_price, "gwei": fee.gwei, "reported": fee.reported, "fallback": fee.fallback}


@r_workload.get("/status", response_model=WorkloadStatus)
async def workload_status():
    return _workload().snapshot_status()


@r_workload.post("/stop", response_model=WorkloadStatus)
async def stop_workload():
    """Stop scheduling batches. A batch in flight still completes."""
    w = _workload()
    if w.state != C.SessionState.RUNNING:
        raise HTTPException(status_code=400, detail="Workload not running")
    w.request_stop()
    return w.snapshot_status()


app.include_router(r_state)
app.include_router(r_workload)
