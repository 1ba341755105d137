from typing import Final
from enum import StrEnum

# Plain value transfer, no calldata
TRANSFER_GAS_LIMIT: Final = 21_000
FALLBACK_GAS_PRICE_GWEI: Final = 10

DEFAULT_TX_PER_BATCH: Final = 10
DEFAULT_INTERVAL_MINUTES: Final = 10
DEFAULT_SUBMIT_PAUSE: Final = 0.5   # seconds between submissions inside a batch
DEFAULT_SETTLE_DELAY: Final = 3.0   # seconds between the last submission and the receipt check
RECENT_BATCHES: Final = 5    # batches kept in the stats snapshot

RPC_TIMEOUT: Final = 5.0
SUBMIT_TIMEOUT: Final = 20.0
PROBE_RETRIES: Final = 30
PROBE_RETRY_DELAY: Final = 2.0


class TxState(StrEnum):
    PENDING       = "PENDING"
    CONFIRMED     = "CONFIRMED"
    FAILED        = "FAILED"
    SUBMIT_FAILED = "SUBMIT_FAILED"


class SessionState(StrEnum):
    IDLE        = "IDLE"
    RUNNING     = "RUNNING"
    INTERRUPTED = "INTERRUPTED"
    COMPLETED   = "COMPLETED"
    FAILED      = "FAILED"


__all__ = [
    "DEFAULT_INTERVAL_MINUTES",
    "DEFAULT_SETTLE_DELAY",
    "DEFAULT_SUBMIT_PAUSE",
    "DEFAULT_TX_PER_BATCH",
    "FALLBACK_GAS_PRICE_GWEI",
    "PROBE_RETRIES",
    "PROBE_RETRY_DELAY",
    "RECENT_BATCHES",
    "RPC_TIMEOUT",
    "SUBMIT_TIMEOUT",
    "TRANSFER_GAS_LIMIT",

    ######
    "TxState",
    "SessionState",
]
