import os
import tomllib
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path

from eth_account import Account
from web3 import Web3

import stress_workload.constants as C
from stress_workload.models import SenderIdentity

pkg_root = Path(__file__).parent
config_file = pkg_root / "config.toml"


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class NodeConfig:
    rpc_url: str
    chain_id: int
    rpc_timeout: float = C.RPC_TIMEOUT
    submit_timeout: float = C.SUBMIT_TIMEOUT


@dataclass(frozen=True)
class StartupConfig:
    max_retries: int = C.PROBE_RETRIES
    retry_delay: float = C.PROBE_RETRY_DELAY


@dataclass(frozen=True)
class SessionConfig:
    tx_per_batch: int = C.DEFAULT_TX_PER_BATCH
    interval_minutes: float = C.DEFAULT_INTERVAL_MINUTES
    duration_minutes: float | None = None  # None runs until interrupted
    submit_pause: float = C.DEFAULT_SUBMIT_PAUSE
    settle_delay: float = C.DEFAULT_SETTLE_DELAY
    receipt_retries: int = 0

    @property
    def bounded(self) -> bool:
        return self.duration_minutes is not None

    @property
    def total_batches(self) -> int | None:
        if self.duration_minutes is None:
            return None
        return int(self.duration_minutes // self.interval_minutes)


@dataclass(frozen=True)
class TransferConfig:
    amount: int | None = None  # wei, used when no per-index list is given
    amounts: tuple[int, ...] = ()
    gas_limit: int = C.TRANSFER_GAS_LIMIT
    fallback_gas_price: int = Web3.to_wei(C.FALLBACK_GAS_PRICE_GWEI, "gwei")

    def amount_for(self, index: int) -> int:
        if self.amounts:
            return self.amounts[index % len(self.amounts)]
        return self.amount


@dataclass(frozen=True)
class OutputConfig:
    log_dir: Path = Path("logs")
    stats_file: Path = Path("stress-stats.json")


@dataclass(frozen=True)
class WorkloadConfig:
    node: NodeConfig
    session: SessionConfig
    transfer: TransferConfig
    senders: tuple[SenderIdentity, ...]
    recipients: tuple[str, ...]
    startup: StartupConfig = StartupConfig()
    output: OutputConfig = OutputConfig()


def _ether_to_wei(value, key: str) -> int:
    try:
        wei = Web3.to_wei(Decimal(str(value)), "ether")
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ConfigError(f"{key}: not an ether amount: {value!r}") from e
    if wei <= 0:
        raise ConfigError(f"{key}: amount must be positive, got {value!r}")
    return wei


def _number(value, key: str, kind=float):
    if isinstance(value, bool):
        raise ConfigError(f"{key}: expected a number, got {value!r}")
    try:
        v = kind(value)
    except (TypeError, ValueError, OverflowError) as e:
        raise ConfigError(f"{key}: expected a number, got {value!r}") from e
    # int() would silently drop the fraction of 2.5
    if kind is int and isinstance(value, float) and v != value:
        raise ConfigError(f"{key}: expected a whole number, got {value!r}")
    return v


def _positive(value, key: str, kind=float):
    v = _number(value, key, kind)
    if v <= 0:
        raise ConfigError(f"{key}: must be positive, got {value!r}")
    return v


def _non_negative(value, key: str, kind=float):
    v = _number(value, key, kind)
    if v < 0:
        raise ConfigError(f"{key}: must not be negative, got {value!r}")
    return v


def _address(value, key: str) -> str:
    try:
        return Web3.to_checksum_address(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{key}: invalid address {value!r}") from e


def _sender(raw: dict, idx: int) -> SenderIdentity:
    key = f"senders[{idx}]"
    label = raw.get("label") or f"sender-{idx}"
    private_key = raw.get("private_key")
    if not private_key:
        raise ConfigError(f"{key}: private_key is required")
    try:
        derived = Account.from_key(private_key).address
    except (TypeError, ValueError) as e:
        # Don't echo the key back
        raise ConfigError(f"{key} ({label}): unusable private_key") from e
    address = raw.get("address")
    if address is not None and _address(address, f"{key}.address") != derived:
        raise ConfigError(f"{key} ({label}): address {address} does not match its private_key")
    return SenderIdentity(label=label, private_key=private_key, address=derived)


def parse_config(cfg: dict) -> WorkloadConfig:
    """Turn the raw TOML document into a validated WorkloadConfig."""
    node = cfg.get("node", {})
    rpc_url = os.getenv("RPC_URL", node.get("rpc_url"))
    if not rpc_url:
        raise ConfigError("node.rpc_url is required")
    if "chain_id" not in node:
        raise ConfigError("node.chain_id is required")

    s = cfg.get("session", {})
    duration = s.get("duration_minutes")
    session = SessionConfig(
        tx_per_batch=_positive(s.get("tx_per_batch", C.DEFAULT_TX_PER_BATCH), "session.tx_per_batch", int),
        interval_minutes=_positive(s.get("interval_minutes", C.DEFAULT_INTERVAL_MINUTES), "session.interval_minutes"),
        # 0 / absent means run until interrupted
        duration_minutes=_positive(duration, "session.duration_minutes") if duration else None,
        submit_pause=_non_negative(s.get("submit_pause", C.DEFAULT_SUBMIT_PAUSE), "session.submit_pause"),
        settle_delay=_non_negative(s.get("settle_delay", C.DEFAULT_SETTLE_DELAY), "session.settle_delay"),
        receipt_retries=_non_negative(s.get("receipt_retries", 0), "session.receipt_retries", int),
    )

    t = cfg.get("transfer", {})
    amounts = tuple(_ether_to_wei(a, f"transfer.amounts[{i}]") for i, a in enumerate(t.get("amounts", [])))
    amount = _ether_to_wei(t["amount"], "transfer.amount") if "amount" in t else None
    if not amounts and amount is None:
        raise ConfigError("transfer needs either 'amount' or 'amounts'")
    transfer = TransferConfig(
        amount=amount,
        amounts=amounts,
        gas_limit=_positive(t.get("gas_limit", C.TRANSFER_GAS_LIMIT), "transfer.gas_limit", int),
        fallback_gas_price=Web3.to_wei(
            _positive(t.get("fallback_gas_price_gwei", C.FALLBACK_GAS_PRICE_GWEI), "transfer.fallback_gas_price_gwei"),
            "gwei",
        ),
    )

    senders = tuple(_sender(raw, i) for i, raw in enumerate(cfg.get("senders", [])))
    if not senders:
        raise ConfigError("at least one [[senders]] entry is required")
    recipients = tuple(_address(r, f"recipients[{i}]") for i, r in enumerate(cfg.get("recipients", [])))
    if not recipients:
        raise ConfigError("at least one recipient is required")

    st = cfg.get("startup", {})
    out = cfg.get("output", {})
    return WorkloadConfig(
        node=NodeConfig(
            rpc_url=rpc_url,
            chain_id=_positive(node["chain_id"], "node.chain_id", int),
            rpc_timeout=_positive(node.get("rpc_timeout", C.RPC_TIMEOUT), "node.rpc_timeout"),
            submit_timeout=_positive(node.get("submit_timeout", C.SUBMIT_TIMEOUT), "node.submit_timeout"),
        ),
        session=session,
        transfer=transfer,
        senders=senders,
        recipients=recipients,
        startup=StartupConfig(
            max_retries=_positive(st.get("max_retries", C.PROBE_RETRIES), "startup.max_retries", int),
            retry_delay=_non_negative(st.get("retry_delay", C.PROBE_RETRY_DELAY), "startup.retry_delay"),
        ),
        output=OutputConfig(
            log_dir=Path(out.get("log_dir", "logs")),
            stats_file=Path(out.get("stats_file", "stress-stats.json")),
        ),
    )


def load_config(path: str | Path | None = None) -> WorkloadConfig:
    path = Path(path or os.getenv("WORKLOAD_CONFIG") or config_file)
    try:
        raw = tomllib.loads(path.read_text())
    except FileNotFoundError as e:
        raise ConfigError(f"config file not found: {path}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{path}: {e}") from e
    return parse_config(raw)
