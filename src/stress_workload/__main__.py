import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

import uvicorn

from stress_workload.config import ConfigError, WorkloadConfig, load_config
from stress_workload.logging_config import session_log_file, setup_logging
from stress_workload.node import Web3LedgerClient, probe_node
from stress_workload.workload import Workload, WorkloadStartupError

log = logging.getLogger("stress_workload")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="stress-workload", description="Periodic transfer load against a JSON-RPC ledger node.")
    parser.add_argument("-c", "--config",
                        type=Path,
                        help="Path to the TOML config (default: bundled config.toml or $WORKLOAD_CONFIG).",
                        )
    parser.add_argument("--headless",
                        action="store_true",
                        help="Run the session without the status API and exit when it ends.",
                        )
    parser.add_argument("--host",
                        default="0.0.0.0",
                        help="Status API bind address.",
                        )
    parser.add_argument("-p", "--port",
                        type=int,
                        default=8000,
                        help="Status API port.",
                        )
    return parser.parse_args(argv)


async def run_headless(config: WorkloadConfig) -> int:
    log_file = session_log_file(config.output.log_dir)
    setup_logging(log_file)

    try:
        await probe_node(config.node.rpc_url, config.startup.max_retries, config.startup.retry_delay)
    except Exception as e:
        log.error("Error connecting to network: %s: %s", type(e).__name__, e)
        return 1

    client = Web3LedgerClient(
        config.node.rpc_url,
        rpc_timeout=config.node.rpc_timeout,
        submit_timeout=config.node.submit_timeout,
    )
    workload = Workload(config, client, log_file=log_file)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, workload.request_stop)

    try:
        await workload.run()
    except WorkloadStartupError:
        return 1
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        await client.close()
    return 0


def main(argv=None):
    args = parse_args(argv)
    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    if args.headless:
        sys.exit(asyncio.run(run_headless(config)))

    from stress_workload.app import app

    app.state.config = config
    uvicorn.run(app, host=args.host, port=args.port, lifespan="on")


if __name__ == "__main__":
    main()
