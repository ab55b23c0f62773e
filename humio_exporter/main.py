#!/usr/bin/env python3
"""
humio_exporter

Flow:
- load exporter settings (optional --settings YAML, then CLI flags) and the queries file
- declare one gauge per configured metric
- serve /metrics and health probes with uvicorn in a background thread
- start a live Humio query job per query and poll them every --poll-interval seconds
- on SIGINT/SIGTERM stop all query jobs and exit 0; on any fatal error exit 1
"""

import argparse
import asyncio
import logging
import signal
import threading
import time
from pathlib import Path
from typing import List, Optional

import uvicorn

from .config import ExporterConfig, load_queries, parse_listen_address
from .errors import ConfigurationError, ExporterError
from .http_client import HumioClient
from .poller import QueryPoller
from .registry import MetricRegistry
from .server import create_app

logger = logging.getLogger("humio_exporter")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
SERVER_STARTUP_TIMEOUT = 10.0


async def start_http_server(registry: MetricRegistry, listen_address: str, log_level: str) -> uvicorn.Server:
    """
    Run the FastAPI app in a daemon thread and wait until it is listening.

    uvicorn only installs signal handlers on the main thread, so SIGINT/SIGTERM
    stay with the poll loop.
    """
    host, port = parse_listen_address(listen_address)
    server = uvicorn.Server(uvicorn.Config(
        create_app(registry),
        host=host,
        port=port,
        log_level=log_level.lower(),
        access_log=False,
    ))
    thread = threading.Thread(target=server.run, name="http-server", daemon=True)
    thread.start()

    deadline = time.monotonic() + SERVER_STARTUP_TIMEOUT
    while not server.started:
        if not thread.is_alive() or time.monotonic() > deadline:
            raise ConfigurationError(f"failed to listen on {listen_address}")
        await asyncio.sleep(0.05)
    logger.info("Listening on %s", listen_address)
    return server


def declare_metrics(registry: MetricRegistry, queries) -> None:
    for query in queries:
        registry.declare(query.metric_name, query.labels)


async def run_exporter(config: ExporterConfig, stop_event: Optional[asyncio.Event] = None) -> int:
    """Wire everything together and poll until stopped. Returns the exit code."""
    queries = load_queries(Path(config.config))
    registry = MetricRegistry()
    declare_metrics(registry, queries)
    client = HumioClient(config.humio_url, config.api_token, config.timeout)

    poller = QueryPoller(
        client,
        registry,
        queries,
        poll_interval=config.poll_interval,
        isolate_job_failures=config.isolate_job_failures,
        cancel_timeout=config.timeout * 2,
    )

    # handlers go in before the server starts so an early signal still stops cleanly
    stop_event = stop_event or asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _on_signal, sig, stop_event)

    server = None
    try:
        server = await start_http_server(registry, config.listen_address, config.log_level)
        await poller.run(stop_event)
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        if server is not None:
            server.should_exit = True
    return 0


def _on_signal(sig: signal.Signals, stop_event: asyncio.Event) -> None:
    logger.info("received os signal '%s'", sig.name)
    stop_event.set()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="humio_exporter",
        description="Humio exporter for Prometheus. Provide your Humio API token and "
                    "configuration file with queries to expose as Prometheus metrics.",
    )
    parser.add_argument("--config", help="queries configuration file (YAML)")
    parser.add_argument("--settings", type=Path,
                        help="optional YAML file with exporter settings; flags take precedence")
    parser.add_argument("--humio.url", dest="humio_url", help="Humio base API url")
    parser.add_argument("--humio.api-token", dest="api_token",
                        help="Humio API token (default: $HUMIO_API_TOKEN)")
    parser.add_argument("--humio.timeout", dest="timeout", type=int,
                        help="timeout in seconds for requests against the Humio API (default: 10)")
    parser.add_argument("--web.listen-address", dest="listen_address",
                        help="address on which to expose metrics (default: :9534)")
    parser.add_argument("--poll-interval", dest="poll_interval", type=float,
                        help="seconds between polling passes (default: 5)")
    parser.add_argument("--isolate-job-failures", dest="isolate_job_failures",
                        action="store_true", default=None,
                        help="keep polling other queries when one query fails")
    parser.add_argument("--log-level", dest="log_level",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="logging level")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = ExporterConfig.from_file(args.settings).override_with_args(args).validate()
    except ConfigurationError as e:
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
        logger.error("humio_exporter exited due to error: %s", e)
        return 1

    logging.basicConfig(level=getattr(logging, config.log_level.upper(), logging.INFO), format=LOG_FORMAT)
    logger.info(f"humio_exporter starting: url={config.humio_url}, queries={config.config}, "
                f"listen={config.listen_address}")

    try:
        code = asyncio.run(run_exporter(config))
    except ExporterError as e:
        logger.error("humio_exporter exited due to error: %s", e)
        return 1
    except Exception as e:
        logger.exception("humio_exporter exited due to unexpected error: %s", e)
        return 1

    logger.info("humio_exporter exited with exit %d", code)
    return code


if __name__ == "__main__":
    raise SystemExit(main())
