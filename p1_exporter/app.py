"""
P1 Exporter - Application

Wires the metrics store, the meter collector and the metrics server together
and runs them until the process is asked to stop.

Usage:
    p1-exporter --p1-address 192.168.1.50:23 [--address 127.0.0.1:4545] [--config CONFIG_PATH]
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import Any, Dict, List, Optional

import structlog

from . import __version__
from .collector import MeterCollector
from .config import DEFAULT_LISTEN_ADDRESS, apply_overrides, load_config, parse_address, validate_config
from .errors import ConfigError
from .exporter import MetricsServer
from .metrics import MetricsStore, build_registry

logger = structlog.get_logger(__name__)


def configure_logging(level: str = "INFO", fmt: str = "json") -> None:
    """Configure structured logging."""
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level.upper())

    renderer = structlog.dev.ConsoleRenderer() if fmt == "console" else structlog.processors.JSONRenderer()
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class P1Exporter:
    """Main exporter application."""

    def __init__(self, config: Dict[str, Any]):
        self.config = config
        self._shutdown_event = asyncio.Event()
        self._stop_task: Optional[asyncio.Future] = None

        self.store = MetricsStore()
        self.registry = build_registry(self.store, prefix=config["exporter"].get("prefix", "p1"))

        meter_host, meter_port = parse_address(config["meter"]["address"])
        collector_config = config["collector"]
        self.collector = MeterCollector(
            self.store,
            meter_host,
            meter_port,
            retry_delay=float(collector_config["retry_delay"]),
            read_timeout=float(collector_config["read_timeout"]),
            connect_timeout=float(collector_config["connect_timeout"]),
            max_telegram_size=int(collector_config["max_telegram_size"]),
        )

        listen_host, listen_port = parse_address(config["exporter"]["address"])
        self.server = MetricsServer(self.registry, host=listen_host, port=listen_port)

    async def start(self) -> None:
        """Start collecting and serving, then wait for shutdown."""
        logger.info("Starting P1 exporter", version=__version__)

        await self.collector.start()
        await self.server.start()

        logger.info("P1 exporter started successfully")
        await self._shutdown_event.wait()

    async def stop(self) -> None:
        """Stop both tasks. Metrics are not drained."""
        logger.info("Stopping P1 exporter")

        await self.server.stop()
        await self.collector.stop()

        self._shutdown_event.set()
        logger.info("P1 exporter stopped")

    def handle_signal(self, signum: int) -> None:
        """Handle shutdown signals."""
        logger.info("Received signal", signal=signum)
        if self._stop_task is None:
            self._stop_task = asyncio.ensure_future(self.stop())


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="p1-exporter",
        description="Export DSMR P1 smart meter readings as OpenMetrics",
    )
    parser.add_argument(
        "--address", "-a",
        default=None,
        help=f"Address to listen on (default: {DEFAULT_LISTEN_ADDRESS})",
    )
    parser.add_argument(
        "--p1-address", "-p",
        default=None,
        help="P1 reader address as host:port",
    )
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="Path to configuration file",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> Dict[str, Any]:
    """Merge the config file with command line arguments."""
    config = load_config(args.config)
    config = apply_overrides(
        config,
        exporter__address=args.address,
        meter__address=args.p1_address,
        logging__level=args.log_level,
    )
    validate_config(config)
    return config


async def run(config: Dict[str, Any]) -> None:
    exporter = P1Exporter(config)

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(signum, exporter.handle_signal, signum)

    await exporter.start()


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    try:
        config = build_config(args)
    except ConfigError as e:
        print(f"p1-exporter: error: {e}", file=sys.stderr)
        return 2

    configure_logging(config["logging"]["level"], config["logging"].get("format", "json"))

    try:
        asyncio.run(run(config))
    except Exception as e:
        logger.exception("Exporter failed", error=str(e))
        return 1
    return 0
