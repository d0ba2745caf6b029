#!/usr/bin/env python3
"""
check-service-certs - Main Application Entry Point
"""

import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

import click

from check_service_certs import __build__, __version__
from check_service_certs.config import Config, ConfigurationError, load_config
from check_service_certs.logger import get_logger, setup_logging
from check_service_certs.orchestrator import CheckOrchestrator, RunSummary
from check_service_certs.services import discover_services


class CheckServiceCerts:
    """Main application class for check-service-certs."""

    def __init__(
        self,
        config_path: Optional[str] = None,
        service: Optional[str] = None,
        test_mode: bool = False,
    ):
        self.config: Optional[Config] = None
        self.orchestrator: Optional[CheckOrchestrator] = None
        self.config_path = config_path
        self.service = service
        self.test_mode = test_mode
        self._shutdown_event: Optional[asyncio.Event] = None
        self.logger = get_logger("main")

    def initialize(self) -> None:
        """Load configuration and set up logging."""
        self.config = load_config(self.config_path)
        setup_logging(self.config)
        self.logger.info(f"Using config file {self.config.config_file}")

        if self.test_mode:
            self.logger.info("Running in test mode")

    async def run(self) -> RunSummary:
        """Discover services, check their certificates and send notifications."""
        if self.config is None:
            self.initialize()

        # At this point, config is guaranteed to be set by initialize()
        assert self.config is not None, "Config should be initialized"

        self._shutdown_event = asyncio.Event()
        self._install_signal_handlers()

        self.orchestrator = CheckOrchestrator(self.config, test_mode=self.test_mode)
        try:
            services = await discover_services(self.config, self.service)
            return await self.orchestrator.execute(services, shutdown_event=self._shutdown_event)
        finally:
            self._remove_signal_handlers()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self._signal_handler, sig)
            except (NotImplementedError, RuntimeError):
                # Not supported on Windows event loops
                signal.signal(
                    sig,
                    lambda signum, frame: loop.call_soon_threadsafe(self._signal_handler, signum),
                )

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                signal.signal(sig, signal.SIG_DFL)

    def _signal_handler(self, signum: int) -> None:
        """Handle shutdown signals."""
        self.logger.info(f"Received signal {signum}, stopping run")
        if self._shutdown_event is not None:
            self._shutdown_event.set()


@click.command()
@click.option(
    "--configfile",
    "-c",
    type=click.Path(path_type=Path),
    help="Specify alternate config file",
)
@click.option("--service", "-s", help="Specify service to run check on")
@click.option(
    "--test",
    "-t",
    "test_mode",
    is_flag=True,
    help="Test mode. Check certs, but do not send notifications",
)
@click.option("--version", is_flag=True, help="Show version information")
def main(
    configfile: Optional[Path], service: Optional[str], test_mode: bool, version: bool
) -> None:
    """Check service certificates and notify administrators about expiring ones."""

    if version:
        print(f"check-service-certs version {__version__}, build {__build__}")
        return

    app = CheckServiceCerts(
        str(configfile) if configfile else None, service=service, test_mode=test_mode
    )

    try:
        app.initialize()
    except ConfigurationError as e:
        print(f"Fatal error reading in config file: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        asyncio.run(app.run())
    except KeyboardInterrupt:
        print("\nShutdown requested by user")


if __name__ == "__main__":
    main()
