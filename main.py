"""Main entry point for the event collector service."""

import argparse
import asyncio
import signal
import sys

import structlog
import uvicorn

from event_collector.api import create_app
from event_collector.config import ConfigError, ConfigProvider
from event_collector.log_setup import configure_logging
from event_collector.scheduler import CollectorService

logger = structlog.get_logger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Periodically collect log records into one output file")
    parser.add_argument("--config", help="Configuration file (default: config/collector.yaml)")
    parser.add_argument("--verbose", action="store_true", help="Debug logging, regardless of configuration")
    parser.add_argument("--no-api", action="store_true", help="Run without the HTTP status endpoints")
    parser.add_argument("--host", default="127.0.0.1", help="Status API bind address (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8000, help="Status API port (default: 8000)")
    return parser.parse_args(argv)


async def run_service(service: CollectorService):
    """Run the service alone until a signal arrives or it stops itself."""
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: asyncio.ensure_future(service.stop()))

    await service.start()
    await service.wait_stopped()


async def run_with_api(service: CollectorService, host: str, port: int):
    """Serve the status API; the service starts and stops with the server."""
    server = uvicorn.Server(uvicorn.Config(create_app(service), host=host, port=port, log_level="warning"))
    serving = asyncio.ensure_future(server.serve())
    stopped = asyncio.ensure_future(service.wait_stopped())

    await asyncio.wait({serving, stopped}, return_when=asyncio.FIRST_COMPLETED)
    server.should_exit = True
    await serving
    stopped.cancel()


def main(argv=None) -> int:
    args = parse_args(argv)
    configure_logging("DEBUG" if args.verbose else "INFO")

    try:
        provider = ConfigProvider(args.config)
        service = CollectorService(provider, force_verbose=args.verbose)
    except ConfigError as e:
        logger.critical("Cannot read configuration", error=str(e))
        return 1

    configure_logging(service.log_level, service.config.log_file)
    logger.info("Starting event collector", config=str(provider.config_path))

    if args.no_api:
        asyncio.run(run_service(service))
    else:
        asyncio.run(run_with_api(service, args.host, args.port))

    return 1 if service.fatal_error else 0


if __name__ == "__main__":
    sys.exit(main())
