"""
Main application entry point.
Configures logging, applies command-line overrides and runs the lifecycle coordinator.
"""
import argparse
import asyncio
import logging
import sys

from tsgateway.config import Settings, settings
from tsgateway.lifecycle import LifecycleCoordinator
from tsgateway.middleware.request_id import RequestIdLogFilter

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"

logger = logging.getLogger(__name__)


def configure_logging(level: str):
    """Configure logging for stdout collectors, tagging lines with the request id."""
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIdLogFilter())
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[handler],
        force=True,
    )


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Time-series query gateway")
    parser.add_argument("--host", help="Listen address")
    parser.add_argument("--port", type=int, help="Listen port")
    parser.add_argument("--cache-size", type=int, help="Size of the LRU response cache")
    parser.add_argument("--rate-limit", type=float, help="Sustained rate limit in requests per second")
    parser.add_argument("--rate-limit-burst", type=int, help="Maximum burst size for rate limiting")
    parser.add_argument("--conn-string", dest="database_url", help="Database connection URL")
    parser.add_argument("--upstream-url", help="Upstream series API URL")
    parser.add_argument("--log-level", help="Logging level")
    return parser.parse_args(argv)


def apply_overrides(base: Settings, args: argparse.Namespace) -> Settings:
    """Return settings with every flag that was given on the command line applied."""
    overrides = {key: value for key, value in vars(args).items() if value is not None}
    if not overrides:
        return base
    return base.model_copy(update=overrides)


def main(argv=None):
    """Run the application."""
    config = apply_overrides(settings, parse_args(argv))
    configure_logging(config.log_level)

    logger.info(
        "Configuration loaded",
        extra={
            "host": config.host,
            "port": config.port,
            "log_level": config.log_level,
            "cache_size": config.cache_size,
            "rate_limit": config.rate_limit,
            "rate_limit_burst": config.rate_limit_burst,
            "upstream_url": config.upstream_url,
            "ingestion_interval_seconds": config.ingestion_interval_seconds,
            "db_pool_size": config.db_pool_size,
        },
    )

    exit_code = asyncio.run(LifecycleCoordinator(config).run())
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
