from __future__ import annotations

import argparse
import logging.config
import os
from typing import Any, Dict, List, Optional

import uvicorn

from server.src.core.logging import build_log_config, get_logger

from .config import Settings
from .core.app import create_app

logger = get_logger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Federated sidechain admin dashboard service")
    parser.add_argument("--mainchain", dest="mainchain", help="Mainchain node API base URL")
    parser.add_argument("--sidechain", dest="sidechain", help="Sidechain node API base URL")
    parser.add_argument(
        "--mode",
        dest="mode",
        help="Deployment mode: 50K (multisig federation member) or 10K (miner)",
    )
    parser.add_argument(
        "--interval", dest="interval", type=float, help="Seconds between refresh cycles"
    )
    parser.add_argument(
        "--memory-cache",
        dest="memory_cache",
        action="store_true",
        help="Keep the dashboard cache in memory instead of SQLite",
    )
    parser.add_argument("--host", dest="host", help="API host binding override")
    parser.add_argument("--port", dest="port", type=int, help="API port binding override")
    parser.add_argument(
        "--log-level", dest="log_level", help="Override the API log level (info, debug, ...)",
    )
    parser.add_argument(
        "--log",
        dest="log_overrides",
        action="append",
        default=[],
        help="Per-logger override in NAME:LEVEL form (repeatable). CLI overrides take precedence over DASHBOARD_LOG_OVERRIDES.",
    )
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> Settings:
    overrides: Dict[str, Any] = {}

    if args.mainchain:
        overrides["mainchain_node_url"] = args.mainchain
    if args.sidechain:
        overrides["sidechain_node_url"] = args.sidechain
    if args.mode:
        overrides["deployment_mode"] = args.mode
    if args.interval:
        overrides["refresh_interval_seconds"] = args.interval
    if args.memory_cache:
        overrides["cache_backend"] = "memory"
    if args.host:
        overrides["api_host"] = args.host
    if args.port:
        overrides["api_port"] = args.port
    if args.log_level:
        overrides["api_log_level"] = args.log_level

    # Init kwargs take precedence over env and .env values and get the same validation.
    return Settings(**overrides)


def collect_log_overrides(args: argparse.Namespace) -> List[str]:
    """Env overrides first (comma separated), then CLI ones so they win."""
    env_overrides = os.getenv("DASHBOARD_LOG_OVERRIDES", "")
    pairs = [p.strip() for p in env_overrides.split(",") if p.strip()]
    pairs.extend(args.log_overrides or [])
    return pairs


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    settings = build_settings(args)

    log_config = build_log_config(settings.api_log_level, collect_log_overrides(args))
    logging.config.dictConfig(log_config)

    logger.info(
        "Starting API on %s:%s in %s mode",
        settings.api_host,
        settings.api_port,
        settings.deployment_mode.value,
    )

    app = create_app(settings)

    try:
        uvicorn.run(
            app,
            host=settings.api_host,
            port=settings.api_port,
            log_level=settings.api_log_level,
            log_config=log_config,
        )
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user.")


if __name__ == "__main__":
    main()
