"""
USR Gateway Configurator - Main Entry Point

Runs the local API server by default; `--scan` does a single discovery pass,
prints the gateways found and exits.
"""

import argparse
import asyncio
import json
import logging
import os
import signal
import sys
from pathlib import Path

from config_loader import load_config, setup_logging
from discovery.manager import GatewayDiscovery
from services.configurator_server import ConfiguratorServer

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Discover and configure USR-IOT N510/N720 gateways')
    parser.add_argument(
        '--config', '-c',
        default=os.environ.get('CONFIG_FILE', 'config/config.yaml'),
        help='YAML configuration file (default: $CONFIG_FILE or config/config.yaml)'
    )
    parser.add_argument(
        '--scan',
        action='store_true',
        help='Run one discovery scan, print the result as JSON and exit'
    )
    parser.add_argument(
        '--timeout-ms', '-t',
        type=int,
        default=None,
        help='Scan listening window in milliseconds (default: discovery.timeout_ms)'
    )
    return parser.parse_args(argv)


async def scan_once(config_path: str, timeout_ms=None) -> int:
    config = load_config(config_path)
    setup_logging(config)

    result = await GatewayDiscovery(config).discover(timeout_ms)
    print(json.dumps({
        'method': result.method,
        'duration_seconds': round(result.duration_seconds, 2),
        'gateways': [device.to_dict() for device in result.devices],
    }, indent=2))
    return 0 if result.devices else 1


async def serve(config_path: str) -> int:
    server = ConfiguratorServer(config_path=config_path)

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, lambda s=signum: asyncio.ensure_future(_shutdown(server, s)))
        except NotImplementedError:
            # Windows event loops; Ctrl+C still arrives as KeyboardInterrupt
            logger.debug(f"Signal handler for {signum} not supported on this platform")

    try:
        await server.start()
    except Exception as e:
        logger.error(f"Server failed: {e}")
        return 1
    finally:
        await server.stop()
    return 0


async def _shutdown(server: ConfiguratorServer, signum: int):
    logger.info(f"Received signal {signal.Signals(signum).name}, shutting down...")
    await server.stop()


def main(argv=None) -> int:
    args = parse_args(argv)
    Path("logs").mkdir(exist_ok=True)

    if args.scan:
        return asyncio.run(scan_once(args.config, args.timeout_ms))
    return asyncio.run(serve(args.config))


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nServer stopped by user")
        sys.exit(0)
