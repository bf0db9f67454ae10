"""
Session Bridge - CLI

Usage:
    python -m session_bridge start [--config PATH] [--ws-port N] ...
    python -m session_bridge status [--config PATH]
"""

import argparse
import asyncio
import logging
import signal
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from .bridge import Bridge
from .config import DEFAULT_CONFIG_PATH, BridgeConfig, load_config
from .server import BridgeServer
from .transport import OscTransport

logger = logging.getLogger(__name__)


async def run_bridge(config: BridgeConfig) -> int:
    """Run until SIGINT/SIGTERM. Returns the process exit code."""
    osc = OscTransport(config.osc_host, config.osc_send_port, config.osc_receive_port)
    if not await osc.start():
        return 1

    bridge = Bridge(osc, config)
    osc.add_callback(bridge.handle_osc_message)
    server = BridgeServer(bridge, config.ws_host, config.ws_port)

    try:
        await server.start()
    except OSError as e:
        logger.error(f"WebSocket start failed: {e}")
        await osc.stop()
        return 1

    await bridge.start()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows: Ctrl+C surfaces as KeyboardInterrupt instead
            pass

    try:
        await stop.wait()
    finally:
        logger.info("Shutting down...")
        await server.stop()
        await bridge.stop()
        await osc.stop()
    return 0


def print_status(config: BridgeConfig, path: Path) -> None:
    console = Console()
    table = Table(title=f"Session Bridge config ({path})")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    for key, value in config.to_dict().items():
        table.add_row(key, str(value))
    console.print(table)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="session_bridge",
        description="Bridge touch-control WebSocket clients to the DAW OSC remote",
    )
    parser.add_argument(
        "-c", "--config", type=Path, default=DEFAULT_CONFIG_PATH,
        help=f"YAML config file (default: {DEFAULT_CONFIG_PATH})"
    )
    commands = parser.add_subparsers(dest="command")

    start = commands.add_parser("start", help="Run the bridge")
    start.add_argument("--osc-host", help="DAW host")
    start.add_argument("--osc-send-port", type=int, help="Port the remote script listens on")
    start.add_argument("--osc-receive-port", type=int, help="Port the remote script replies to")
    start.add_argument("--ws-host", help="WebSocket bind address")
    start.add_argument("--ws-port", type=int, help="WebSocket port")
    start.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")

    commands.add_parser("status", help="Show the effective configuration")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    config = load_config(args.config)

    if args.command == "status":
        print_status(config, args.config)
        return 0

    if args.command == "start":
        config = config.with_overrides(
            osc_host=args.osc_host,
            osc_send_port=args.osc_send_port,
            osc_receive_port=args.osc_receive_port,
            ws_host=args.ws_host,
            ws_port=args.ws_port,
            log_level="DEBUG" if args.verbose else None,
        )
    else:
        parser.print_help()
        return 2

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    )

    try:
        return asyncio.run(run_bridge(config))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 0
