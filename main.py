"""
Polymarket Copy Mirror
======================
Main entry point for the application.

Usage:
    python main.py                  - Run the copy session from .env settings
    python main.py --once           - Run a single polling round and exit
    python main.py --check          - Check the data API and RPC endpoints
    python main.py --help           - Show help
"""

import argparse
import asyncio
import logging
from typing import Optional, List

from colorlog import ColoredFormatter
from web3 import Web3

from copymirror.api.fill_source import FillSource
from copymirror.config import CopySettings, get_settings, validate_settings
from copymirror.engine.copy_engine import CopyTradingEngine, CopyEvent

logger = logging.getLogger("copymirror")


def setup_logging(verbose: bool = False):
    """Setup colored logging."""
    level = logging.DEBUG if verbose else logging.INFO

    formatter = ColoredFormatter(
        "%(log_color)s%(asctime)s | %(levelname)-8s%(reset)s | "
        "%(cyan)s%(name)s%(reset)s | %(message)s",
        datefmt="%H:%M:%S",
        log_colors={
            'DEBUG': 'white',
            'INFO': 'green',
            'WARNING': 'yellow',
            'ERROR': 'red',
            'CRITICAL': 'bold_red',
        }
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(handler)

    # Silence noisy logs
    for name in ("urllib3", "web3", "httpx"):
        logging.getLogger(name).setLevel(logging.WARNING)


def build_settings(args: argparse.Namespace) -> CopySettings:
    """Environment settings with command-line overrides applied."""
    overrides = {}
    if args.targets:
        overrides["target_addresses"] = args.targets
    if args.live:
        overrides["dry_run"] = False
    if args.dry_run:
        overrides["dry_run"] = True
    if args.interval_ms:
        overrides["poll_interval_ms"] = args.interval_ms
    if not overrides:
        return get_settings()
    return CopySettings(**overrides)


def print_event(event: CopyEvent):
    prefix = "❌" if event.kind == "error" else "•"
    print(f"{prefix} {event.message}")


async def check_connectivity(settings: CopySettings) -> bool:
    """Probe the data API with the first target and the Polygon RPC."""
    ok = True
    source = FillSource(settings)
    await source.initialize()
    try:
        address = settings.target_addresses[0] if settings.target_addresses else Web3.to_checksum_address("0x" + "0" * 40)
        fills = await source.fetch_fills(address, None, 1)
        print(f"✅ Data API reachable ({settings.data_api_url}), {len(fills)} fill(s) returned")
    except Exception as e:
        ok = False
        print(f"❌ Data API check failed: {e}")
    finally:
        await source.close()

    w3 = Web3(Web3.HTTPProvider(settings.rpc_url, request_kwargs={"timeout": 10}))
    try:
        block = await asyncio.to_thread(lambda: w3.eth.block_number)
        print(f"✅ RPC reachable ({settings.rpc_url}), block {block}")
    except Exception as e:
        ok = False
        print(f"❌ RPC check failed: {e}")
    return ok


async def run_cli(settings: CopySettings, once: bool = False) -> int:
    """Run the copy session in the terminal."""
    is_valid, errors = validate_settings(settings)
    if not is_valid:
        print("\n❌ Configuration errors:")
        for error in errors:
            print(f"   • {error}")
        print("\nPlease configure the .env file.")
        return 1

    mode = "DRY-RUN" if settings.dry_run else "LIVE"
    print(f"\n📍 Watching: {', '.join(settings.target_addresses)}")
    print(f"📊 Execution: {settings.execution_mode} ({mode})")
    print(f"📈 Copy factor: {settings.copy_factor}x | Slippage: {settings.max_slippage_bps} bps")

    engine = CopyTradingEngine(settings)
    engine.add_event_callback(print_event)

    if once:
        outcome = await engine.run_once()
        return 0 if outcome["ok"] else 1

    started = await engine.start()
    if not started["ok"]:
        return 1

    print("\n👀 Monitoring for trades... (Press Ctrl+C to stop)\n")
    try:
        while engine.is_running:
            await asyncio.sleep(1)
    except asyncio.CancelledError:
        pass
    finally:
        print("\n⏹️ Stopping...")
        await engine.stop()
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Polymarket Copy Mirror",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --targets 0xabc...,0xdef...     Mirror two wallets (dry-run by default)
  python main.py --live                           Submit real orders
  python main.py --once -v                        One verbose polling round
        """
    )
    parser.add_argument("--targets", help="Comma-separated wallet addresses to mirror")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--live", action="store_true", help="Submit real orders")
    mode.add_argument("--dry-run", action="store_true", help="Simulate orders only")
    parser.add_argument("--interval-ms", type=int, help="Polling interval in milliseconds")
    parser.add_argument("--once", action="store_true", help="Run a single polling round")
    parser.add_argument("--check", action="store_true", help="Check data API and RPC connectivity")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")

    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    settings = build_settings(args)

    try:
        if args.check:
            return 0 if asyncio.run(check_connectivity(settings)) else 1
        return asyncio.run(run_cli(settings, once=args.once))
    except KeyboardInterrupt:
        print("👋 Goodbye!")
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
