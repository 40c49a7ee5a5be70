"""
TronPick Autopilot - Main Entry Point

Builds the executor, checkpoint store and notifier, then hands control to
the WorkflowRunner until it reaches STOPPED.

Usage:
    python main.py                         # Run headless
    python main.py --visible               # Run with visible browser
    python main.py --checkpoint state.json # Use a specific checkpoint file
"""
from dotenv import load_dotenv

# Load environment variables from .env file into os.environ
load_dotenv()

import asyncio
import argparse
import logging
import signal
import sys

from core.checkpoint import CheckpointStore
from core.config import BotSettings
from core.logging_setup import setup_logging
from core.notifier import build_notifier
from core.workflow import WorkflowRunner
from faucets.tronpick import TronPickExecutor

logger = logging.getLogger(__name__)


async def main() -> int:
    """
    Main execution loop.

    1. Parses command line arguments.
    2. Sets up logging.
    3. Builds the TronPick executor, checkpoint store and notifier.
    4. Runs the workflow until it stops on SIGINT / SIGTERM or an
       unrecoverable error.

    Returns:
        Process exit code from the workflow.
    """
    parser = argparse.ArgumentParser(description="TronPick Autopilot")
    parser.add_argument("--visible", action="store_true", help="Show browser")
    parser.add_argument(
        "--checkpoint", type=str, help="Checkpoint file (default: config/checkpoint.json)",
    )
    args = parser.parse_args()

    settings = BotSettings()
    if args.visible:
        settings.headless = False
    if args.checkpoint:
        settings.checkpoint_file = args.checkpoint

    setup_logging(settings.log_level)

    notifier = build_notifier(settings)
    store = CheckpointStore(settings.checkpoint_file)
    executor = TronPickExecutor(settings)
    runner = WorkflowRunner(settings, executor, store, notifier=notifier)

    def handle_signal():
        logger.info("🛑 Received stop signal. Initiating graceful shutdown...")
        runner.request_stop()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, handle_signal)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no signal handler support
            logger.debug(f"Signal handler for {sig.name} unavailable")

    return await runner.run()


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
