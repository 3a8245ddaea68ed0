"""Listing synchronization worker.

Usage:
    python main.py           run the sync loop until SIGINT/SIGTERM
    python main.py --once    run a single cycle and exit
"""
import argparse
import asyncio
import logging
import signal
import sys

from config import load_settings
from database import create_pool, close_pool
from monitor import ListingSyncMonitor

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


async def main(once: bool = False) -> int:
    """Main application entry point."""
    settings = load_settings()

    logger.info("Initializing database...")
    pool = await create_pool(settings['db_url'])
    monitor = ListingSyncMonitor.from_settings(pool, settings)

    try:
        if once:
            result = await monitor.run_cycle()
            return 0 if result is not None else 1

        # Register shutdown handlers
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, monitor.stop)

        await monitor.start()
        return 0
    finally:
        monitor.close()
        await close_pool(pool)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Synchronize marketplace listings")
    parser.add_argument('--once', action='store_true', help="run a single sync cycle and exit")
    return parser.parse_args(argv)


if __name__ == "__main__":
    args = parse_args()
    try:
        sys.exit(asyncio.run(main(once=args.once)))
    except KeyboardInterrupt:
        pass
