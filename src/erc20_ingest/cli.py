import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from dotenv import load_dotenv

from .errors import ConfigurationError
from .parser import load_pipeline
from .pipeline import run_pipeline
from .utils.logging_setup import get_current_log_file, setup_logging

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="erc20-ingest",
        description="Ingest ERC20 Transfer events from a node into a durable sink",
    )
    parser.add_argument(
        "--config", default="config.yaml", help="path to the pipeline config file"
    )
    parser.add_argument(
        "--log-level", default=None, help="console log level, defaults to $LOGLEVEL or INFO"
    )
    parser.add_argument(
        "--to-block",
        type=int,
        default=None,
        help="stop once this block is ingested instead of following the chain head",
    )
    return parser.parse_args(argv)


async def main(args: argparse.Namespace) -> int:
    pipeline = await load_pipeline(args.config, to_block=args.to_block)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # windows event loops don't support signal handlers
            pass

    return await run_pipeline(pipeline, stop_event=stop_event)


def run(argv: Optional[List[str]] = None) -> None:
    load_dotenv()
    args = parse_args(argv)
    setup_logging(args.log_level)
    logger.debug(f"writing logs to {get_current_log_file()}")

    try:
        checkpoint = asyncio.run(main(args))
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)

    logger.info(f"exiting with checkpoint at block {checkpoint}")


if __name__ == "__main__":
    run()
