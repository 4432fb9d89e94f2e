"""
snowpipe-logger - feed JSON lines into a Snowpipe from the command line.

Usage:
    # Ship newline-delimited JSON from stdin
    tail -F app.jsonl | snowpipe-logger --config SnowpipeSettings.json

    # Ship a file
    snowpipe-logger --config snowpipe.yaml --input events.jsonl

    # Generate {"test": i, "test2": i} records once a second for 10 minutes
    snowpipe-logger --demo-seconds 600 --demo-rate 1
"""

import argparse
import logging
import sys
import time
from typing import Iterable, List, Optional, TextIO

from .config import ConfigError, load_config
from .pipeline import IngestPipeline
from .signer import KeyReadError

logger = logging.getLogger("snowpipe_sdk.cli")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="snowpipe-logger",
        description="Buffer JSON records locally and ingest them through Snowpipe.",
    )
    parser.add_argument(
        "--config",
        help="Settings file (default: $SNOWPIPE_CONFIG or SnowpipeSettings.json)",
    )
    parser.add_argument(
        "--input",
        default="-",
        help="Newline-delimited JSON file to ingest ('-' for stdin)",
    )
    parser.add_argument(
        "--demo-seconds",
        type=float,
        help="Emit generated test records for this many seconds instead of reading input",
    )
    parser.add_argument(
        "--demo-rate",
        type=float,
        default=1.0,
        help="Records per second in demo mode (default: 1)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    return parser.parse_args(argv)


def submit_lines(pipeline: IngestPipeline, lines: Iterable[str]) -> int:
    """Submit every non-blank line. Returns the number submitted."""
    count = 0
    for line in lines:
        record = line.strip()
        if not record:
            continue
        pipeline.submit(record)
        count += 1
    return count


def run_demo(pipeline: IngestPipeline, seconds: float, rate: float) -> int:
    """Emit {"test": i, "test2": i} records until the time is up."""
    stop_time = time.time() + seconds
    delay = 1.0 / rate if rate > 0 else 0
    i = 0
    while time.time() < stop_time:
        pipeline.submit_object({"test": str(i), "test2": str(i)})
        logger.debug(f"Logged record {i}")
        i += 1
        if delay:
            time.sleep(delay)
    return i


def _open_input(path: str) -> TextIO:
    if path == "-":
        return sys.stdin
    return open(path, "r", encoding="utf-8")


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        config = load_config(args.config)
        pipeline = IngestPipeline.from_config(config)
    except (FileNotFoundError, ConfigError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 2
    except KeyReadError as e:
        logger.error(str(e))
        return 2

    try:
        if args.demo_seconds is not None:
            count = run_demo(pipeline, args.demo_seconds, args.demo_rate)
        else:
            stream = _open_input(args.input)
            try:
                count = submit_lines(pipeline, stream)
            finally:
                if stream is not sys.stdin:
                    stream.close()
    except KeyboardInterrupt:
        logger.info("Interrupted, draining buffer")
        count = None
    finally:
        outcome = pipeline.close()

    if count is not None:
        logger.info(f"Submitted {count} records")
    if outcome is not None and not outcome.ok:
        logger.error(f"Final flush failed: {outcome.error}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
