import bdb
import logging
import os
import pdb
import sys
from argparse import ArgumentParser
from datetime import datetime, timedelta, timezone
from typing import List, MutableMapping

from .._helpers import Timer, dump_json, open_or_stdin, strtobool
from .parser import parse

logger = logging.getLogger(__name__)


def parse_now(raw: str) -> datetime:
    now = datetime.fromisoformat(raw)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now


def main(
    argv: List[str] = sys.argv[1:],
    environ: MutableMapping[str, str] = os.environ,
) -> int:
    debug = strtobool(environ.get("DEBUG", "n"))
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname).1s: %(message)s",
    )
    parser = ArgumentParser()
    parser.add_argument(
        "--now",
        type=parse_now,
        default=None,
        metavar="TIMESTAMP",
        help="Collection time, ISO 8601, UTC if naive. default: current time",
    )
    parser.add_argument(
        "--lookback",
        type=float,
        default=10,
        metavar="MINUTES",
        help="Drop events older than TIMESTAMP - MINUTES. default: %(default)s",
    )
    parser.add_argument(
        "filename",
        nargs="?",
        default="-",
        metavar="FILENAME",
        help="Log filename or - for stdin. default: %(default)s",
    )
    args = parser.parse_args(argv)

    try:
        with open_or_stdin(args.filename) as fo:
            with Timer() as timer:
                events, samples = parse(
                    fo, now=args.now, lookback=timedelta(minutes=args.lookback)
                )
                for event in events:
                    print(dump_json("event", event.as_dict()))
                for sample in samples:
                    print(dump_json("sample", sample.as_dict()))
        logger.info(
            "Parsed %d events and %d samples in %s.",
            len(events),
            len(samples),
            timer.delta,
        )
    except (KeyboardInterrupt, bdb.BdbQuit):  # pragma: nocover
        logger.info("Interrupted.")
        return 1
    except Exception:
        logger.exception("Unhandled error:")
        if debug:  # pragma: nocover
            pdb.post_mortem(sys.exc_info()[2])
        return 1
    return 0


if "__main__" == __name__:  # pragma: nocover
    sys.exit(main(argv=sys.argv[1:], environ=os.environ))
