import bdb
import logging
import os
import pdb
import sys
from argparse import ArgumentParser
from datetime import timedelta
from typing import List, MutableMapping

from ._helpers import Timer, dump_json
from .config import Settings
from .rds import collect, make_client

logger = logging.getLogger(__name__)


def main(
    argv: List[str] = sys.argv[1:],
    environ: MutableMapping[str, str] = os.environ,
) -> int:
    settings = Settings.from_environ(environ)
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname).1s: %(message)s",
    )
    parser = ArgumentParser(prog="pgrdslog")
    parser.add_argument(
        "--region",
        default=settings.region,
        help="AWS region. default: %(default)s",
    )
    parser.add_argument(
        "--lookback",
        type=float,
        default=settings.lookback.total_seconds() / 60,
        metavar="MINUTES",
        help="Collect events of the last MINUTES. default: %(default)s",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=settings.workers,
        help="Log files downloaded concurrently. default: %(default)s",
    )
    parser.add_argument(
        "instance_id",
        nargs="?" if settings.instance_id else None,
        default=settings.instance_id,
        metavar="INSTANCE_ID",
        help="RDS DB instance identifier. default: $RDS_INSTANCE_ID",
    )
    args = parser.parse_args(argv)
    settings.region = args.region
    settings.lookback = timedelta(minutes=args.lookback)
    settings.workers = args.workers

    failed = 0
    try:
        client = make_client(settings)
        with Timer() as timer:
            results = collect(
                client,
                args.instance_id,
                lookback=settings.lookback,
                max_workers=settings.workers,
            )
            for result in results:
                if result.error:
                    failed += 1
                for event in result.events:
                    print(dump_json("event", event.as_dict()))
                for sample in result.samples:
                    print(dump_json("sample", sample.as_dict()))
        logger.info("Collected %d log files in %s.", len(results), timer.delta)
    except (KeyboardInterrupt, bdb.BdbQuit):  # pragma: nocover
        logger.info("Interrupted.")
        return 1
    except Exception:
        logger.exception("Unhandled error:")
        if settings.debug:  # pragma: nocover
            pdb.post_mortem(sys.exc_info()[2])
        return 1

    if failed:
        logger.error("Failed to download %d log files.", failed)
        return 1
    return 0


if "__main__" == __name__:  # pragma: nocover
    sys.exit(main(argv=sys.argv[1:], environ=os.environ))
