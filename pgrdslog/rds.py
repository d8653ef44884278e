"""\
.. currentmodule:: pgrdslog.rds

Download PostgreSQL logs of an Amazon RDS instance and parse them with
:mod:`pgrdslog.log`.

RDS serves a log file by portions. Each portion comes with a marker to
request the next one and a flag telling whether more data is pending.
Portions of a file are parsed in order, as they arrive. Files are
independent: :func:`collect` downloads them concurrently.

If a download fails, the file is abandoned but events parsed so far are
returned, with the error, in :class:`ParseResult`.

.. autofunction:: collect
.. autofunction:: collect_log_file
.. autofunction:: iter_log_file_portions
.. autofunction:: list_log_files
.. autofunction:: make_client
.. autoclass:: ParseResult
.. autoclass:: LogFilePortion


Example
-------

.. code:: python

    client = make_client(Settings(region='eu-west-1'))
    for result in collect(client, 'my-instance'):
        if result.error:
            print(result.error)
        ship(result.events, result.samples)

"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from functools import partial
from typing import Any, Iterator, List, NamedTuple, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from .config import Settings
from .errors import RetrievalError
from .log.parser import (
    LOOKBACK,
    LogEvent,
    LogParser,
    QuerySample,
    TimeWindowFilter,
    utcnow,
)

logger = logging.getLogger(__name__)


class LogFilePortion(NamedTuple):
    data: str
    marker: str
    pending: bool


class ParseResult:
    """Events and samples of a single log file.

    .. attribute:: error

        :class:`~pgrdslog.errors.RetrievalError` which interrupted the
        download, or None.
    """

    def __init__(
        self,
        log_file: str,
        events: List[LogEvent],
        samples: List[QuerySample],
        error: Optional[RetrievalError] = None,
    ) -> None:
        self.log_file = log_file
        self.events = events
        self.samples = samples
        self.error = error

    def __repr__(self) -> str:
        return "<%s %s: %d events, %d samples%s>" % (
            self.__class__.__name__,
            self.log_file,
            len(self.events),
            len(self.samples),
            ", failed" if self.error else "",
        )


def make_client(settings: Settings) -> Any:
    """Build an RDS client honoring settings timeout and region."""
    config = Config(
        connect_timeout=settings.timeout,
        read_timeout=settings.timeout,
        retries={"max_attempts": 0},
    )
    return boto3.client("rds", region_name=settings.region, config=config)


def list_log_files(client: Any, instance_id: str, since: datetime) -> List[str]:
    """List log files written since ``since``."""
    paginator = client.get_paginator("describe_db_log_files")
    pages = paginator.paginate(
        DBInstanceIdentifier=instance_id,
        FileLastWritten=int(since.timestamp() * 1000),
    )
    return [f["LogFileName"] for page in pages for f in page["DescribeDBLogFiles"]]


def iter_log_file_portions(
    client: Any, instance_id: str, log_file: str, marker: str = "0"
) -> Iterator[LogFilePortion]:
    """Yield portions of a log file until no more data is pending.

    :param marker: Resume marker. ``"0"`` starts at the beginning of the
        file.
    """
    while True:
        response = client.download_db_log_file_portion(
            DBInstanceIdentifier=instance_id,
            LogFileName=log_file,
            Marker=marker,
        )
        marker = response.get("Marker", marker)
        pending = response.get("AdditionalDataPending", False)
        yield LogFilePortion(response.get("LogFileData") or "", marker, pending)
        if not pending:
            break


def collect_log_file(
    client: Any, instance_id: str, log_file: str, parser: LogParser
) -> ParseResult:
    """Download and parse a single log file.

    Retrieval errors don't propagate. They stop the download and are
    returned in :attr:`ParseResult.error` along with partial results.
    """
    state = parser.new_state()
    marker = "0"
    error = None
    try:
        for portion in iter_log_file_portions(client, instance_id, log_file, marker):
            state.feed(portion.data, more=portion.pending)
            marker = portion.marker
    except (BotoCoreError, ClientError) as e:
        error = RetrievalError(log_file, marker, e)
        error.__cause__ = e
        logger.warning("%s", error)

    events, samples = state.finish(complete=error is None)
    logger.debug(
        "Parsed %s: %d events, %d samples, %d unprefixed lines.",
        log_file,
        len(events),
        len(samples),
        state.anomalies,
    )
    return ParseResult(log_file, events, samples, error)


def collect(
    client: Any,
    instance_id: str,
    now: Optional[datetime] = None,
    lookback: timedelta = LOOKBACK,
    max_workers: int = 4,
) -> List[ParseResult]:
    """Collect events and samples of all recent log files of an instance.

    :param client: A boto3 RDS client. Build one with :func:`make_client`.
    :param now: Collection start time. Defaults to current time.
    :param lookback: Ignore files and events older than ``now - lookback``.
    :returns: A :class:`ParseResult` per log file, in listing order.
    """
    now = now or utcnow()
    parser = LogParser(filters=TimeWindowFilter(now, lookback))
    log_files = list_log_files(client, instance_id, now - lookback)
    logger.debug("Collecting %d log files of %s.", len(log_files), instance_id)

    collect_one = partial(collect_log_file, client, instance_id, parser=parser)
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        return list(executor.map(collect_one, log_files))
