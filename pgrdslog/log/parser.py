import logging
import re
from datetime import datetime, timedelta, timezone, tzinfo
from typing import (
    Any,
    Dict,
    Iterable,
    Iterator,
    List,
    Optional,
    Sequence,
    Set,
    Tuple,
)

logger = logging.getLogger(__name__)

# Default lookback window. Older events are dropped before grouping.
LOOKBACK = timedelta(minutes=10)

# RDS appends this to messages cut at its size limit.
TRUNCATION_MARKER = "[Your log message was truncated]"

# Levels of follow-up lines reporting context for the previous line of the
# same backend.
CONTINUATION_LEVELS = frozenset(["STATEMENT", "DETAIL", "HINT"])

# How many following lines may be attached to an anchor.
MAX_LOOKAHEAD = 2


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UnknownData(Exception):
    """Represents unparseable data.

    :class:`UnknownData` is throwable, you can raise it.

    .. attribute:: lines

        The list of unparseable strings.
    """

    # UnknownData object is an exception to be throwable.

    def __init__(self, lines: Sequence[str]) -> None:
        self.lines = lines

    def __repr__(self) -> str:
        summary = str(self)[:32].replace("\n", "")
        return "<%s %s...>" % (self.__class__.__name__, summary)

    def __str__(self) -> str:
        return "\n".join(self.lines)


class LineSplitter:
    """Cut raw chunks into physical lines.

    A chunk not ending with a line terminator leaves its last line pending.
    The pending fragment is prepended to the first line of the next chunk, so
    that a line split by the log source is restored byte for byte.
    """

    def __init__(self) -> None:
        self.pending = ""

    def feed(self, chunk: str) -> Iterator[str]:
        lines = (self.pending + chunk).split("\n")
        # Either the tail of an unterminated line or an empty string.
        self.pending = lines.pop()
        for line in lines:
            yield line[:-1] if line.endswith("\r") else line

    def close(self) -> Iterator[str]:
        if self.pending:
            line, self.pending = self.pending, ""
            yield line

    def discard(self) -> str:
        line, self.pending = self.pending, ""
        return line


# Offsets of usual time zone abbreviations. Others are read as UTC.
_zone_offsets = {
    "UTC": 0,
    "GMT": 0,
    "WET": 0,
    "WEST": 1,
    "BST": 1,
    "CET": 1,
    "CEST": 2,
    "EET": 2,
    "EEST": 3,
    "MSK": 3,
    "JST": 9,
    "AEST": 10,
    "AEDT": 11,
    "HST": -10,
    "AKST": -9,
    "AKDT": -8,
    "PST": -8,
    "PDT": -7,
    "MST": -7,
    "MDT": -6,
    "CST": -6,
    "CDT": -5,
    "EST": -5,
    "EDT": -4,
}


def parse_zone(abbrev: str) -> tzinfo:
    if abbrev in ("UTC", "GMT"):
        return timezone.utc
    return timezone(timedelta(hours=_zone_offsets.get(abbrev, 0)), abbrev)


def known_zone(tz: Optional[tzinfo]) -> bool:
    return tz is not None and tz.tzname(None) in _zone_offsets


def parse_timestamp(raw: str) -> datetime:
    # Parses RDS %t timestamp like 2016-01-20 17:24:33 UTC.
    if (
        len(raw) < 22
        or raw[4] != "-"
        or raw[7] != "-"
        or raw[10] != " "
        or raw[13] != ":"
        or raw[16] != ":"
        or raw[19] != " "
    ):
        raise ValueError("%s is not a known date" % raw)

    try:
        infos = (
            int(raw[:4]),
            int(raw[5:7]),
            int(raw[8:10]),
            int(raw[11:13]),
            int(raw[14:16]),
            int(raw[17:19]),
        )
    except ValueError:
        raise ValueError("%s is not a known date" % raw)

    abbrev = raw[20:]
    if not (abbrev.isascii() and abbrev.isalpha()):
        raise ValueError("%s has no time zone abbreviation." % raw)

    return datetime(*infos, tzinfo=parse_zone(abbrev))


class PrefixParser:
    """Extract event fields from RDS log line prefix.

    RDS enforces ``log_line_prefix`` to ``%t:%r:%u@%d:[%p]:``, thus a line
    looks like::

        2016-01-20 17:24:33 UTC:10.0.1.12(51962):app@shop:[3287]:LOG:  message

    The timestamp holds two colons, giving 8 fields once split on ``:``. The
    message is kept as is, whatever colons it contains.
    """

    fields_count = 8

    def __repr__(self) -> str:
        return "<%s '%%t:%%r:%%u@%%d:[%%p]:'>" % (self.__class__.__name__,)

    def parse(self, line: str) -> Dict[str, Any]:
        # Raises UnknownData if line does not start with a valid prefix.

        parts = line.split(":", self.fields_count - 1)
        if len(parts) != self.fields_count:
            raise UnknownData([line])

        try:
            occurred_at = parse_timestamp(":".join(parts[:3]))
            backend_pid = int(parts[5].strip("[]"))
        except ValueError:
            raise UnknownData([line])

        remote, user_database, __, level, message = parts[3:]
        username, database = self.split_user_database(user_database)
        client_hostname, client_port = self.split_remote(remote)

        return dict(
            occurred_at=occurred_at,
            client_hostname=client_hostname,
            client_port=client_port,
            username=username,
            database=database,
            backend_pid=backend_pid,
            log_level=level,
            content=message.lstrip(" "),
        )

    @staticmethod
    def split_user_database(raw: str) -> Tuple[Optional[str], Optional[str]]:
        if "@" not in raw:
            return None, None
        username, database = raw.split("@", 1)
        return username, database

    @staticmethod
    def split_remote(raw: str) -> Tuple[Optional[str], Optional[int]]:
        hostname, _, port = raw.partition("(")
        try:
            client_port: Optional[int] = int(port.rstrip(")"))
        except ValueError:
            client_port = None
        return hostname or None, client_port


class LogEvent:
    """Log event object.

    An event is built from a single prefixed line, plus the unprefixed lines
    following it. Lines from the same backend reporting ``STATEMENT``,
    ``DETAIL`` or ``HINT`` are attached to the event in
    :attr:`additional_lines` by :func:`attach_context`.

    .. automethod:: as_dict

    .. attribute:: occurred_at

       :type: :class:`datetime.datetime`, aware.

    .. attribute:: username
    .. attribute:: database
    .. attribute:: client_hostname
    .. attribute:: client_port

       :type: :class:`int` or None

    .. attribute:: backend_pid

       :type: :class:`int`

    .. attribute:: log_level

        ``LOG``, ``ERROR``, ``STATEMENT``, etc.

    .. attribute:: content

        The message, without prefix and level.

    .. attribute:: query

        Query text found in ``STATEMENT`` follow-up or duration message.

    .. attribute:: additional_lines

        Events attached to this one. They are never emitted on their own.
    """

    __slots__ = (
        "additional_lines",
        "backend_pid",
        "client_hostname",
        "client_port",
        "content",
        "database",
        "log_level",
        "occurred_at",
        "query",
        "username",
    )

    def __init__(
        self,
        occurred_at: datetime,
        backend_pid: int,
        log_level: str,
        content: str = "",
        username: Optional[str] = None,
        database: Optional[str] = None,
        client_hostname: Optional[str] = None,
        client_port: Optional[int] = None,
        query: Optional[str] = None,
        additional_lines: Optional[List["LogEvent"]] = None,
    ) -> None:
        self.occurred_at = occurred_at
        self.backend_pid = backend_pid
        self.log_level = log_level
        self.content = content
        self.username = username
        self.database = database
        self.client_hostname = client_hostname
        self.client_port = client_port
        self.query = query
        self.additional_lines = additional_lines or []

    def __repr__(self) -> str:
        return "<%s [%s] %s: %.32s...>" % (
            self.__class__.__name__,
            self.backend_pid,
            self.log_level,
            self.content.replace("\n", ""),
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LogEvent):
            return NotImplemented
        return self.as_dict() == other.as_dict()

    def append(self, text: str) -> None:
        self.content += "\n" + text

    def as_dict(self) -> Dict[str, Any]:
        """Returns event fields as a :class:`dict`, recursively."""
        fields = {k: getattr(self, k) for k in self.__slots__}
        fields["additional_lines"] = [e.as_dict() for e in self.additional_lines]
        return fields


class QuerySample:
    """A query runtime measured by a ``duration:`` message."""

    __slots__ = ("database", "occurred_at", "query", "runtime_ms", "username")

    def __init__(
        self,
        occurred_at: datetime,
        username: Optional[str],
        database: Optional[str],
        query: str,
        runtime_ms: float,
    ) -> None:
        self.occurred_at = occurred_at
        self.username = username
        self.database = database
        self.query = query
        self.runtime_ms = runtime_ms

    def __repr__(self) -> str:
        return "<%s %sms: %.32s...>" % (
            self.__class__.__name__,
            self.runtime_ms,
            self.query.replace("\n", ""),
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, QuerySample):
            return NotImplemented
        return self.as_dict() == other.as_dict()

    def as_dict(self) -> Dict[str, Any]:
        return {k: getattr(self, k) for k in self.__slots__}


class NoopFilters:
    """Basic filter doing nothing.

    If :meth:`event` returns True, the event is dropped before grouping.
    Subclass it to implement a filtering policy.
    """

    def event(self, event: LogEvent) -> bool:
        return False


class TimeWindowFilter(NoopFilters):
    """Drop events older than ``now - lookback``.

    Successive collections overlap on the same log file. The window avoids
    shipping an event twice and keeps old lines from lending context to
    fresh ones.
    """

    def __init__(
        self, now: Optional[datetime] = None, lookback: timedelta = LOOKBACK
    ) -> None:
        self.now = now or utcnow()
        self.lookback = lookback
        self.newer_than = self.now - lookback

    def __repr__(self) -> str:
        return "<%s since %s>" % (
            self.__class__.__name__,
            self.newer_than.isoformat(),
        )

    def event(self, event: LogEvent) -> bool:
        return event.occurred_at < self.newer_than


def group_by_backend(events: Iterable[LogEvent]) -> Dict[int, List[LogEvent]]:
    # Dict preserves insertion order: backends come in order of first
    # appearance, events in order of arrival.
    groups: Dict[int, List[LogEvent]] = {}
    for event in events:
        groups.setdefault(event.backend_pid, []).append(event)
    return groups


def attach_context(events: Sequence[LogEvent]) -> List[LogEvent]:
    # Attach follow-up lines of a single backend to their anchor. Returns
    # anchors only.

    anchors = []
    skip = 0
    for idx, event in enumerate(events):
        if skip:
            skip -= 1
            continue

        for following in events[idx + 1 : idx + 1 + MAX_LOOKAHEAD]:
            if following.log_level not in CONTINUATION_LEVELS:
                break
            if following.log_level == "STATEMENT" and not following.content.endswith(
                TRUNCATION_MARKER
            ):
                event.query = following.content
            event.additional_lines.append(following)
            skip += 1

        anchors.append(event)
    return anchors


# duration: 12.345 ms  statement: SELECT 1
_duration_re = re.compile(
    r"""
    duration:\ (?P<duration_ms>\d+(?:\.\d*)?)\ ms
    (?P<context>[^:]+)      # e.g. "  statement" or "  bind <unnamed>"
    :\ (?P<query>.+)
    """,
    re.VERBOSE | re.DOTALL,
)

# Context of partial executions. Their timing does not cover the whole query.
_excluded_contexts = ("bind", "parse")


def match_duration(content: str) -> Optional[Dict[str, str]]:
    """Match a duration message.

    :returns: A dict with ``duration_ms``, ``context`` and ``query`` keys or
        None if the message does not report a duration with a query.
    """
    if not content.startswith("duration: "):
        return None
    if content.endswith(TRUNCATION_MARKER):
        return None
    match = _duration_re.match(content)
    if not match:
        return None
    return match.groupdict()


def extract_sample(event: LogEvent) -> Optional[QuerySample]:
    # Sets event query from duration message and returns the sample if the
    # duration covers a complete execution.

    fields = match_duration(event.content)
    if fields is None:
        return None

    event.query = fields["query"]
    if any(word in fields["context"] for word in _excluded_contexts):
        return None

    return QuerySample(
        occurred_at=event.occurred_at,
        username=event.username,
        database=event.database,
        query=fields["query"],
        runtime_ms=float(fields["duration_ms"]),
    )


class ParseState:
    """Parse state of a single log file.

    Feed chunks in order with :meth:`feed`, then call :meth:`finish` to get
    events and samples. A state belongs to one file. Use one state per file
    to parse files in parallel.
    """

    def __init__(
        self,
        prefix_parser: Optional[PrefixParser] = None,
        filters: Optional[NoopFilters] = None,
    ) -> None:
        self.prefix_parser = prefix_parser or PrefixParser()
        self.filters = filters or NoopFilters()
        self.splitter = LineSplitter()
        self.events: List[LogEvent] = []
        self.anomalies = 0
        self.unknown_zones: Set[str] = set()

    def feed(self, chunk: str, more: bool = True) -> None:
        """Process a chunk.

        :param more: False if the log source has no more data after this
            chunk. An unterminated last line is then complete.
        """
        for line in self.splitter.feed(chunk):
            self.process_line(line)
        if not more:
            for line in self.splitter.close():
                self.process_line(line)

    def process_line(self, line: str) -> None:
        try:
            fields = self.prefix_parser.parse(line)
        except UnknownData as e:
            self.anomalies += 1
            if self.events:
                self.events[-1].append(line)
            else:
                logger.debug("Dropping orphan line %r.", e)
            return

        tz = fields["occurred_at"].tzinfo
        if not known_zone(tz):
            zone = tz.tzname(None)
            if zone not in self.unknown_zones:
                self.unknown_zones.add(zone)
                logger.warning(
                    "Unknown time zone %s, reading timestamps as UTC.", zone
                )
        self.events.append(LogEvent(**fields))

    def finish(
        self, complete: bool = True
    ) -> Tuple[List[LogEvent], List[QuerySample]]:
        """Returns events and samples of the file.

        :param complete: False if the file was not read up to its end. A
            pending unterminated line is then dropped, as it is truncated.
        """
        if complete:
            for line in self.splitter.close():
                self.process_line(line)
        elif self.splitter.pending:
            logger.debug("Dropping incomplete line %.32r.", self.splitter.discard())

        drop = self.filters.event
        fresh = [e for e in self.events if not drop(e)]
        if len(fresh) < len(self.events):
            logger.debug(
                "Dropped %d events out of window.", len(self.events) - len(fresh)
            )

        events: List[LogEvent] = []
        samples: List[QuerySample] = []
        for backend_events in group_by_backend(fresh).values():
            for event in attach_context(backend_events):
                sample = extract_sample(event)
                if sample:
                    samples.append(sample)
                events.append(event)
        return events, samples


class LogParser:
    """Log parsing manager

    This object gathers parsing parameters. When parsing multiple files with
    the same parameters, :class:`LogParser` object ease the initialization
    and preservation of parsing parameters.

    When parsing a single file, one can use :func:`parse` helper instead.

    :param filters: An instance of :class:`NoopFilters`.
    """

    def __init__(self, filters: Optional[NoopFilters] = None) -> None:
        self.prefix_parser = PrefixParser()
        self.filters = filters or NoopFilters()

    def new_state(self) -> ParseState:
        return ParseState(self.prefix_parser, self.filters)

    def parse(self, chunks: Iterable[str]) -> Tuple[List[LogEvent], List[QuerySample]]:
        """Parse all chunks of a log file.

        :param chunks: Raw text chunks, in file order.
        :returns: A tuple of :class:`LogEvent` list and :class:`QuerySample`
            list.
        """
        state = self.new_state()
        for chunk in chunks:
            state.feed(chunk)
        return state.finish()


def parse(
    chunks: Iterable[str],
    now: Optional[datetime] = None,
    lookback: timedelta = LOOKBACK,
) -> Tuple[List[LogEvent], List[QuerySample]]:
    """Parses log chunks, dropping events older than ``now - lookback``.

    This is a helper around :class:`LogParser` and :class:`TimeWindowFilter`.

    :param chunks: Raw text chunks of a single log file, or a file object.
    :param now: Collection start time, aware. Defaults to current time.
    :param lookback: Lookback window.
    """
    parser = LogParser(filters=TimeWindowFilter(now, lookback))
    return parser.parse(chunks)
