"""\
.. currentmodule:: pgrdslog.log

Amazon RDS exposes PostgreSQL logs as files downloaded by portions. Each
portion is a chunk of raw text, cut regardless of line boundaries.
:mod:`pgrdslog.log` turns these chunks back into log events and query samples.


Format
------

RDS enforces ``log_line_prefix`` to ``%t:%r:%u@%d:[%p]:``. A line not matching
this prefix is a continuation of the previous event, e.g. a multi-line
statement. Its text is appended to the previous event content.


Stages
------

Each log file goes through these stages, in order:

1. Reassemble lines split across chunks.
2. Parse prefix. Lines with a bad prefix are appended to the previous event.
3. Drop events out of the lookback window, 10 minutes by default.
4. Group events by backend pid.
5. Attach up to two following ``STATEMENT``, ``DETAIL`` or ``HINT`` events of
   the same backend to their anchor event.
6. Extract query samples from ``duration:`` messages. ``bind`` and ``parse``
   durations are ignored.

All state lives in a :class:`ParseState` object, one per file. Files can be
parsed concurrently.


Limitations
-----------

:mod:`pgrdslog.log` does not download logs. See :mod:`pgrdslog.rds`. It does
not remember events between runs either: the lookback window is the only
protection against shipping an event twice.


API Reference
-------------

.. autofunction:: parse
.. autoclass:: LogParser
.. autoclass:: ParseState
.. autoclass:: LineSplitter
.. autoclass:: PrefixParser
.. autoclass:: LogEvent
.. autoclass:: QuerySample
.. autoclass:: NoopFilters
.. autoclass:: TimeWindowFilter
.. autoclass:: UnknownData


Example
-------

.. code-block:: python

    with open('postgresql.log.2016-01-20-17') as fo:
        events, samples = parse(fo)
    for sample in samples:
        print(sample.runtime_ms, sample.query)


Using :mod:`pgrdslog.log` as a script
-------------------------------------

You can use this module to dump a downloaded log file as JSON::

    python -m pgrdslog.log [--now <timestamp>] [--lookback <minutes>] [<filename>]

Each event and each sample is serialized as a JSON object on a single line.

.. code:: console

    $ python -m pgrdslog.log --now '2016-01-20 17:30:00+00:00' postgresql.log
    {"type": "event", "additional_lines": [], "backend_pid": 3287, "client_hostname": "10.0.1.12", "client_port": 51962, "content": "duration: 1002.209 ms  statement: select pg_sleep(1);", "database": "shop", "log_level": "LOG", "occurred_at": "2016-01-20T17:24:33+00:00", "query": "select pg_sleep(1);", "username": "app"}
    {"type": "sample", "database": "shop", "occurred_at": "2016-01-20T17:24:33+00:00", "query": "select pg_sleep(1);", "runtime_ms": 1002.209, "username": "app"}

"""  # noqa

from .parser import (
    LineSplitter,
    LogEvent,
    LogParser,
    NoopFilters,
    ParseState,
    PrefixParser,
    QuerySample,
    TimeWindowFilter,
    UnknownData,
    parse,
)


__all__ = [
    o.__name__  # type: ignore[attr-defined]
    for o in [
        LineSplitter,
        LogEvent,
        LogParser,
        NoopFilters,
        ParseState,
        PrefixParser,
        QuerySample,
        TimeWindowFilter,
        UnknownData,
        parse,
    ]
]
