"""\
.. currentmodule:: pgrdslog.buffercache

Report shared buffers usage per relation, from ``pg_buffercache`` extension.

If the extension is not installed in the database, :func:`get_buffercache`
creates it, commits and retries the query once. Any other error is raised
as is.

.. autofunction:: get_buffercache
.. autoclass:: BuffercacheEntry


Example
-------

.. code:: python

    from psycopg2 import connect

    with connect(dbname='shop') as connection:
        for entry in get_buffercache(connection):
            print(entry.object_name, entry.bytes)

"""

import logging
from typing import Any, List, NamedTuple, Optional

import psycopg2

from .errors import ErrorKind, classify_error

logger = logging.getLogger(__name__)

# Tags queries issued by the collector in pg_stat_statements and logs.
QUERY_MARKER = "/* pgrdslog */ "

BUFFERCACHE_SQL = """\
WITH buffers AS (
    SELECT COUNT(*) AS block_count, reldatabase, relfilenode
    FROM pg_buffercache
    GROUP BY 2, 3
)
SELECT block_count * current_setting('block_size')::int, d.datname, nspname, relname, relkind
FROM buffers b
JOIN pg_database d ON (d.oid = reldatabase)
LEFT JOIN pg_class c ON (b.relfilenode = pg_relation_filenode(c.oid) AND (b.reldatabase = 0 OR d.datname = current_database()))
LEFT JOIN pg_namespace n ON (n.oid = c.relnamespace);
"""  # noqa

CREATE_EXTENSION_SQL = "CREATE EXTENSION IF NOT EXISTS pg_buffercache"


class BuffercacheEntry(NamedTuple):
    bytes: int
    database_name: str
    schema_name: Optional[str]
    object_name: Optional[str]
    object_kind: Optional[str]


def _fetch(connection: Any) -> List[BuffercacheEntry]:
    with connection.cursor() as cur:
        cur.execute(QUERY_MARKER + BUFFERCACHE_SQL)
        return [BuffercacheEntry(*row) for row in cur.fetchall()]


def get_buffercache(connection: Any) -> List[BuffercacheEntry]:
    """Query buffer cache usage.

    :param connection: A psycopg2 connection.
    :returns: A list of :class:`BuffercacheEntry`.
    """
    try:
        return _fetch(connection)
    except psycopg2.Error as e:
        if classify_error(e) is not ErrorKind.undefined_table:
            raise

    logger.info("pg_buffercache relation does not exist, creating extension.")
    # Failed query aborted the transaction.
    connection.rollback()
    with connection.cursor() as cur:
        cur.execute(QUERY_MARKER + CREATE_EXTENSION_SQL)
    connection.commit()
    return _fetch(connection)
