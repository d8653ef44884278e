from __future__ import annotations

import enum
from typing import Optional

import psycopg2.errors


class Error(Exception):
    """Base class for pgrdslog errors."""


class RetrievalError(Error):
    """Downloading a log file portion failed.

    Processing of the file stops. Events parsed before the failure are kept.
    """

    def __init__(
        self, log_file: str, marker: str, cause: Optional[BaseException] = None
    ) -> None:
        self.log_file = log_file
        self.marker = marker
        self.cause = cause
        super().__init__(str(self))

    def __repr__(self) -> str:
        return "<%s %s at %s>" % (
            self.__class__.__name__,
            self.log_file,
            self.marker,
        )

    def __str__(self) -> str:
        return "Failed to download {} from marker {}: {}".format(
            self.log_file,
            self.marker,
            self.cause,
        )


@enum.unique
class ErrorKind(enum.Enum):
    """Classification of database errors."""

    undefined_table = "42P01"
    """Relation does not exist. Creating the missing extension fixes it."""
    other = None
    """Anything else."""


def classify_error(error: BaseException) -> ErrorKind:
    # Server errors carry SQLSTATE in pgcode, psycopg2 maps it to a subclass.
    code = getattr(error, "pgcode", None)
    if (
        isinstance(error, psycopg2.errors.UndefinedTable)
        or code == ErrorKind.undefined_table.value
    ):
        return ErrorKind.undefined_table
    return ErrorKind.other
