import json
import sys
from datetime import datetime, timedelta, timezone
from typing import IO, Any, Dict, Union


def format_timedelta(delta: timedelta) -> str:
    values = [
        (delta.days, "d"),
        (delta.seconds, "s"),
        (delta.microseconds, "us"),
    ]
    values = ["%d%s" % v for v in values if v[0]]
    if values:
        return " ".join(values)
    else:
        return "0s"


def strtobool(value: str) -> bool:
    # Replacement for removed distutils.util.strtobool.
    value = value.lower()
    if value in ("y", "yes", "t", "true", "on", "1"):
        return True
    elif value in ("n", "no", "f", "false", "off", "0", ""):
        return False
    raise ValueError("invalid truth value %r" % (value,))


class JSONDateEncoder(json.JSONEncoder):
    def default(self, obj: Union[timedelta, datetime, object]) -> Any:
        if isinstance(obj, datetime):
            return obj.isoformat()
        elif isinstance(obj, timedelta):
            return format_timedelta(obj)
        return super().default(obj)


def open_or_stdin(filename: str, stdin: IO[str] = sys.stdin) -> IO[str]:
    if filename == "-":
        fo = stdin
    else:
        fo = open(filename)
    return fo


class Timer:
    def __enter__(self) -> "Timer":
        self.start = datetime.now(timezone.utc)
        return self

    def __exit__(self, *a: Any) -> None:
        self.delta = datetime.now(timezone.utc) - self.start


def dump_json(type_: str, fields: Dict[str, Any]) -> str:
    # One JSON object per line, tagged with its kind.
    return json.dumps(dict(type=type_, **fields), cls=JSONDateEncoder)
