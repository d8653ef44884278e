from datetime import timedelta
from typing import Mapping, Optional

from ._helpers import strtobool


class Settings:
    """Collector settings.

    .. automethod:: from_environ
    """

    def __init__(
        self,
        instance_id: Optional[str] = None,
        region: Optional[str] = None,
        lookback: timedelta = timedelta(minutes=10),
        workers: int = 4,
        timeout: float = 30.0,
        debug: bool = False,
    ) -> None:
        self.instance_id = instance_id
        self.region = region
        self.lookback = lookback
        self.workers = workers
        self.timeout = timeout
        self.debug = debug

    def __repr__(self) -> str:
        return "<%s %s>" % (self.__class__.__name__, self.instance_id)

    @classmethod
    def from_environ(cls, environ: Mapping[str, str]) -> "Settings":
        """Read settings from environment variables.

        ``RDS_INSTANCE_ID``, ``AWS_REGION``, ``PGRDSLOG_LOOKBACK`` (minutes),
        ``PGRDSLOG_WORKERS``, ``PGRDSLOG_TIMEOUT`` (seconds) and ``DEBUG``.

        :raises ValueError: on malformed value.
        """
        return cls(
            instance_id=environ.get("RDS_INSTANCE_ID") or None,
            region=environ.get("AWS_REGION") or None,
            lookback=timedelta(minutes=float(environ.get("PGRDSLOG_LOOKBACK", 10))),
            workers=int(environ.get("PGRDSLOG_WORKERS", 4)),
            timeout=float(environ.get("PGRDSLOG_TIMEOUT", 30)),
            debug=strtobool(environ.get("DEBUG", "n")),
        )
