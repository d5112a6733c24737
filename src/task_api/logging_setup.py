from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class _ThirdPartyNoiseFilter(logging.Filter):
    """
    Keep task_api and uvicorn logs at the configured level, but only let
    other libraries through at WARNING and above.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name
        if name.startswith("task_api") or name.startswith("uvicorn"):
            return True
        return record.levelno >= logging.WARNING


# PUBLIC_INTERFACE
def setup_logging(level: str | int = logging.INFO) -> None:
    """
    Configure root logging with a single console handler.

    Call this once, before the server starts accepting requests.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)

    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    handler.addFilter(_ThirdPartyNoiseFilter())
    root.addHandler(handler)

    # Route warnings.warn(...) into logging as 'py.warnings'
    logging.captureWarnings(True)
