import logging
import sys

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


def setup_logging(level: str | int | None = None) -> None:
    """Install a single stdout handler on the root logger and set its level.

    Safe to call more than once; the handler is only added the first time.
    """
    if isinstance(level, int):
        desired = level
    else:
        name = (level or "INFO").strip().upper()
        desired = int(name) if name.isdigit() else _LEVELS.get(name, logging.INFO)

    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))
        root.addHandler(handler)
    root.setLevel(desired)
