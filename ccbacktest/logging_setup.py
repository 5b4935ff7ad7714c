from __future__ import annotations
import logging
from logging.handlers import RotatingFileHandler
from contextlib import contextmanager
from pathlib import Path
from time import perf_counter
from typing import Iterator, List, Optional, Union

from .paths import DATA_ROOT, ensure_dir

# ---------------------------------------------------------
# Root logger: rotating debug file under DATA_ROOT + console
# ---------------------------------------------------------

_LOGGER_INITIALIZED = False
_LOG_FILE_NAME = "backtest_debug.log"
_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Libraries that are chatty at DEBUG (HTTP connection pool, font lookup, yfinance internals)
NOISY_LOGGERS = ("urllib3", "matplotlib", "PIL", "yfinance", "peewee")


def _coerce_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _handlers(log_file: Optional[Path], log_to_console: bool, max_bytes: int, backup_count: int) -> List[logging.Handler]:
    out: List[logging.Handler] = []
    if log_file is not None:
        ensure_dir(log_file.parent)
        out.append(RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup_count))
    if log_to_console:
        out.append(logging.StreamHandler())
    return out


def init_logging(
    level: Union[int, str] = logging.INFO,
    *,
    log_to_console: bool = True,
    log_to_file: bool = True,
    max_bytes: int = 10_000_000,
    backup_count: int = 5,
) -> None:
    """Configure the root logger once; later calls only change the level.

    Parameters
    ----------
    level : int | str
        ``logging.DEBUG`` or a name such as ``"debug"`` (the CLI passes the
        ``--log-level`` string through). Unknown names mean INFO.
    log_to_console : bool
        Also log to stderr.
    log_to_file : bool
        Write ``DATA_ROOT/backtest_debug.log``, rotated at *max_bytes* with
        *backup_count* old files kept.

    Third-party loggers in :data:`NOISY_LOGGERS` are held at WARNING so a
    DEBUG run shows the engine's own trade log.
    """
    global _LOGGER_INITIALIZED
    level = _coerce_level(level)
    if _LOGGER_INITIALIZED:
        set_level(level)
        return

    formatter = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)
    root = logging.getLogger()
    root.setLevel(level)

    log_file = DATA_ROOT / _LOG_FILE_NAME if log_to_file else None
    for handler in _handlers(log_file, log_to_console, max_bytes, backup_count):
        handler.setFormatter(formatter)
        handler.setLevel(level)
        root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _LOGGER_INITIALIZED = True


def set_level(level: Union[int, str]) -> None:
    """Update logging level for all handlers on the root logger."""
    level = _coerce_level(level)
    root = logging.getLogger()
    root.setLevel(level)
    for h in root.handlers:
        h.setLevel(level)


@contextmanager
def timed(msg: str, *, logger: Optional[logging.Logger] = None, level: int = logging.DEBUG) -> Iterator[None]:
    """Log how long the block took, in milliseconds.

    >>> with timed("backtest AAPL", level=logging.INFO):
    ...     res = run_backtest(bars, params=params)
    """
    log = logger or logging.getLogger(__name__)
    start = perf_counter()
    try:
        yield
    finally:
        log.log(level, f"{msg} finished in {(perf_counter() - start) * 1000.0:.2f} ms")
