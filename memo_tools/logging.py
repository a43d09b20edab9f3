"""
Logging setup for applications and test runs that use memo_tools.

Modules in this package only create loggers; handlers are configured by applications (or by the test runner) via
:func:`init_logging`.  Cache hits and stores are logged at level 9 (``DBG_9``), so ``verbosity=3`` or higher is needed
to see them on stdout.
"""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from logging import Formatter, Handler, Logger, LogRecord
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Callable, Collection, Optional, TextIO, Union

from tzlocal import get_localzone

__all__ = ['init_logging', 'DatetimeFormatter', 'ENTRY_FMT_DETAILED']
log = logging.getLogger(__name__)

ENTRY_FMT_DETAILED = '%(asctime)s %(levelname)s %(threadName)s %(name)s %(lineno)d %(message)s'
LEVEL_NAMES = {**{lvl: f'DBG_{lvl}' for lvl in range(1, 10)}, 19: 'VERBOSE'}
DEFAULT_LOGGERS = (__name__.split('.')[0], '__main__', '__mp_main__', 'py.warnings')

_NotSet = object()
LoggerNames = Union[str, Collection[Optional[str]], None]


def init_logging(
    verbosity: int = 0,
    *,
    log_path: Union[Path, str, None] = None,
    names: LoggerNames = _NotSet,
    entry_fmt: str = None,
    millis: bool = False,
    file_lvl: int = logging.DEBUG,
    streams: bool = True,
    capture_warnings: bool = True,
) -> Optional[Path]:
    """
    Send records below ``logging.WARNING`` to stdout and the rest to stderr, and optionally to a log file that is
    rotated at midnight.  Any handlers that the configured loggers already had are replaced.

    Each increment of ``verbosity`` lowers the minimum level for stdout: 0 allows INFO and above, 2 allows DEBUG, 3
    allows ``DBG_9`` (cache hits / stores), and so on.

    :param verbosity: Higher values allow lower levels to be written to stdout
    :param log_path: A file that logs should be written to (default: no log file)
    :param names: The names of the loggers to configure, or None for the root logger.  Defaults to this package's
      logger, ``__main__``, and ``py.warnings``.
    :param entry_fmt: The stdout / stderr entry format.  Defaults to ``%(message)s``, or :data:`ENTRY_FMT_DETAILED`
      when ``verbosity`` > 2.
    :param millis: Include fractional seconds in timestamps
    :param file_lvl: The minimum level of entries written to ``log_path``
    :param streams: Whether stdout / stderr handlers should be added
    :param capture_warnings: Route :mod:`warnings` through the ``py.warnings`` logger
    :return: The expanded log file path, or None if no log file was configured
    """
    for lvl, name in LEVEL_NAMES.items():
        if logging.getLevelName(lvl) == f'Level {lvl}':
            logging.addLevelName(lvl, name)

    logging.getLogger().setLevel(logging.NOTSET)  # Handlers decide what is emitted
    date_fmt = '%Y-%m-%d %H:%M:%S.%f %Z' if millis else '%Y-%m-%d %H:%M:%S %Z'
    handlers = []
    if streams:
        entry_fmt = entry_fmt or (ENTRY_FMT_DETAILED if verbosity > 2 else '%(message)s')
        stdout_lvl = logging.DEBUG + 2 - verbosity if verbosity else logging.INFO
        handlers.append(
            _stream_handler('stdout', sys.stdout, stdout_lvl, lambda r: r.levelno < logging.WARNING)
        )
        handlers.append(
            _stream_handler('stderr', sys.stderr, logging.WARNING, lambda r: r.levelno >= logging.WARNING)
        )
        for handler in handlers:
            handler.setFormatter(DatetimeFormatter(entry_fmt, date_fmt))

    if log_path is not None:
        log_path = Path(log_path).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = TimedRotatingFileHandler(log_path, when='midnight', backupCount=7, encoding='utf-8')
        file_handler.name = log_path.as_posix()
        file_handler.setLevel(file_lvl)
        file_handler.setFormatter(DatetimeFormatter(ENTRY_FMT_DETAILED, date_fmt))
        handlers.append(file_handler)

    for logger in _reset_loggers(names):
        for handler in handlers:
            logger.addHandler(handler)

    if capture_warnings:
        logging.captureWarnings(True)
    if log_path is not None:
        log.log(19, f'Logging to {log_path}')
    return log_path


def _stream_handler(name: str, stream: TextIO, level: int, accept: Callable[[LogRecord], bool]) -> Handler:
    handler = logging.StreamHandler(stream)
    handler.name = name
    handler.setLevel(level)
    handler.addFilter(accept)
    return handler


def _reset_loggers(names: LoggerNames) -> list[Logger]:
    if names is _NotSet:
        names = DEFAULT_LOGGERS
    elif names is None or isinstance(names, str):
        names = (names,)
    if None in names:
        names = (None,)

    loggers = []
    for name in dict.fromkeys(names):
        logger = logging.getLogger(name)
        logger.setLevel(logging.NOTSET)
        logger.handlers = []
        loggers.append(logger)
    return loggers


class DatetimeFormatter(Formatter):
    """Timestamps are rendered in the local time zone, and ``%f`` may be used in date formats."""

    _local_tz = get_localzone()

    def formatTime(self, record: LogRecord, datefmt: str = None) -> str:
        dt = datetime.fromtimestamp(record.created, self._local_tz)
        if datefmt:
            return dt.strftime(datefmt)
        return self.default_msec_format % (dt.strftime(self.default_time_format), record.msecs)
