"""Levelled logging to the console and to size-rotated log files."""

from __future__ import annotations

import gzip
import shutil
import sys
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import IntEnum
from pathlib import Path

_BACKUP_STAMP = "%Y-%m-%dT%H-%M-%S.%f"
_MEGABYTE = 1024 * 1024
_DEFAULT_MAX_SIZE_MB = 100


class Level(IntEnum):
    """Severity of a log record."""

    DEBUG = 0
    INFO = 1
    WARN = 2
    ERROR = 3
    FATAL = 4


_LEVEL_NAMES = {
    "debug": Level.DEBUG,
    "info": Level.INFO,
    "warn": Level.WARN,
    "warning": Level.WARN,
    "error": Level.ERROR,
    "fatal": Level.FATAL,
}


@dataclass
class LogConfig:
    """Settings for :func:`create_logger`."""

    level: str = "info"
    file: str = ""
    max_size: int = 0
    max_backups: int = 0
    max_age: int = 0
    compress: bool = False
    console: bool = False


class _StderrWriter:
    """Writes to whatever ``sys.stderr`` is at the time of writing."""

    def write(self, text: str) -> None:
        sys.stderr.write(text)

    def flush(self) -> None:
        sys.stderr.flush()


class _RotatingFile:
    """Append-only log file that is rotated once it grows past a size limit."""

    def __init__(self, path, max_size_mb=0, max_backups=0, max_age_days=0, compress=False):
        self._path = Path(path)
        self._max_bytes = (max_size_mb if max_size_mb > 0 else _DEFAULT_MAX_SIZE_MB) * _MEGABYTE
        self._max_backups = max_backups
        self._max_age = max_age_days
        self._compress = compress
        self._stream = None
        self._size = 0

    def write(self, text: str) -> None:
        data = text.encode("utf-8")
        if self._stream is None:
            self._stream = open(self._path, "ab")
            self._size = self._path.stat().st_size
        if self._size and self._size + len(data) > self._max_bytes:
            self._rotate()
        self._stream.write(data)
        self._stream.flush()
        self._size += len(data)

    def flush(self) -> None:
        if self._stream is not None:
            self._stream.flush()

    def close(self) -> None:
        if self._stream is not None:
            self._stream.close()
            self._stream = None

    def _rotate(self) -> None:
        self._stream.close()
        stamp = datetime.now(timezone.utc).strftime(_BACKUP_STAMP)
        backup = self._path.with_name(f"{self._path.stem}-{stamp}{self._path.suffix}")
        self._path.replace(backup)
        if self._compress:
            with open(backup, "rb") as src, gzip.open(f"{backup}.gz", "wb") as dst:
                shutil.copyfileobj(src, dst)
            backup.unlink()
        self._stream = open(self._path, "wb")
        self._size = 0
        self._prune()

    def _backups(self):
        prefix = self._path.stem + "-"
        suffix = self._path.suffix
        found = []
        for entry in self._path.parent.iterdir():
            base = entry.name[:-3] if entry.name.endswith(".gz") else entry.name
            if not (base.startswith(prefix) and base.endswith(suffix)):
                continue
            stamp = base[len(prefix):len(base) - len(suffix)]
            try:
                when = datetime.strptime(stamp, _BACKUP_STAMP).replace(tzinfo=timezone.utc)
            except ValueError:
                continue
            found.append((when, entry))
        found.sort(key=lambda item: item[0], reverse=True)
        return found

    def _prune(self) -> None:
        cutoff = None
        if self._max_age > 0:
            cutoff = datetime.now(timezone.utc) - timedelta(days=self._max_age)
        for index, (when, entry) in enumerate(self._backups()):
            too_many = self._max_backups > 0 and index >= self._max_backups
            too_old = cutoff is not None and when < cutoff
            if too_many or too_old:
                entry.unlink(missing_ok=True)


class Logger:
    """Logger that filters by level and writes to one or more text writers."""

    def __init__(self, level=Level.INFO, writers=None, prefix=""):
        self._lock = threading.RLock()
        self._write_lock = threading.Lock()
        self._level = Level(level)
        self._prefix = prefix
        self._writers = list(writers) if writers is not None else [_StderrWriter()]
        self._owned = []

    @property
    def level(self) -> Level:
        with self._lock:
            return self._level

    @property
    def prefix(self) -> str:
        with self._lock:
            return self._prefix

    def set_level(self, level) -> None:
        with self._lock:
            self._level = Level(level)

    def set_prefix(self, prefix: str) -> None:
        with self._lock:
            self._prefix = prefix

    def debug(self, message, *args) -> None:
        self._log(Level.DEBUG, message, args, 2)

    def info(self, message, *args) -> None:
        self._log(Level.INFO, message, args, 2)

    def warn(self, message, *args) -> None:
        self._log(Level.WARN, message, args, 2)

    def error(self, message, *args) -> None:
        self._log(Level.ERROR, message, args, 2)

    def fatal(self, message, *args) -> None:
        """Log at fatal level, then exit with status 1."""
        self._log(Level.FATAL, message, args, 2)
        raise SystemExit(1)

    def close(self) -> None:
        """Close the files this logger opened itself."""
        with self._lock:
            for writer in self._owned:
                writer.close()
            self._owned.clear()

    def _log(self, level: Level, message: str, args: tuple, depth: int) -> None:
        with self._lock:
            current, prefix = self._level, self._prefix
        if level < current:
            return

        try:
            frame = sys._getframe(depth)
            location = f"{Path(frame.f_code.co_filename).name}:{frame.f_lineno}"
        except ValueError:
            location = "???:0"

        text = message % args if args else message
        if prefix:
            text = f"[{prefix}] {text}"

        stamp = datetime.now().strftime("%Y/%m/%d %H:%M:%S.%f")
        line = f"{stamp} [{level.name}] {location} {text}\n"
        with self._write_lock:
            for writer in self._writers:
                writer.write(line)
                flush = getattr(writer, "flush", None)
                if flush is not None:
                    flush()


def parse_level(level: str) -> Level:
    """Map a level name to a :class:`Level`; unknown names mean INFO."""
    return _LEVEL_NAMES.get(level, Level.INFO)


def create_logger(config: LogConfig) -> Logger:
    """Build a logger writing to a rotated file, the console, or both."""
    writers = []
    owned = []
    if config.file:
        Path(config.file).parent.mkdir(parents=True, exist_ok=True)
        file_writer = _RotatingFile(
            config.file,
            max_size_mb=config.max_size,
            max_backups=config.max_backups,
            max_age_days=config.max_age,
            compress=config.compress,
        )
        writers.append(file_writer)
        owned.append(file_writer)
    if config.console or not config.file:
        writers.append(_StderrWriter())

    result = Logger(parse_level(config.level), writers)
    result._owned = owned
    return result


_default: Logger | None = None
_init_lock = threading.Lock()


def initialize(config: LogConfig) -> None:
    """Set up the default logger unless one is already in place."""
    global _default
    with _init_lock:
        if _default is None:
            _default = create_logger(config)


def debug(message, *args) -> None:
    if _default is not None:
        _default._log(Level.DEBUG, message, args, 2)


def info(message, *args) -> None:
    if _default is not None:
        _default._log(Level.INFO, message, args, 2)


def warn(message, *args) -> None:
    if _default is not None:
        _default._log(Level.WARN, message, args, 2)


def error(message, *args) -> None:
    if _default is not None:
        _default._log(Level.ERROR, message, args, 2)


def fatal(message, *args) -> None:
    """Log through the default logger (or stderr), then exit with status 1."""
    if _default is not None:
        _default._log(Level.FATAL, message, args, 2)
    else:
        text = message % args if args else message
        sys.stderr.write(f"{datetime.now():%Y/%m/%d %H:%M:%S} {text}\n")
    raise SystemExit(1)


def close() -> None:
    """Close and discard the default logger."""
    global _default
    with _init_lock:
        current, _default = _default, None
    if current is not None:
        current.close()