# utils/logger.py
"""Logging helpers built on top of loguru."""

from __future__ import annotations

import os
import sys
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator, Optional, TypeVar, cast

from loguru import logger as _logger
from loguru._logger import Logger as LoguruLogger
from tqdm.auto import tqdm

T = TypeVar("T")


# ============================== CONFIG =======================================

MODULE_W = 7
LINE_W = 3


@dataclass(frozen=True)
class LoggingCfg:
    """Project-wide logging configuration."""

    level: str = os.environ.get("RWSEG_LOG_LEVEL", "INFO")
    json: bool = True
    to_file: bool = True
    log_dir: Path = Path(".logs")
    log_format: str = (
        "<green>{time:MM-DD HH:mm:ss}</green>"
        "[<level>{level:.3}</level>]"
        f"[<cyan>{{extra[module]:<{MODULE_W}.{MODULE_W}}}</cyan>:"
        f"<cyan>{{line:>{LINE_W}}}</cyan>] "
        "<level>{message}</level>"
    )
    # file logs are JSON (serialize=True), so this format is unused in practice.
    log_file_format: str = (
        f"{{time:YYYY-MM-DD HH:mm:ss}}[{{level:.3}}]"
        f"[{{extra[module]:<{MODULE_W}.{MODULE_W}}}:{{line:>{LINE_W}}}] "
        "{{message}}"
    )
    progress_bar_format: str = (
        "{l_bar}{bar}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}]"
    )


# Exposed default config instance
LOGCFG = LoggingCfg()


# ============================== LOGGER =======================================


class Logger:
    """Thin wrapper around loguru with unified configuration."""

    _configured: bool = False
    _log_dir: Path = LOGCFG.log_dir
    _log_file: Optional[Path] = None
    _to_file: bool = LOGCFG.to_file
    _lock = threading.Lock()

    @staticmethod
    def _add_sinks(level: str, json_format: bool) -> None:
        """Attach console and (optionally) file sinks."""
        _logger.add(
            sys.stdout,
            level=level,
            serialize=False,
            format=LOGCFG.log_format,
        )
        if not Logger._to_file:
            return
        os.makedirs(Logger._log_dir, exist_ok=True)
        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        Logger._log_file = Logger._log_dir / f"{ts}.log.json"
        _logger.add(
            Logger._log_file,
            level=level,
            serialize=json_format,
            format=LOGCFG.log_file_format,
        )

    @staticmethod
    def _configure(level: str, json_format: bool) -> None:
        """Configure sinks once (thread-safe)."""
        with Logger._lock:
            if Logger._configured:
                return
            _logger.remove()
            Logger._add_sinks(level, json_format)
            Logger._configured = True

    @staticmethod
    def configure(
        level: Optional[str] = None,
        log_dir: Optional[Path | str] = None,
        json_format: Optional[bool] = None,
        to_file: Optional[bool] = None,
    ) -> None:
        """
        Manually configure the logger.
        Call before any get_logger() to take effect.
        """
        if log_dir is not None:
            Logger._log_dir = Path(log_dir)
        if to_file is not None:
            Logger._to_file = bool(to_file)
        lvl = level or LOGCFG.level
        jsn = LOGCFG.json if json_format is None else bool(json_format)
        Logger._configure(lvl, jsn)

    @staticmethod
    def get_logger(
        name: str,
        level: Optional[str] = None,
        json_format: Optional[bool] = None,
    ) -> LoguruLogger:
        """
        Return a configured loguru logger bound to ``name`` (in extra[module]).
        """
        Logger._configure(
            level or LOGCFG.level,
            LOGCFG.json if json_format is None else bool(json_format),
        )
        return _logger.bind(module=name)

    @staticmethod
    def progress(
        iterable: Iterable[T],
        desc: Optional[str] = None,
        total: Optional[int] = None,
        disable: bool = False,
    ) -> Iterable[T]:
        """Unified tqdm wrapper with project bar style."""
        return cast(
            Iterable[T],
            tqdm(
                iterable,
                desc=desc,
                total=total,
                leave=False,
                disable=disable,
                bar_format=LOGCFG.progress_bar_format,
            ),
        )

    @staticmethod
    @contextmanager
    def timed(log: LoguruLogger, title: str) -> Iterator[None]:
        """Log wall time of the enclosed block as ``title ... <ms>``."""
        t0 = time.perf_counter()
        log.info(f"{title}")
        try:
            yield
        finally:
            dt = (time.perf_counter() - t0) * 1000.0
            log.info(f"{title} done in {dt:.1f} ms")


# ============================== CONTEXTS =====================================


class SuppressO3DInfo:
    """Silence noisy stdout/stderr from libs (e.g., Open3D)."""

    def __init__(self) -> None:
        self._old_stdout: Optional[int] = None
        self._old_stderr: Optional[int] = None
        self._devnull: Optional[int] = None

    def __enter__(self) -> "SuppressO3DInfo":
        sys.stdout.flush()
        sys.stderr.flush()
        self._old_stdout = os.dup(1)
        self._old_stderr = os.dup(2)
        self._devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(self._devnull, 1)
        os.dup2(self._devnull, 2)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._old_stdout is not None:
            os.dup2(self._old_stdout, 1)
            os.close(self._old_stdout)
        if self._old_stderr is not None:
            os.dup2(self._old_stderr, 2)
            os.close(self._old_stderr)
        if self._devnull is not None:
            os.close(self._devnull)
