"""Logging setup for the EXR inspector: rotating log file, console and UI relay."""
from __future__ import annotations

import logging
import logging.handlers
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Tuple


DEFAULT_LOG_FILENAME = "exr_inspector.log"
DEFAULT_LOG_DIRNAME = ".exr_inspector"

FILE_FORMAT = "%(asctime)s | %(levelname)s | %(component)s | %(message)s"
DIAGNOSTIC_FORMAT = "%(asctime)s | %(levelname)s | %(threadName)s | %(name)s:%(lineno)d | %(message)s"
RELAY_FORMAT = "[%(asctime)s] %(message)s"


class _ComponentFilter(logging.Filter):
    """Give records logged without ``extra={"component": ...}`` a component name."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "component"):
            record.component = record.name.rsplit(".", 1)[-1]
        return True


@dataclass
class LoggingOptions:
    """Runtime options for configuring the logging subsystem."""

    log_directory: Optional[os.PathLike] = None
    level: int = logging.INFO
    enable_console: bool = True
    enable_file: bool = True
    developer_diagnostics: bool = False
    max_bytes: int = 5 * 1024 * 1024
    backup_count: int = 5
    # Pillow logs every PNG chunk it parses at DEBUG.
    quiet_loggers: Tuple[str, ...] = ("PIL",)


class LogRelayHandler(logging.Handler):
    """Forward formatted records to a UI sink such as the window's log box."""

    def __init__(self, sink: Callable[[str], None], level: int = logging.INFO) -> None:
        super().__init__(level)
        self._sink = sink
        self.addFilter(_ComponentFilter())
        self.setFormatter(logging.Formatter(RELAY_FORMAT, datefmt="%H:%M:%S"))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._sink(self.format(record))
        except Exception:  # pragma: no cover - logging must never raise
            self.handleError(record)


class LoggingConfigurator:
    """Install the root handlers once at start-up."""

    def __init__(self, options: Optional[LoggingOptions] = None) -> None:
        self.options = options or LoggingOptions()
        self.logger = logging.getLogger()

    @property
    def level(self) -> int:
        return logging.DEBUG if self.options.developer_diagnostics else self.options.level

    def configure(self) -> Optional[Path]:
        """Replace the root handlers and return the log file path, if file logging is on."""

        self.logger.setLevel(self.level)
        self._clear_existing_handlers()

        handlers: List[logging.Handler] = []
        log_path: Optional[Path] = None
        if self.options.enable_file:
            log_path = self._determine_log_path()
            handlers.append(self._file_handler(log_path))
        if self.options.enable_console:
            handlers.append(self._console_handler())
        for handler in handlers:
            handler.addFilter(_ComponentFilter())
            handler.setLevel(self.level)
            self.logger.addHandler(handler)

        for name in self.options.quiet_loggers:
            logging.getLogger(name).setLevel(max(self.level, logging.WARNING))

        self.logger.debug("Logging configured", extra={"component": "LoggingConfigurator"})
        return log_path

    def _file_handler(self, log_path: Path) -> logging.Handler:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=self.options.max_bytes,
            backupCount=self.options.backup_count,
            encoding="utf-8",
        )
        handler.setFormatter(logging.Formatter(FILE_FORMAT))
        return handler

    def _console_handler(self) -> logging.Handler:
        handler = logging.StreamHandler()
        fmt = DIAGNOSTIC_FORMAT if self.options.developer_diagnostics else FILE_FORMAT
        handler.setFormatter(logging.Formatter(fmt))
        return handler

    def _determine_log_path(self) -> Path:
        if self.options.log_directory is not None:
            return Path(self.options.log_directory) / DEFAULT_LOG_FILENAME
        return Path.home() / DEFAULT_LOG_DIRNAME / DEFAULT_LOG_FILENAME

    def _clear_existing_handlers(self) -> None:
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
            handler.close()


__all__ = ["LogRelayHandler", "LoggingConfigurator", "LoggingOptions"]
