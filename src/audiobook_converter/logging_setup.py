"""Run and per-book log files for the converter."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from .config import Config
from .error_log import ErrorLogStore
from .utils import ensure_dir, slugify

PACKAGE_LOGGER = "audiobook_converter"
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class LoggingContext:
    root_dir: Path
    run_id: str
    log_level: int
    console_level: int
    logger: logging.Logger
    formatter: logging.Formatter
    error_log_store: ErrorLogStore
    run_log_path: Path | None = None
    _book_loggers: dict[str, logging.Logger] = field(default_factory=dict, repr=False)

    def get_book_logger(self, book_slug: str) -> logging.Logger:
        """Logger writing to ``<logs>/<slug>/<run_id>.log`` and to the run log."""
        safe_slug = slugify(book_slug)
        cached = self._book_loggers.get(safe_slug)
        if cached is not None:
            return cached

        logger = logging.getLogger(f"{PACKAGE_LOGGER}.book.{safe_slug}")
        logger.setLevel(self.log_level)
        if not _has_file_handler(logger):
            book_dir = ensure_dir(self.root_dir / safe_slug)
            handler = logging.FileHandler(book_dir / f"{self.run_id}.log", encoding="utf-8")
            handler.setLevel(self.log_level)
            handler.setFormatter(self.formatter)
            logger.addHandler(handler)
        self._book_loggers[safe_slug] = logger
        return logger

    def close(self) -> None:
        loggers = [self.logger, *self._book_loggers.values()]
        for logger in loggers:
            for handler in list(logger.handlers):
                if isinstance(handler, logging.FileHandler):
                    handler.close()
                    logger.removeHandler(handler)
        self._book_loggers.clear()


def initialize_logging(config: Config, run_id: str, *, console_level: str | None = None) -> LoggingContext:
    root_dir = ensure_dir(config.paths.logs)
    log_level = parse_log_level(config.logging.level)
    console = parse_log_level(console_level or config.logging.console_level)

    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(min(log_level, console))
    logger.propagate = False
    logger.handlers.clear()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    run_log_path = root_dir / f"run-{run_id}.log"
    file_handler = logging.FileHandler(run_log_path, encoding="utf-8")
    file_handler.setLevel(log_level)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    return LoggingContext(
        root_dir=root_dir,
        run_id=run_id,
        log_level=log_level,
        console_level=console,
        logger=logger,
        formatter=formatter,
        error_log_store=ErrorLogStore(ensure_dir(config.paths.errors)),
        run_log_path=run_log_path,
    )


def configure_console_logging(level: str = "WARNING") -> logging.Logger:
    """Console-only logging for commands that do not open a run (doctor, init)."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(parse_log_level(level))
    logger.propagate = False
    logger.handlers.clear()
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)
    return logger


def parse_log_level(level: str) -> int:
    return getattr(logging, str(level).upper(), logging.INFO)


def _has_file_handler(logger: logging.Logger) -> bool:
    return any(isinstance(handler, logging.FileHandler) for handler in logger.handlers)
