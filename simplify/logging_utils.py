"""
Logging helpers for the translation pipeline.

Every module logs through ``log()`` (or a ``logging.getLogger(__name__)``
child of the ``simplify`` logger). The worker additionally keeps a small
per-variant job ledger in ``workers/<variant>/worker.log`` so operators can
follow one translation target without grepping the main log.

Usage:
    from simplify.logging_utils import configure_logging, log

    configure_logging("DEBUG", log_file=Path("logs/worker.log"))
    log("Starting worker")
    log("Budget nearly exhausted", level="warning")
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

LOGGER_NAME = "simplify"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_logger = logging.getLogger(LOGGER_NAME)


def configure_logging(
    level: str = "INFO", log_file: Optional[Path] = None
) -> logging.Logger:
    """
    Attach console (and optionally file) handlers to the package logger.

    Safe to call repeatedly; existing handlers are replaced.
    """
    _logger.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    for handler in list(_logger.handlers):
        _logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    _logger.addHandler(console)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        _logger.addHandler(file_handler)

    _logger.propagate = False
    return _logger


def log(message: str, level: str = "info") -> None:
    """Log a message on the package logger."""
    _logger.log(getattr(logging, level.upper(), logging.INFO), message)


class WorkerLog:
    """
    Per-variant job ledger.

    Lines look like::

        [2025-01-14 09:12:03] SUCCESS | blog/post-1 | Post 1 | 812 tokens | $0.0031 | 14.20s
    """

    def __init__(self, log_dir: Path, variant_code: str):
        self.variant_code = variant_code
        self.path = Path(log_dir) / "workers" / variant_code / "worker.log"

    def _write(self, message: str) -> None:
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(f"[{timestamp}] {message}\n")
        except OSError as e:
            log(f"Failed to write worker log {self.path}: {e}", level="warning")

    def job_line(
        self,
        status: str,
        page_id: str,
        page_title: str,
        tokens: int = 0,
        cost: float = 0.0,
        duration: float = 0.0,
        error: Optional[str] = None,
    ) -> None:
        message = (
            f"{status} | {page_id} | {page_title} | {int(tokens)} tokens | "
            f"${cost or 0.0:.4f} | {duration:.2f}s"
        )
        if error:
            message += f" | Error: {error}"
        self._write(message)

    def job_start(self, page_id: str, page_title: str) -> None:
        self.job_line("START", page_id, page_title)

    def job_success(
        self, page_id: str, page_title: str, tokens: int, cost: float, duration: float
    ) -> None:
        self.job_line("SUCCESS", page_id, page_title, tokens, cost, duration)

    def job_failure(
        self, page_id: str, page_title: str, error: str, duration: float = 0.0
    ) -> None:
        self.job_line("FAILED", page_id, page_title, duration=duration, error=error)

    def job_retry(self, page_id: str, page_title: str, attempt: int, reason: str) -> None:
        self._write(
            f"RETRY (attempt {attempt}) | {page_id} | {page_title} | Reason: {reason}"
        )
