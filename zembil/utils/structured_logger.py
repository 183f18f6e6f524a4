"""
Structured logging for sync sessions.
Writes JSON-lines event logs alongside the regular console output.
"""

import json
import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Any


class StructuredLogger:
    """
    Logger that outputs both human-readable and machine-parseable logs.

    Usage:
        logger = StructuredLogger("zembil.sync", log_dir=Path("logs"))
        logger.info("item_completed",
                    package="left-pad@1.3.0",
                    manager="npm",
                    size_bytes=2048)
    """

    def __init__(
        self,
        name: str,
        log_dir: Path | None = None,
        enable_json: bool = True,
        enable_console: bool = True,
    ):
        """
        Initialize structured logger.

        Args:
            name: Logger name
            log_dir: Directory for JSON log files (None = disabled)
            enable_json: Enable JSON file logging
            enable_console: Enable console output
        """
        self.name = name
        self.log_dir = log_dir
        self.enable_json = enable_json and log_dir is not None
        self.enable_console = enable_console

        self._logger = logging.getLogger(name)

        self._json_file = None
        self.json_log_path: Path | None = None
        if self.enable_json:
            log_dir.mkdir(parents=True, exist_ok=True)
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            self.json_log_path = log_dir / f"zembil_{timestamp}.jsonl"
            self._json_file = open(self.json_log_path, "a", encoding="utf-8")  # noqa: SIM115

        # Session context (added to all log entries)
        self._session_context: dict[str, Any] = {
            "session_id": f"{int(time.time())}_{id(self)}",
            "start_time": datetime.now().isoformat(),
        }

    def set_session_context(self, **kwargs) -> None:
        """Set session-level context that appears in all logs."""
        self._session_context.update(kwargs)

    def _format_message(self, event: str, **context) -> str:
        parts = [f"[{event}]"]
        for key, value in context.items():
            parts.append(f"{key}={value}")
        return " ".join(parts)

    def _write_json(self, level: str, event: str, **context) -> None:
        """Write structured log entry to JSON file."""
        if not self._json_file or self._json_file.closed:
            return

        entry = {
            "timestamp": datetime.now().isoformat(),
            "level": level,
            "event": event,
            **self._session_context,
            **context,
        }

        try:
            self._json_file.write(json.dumps(entry, default=str) + "\n")
            self._json_file.flush()
        except (OSError, ValueError) as e:
            print(f"JSON logging failed: {e}", file=sys.stderr)

    def _log(self, level: int, event: str, **context) -> None:
        if self.enable_console:
            self._logger.log(level, self._format_message(event, **context))
        if self.enable_json:
            self._write_json(logging.getLevelName(level), event, **context)

    def debug(self, event: str, **context) -> None:
        self._log(logging.DEBUG, event, **context)

    def info(self, event: str, **context) -> None:
        self._log(logging.INFO, event, **context)

    def warning(self, event: str, **context) -> None:
        self._log(logging.WARNING, event, **context)

    def error(self, event: str, **context) -> None:
        self._log(logging.ERROR, event, **context)

    def close(self) -> None:
        """Close JSON log file."""
        if self._json_file and not self._json_file.closed:
            self._json_file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class SyncLogger:
    """Specialized logger for sync session events."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def sync_started(self, pending: int, managers: list[str]):
        self.logger.info("sync_started", pending=pending, managers=managers)

    def item_started(self, entry_id: str, package: str, manager: str, priority: int):
        self.logger.debug(
            "item_started",
            entry_id=entry_id,
            package=package,
            manager=manager,
            priority=priority,
        )

    def item_completed(
        self,
        entry_id: str,
        package: str,
        manager: str,
        size_bytes: int,
        duration_s: float,
        docs_cached: bool,
        examples_cached: bool,
    ):
        self.logger.info(
            "item_completed",
            entry_id=entry_id,
            package=package,
            manager=manager,
            size_bytes=size_bytes,
            duration_s=round(duration_s, 2),
            docs_cached=docs_cached,
            examples_cached=examples_cached,
        )

    def item_failed(
        self, entry_id: str, package: str, manager: str, error_kind: str, error: str
    ):
        self.logger.error(
            "item_failed",
            entry_id=entry_id,
            package=package,
            manager=manager,
            error_kind=error_kind,
            error=error,
        )

    def sync_completed(
        self, duration_s: float, downloaded: int, failed: int, total_size_bytes: int
    ):
        self.logger.info(
            "sync_completed",
            duration_s=round(duration_s, 2),
            downloaded=downloaded,
            failed=failed,
            total_size_bytes=total_size_bytes,
        )


def create_structured_logger(
    log_dir: Path | None = None, enable_json: bool = False
) -> tuple[StructuredLogger, SyncLogger]:
    """
    Create the structured loggers for a sync session.

    Console output is left to the regular `zembil` loggers; the structured
    logger only writes the JSON event file.

    Returns:
        Tuple of (base_logger, sync_logger)
    """
    base = StructuredLogger(
        "zembil.events", log_dir=log_dir, enable_json=enable_json, enable_console=False
    )
    return base, SyncLogger(base)
