"""Observability utilities for the tagnotes service.

Provides rotating file logging, per-operation timing metrics, event
counters (orphaned blobs, skipped reorder ids) and a structured logger.
"""
import functools
import json
import logging
import time
import uuid
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

ROOT_LOGGER_NAME = "tagnotes"

DEFAULT_LOG_DIR = Path.home() / ".tagnotes" / "logs"
DEFAULT_METRICS_FILE = Path.home() / ".tagnotes" / "metrics.json"

# Logging format with ISO 8601 timestamps
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

F = TypeVar('F', bound=Callable[..., Any])


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB per file
    backup_count: int = 5,
    console: bool = True,
) -> Path:
    """Configure persistent file logging with rotation.

    Attaches a rotating file handler (and optionally a console handler) to
    the ``tagnotes`` logger, which every module logger in the package
    propagates to.

    Args:
        log_dir: Directory for log files. Defaults to ~/.tagnotes/logs/
        level: Logging level (default: INFO)
        max_bytes: Maximum size per log file before rotation (default: 10 MB)
        backup_count: Number of rotated files to keep (default: 5)
        console: Also log to console (default: True)

    Returns:
        Path to the log directory
    """
    log_path = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    log_file = log_path / "tagnotes.log"
    if not any(isinstance(h, RotatingFileHandler) for h in root_logger.handlers):
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    if console and not any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler)
        for h in root_logger.handlers
    ):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    root_logger.info(f"Logging configured: {log_file} (max {max_bytes} bytes, {backup_count} backups)")

    return log_path


@dataclass
class OperationMetrics:
    """Metrics for a single operation type."""
    count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_duration_ms: float = 0.0
    min_duration_ms: float = float('inf')
    max_duration_ms: float = 0.0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None


class MetricsCollector:
    """Thread-safe metrics collection for store and API operations.

    Tracks timing and success/failure per operation name (create_note,
    upload_attachment, ...) and plain event counters (orphan_blob, ...).
    Can persist a snapshot to disk as JSON.
    """

    def __init__(
        self,
        metrics_file: Optional[Union[str, Path]] = None,
        auto_save_interval: int = 0,
    ):
        """Initialize the metrics collector.

        Args:
            metrics_file: Path to persist metrics. Defaults to ~/.tagnotes/metrics.json
            auto_save_interval: Save to disk every N operations (0 to disable)
        """
        self._metrics: Dict[str, OperationMetrics] = defaultdict(OperationMetrics)
        self._counters: Dict[str, int] = defaultdict(int)
        self._lock = Lock()
        self._start_time = datetime.now(timezone.utc)
        self._metrics_file = Path(metrics_file) if metrics_file else DEFAULT_METRICS_FILE
        self._auto_save_interval = auto_save_interval
        self._operation_count_since_save = 0

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None
    ) -> None:
        """Record metrics for an operation.

        Args:
            operation: The operation name (e.g., 'create_note', 'reorder_notes')
            duration_ms: Duration in milliseconds
            success: Whether the operation succeeded
            error: Error message if the operation failed
        """
        with self._lock:
            m = self._metrics[operation]
            m.count += 1
            m.total_duration_ms += duration_ms
            m.min_duration_ms = min(m.min_duration_ms, duration_ms)
            m.max_duration_ms = max(m.max_duration_ms, duration_ms)

            if success:
                m.success_count += 1
            else:
                m.error_count += 1
                m.last_error = error
                m.last_error_time = datetime.now(timezone.utc)

            self._operation_count_since_save += 1
            if (
                self._auto_save_interval > 0
                and self._operation_count_since_save >= self._auto_save_interval
            ):
                self._save_metrics_unlocked()

    def increment(self, counter: str, amount: int = 1) -> int:
        """Bump a named event counter and return its new value."""
        with self._lock:
            self._counters[counter] += amount
            return self._counters[counter]

    def get_counter(self, counter: str) -> int:
        with self._lock:
            return self._counters.get(counter, 0)

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Get a snapshot of all operation metrics."""
        with self._lock:
            result = {}
            for op, m in self._metrics.items():
                avg_duration = m.total_duration_ms / m.count if m.count > 0 else 0
                min_dur = m.min_duration_ms if m.min_duration_ms != float('inf') else 0
                result[op] = {
                    'count': m.count,
                    'success_count': m.success_count,
                    'error_count': m.error_count,
                    'success_rate': m.success_count / m.count if m.count > 0 else 0,
                    'avg_duration_ms': round(avg_duration, 2),
                    'min_duration_ms': round(min_dur, 2),
                    'max_duration_ms': round(m.max_duration_ms, 2),
                    'last_error': m.last_error,
                    'last_error_time': m.last_error_time.isoformat() if m.last_error_time else None
                }
            return result

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of overall service health."""
        with self._lock:
            total_ops = sum(m.count for m in self._metrics.values())
            total_success = sum(m.success_count for m in self._metrics.values())
            total_errors = sum(m.error_count for m in self._metrics.values())

            return {
                'uptime_seconds': (datetime.now(timezone.utc) - self._start_time).total_seconds(),
                'total_operations': total_ops,
                'total_success': total_success,
                'total_errors': total_errors,
                'overall_success_rate': total_success / total_ops if total_ops > 0 else 1.0,
                'operations_tracked': sorted(self._metrics.keys()),
                'counters': dict(self._counters),
            }

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._metrics.clear()
            self._counters.clear()
            self._start_time = datetime.now(timezone.utc)
            self._operation_count_since_save = 0

    def _save_metrics_unlocked(self) -> bool:
        """Save metrics to disk (must be called with lock held)."""
        try:
            self._metrics_file.parent.mkdir(parents=True, exist_ok=True)

            data: Dict[str, Any] = {
                "start_time": self._start_time.isoformat(),
                "saved_at": datetime.now(timezone.utc).isoformat(),
                "operations": {},
                "counters": dict(self._counters),
            }
            for op_name, m in self._metrics.items():
                data["operations"][op_name] = {
                    "count": m.count,
                    "success_count": m.success_count,
                    "error_count": m.error_count,
                    "total_duration_ms": m.total_duration_ms,
                    "max_duration_ms": m.max_duration_ms,
                    "last_error": m.last_error,
                }

            # Atomic write via temp file
            temp_file = self._metrics_file.with_suffix(".tmp")
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)

            temp_file.replace(self._metrics_file)
            self._operation_count_since_save = 0
            return True

        except (OSError, TypeError) as e:
            logger.error(f"Failed to save metrics to {self._metrics_file}: {e}")
            return False

    def save_metrics(self) -> bool:
        """Explicitly save metrics to disk."""
        with self._lock:
            return self._save_metrics_unlocked()


# Global metrics collector instance
metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context):
    """Context manager for timing and logging operations.

    Args:
        operation: Name of the operation being performed
        **context: Additional context to include in log messages

    Yields:
        A dictionary where you can store result info (e.g., result_count)

    Example:
        with timed_operation('list_notes', user_id=7) as op:
            page = assembler.assemble(7, 0, 20)
            op['result_count'] = len(page.notes)
    """
    correlation_id = str(uuid.uuid4())[:8]
    start_time = time.perf_counter()
    result_info: Dict[str, Any] = {'correlation_id': correlation_id}

    context_str = ', '.join(f'{k}={v}' for k, v in context.items())
    logger.debug(f"[{correlation_id}] START {operation} ({context_str})")

    error_msg = None
    success = True

    try:
        yield result_info
    except Exception as e:
        success = False
        error_msg = str(e)
        raise
    finally:
        duration_ms = (time.perf_counter() - start_time) * 1000
        metrics.record_operation(operation, duration_ms, success, error_msg)

        result_str = ', '.join(f'{k}={v}' for k, v in result_info.items() if k != 'correlation_id')
        status = 'OK' if success else f'ERROR: {error_msg}'
        logger.debug(
            f"[{correlation_id}] END {operation} "
            f"({duration_ms:.2f}ms) [{status}] {result_str}"
        )


def traced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Decorator that runs the wrapped call inside timed_operation.

    Picks note_id / user_id out of keyword arguments for the log context.

    Example:
        @traced('reorder_notes')
        def reorder(self, user_id: int, note_ids: List[int]) -> ReorderResult:
            ...
    """
    def decorator(func: F) -> F:
        op_name = operation_name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            context = {
                key: kwargs[key] for key in ('user_id', 'note_id') if key in kwargs
            }

            with timed_operation(op_name, **context) as op:
                result = func(*args, **kwargs)
                if hasattr(result, '__len__'):
                    op['result_count'] = len(result)
                elif result is not None:
                    op['has_result'] = True
                return result

        return wrapper  # type: ignore
    return decorator


class StructuredLogger:
    """Logger adapter that adds structured context to all messages.

    Wraps the standard logging module to automatically include
    component name and per-call key=value context.
    """

    def __init__(self, component: str):
        self._logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{component}")
        self._component = component

    def _format_message(self, msg: str, **extra) -> str:
        if extra:
            ctx_str = " ".join(f"{k}={v}" for k, v in extra.items())
            return f"[{self._component}] {msg} | {ctx_str}"
        return f"[{self._component}] {msg}"

    def debug(self, msg: str, **extra) -> None:
        self._logger.debug(self._format_message(msg, **extra))

    def info(self, msg: str, **extra) -> None:
        self._logger.info(self._format_message(msg, **extra))

    def warning(self, msg: str, **extra) -> None:
        self._logger.warning(self._format_message(msg, **extra))

    def error(self, msg: str, exc_info: bool = False, **extra) -> None:
        self._logger.error(self._format_message(msg, **extra), exc_info=exc_info)


def get_logger(component: str) -> StructuredLogger:
    """Get a structured logger for a component (e.g. 'attachments')."""
    return StructuredLogger(component)
