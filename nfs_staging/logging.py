from __future__ import annotations

import os
import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from loguru import Logger

from loguru import logger

DEFAULT_LOG_DIR = Path(
    os.environ.get(
        "NFS_STAGING_LOG_DIR",
        Path.home() / ".local" / "state" / "nfs-staging" / "logs",
    )
)


def _should_log_command_output(record) -> bool:
    """Keep raw command stdout/stderr out of the console unless tracing."""
    tags = record["extra"].get("tags", [])

    # Always log problems
    if record["level"].no >= logger.level("WARNING").no:
        return True

    if "command-output" in tags:
        return record["level"].no <= logger.level("TRACE").no

    return True


def setup_logging(
    *,
    debug: bool = False,
    trace: bool = False,
    log_dir: Path | None = None,
) -> Logger:
    """
    Setup multi-tier logging with separate sinks for different log levels.

    Logging Tiers:
    - CRITICAL/ERROR: Aborted remediation stages
    - WARNING: Advisory failures (export probe, NFS service restarts)
    - SUCCESS/INFO: Stage progress, plans, swaps
    - DEBUG: Command execution
    - TRACE: Raw command output

    Log Files:
    - operations.log: INFO+ events (7 day retention)
    - debug.log: DEBUG+ events when --debug is enabled (3 day retention)
    - trace.log: TRACE+ events when --trace is enabled (1 day retention)
    - structured.jsonl: Structured JSON logs for analysis (7 day retention)

    Args:
        debug: Enable DEBUG level logging
        trace: Enable TRACE level logging (very verbose)
        log_dir: Custom log directory (defaults to ~/.local/state/nfs-staging/logs)
    """
    logger.remove()
    logger.configure(extra={"job_id": "-", "tags": [], "source": "APP"})

    if trace:
        console_level = "TRACE"
    elif debug:
        console_level = "DEBUG"
    else:
        console_level = "INFO"

    # SINK 1: Console (stderr)
    logger.add(
        sys.stderr,
        level=console_level,
        backtrace=False,
        diagnose=False,
        filter=_should_log_command_output,
        colorize=True,
        format=(
            "<green>{time:HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[source]: <12}</cyan> | "
            "{message}"
        ),
    )

    log_dir = log_dir or DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    # SINK 2: Operations Log - Important events only (INFO+)
    logger.add(
        log_dir / "operations.log",
        level="INFO",
        rotation="5 MB",
        retention="7 days",
        compression="zip",
        backtrace=False,
        diagnose=False,
        format=(
            "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{extra[source]: <12} | "
            "{extra[job_id]: <20} | "
            "{message}"
        ),
    )

    # SINK 3: Debug Log (DEBUG+ when debug=True)
    if debug or trace:
        logger.add(
            log_dir / "debug.log",
            level="DEBUG",
            rotation="10 MB",
            retention="3 days",
            compression="zip",
            backtrace=True,
            diagnose=True,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{extra[source]: <12} | "
                "{extra[job_id]: <20} | "
                "{extra[tags]} | "
                "{message}"
            ),
        )

    # SINK 4: Trace Log (TRACE only, when trace=True)
    if trace:
        logger.add(
            log_dir / "trace.log",
            level="TRACE",
            rotation="50 MB",
            retention="1 day",
            compression="zip",
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{extra[source]: <12} | "
                "{extra[job_id]: <20} | "
                "{message}"
            ),
        )

    # SINK 5: Structured JSON Log (INFO+)
    logger.add(
        log_dir / "structured.jsonl",
        level="INFO",
        rotation="10 MB",
        retention="7 days",
        compression="zip",
        serialize=True,
        format="{message}",
    )

    return logger


def get_logger(
    *,
    job_id: str | None = None,
    tags: Iterable[str] | None = None,
    source: str | None = None,
) -> Logger:
    """
    Get a logger with bound context.

    Args:
        job_id: Job identifier for tracking operations
        tags: Tags for filtering (e.g., ["remediation", "storage"])
        source: Source component (e.g., "planner", "system", "flash")

    Returns:
        Logger with bound context
    """
    extras: dict[str, object] = {}
    if job_id is not None:
        extras["job_id"] = job_id
    if tags is not None:
        extras["tags"] = list(tags)
    if source is not None:
        extras["source"] = source
    return logger.bind(**extras)


@contextmanager
def operation_context(operation: str, **details):
    """
    Context manager for tracking long-running operations with automatic timing.

    Logs operation start, completion and failure with duration tracking.

    Args:
        operation: Operation name (e.g., "remediate", "prepare")
        **details: Operation-specific details to log

    Yields:
        Logger bound with job_id and operation context

    Example:
        with operation_context("remediate", path="/srv/rootfs") as log:
            log.info("Planning loopback image")
    """
    job_id = f"{operation}-{uuid.uuid4().hex[:8]}"

    with logger.contextualize(job_id=job_id, operation=operation, **details):
        start_time = time.time()
        log = get_logger(job_id=job_id, tags=[operation], source=operation)

        log.info(f"{operation.capitalize()} started", **details)

        try:
            yield log
            duration = time.time() - start_time
            log.success(
                f"{operation.capitalize()} completed",
                duration_seconds=round(duration, 2),
            )
        except Exception as e:
            duration = time.time() - start_time
            log.error(
                f"{operation.capitalize()} failed",
                error=str(e),
                error_type=type(e).__name__,
                duration_seconds=round(duration, 2),
            )
            raise


class LoggerFactory:
    """
    Factory for creating domain-specific loggers with automatic context.
    """

    @staticmethod
    def for_remediation(stage: str = "remediation") -> Logger:
        """Logger for a pipeline stage. The job_id comes from operation_context."""
        return get_logger(tags=["remediation", "storage"], source=stage)

    @staticmethod
    def for_system() -> Logger:
        """Logger for OS primitives (mount, mkfs, copy, exportfs)."""
        return get_logger(tags=["system"], source="system")

    @staticmethod
    def for_command_output() -> Logger:
        """Logger for raw stdout/stderr of external commands."""
        return get_logger(tags=["system", "command-output"], source="system")

    @staticmethod
    def for_flash() -> Logger:
        """Logger for L4T preparation and the flashing hand-off."""
        return get_logger(tags=["flash", "l4t"], source="flash")


class EventLogger:
    """
    Structured event logger using standardized schemas.

    Each stage reports its outcome through one of these so the
    structured.jsonl sink carries consistent fields.
    """

    @staticmethod
    def log_inspection(log: Logger, path: str, fstype: str, capable: bool) -> None:
        log.info(
            "{path} is backed by {fstype}",
            event_type="volume_inspected",
            path=path,
            fstype=fstype or "unknown",
            export_capable=capable,
        )

    @staticmethod
    def log_plan_computed(
        log: Logger,
        source_size: int,
        image_size: int,
        available: int,
        image_path: str,
    ) -> None:
        log.info(
            "Remediation plan computed",
            event_type="plan_computed",
            source_size_bytes=source_size,
            image_size_bytes=image_size,
            available_bytes=available,
            image_path=image_path,
        )

    @staticmethod
    def log_image_provisioned(
        log: Logger, image_path: str, size_bytes: int, reused: bool
    ) -> None:
        log.info(
            "Loopback image {image_path} ready",
            event_type="image_provisioned",
            image_path=image_path,
            size_bytes=size_bytes,
            reused=reused,
        )

    @staticmethod
    def log_migration_completed(
        log: Logger, path: str, backup_path: str, resumed: bool, verified: bool
    ) -> None:
        log.info(
            "{path} now mounted from loopback image",
            event_type="migration_completed",
            path=path,
            backup_path=backup_path,
            resumed=resumed,
            verified=verified,
        )
