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
        "CUSTOM_LIVE_LOG_DIR",
        Path.home() / ".local" / "state" / "custom-live" / "logs",
    )
)


def _should_log_command_output(record) -> bool:
    """Keep raw command output out of the console unless tracing."""
    tags = record["extra"].get("tags", [])

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
    Configure loguru for one command invocation.

    Logging Tiers:
    - CRITICAL/ERROR: Step failures, unrecoverable errors
    - SUCCESS/INFO: Lifecycle transitions, artifacts created, devices written
    - DEBUG: Command lines and decisions
    - TRACE: Raw stdout/stderr of external tools

    Files written to ``log_dir``:
    - operations.log: what happened to which variant, kept for a week
    - debug.log: command lines and decisions, only with --debug or --trace
    - structured.jsonl: the operations log serialized as JSON

    Args:
        debug: Show command lines and decisions on the console
        trace: Also show raw tool output
        log_dir: Custom log directory (defaults to ~/.local/state/custom-live/logs)
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
            "<cyan>{extra[source]: <10}</cyan> | "
            "{message}"
        ),
    )

    log_dir = log_dir or DEFAULT_LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)

    # SINK 2: operations.log (INFO+)
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
            "{extra[source]: <10} | "
            "{extra[job_id]: <20} | "
            "{message}"
        ),
    )

    # SINK 3: Debug Log (DEBUG+ when debug=True)
    if debug or trace:
        logger.add(
            log_dir / "debug.log",
            level="TRACE" if trace else "DEBUG",
            rotation="10 MB",
            retention="3 days",
            compression="zip",
            backtrace=True,
            diagnose=True,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{extra[source]: <10} | "
                "{extra[job_id]: <20} | "
                "{extra[tags]} | "
                "{message}"
            ),
        )

    # SINK 4: Structured JSON Log (INFO+)
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
    Logger bound to the given job, tags and source.

    Args:
        job_id: Identifier shared by all records of one operation
        tags: Tags for filtering (e.g., ["extract", "variant"])
        source: Source component (e.g., "extract", "media")

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
    Time a long step and log its start, completion or failure.

    All records inside the block share one ``job_id``.

    Example:
        with operation_context("recompress", variant="ca-system") as log:
            log.debug("Releasing bind mounts")
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
    Per-component loggers with their source and tags already bound.
    """

    @staticmethod
    def for_store() -> Logger:
        """Logger for the variant store (artifacts, history, session state)."""
        return get_logger(source="store", tags=["store", "variant"])

    @staticmethod
    def for_extract(job_id: str | None = None) -> Logger:
        """Logger for ISO mounting and squashfs extraction."""
        if job_id is None:
            job_id = f"extract-{uuid.uuid4().hex[:8]}"
        return get_logger(job_id=job_id, source="extract", tags=["extract", "squashfs"])

    @staticmethod
    def for_chroot() -> Logger:
        """Logger for chroot session setup and teardown."""
        return get_logger(source="chroot", tags=["chroot", "mount"])

    @staticmethod
    def for_recompress(job_id: str | None = None) -> Logger:
        """Logger for recompression and archive versioning."""
        if job_id is None:
            job_id = f"recompress-{uuid.uuid4().hex[:8]}"
        return get_logger(
            job_id=job_id, source="recompress", tags=["recompress", "squashfs"]
        )

    @staticmethod
    def for_media(job_id: str | None = None) -> Logger:
        """Logger for partitioning, formatting and writing USB media."""
        if job_id is None:
            job_id = f"media-{uuid.uuid4().hex[:8]}"
        return get_logger(job_id=job_id, source="media", tags=["media", "storage"])

    @staticmethod
    def for_command() -> Logger:
        """Logger for raw external command output."""
        return get_logger(source="command", tags=["command-output"])

    @staticmethod
    def for_system() -> Logger:
        """Logger for system operations (startup, privilege, config)."""
        return get_logger(source="system", tags=["system"])


class EventLogger:
    """
    Structured events (lifecycle, artifacts, media) with fixed field names.
    """

    @staticmethod
    def log_lifecycle_transition(
        log: Logger, variant: str, from_state: str, to_state: str, **extra
    ) -> None:
        """Log a variant moving between lifecycle states."""
        log.info(
            f"Variant {variant}: {from_state} -> {to_state}",
            event_type="lifecycle_transition",
            variant=variant,
            from_state=from_state,
            to_state=to_state,
            **extra,
        )

    @staticmethod
    def log_artifact_created(
        log: Logger, variant: str, kind: str, path: str, size_bytes: int, **extra
    ) -> None:
        """Log creation of a backup, version or custom archive."""
        log.info(
            f"Created {kind} artifact {path}",
            event_type="artifact_created",
            variant=variant,
            artifact_kind=kind,
            artifact_path=path,
            size_bytes=size_bytes,
            **extra,
        )

    @staticmethod
    def log_media_written(
        log: Logger, variant: str, device: str, persistence_gb: int, **extra
    ) -> None:
        """Log a completed USB write."""
        log.info(
            f"Variant {variant} written to {device}",
            event_type="media_written",
            variant=variant,
            device=device,
            persistence_gb=persistence_gb,
            **extra,
        )
