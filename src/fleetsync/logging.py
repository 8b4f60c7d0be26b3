"""Logging setup for fleetsync.

fleetsync logs through the standard ``logging`` module under the
``fleetsync`` logger hierarchy. This module adds:

- TRACE (level 5) for per-call provider request logging
- Mapping of ``-v`` counts and ``--log-level`` names to levels
- ``configure_logging`` for console and optional file output
- ``ContextLogger``, an adapter that appends ``key=value`` context
- ``log_performance`` for timing snapshots and passes
"""

import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator, MutableMapping

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

CONSOLE_FORMATS = {
    TRACE: "%(asctime)s.%(msecs)03d %(levelname)s [%(name)s:%(funcName)s:%(lineno)d] %(message)s",
    logging.DEBUG: "%(asctime)s %(levelname)s [%(name)s:%(funcName)s:%(lineno)d] %(message)s",
    logging.INFO: "%(levelname)s [%(name)s] %(message)s",
}
FILE_FORMAT = CONSOLE_FORMATS[logging.DEBUG]

VERBOSITY_LEVELS = [logging.WARNING, logging.INFO, logging.DEBUG, TRACE]

LEVEL_NAMES = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

# Third-party loggers held at WARNING unless tracing
CHATTY_LOGGERS = ("botocore", "aiobotocore", "aioboto3", "asyncssh")


def get_level_from_verbosity(verbosity: int) -> int:
    """Map a count of ``-v`` flags to a level: WARNING, INFO, DEBUG, TRACE."""
    return VERBOSITY_LEVELS[max(0, min(verbosity, len(VERBOSITY_LEVELS) - 1))]


def get_level_from_name(level_name: str) -> int:
    """Look up a level by name, case-insensitively.

    Raises:
        ValueError: If the name is not a known level
    """
    try:
        return LEVEL_NAMES[level_name.lower()]
    except KeyError:
        raise ValueError(
            f"Invalid log level: {level_name}. Valid levels: {', '.join(LEVEL_NAMES)}"
        ) from None


def _console_format(level: int, debug: bool) -> str:
    if level <= TRACE:
        return CONSOLE_FORMATS[TRACE]
    if debug or level <= logging.DEBUG:
        return CONSOLE_FORMATS[logging.DEBUG]
    return CONSOLE_FORMATS[logging.INFO]


def configure_logging(
    level: int = logging.WARNING,
    format_string: str | None = None,
    debug: bool = False,
    log_file: str | Path | None = None,
    file_level: int | None = None,
) -> None:
    """Replace the root handlers with a console handler and an optional file handler.

    Args:
        level: Console level
        format_string: Console format; chosen from ``level`` when None
        debug: Force the detailed console format
        log_file: Also write records to this file (parent directories are created)
        file_level: File handler level, defaults to ``level``

    Example:
        >>> configure_logging(logging.INFO)
        >>> configure_logging(logging.CRITICAL, log_file="fleetsync.log", file_level=logging.DEBUG)
    """
    file_level = file_level or level
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(min(level, file_level) if log_file else level)

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(logging.Formatter(format_string or _console_format(level, debug)))
    root.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path)
        file_handler.setLevel(file_level)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        root.addHandler(file_handler)

    effective = min(level, file_level)
    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(effective if effective <= TRACE else max(effective, logging.WARNING))


def _with_context(message: str, context: MutableMapping[str, Any]) -> str:
    if not context:
        return message
    return f"{message} ({', '.join(f'{k}={v}' for k, v in context.items())})"


@contextmanager
def log_performance(
    logger: logging.Logger | logging.LoggerAdapter,
    operation: str,
    level: int = logging.INFO,
    threshold: float | None = None,
    **context: Any,
) -> Generator[None, None, None]:
    """Log how long the block took, including when it raises.

    Args:
        logger: Logger or adapter to log through
        operation: What is being timed
        level: Level of the timing record
        threshold: Skip the record when faster than this many seconds
        **context: Extra ``key=value`` context

    Example:
        >>> with log_performance(logger, "Reconciliation", specs=12):
        ...     plan = reconcile(specs, live)
        INFO [fleetsync.reconciler] Reconciliation completed in 0.002s (specs=12)
    """
    started = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - started
        if threshold is None or elapsed >= threshold:
            logger.log(level, _with_context(f"{operation} completed in {elapsed:.3f}s", context))


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter that appends bound and per-call context to messages.

    Context passed as keyword arguments to a logging call is added to the
    bound context for that record only.

    Example:
        >>> log = get_logger("fleetsync.cli", provider="ec2")
        >>> log.info("Snapshot captured", resources=4)
        INFO [fleetsync.cli] Snapshot captured (provider=ec2, resources=4)
        >>> log.bind(command="apply").warning("Replacement required", name="web01")
        WARNING [fleetsync.cli] Replacement required (provider=ec2, command=apply, name=web01)
    """

    # Keyword arguments handled by logging itself rather than treated as context
    RESERVED = frozenset({"exc_info", "stack_info", "stacklevel", "extra"})

    def __init__(self, logger: logging.Logger, context: dict[str, Any] | None = None) -> None:
        super().__init__(logger, dict(context or {}))

    def bind(self, **context: Any) -> "ContextLogger":
        """Return a new adapter with additional bound context."""
        return ContextLogger(self.logger, {**self.extra, **context})

    def log(self, level: int, msg: Any, *args: Any, **kwargs: Any) -> None:
        if not self.isEnabledFor(level):
            return
        extra = {k: kwargs.pop(k) for k in list(kwargs) if k not in self.RESERVED}
        self.logger.log(level, _with_context(str(msg), {**self.extra, **extra}), *args, **kwargs)

    def trace(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        self.log(TRACE, msg, *args, **kwargs)

    def debug(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        self.log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        self.log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        self.log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: Any, *args: Any, **kwargs: Any) -> None:
        self.log(logging.ERROR, msg, *args, **kwargs)


def get_logger(name: str, **context: Any) -> ContextLogger:
    """Get a context logger for ``name`` with optional bound context."""
    return ContextLogger(logging.getLogger(name), context)
