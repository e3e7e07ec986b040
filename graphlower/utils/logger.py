import atexit
import json as json_module
import sys
import traceback
from pathlib import Path

# Global logger instance
_LOGGER = None

NO_BOLD = "\033[22m"
RESET = "\033[0m"

DEFAULT_LOG_LEVEL = "warning"


def build_log_entry(record) -> dict:
    """Build a flat JSON log entry from a loguru record."""
    extra = record["extra"]
    log_entry = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "module": record["module"],
        "function": record["function"],
        "line": record["line"],
    }
    if record["exception"] is not None:
        exc = record["exception"]
        log_entry["exception"] = "".join(traceback.format_exception(exc.type, exc.value, exc.traceback))
    # Per-compilation context (model name) is bound into extra
    if extra:
        if "model" in extra:
            log_entry["model"] = extra["model"]
            extra = {k: v for k, v in extra.items() if k != "model"}
        if extra:
            log_entry["extra"] = extra
    return log_entry


def json_sink(message) -> None:
    """Sink that writes flat JSON lines to stderr."""
    log_entry = build_log_entry(message.record)
    sys.stderr.write(json_module.dumps(log_entry) + "\n")
    sys.stderr.flush()


class JsonFileSink:
    """File sink that keeps the handle open and writes flat JSON lines."""

    def __init__(self, log_file: Path):
        log_file.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(log_file, "a")
        atexit.register(self._close)

    def _close(self):
        if self._file and not self._file.closed:
            self._file.close()

    def write(self, message) -> None:
        log_entry = build_log_entry(message.record)
        self._file.write(json_module.dumps(log_entry) + "\n")
        self._file.flush()


def _new_logger():
    # NOTE: graphlower gets its own loguru core so that host applications
    # configuring the global loguru logger do not receive lowering output.
    # loguru does not publicly expose the logger class, but this works.
    from loguru._logger import Core as _Core
    from loguru._logger import Logger as _Logger

    return _Logger(
        core=_Core(),
        exception=None,
        depth=0,
        record=False,
        lazy=False,
        colors=False,
        raw=False,
        capture=True,
        patchers=[],
        extra={},
    )


def setup_logger(
    log_level: str = DEFAULT_LOG_LEVEL,
    log_file: Path | None = None,
    append: bool = False,
    json_logging: bool = False,
):
    global _LOGGER

    message = "".join(
        [
            " <level>{level: >7}</level>",
            f" <level>{NO_BOLD}",
            "{message}",
            f"{RESET}</level>",
        ]
    )
    time = "<dim>{time:HH:mm:ss}</dim>"
    if log_level.upper() not in ("DEBUG", "TRACE"):
        debug = ""
    else:
        debug = "".join([f"<level>{NO_BOLD}", " [{file}::{line}]", f"{RESET}</level>"])
    format = time + message + debug

    # Handlers are swapped on the existing instance so module-level
    # `logger = get_logger()` references stay live after reconfiguration.
    logger = _LOGGER if _LOGGER is not None else _new_logger()
    logger.remove()

    # Console output goes to stderr, stdout is reserved for CLI results
    if json_logging:
        logger.add(json_sink, level=log_level.upper())
    else:
        logger.add(sys.stderr, format=format, level=log_level.upper(), colorize=True)

    if log_file is not None:
        if not append and log_file.exists():
            log_file.unlink()
        if json_logging:
            file_sink = JsonFileSink(log_file)
            logger.add(file_sink.write, level=log_level.upper())
        else:
            logger.add(log_file, format=format, level=log_level.upper(), colorize=False)

    _LOGGER = logger

    return logger


def get_logger():
    global _LOGGER
    if _LOGGER is None:
        _LOGGER = setup_logger()
    return _LOGGER


def reset_logger():
    """Restore the default console configuration. Useful mainly in tests."""
    if _LOGGER is not None:
        setup_logger()
