import atexit
from datetime import (
    datetime,
)
import logging
import logging.handlers
import os
from pathlib import (
    Path,
)
import queue
import sys
import tempfile
import threading
from typing import (
    Any,
)

ROOT_LOGGER_NAME = "peerdrop"
DEBUG_ENV_VAR = "PEERDROP_DEBUG"
DEBUG_FILE_ENV_VAR = "PEERDROP_DEBUG_FILE"

# Records from every peerdrop logger go through this queue
log_queue: "queue.Queue[Any]" = queue.Queue()

_current_listener: logging.handlers.QueueListener | None = None

_listener_ready = threading.Event()

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _parse_debug_modules(debug_str: str) -> dict[str, int]:
    """
    Parse the PEERDROP_DEBUG environment variable into module log levels.

    Format examples:
    - "DEBUG"  # All modules at DEBUG level
    - "peerdrop.relay.router:DEBUG"  # Only the relay router at DEBUG
    - "relay.router:DEBUG"  # Same as above, peerdrop prefix is optional
    - "relay:DEBUG,transfer:INFO"  # Multiple modules
    """
    module_levels: dict[str, int] = {}

    if not debug_str or debug_str.isspace():
        return module_levels

    if ":" not in debug_str and debug_str.upper() in logging._nameToLevel:
        return {"": getattr(logging, debug_str.upper())}

    for part in debug_str.split(","):
        if ":" not in part:
            continue

        module, level = part.split(":", 1)
        level = level.strip().upper()

        if level not in logging._nameToLevel:
            continue

        module = module.strip()
        if module.startswith(f"{ROOT_LOGGER_NAME}."):
            module = module[len(ROOT_LOGGER_NAME) + 1 :]
        module = module.replace("/", ".").strip(".")

        module_levels[module] = getattr(logging, level)

    return module_levels


def _disable_logging() -> None:
    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.handlers.clear()
    root_logger.setLevel(logging.WARNING)
    root_logger.propagate = False


def _default_log_file() -> str:
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    unique_id = os.urandom(4).hex()
    return str(Path(tempfile.gettempdir()) / f"peerdrop_{timestamp}_{unique_id}.log")


def setup_logging() -> None:
    """
    Set up logging configuration based on environment variables.

    Environment Variables:
        PEERDROP_DEBUG
            Controls logging levels. Examples:
            - "DEBUG" (all modules at DEBUG level)
            - "relay.router:DEBUG" (only the relay router at DEBUG)
            - "relay:DEBUG,transfer:INFO" (multiple modules)

        PEERDROP_DEBUG_FILE
            If set, logs are written to this file and to stderr. If not set,
            a timestamped file in the system temp directory is used instead.

    When PEERDROP_DEBUG is unset the ``peerdrop`` logger stays at WARNING
    with no handlers attached.
    """
    global _current_listener, _listener_ready

    _listener_ready.clear()

    if _current_listener is not None:
        _current_listener.stop()
        _current_listener = None

    debug_str = os.environ.get(DEBUG_ENV_VAR, "")
    module_levels = _parse_debug_modules(debug_str)

    if not module_levels:
        _disable_logging()
        _listener_ready.set()
        return

    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)

    handlers: list[logging.StreamHandler[Any] | logging.FileHandler] = []

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    log_file = os.environ.get(DEBUG_FILE_ENV_VAR)
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
    else:
        log_file = _default_log_file()
        print(f"Logging to: {log_file}", file=sys.stderr)

    file_handler = logging.FileHandler(log_file, mode="w")
    file_handler.setFormatter(formatter)
    handlers.append(file_handler)

    queue_handler = logging.handlers.QueueHandler(log_queue)

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.handlers.clear()
    root_logger.addHandler(queue_handler)
    root_logger.propagate = False
    root_logger.setLevel(module_levels.get("", logging.INFO))

    for module, level in module_levels.items():
        if module:
            logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{module}")
            logger.handlers.clear()
            logger.addHandler(queue_handler)
            logger.setLevel(level)
            logger.propagate = False

    _current_listener = logging.handlers.QueueListener(
        log_queue, *handlers, respect_handler_level=True
    )
    _current_listener.start()

    _listener_ready.set()


@atexit.register
def cleanup_logging() -> None:
    """Stop the queue listener on interpreter exit."""
    global _current_listener
    if _current_listener is not None:
        _current_listener.stop()
        _current_listener = None
