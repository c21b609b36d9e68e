"""Logging configuration for backstage.

Every module logs through structlog under a "backstage.<subsystem>"
stdlib logger. Records end up in two places:

    console       human-readable lines (structlog ConsoleRenderer)
    backstage.log one JSON object per line, rotated by size

The log file is only opened once the real config is known; before that
the bot logs to the console alone. Per-subsystem levels from config are
applied to the subsystem loggers, so a noisy subsystem can be turned up
without touching the others.

Chat users write the text that ends up in templates and error strings,
so every event passes through clip_long_values and sanitize_secrets
before it is rendered.
"""

import logging
import logging.handlers
import re
import sys
from typing import Any, Dict

import structlog

LOGGER_PREFIX = "backstage"

# Subsystems that may carry their own level under logging.subsystem_levels
SUBSYSTEMS = ("bot", "db", "registry", "commands")

# Longest string value written to a log event, in characters
MAX_VALUE_LENGTH = 200

_SECRET_PATTERNS = [
    # Chat OAuth tokens (oauth:...)
    re.compile(r"oauth:[a-zA-Z0-9]{20,}"),
    re.compile(r"Bearer\s+[a-zA-Z0-9_./-]{20,}"),
    re.compile(r"(?<=client_secret=)[^&\s]+"),
    re.compile(r"(?<=access_token=)[^&\s]+"),
]

_REDACTED = "***REDACTED***"


def _scrub_value(value: str) -> str:
    for pattern in _SECRET_PATTERNS:
        value = pattern.sub(_REDACTED, value)
    return value


def sanitize_secrets(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """structlog processor that scrubs OAuth tokens and bearer values.

    Looks one level into lists, tuples and dicts, which is as deep as
    any backstage event goes.
    """
    for key, value in event_dict.items():
        if isinstance(value, str):
            event_dict[key] = _scrub_value(value)
        elif isinstance(value, (list, tuple)):
            event_dict[key] = type(value)(
                _scrub_value(v) if isinstance(v, str) else v
                for v in value
            )
        elif isinstance(value, dict):
            event_dict[key] = {
                k: _scrub_value(v) if isinstance(v, str) else v
                for k, v in value.items()
            }
    return event_dict


def clip_long_values(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """structlog processor that shortens oversized string values.

    Console lines and compile errors quote whatever a chatter typed,
    which can be arbitrarily long. The event name is never clipped.
    """
    for key, value in event_dict.items():
        if key == "event" or not isinstance(value, str):
            continue
        if len(value) > MAX_VALUE_LENGTH:
            event_dict[key] = f"{value[:MAX_VALUE_LENGTH]}... ({len(value)} chars)"
    return event_dict


def add_subsystem(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """structlog processor that tags backstage events with their subsystem.

    "backstage.registry" becomes subsystem="registry"; the bare
    "backstage" logger is "core". Third-party records are left alone.
    Must run after add_logger_name.
    """
    name = event_dict.get("logger", "")
    if name == LOGGER_PREFIX:
        event_dict["subsystem"] = "core"
    elif name.startswith(LOGGER_PREFIX + "."):
        event_dict["subsystem"] = name[len(LOGGER_PREFIX) + 1:].split(".")[0]
    return event_dict


def _level(name: Any, default: int) -> int:
    if not isinstance(name, str):
        return default
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else default


def _close_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def setup_logging(config=None) -> None:
    """Configure structlog and the stdlib logger tree.

    Called twice by main(): once with no config so startup can log,
    then again with the loaded config. Only the second call opens
    backstage.log and caches loggers on first use.

    Args:
        config: Optional Config instance.
    """
    shared_processors = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        add_subsystem,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        clip_long_values,
        sanitize_secrets,
    ]

    if config is not None:
        root_level = _level(config.logging_level, logging.INFO)
        subsystem_levels = config.logging_subsystem_levels
        if not isinstance(subsystem_levels, dict):
            subsystem_levels = {}
    else:
        root_level = logging.INFO
        subsystem_levels = {}

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
        ],
    ))
    root_logger.addHandler(console_handler)

    bs_logger = logging.getLogger(LOGGER_PREFIX)
    bs_logger.setLevel(root_level)
    bs_logger.propagate = True
    _close_handlers(bs_logger)

    for subsystem in SUBSYSTEMS:
        sub_logger = logging.getLogger(f"{LOGGER_PREFIX}.{subsystem}")
        sub_logger.setLevel(_level(subsystem_levels.get(subsystem), logging.NOTSET))

    if config is not None:
        log_dir = config.log_dir
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                log_dir / "backstage.log",
                maxBytes=config.logging_max_file_size_mb * 1024 * 1024,
                backupCount=config.logging_backup_count,
                encoding="utf-8",
            )
        except OSError as exc:
            # Console-only; the bot keeps running without a log file
            print(
                f"WARNING: Cannot open log file in {log_dir}: {exc}. "
                "Falling back to console-only logging.",
                file=sys.stderr,
            )
        else:
            file_handler.setFormatter(structlog.stdlib.ProcessorFormatter(
                foreign_pre_chain=shared_processors,
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.processors.format_exc_info,
                    structlog.processors.JSONRenderer(),
                ],
            ))
            bs_logger.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            *shared_processors,
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=config is not None,
    )
