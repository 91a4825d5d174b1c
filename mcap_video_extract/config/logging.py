"""
Logging configuration for the video extractor.

Sets up structured logging with console and optional file output.
"""

import logging
from logging import FileHandler
from typing import Any, Optional

import structlog
from rich.console import Console
from rich.logging import RichHandler

# Initialize console for rich output; logs go to stderr so stdout stays clean for reports
console = Console()
err_console = Console(stderr=True)

_HANDLER_MARKER = "_mcap_video_extract_handler"


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> Any:
    """
    Setup logging configurations for console and, optionally, file output.

    Safe to call more than once; handlers installed by a previous call are
    replaced.

    Args:
        level: Minimum level name, e.g. "INFO" or "DEBUG"
        log_file: Plain-text log file to write in addition to the console

    Returns:
        The configured structlog logger
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    # Configure structlog to integrate with standard logging
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S.%f", utc=False),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(min_level=log_level),
        context_class=dict,
        cache_logger_on_first_use=False,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processor=structlog.dev.ConsoleRenderer(colors=False),
        foreign_pre_chain=[
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
        ],
    )

    std_root_logger = logging.getLogger()
    for handler in list(std_root_logger.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            std_root_logger.removeHandler(handler)
            handler.close()

    # Console Handler (using Rich for pretty output)
    rich_console_handler = RichHandler(console=err_console, rich_tracebacks=True, markup=False, show_path=False)
    rich_console_handler.setFormatter(formatter)
    rich_console_handler.setLevel(log_level)
    setattr(rich_console_handler, _HANDLER_MARKER, True)
    std_root_logger.addHandler(rich_console_handler)

    # File Handler (plain text)
    if log_file:
        file_log_handler = FileHandler(log_file, mode='w', encoding='utf-8')
        file_log_handler.setFormatter(formatter)
        file_log_handler.setLevel(log_level)
        setattr(file_log_handler, _HANDLER_MARKER, True)
        std_root_logger.addHandler(file_log_handler)

    std_root_logger.setLevel(log_level)

    logger = structlog.get_logger(__name__)
    logger.debug("Logging configured", level=level, log_file=log_file)
    return logger
