"""
Reusable logging and console output setup for all parts of the project.

Functions:
    setup_logging      - Configure and return the root logger.
    set_print_logger   - Set the logger for print_and_log and friends.
    print_and_log      - Print to the console and log an info message.
    print_warning      - Print and log a warning.
    print_error        - Print and log an error message (to stderr).
"""

import logging
import os
from typing import Optional

from rich.console import Console

# stdout / stderr consoles resolve sys.stdout/sys.stderr lazily, so CliRunner captures them
console = Console(highlight=False)
error_console = Console(stderr=True, highlight=False)

# Module-level variable to hold the logger for print_and_log and print_error
_print_logger: Optional[logging.Logger] = None

LOG_FORMAT = '%(asctime)s %(levelname)s %(process)d %(message)s'


def setup_logging(app_name: str = "tiltmux", loglevel: int = logging.INFO, logfile: Optional[str] = None) -> logging.Logger:
    """
    Set up logging for the application.
    Logs to a file in ~/.<app_name>/log.txt or to a custom logfile.
    Returns the configured logger.
    """
    logger = logging.getLogger()
    logger.setLevel(loglevel)
    if logfile is None:
        log_dir = os.path.expanduser(f"~/.{app_name}")
        os.makedirs(log_dir, exist_ok=True)
        logfile = os.path.join(log_dir, "log.txt")
    handler = logging.FileHandler(logfile)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    # Remove any existing handlers
    for h in logger.handlers[:]:
        logger.removeHandler(h)
        h.close()

    logger.addHandler(handler)
    set_print_logger(logger)
    logger.debug("Logger initialized for %s (file: %s)", app_name, logfile)
    return logger


def set_print_logger(logger: logging.Logger):
    """
    Set the logger to be used by print_and_log, print_warning and print_error.
    Call this after setting up logging in your app.
    """
    global _print_logger
    _print_logger = logger


def print_and_log(message: str, **kwargs):
    """
    Print to console (rich markup allowed) and log as info.
    """
    console.print(message, **kwargs)
    if _print_logger is not None:
        _print_logger.info(_plain(message))


def print_warning(message: str, **kwargs):
    console.print(f'[yellow][WARNING][/yellow] {message}', **kwargs)
    if _print_logger is not None:
        _print_logger.warning(_plain(message))


def print_error(message: str, **kwargs):
    """
    Print and log an error message (stderr and error level), using the logger set by set_print_logger.
    """
    error_console.print(f'[bold red]{message}[/bold red]', **kwargs)
    if _print_logger is not None:
        _print_logger.error(_plain(message))


def _plain(message: str) -> str:
    """Strip rich markup so the log file stays readable."""
    from rich.text import Text
    return Text.from_markup(message).plain
