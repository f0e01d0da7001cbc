# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

# Third-Party Imports
from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

# ================================= DEFAULT VALUES =================================== #

LOGGER_NAME = "workflow_eve"
LOG_FILE_FORMAT = (
    "%(asctime)s %(levelname)-8s %(name)s:%(filename)s:%(funcName)s(): %(message)s"
)
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 3

CONSOLE_THEME = Theme({
    "logging.level.debug": "dim cyan",
    "logging.level.info": "bold white",
    "logging.level.warning": "bold yellow",
    "logging.level.error": "bold red",
    "logging.level.critical": "reverse bold bright_white on red",
})

# ==================================== FUNCTIONS ===================================== #

def _file_handler(
    log_file: Path,
    level: int,
    max_bytes: int,
    backups: int
) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        filename=log_file, maxBytes=max_bytes, backupCount=backups, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    return handler


def _console_handler(level: int) -> RichHandler:
    handler = RichHandler(
        console=Console(theme=CONSOLE_THEME),
        level=level,
        rich_tracebacks=True,
        show_path=False,
        markup=False,
        log_time_format="[%X]",
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    return handler


def reset_handlers(logger: logging.Logger) -> None:
    """Detach and close every handler, so repeated runs do not log twice."""
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def setup_logging(
    log_dir_path: Union[str, Path],
    log_filename: Optional[str] = None,
    max_file_size: int = LOG_FILE_MAX_BYTES,
    backup_count: int = LOG_FILE_BACKUPS,
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG
) -> logging.Logger:
    """
    Send the pipeline's log records to the terminal and to a run log file.

    The console shows `console_level` and above through Rich. The file, named
    after the start time unless `log_filename` is given, rotates at
    `max_file_size` and keeps `file_level` and above.

    Returns:
        The 'workflow_eve' logger every module logs through.
    """
    log_dir_path = Path(log_dir_path)
    log_dir_path.mkdir(parents=True, exist_ok=True)
    log_file = log_dir_path / (
        log_filename or datetime.now().strftime("%Y-%m-%d_%H%M%S.log")
    )

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(min(console_level, file_level))
    reset_handlers(logger)
    logger.addHandler(_file_handler(log_file, file_level, max_file_size, backup_count))
    logger.addHandler(_console_handler(console_level))

    logger.info(f"Writing run log to '{log_file}'")
    return logger
