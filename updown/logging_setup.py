"""Logging configuration for the up/down engine."""
import logging
from pathlib import Path
from typing import Optional, Union

CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Marks handlers installed here so repeat calls replace rather than stack them
_HANDLER_TAG = "_updown_handler"

NOISY_LOGGERS = ("urllib3", "requests", "websocket", "web3")


def setup_logging(verbose: bool = False, log_file: Optional[Union[str, Path]] = None) -> None:
    """
    Configure the root logger.

    Args:
        verbose: Log DEBUG to the console instead of INFO.
        log_file: Optional path for a DEBUG-level file log.
    """
    level = logging.DEBUG if verbose else logging.INFO
    root_logger = logging.getLogger()

    for handler in list(root_logger.handlers):
        if getattr(handler, _HANDLER_TAG, False):
            root_logger.removeHandler(handler)
            handler.close()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%H:%M:%S"))
    setattr(console_handler, _HANDLER_TAG, True)
    root_logger.addHandler(console_handler)

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        setattr(file_handler, _HANDLER_TAG, True)
        root_logger.addHandler(file_handler)

    root_logger.setLevel(logging.DEBUG)

    # Reduce noise from external libraries
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
