"""
Shared logging setup.

One LoggingManager instance configures the application's root logger
(``app`` by default) with console and/or file handlers. Modules never touch
handlers themselves; they ask for a child logger such as ``app.tracker`` and
let records propagate up to the configured parent.
"""

import logging
import sys
from typing import Optional, Union


class LoggingManager:
    """Configures a named logger and hands out its children."""

    DEFAULT_LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)8s | %(message)s"
    DEFAULT_LOG_LEVEL = logging.INFO

    def __init__(self,
                 logger_name: str = 'app',
                 log_level: Union[int, str] = DEFAULT_LOG_LEVEL,
                 log_format: str = DEFAULT_LOG_FORMAT,
                 log_file: Optional[str] = None,
                 console_output: bool = True,
                 propagate: bool = False):
        """
        Args:
            logger_name (str): Name of the logger to configure.
            log_level (Union[int, str]): Level as an int or a name like "DEBUG".
            log_format (str): Format string shared by every handler.
            log_file (Optional[str]): Append log records to this file as well.
            console_output (bool): Emit records on stderr.
            propagate (bool): Pass records on to ancestor loggers.
        """
        self.logger_name = logger_name
        self.log_level = self.resolve_level(log_level)
        self.log_file = log_file
        self.console_output = console_output

        self._configured_logger = logging.getLogger(self.logger_name)
        self._configured_logger.setLevel(self.log_level)
        self._configured_logger.propagate = propagate

        # Reconfiguring the same name must not stack handlers.
        if self._configured_logger.hasHandlers():
            self._configured_logger.handlers.clear()

        self._formatter = logging.Formatter(log_format)
        self._configure_handlers()

    @staticmethod
    def resolve_level(level: Union[int, str, None]) -> int:
        """Turn "debug", "INFO", 10 or None into a logging level int."""
        if isinstance(level, int):
            return level
        name = (level or '').strip().upper()
        if not name:
            return LoggingManager.DEFAULT_LOG_LEVEL
        resolved = logging.getLevelName(name)
        if isinstance(resolved, int):
            return resolved
        return LoggingManager.DEFAULT_LOG_LEVEL

    def _configure_handlers(self) -> None:
        if self.console_output:
            console_handler = logging.StreamHandler(stream=sys.stderr)
            console_handler.setFormatter(self._formatter)
            self._configured_logger.addHandler(console_handler)

        if self.log_file:
            try:
                file_handler = logging.FileHandler(self.log_file, mode='a')
            except OSError as e:
                self._configured_logger.warning(
                    f"Could not open log file {self.log_file}: {e}. Continuing without it.")
                return
            file_handler.setFormatter(self._formatter)
            self._configured_logger.addHandler(file_handler)

    def get_configured_logger(self) -> logging.Logger:
        return self._configured_logger

    @staticmethod
    def get_logger(name: str) -> logging.Logger:
        """
        Retrieve a logger by name.

        Child names ("app.store", "app.api") propagate to whatever the
        ``app`` logger was configured with, so modules can grab their logger
        at import time before any LoggingManager exists.
        """
        return logging.getLogger(name)
