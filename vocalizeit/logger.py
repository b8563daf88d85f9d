"""
Logging System

Centralized logging for the reminder core with console and file output.
"""

import logging
import os
import sys
from pathlib import Path


class Logger:
    """Centralized logger for VocaliZeit"""

    _loggers = {}

    @classmethod
    def get_logger(cls, name: str, config=None) -> logging.Logger:
        """
        Get or create a logger instance

        Args:
            name: Logger name (usually __name__)
            config: Configuration object (optional)

        Returns:
            Configured logger instance
        """
        if name in cls._loggers:
            return cls._loggers[name]

        logger = logging.getLogger(name)

        if not logger.handlers:
            cls._configure_logger(logger, config)

        cls._loggers[name] = logger
        return logger

    @classmethod
    def _configure_logger(cls, logger: logging.Logger, config) -> None:
        """Configure logger with handlers and formatting"""

        if config:
            level_str = config.get("logging.level", "INFO")
            log_file = config.get("logging.file")
            console_enabled = config.get("logging.console", True)
        else:
            level_str = "INFO"
            log_file = None
            console_enabled = True

        # Background services (tray, daemon) have no terminal to write to.
        if os.environ.get("VOCALIZEIT_LOG_FILE_ONLY"):
            console_enabled = False
            if not log_file:
                log_file = str(Path.home() / ".local" / "state" / "vocalizeit" / "vocalizeit.log")

        level = getattr(logging, str(level_str).upper(), logging.INFO)
        logger.setLevel(level)

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        if console_enabled:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(level)
            console_handler.setFormatter(formatter)
            logger.addHandler(console_handler)

        if log_file:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)

            file_handler = logging.FileHandler(log_file)
            file_handler.setLevel(level)
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

        # Root propagation is opt-in (logging.propagate)
        logger.propagate = config.get("logging.propagate", False) if config else False


def get_logger(name: str, config=None) -> logging.Logger:
    """
    Convenience function to get a logger

    Args:
        name: Logger name (usually __name__)
        config: Configuration object (optional)

    Returns:
        Configured logger instance
    """
    return Logger.get_logger(name, config)
