"""
StockScan - Logging Utility
===========================

Logging setup using Loguru with:
- Console and file logging
- Automatic log rotation
- Separate error log
- Execution time tracking for coroutines
"""

import sys
import time
from functools import wraps
from pathlib import Path
from typing import Optional

from loguru import logger

from stockscan.core.config import Config


class LoggerSetup:
    """Configure and manage application logging"""

    def __init__(self, config: Optional[dict] = None):
        """
        Initialize logger with configuration

        Args:
            config: The ``logging`` section of settings.yaml (loaded when omitted)
        """
        self.config = config if config is not None else (Config.get("logging") or self._default_config())
        self._setup_logger()

    def _default_config(self) -> dict:
        """Default logging configuration"""
        return {
            'level': 'INFO',
            'format': '<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>',
            'console': {'enabled': True, 'colorize': True},
            'file': {'enabled': False},
            'error_file': {'enabled': False},
        }

    def _setup_logger(self):
        """Configure loguru logger"""
        logger.remove()

        log_level = self.config.get('level', 'INFO')
        log_format = self.config.get('format') or self._default_config()['format']

        console_config = self.config.get('console', {})
        if console_config.get('enabled', True):
            logger.add(
                sys.stderr,
                format=log_format,
                level=log_level,
                colorize=console_config.get('colorize', True),
                backtrace=True,
                diagnose=False
            )

        file_config = self.config.get('file', {})
        if file_config.get('enabled', False):
            log_path = Path(file_config.get('path', './logs/stockscan.log'))
            log_path.parent.mkdir(parents=True, exist_ok=True)

            logger.add(
                log_path,
                format=log_format,
                level=log_level,
                rotation=file_config.get('rotation', '100 MB'),
                retention=file_config.get('retention', '14 days'),
                compression=file_config.get('compression', 'zip'),
                enqueue=True,
                backtrace=True,
                diagnose=False
            )

        error_config = self.config.get('error_file', {})
        if error_config.get('enabled', False):
            error_path = Path(error_config.get('path', './logs/errors.log'))
            error_path.parent.mkdir(parents=True, exist_ok=True)

            logger.add(
                error_path,
                format=log_format,
                level=error_config.get('level', 'ERROR'),
                rotation=error_config.get('rotation', '50 MB'),
                retention=error_config.get('retention', '30 days'),
                enqueue=True,
                backtrace=True,
                diagnose=False
            )

    def get_logger(self, name: Optional[str] = None):
        """
        Get a logger instance

        Args:
            name: Logger name (usually __name__)

        Returns:
            Configured logger instance
        """
        if name:
            return logger.bind(name=name)
        return logger


_logger_setup = None


def setup_logging(config: Optional[dict] = None):
    """
    Initialize logging system

    Args:
        config: Optional ``logging`` section overriding settings.yaml
    """
    global _logger_setup
    _logger_setup = LoggerSetup(config)
    logger.info("Logging system initialized")


def get_logger(name: Optional[str] = None):
    """
    Get a logger instance

    Example:
        >>> from stockscan.utils.logger import get_logger
        >>> log = get_logger(__name__)
        >>> log.info("Starting scraping job")
    """
    if _logger_setup is None:
        # Bind lazily so importing a module never reconfigures sinks.
        return logger.bind(name=name) if name else logger
    return _logger_setup.get_logger(name)


def log_execution_time(func):
    """
    Decorator to log coroutine execution time

    Example:
        >>> @log_execution_time
        >>> async def upsert_screener_results(...):
        >>>     ...
    """

    @wraps(func)
    async def wrapper(*args, **kwargs):
        log = get_logger(func.__module__)
        start_time = time.time()
        try:
            result = await func(*args, **kwargs)
            log.info(f"{func.__name__} executed in {time.time() - start_time:.2f}s")
            return result
        except Exception as e:
            log.error(f"{func.__name__} failed after {time.time() - start_time:.2f}s: {e}")
            raise

    return wrapper
