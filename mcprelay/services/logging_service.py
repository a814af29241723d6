# -*- coding: utf-8 -*-
"""Logging Service Implementation.

Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

This module configures logging for the relay. ``LOG_LEVEL`` accepts the RFC
5424 severity names and ``LOG_FORMAT`` selects plain text or one JSON object
per line.
"""

# Standard
from datetime import datetime, timezone
import json
import logging
from typing import Any, Dict

# First-Party
from mcprelay.config import settings
from mcprelay.models import LogLevel

_TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# RFC 5424 levels that have no stdlib counterpart map onto the closest one
_STDLIB_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.NOTICE: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.CRITICAL: logging.CRITICAL,
    LogLevel.ALERT: logging.CRITICAL,
    LogLevel.EMERGENCY: logging.CRITICAL,
}


class JsonFormatter(logging.Formatter):
    """Render log records as single-line JSON objects.

    Examples:
        >>> record = logging.LogRecord("mcprelay", logging.INFO, __file__, 1, "hello %s", ("world",), None)
        >>> payload = json.loads(JsonFormatter().format(record))
        >>> payload["level"], payload["logger"], payload["message"]
        ('INFO', 'mcprelay', 'hello world')
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a record.

        Args:
            record: Log record to render.

        Returns:
            str: JSON document.
        """
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


class LoggingService:
    """Relay logging service.

    Hands out named loggers at the configured level and sets up the root
    handler format on startup.

    Examples:
        >>> service = LoggingService()
        >>> service.get_logger("mcprelay.test").name
        'mcprelay.test'
        >>> service.level in list(LogLevel)
        True
    """

    def __init__(self):
        """Initialize logging service."""
        self._level = LogLevel(settings.log_level.lower())
        self._loggers: Dict[str, logging.Logger] = {}

    @property
    def level(self) -> LogLevel:
        """Configured minimum severity.

        Returns:
            LogLevel: level applied to every logger handed out
        """
        return self._level

    async def initialize(self) -> None:
        """Initialize logging service.

        Configures the root logger from ``LOG_LEVEL`` and ``LOG_FORMAT``.
        """
        root = logging.getLogger()
        formatter = JsonFormatter() if settings.log_format.lower() == "json" else logging.Formatter(_TEXT_FORMAT)
        if not root.handlers:
            root.addHandler(logging.StreamHandler())
        for handler in root.handlers:
            handler.setFormatter(formatter)
        root.setLevel(_STDLIB_LEVELS[self._level])
        self._loggers[""] = root
        logging.info("Logging service initialized")

    async def shutdown(self) -> None:
        """Shutdown logging service."""
        logging.info("Logging service shutdown")

    def get_logger(self, name: str) -> logging.Logger:
        """Get or create logger instance.

        Args:
            name: Logger name

        Returns:
            Logger instance
        """
        if name not in self._loggers:
            logger = logging.getLogger(name)

            # Set level to match service level
            logger.setLevel(_STDLIB_LEVELS[self._level])

            self._loggers[name] = logger

        return self._loggers[name]
