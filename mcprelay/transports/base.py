# -*- coding: utf-8 -*-
"""Location: ./mcprelay/transports/base.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

Base Transport Interface.
This module defines the base protocol for relay push channels.
"""

# Standard
from abc import ABC, abstractmethod
from typing import Any, Dict


class Transport(ABC):
    """Base class for push channel implementations.

    A push channel is one-way: the relay writes reply envelopes to it, clients
    submit requests over a separate HTTP endpoint. The session registry only
    needs connection management, writes and a liveness check.

    Examples:
        >>> # Transport is abstract and cannot be instantiated directly
        >>> try:
        ...     Transport()
        ... except TypeError as e:
        ...     print("Cannot instantiate abstract class")
        Cannot instantiate abstract class

        >>> sorted(Transport.__abstractmethods__)
        ['connect', 'disconnect', 'is_live', 'send_message']
    """

    @abstractmethod
    async def connect(self) -> None:
        """Initialize transport connection.

        Must be called before sending messages.
        """

    @abstractmethod
    async def disconnect(self) -> None:
        """Close transport connection and release its resources."""

    @abstractmethod
    async def send_message(self, message: Dict[str, Any]) -> None:
        """Send a message over the transport.

        Args:
            message: Message to send
        """

    @abstractmethod
    def is_live(self) -> bool:
        """Check, without suspending, whether a write would be attempted.

        Returns:
            True if the channel has not ended, finished or been destroyed
        """
