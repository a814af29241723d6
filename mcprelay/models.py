# -*- coding: utf-8 -*-
"""Location: ./mcprelay/models.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

MCP Relay Type Definitions.
This module defines the protocol and bookkeeping types shared by the relay:
  - RFC 5424 log levels
  - Initialization handshake types (capabilities, server info)
  - Delivery outcomes reported by the delivery resolver
  - Session resolution tiers used by the request router

Examples:
    >>> from mcprelay.models import LogLevel, DeliveryOutcome, ResolutionTier
    >>> LogLevel.ERROR.value
    'error'
    >>> DeliveryOutcome.NO_CHANNEL.value
    'no-channel'
    >>> DeliveryOutcome.DELIVERED_EXACT.pushed
    True
    >>> DeliveryOutcome.NO_CHANNEL.pushed
    False
    >>> ResolutionTier.ONLY_OPEN.value
    'only-open'
"""

# Standard
from enum import Enum
from typing import Any, Dict, Optional

# Third-Party
from pydantic import BaseModel, ConfigDict, Field


class LogLevel(str, Enum):
    """Standard syslog severity levels as defined in RFC 5424.

    Attributes:
        DEBUG (str): Debug level.
        INFO (str): Informational level.
        NOTICE (str): Notice level.
        WARNING (str): Warning level.
        ERROR (str): Error level.
        CRITICAL (str): Critical level.
        ALERT (str): Alert level.
        EMERGENCY (str): Emergency level.
    """

    DEBUG = "debug"
    INFO = "info"
    NOTICE = "notice"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"
    ALERT = "alert"
    EMERGENCY = "emergency"


class Implementation(BaseModel):
    """MCP implementation information.

    Attributes:
        name (str): The name of the implementation.
        version (str): The version of the implementation.
    """

    name: str
    version: str


class ServerCapabilities(BaseModel):
    """Capabilities advertised by the relay during the handshake.

    Attributes:
        prompts (Optional[Dict[str, bool]]): Capability for prompt support.
        resources (Optional[Dict[str, bool]]): Capability for resource support.
        tools (Optional[Dict[str, bool]]): Capability for tool support.
        logging (Optional[Dict[str, Any]]): Capability for logging support.
    """

    prompts: Optional[Dict[str, bool]] = None
    resources: Optional[Dict[str, bool]] = None
    tools: Optional[Dict[str, bool]] = None
    logging: Optional[Dict[str, Any]] = None


class InitializeResult(BaseModel):
    """Relay response to the ``initialize`` handshake.

    Attributes:
        protocol_version (str): The protocol version used.
        capabilities (ServerCapabilities): The server's capabilities.
        server_info (Implementation): The server's implementation information.

    Examples:
        >>> result = InitializeResult(
        ...     protocolVersion="2024-11-05",
        ...     capabilities=ServerCapabilities(tools={}),
        ...     serverInfo=Implementation(name="relay", version="1.0.0"),
        ... )
        >>> result.model_dump(by_alias=True, exclude_none=True)
        {'protocolVersion': '2024-11-05', 'capabilities': {'tools': {}}, 'serverInfo': {'name': 'relay', 'version': '1.0.0'}}
    """

    protocol_version: str = Field(..., alias="protocolVersion")
    capabilities: ServerCapabilities = Field(..., alias="capabilities")
    server_info: Implementation = Field(..., alias="serverInfo")

    model_config = ConfigDict(
        populate_by_name=True,
    )


class DeliveryOutcome(str, Enum):
    """Where a reply ended up after the delivery resolver ran.

    Attributes:
        DELIVERED_EXACT (str): Written to the session the request named.
        DELIVERED_FALLBACK_SINGLE (str): Named session missing; written to the only open channel.
        DELIVERED_FALLBACK_BROADCAST (str): Named session missing; written to every open channel.
        NO_CHANNEL (str): Nothing could be pushed; the caller answers synchronously.
    """

    DELIVERED_EXACT = "delivered-exact"
    DELIVERED_FALLBACK_SINGLE = "delivered-fallback-single"
    DELIVERED_FALLBACK_BROADCAST = "delivered-fallback-broadcast"
    NO_CHANNEL = "no-channel"

    @property
    def pushed(self) -> bool:
        """Whether the reply reached at least one push channel.

        Returns:
            bool: False only for ``NO_CHANNEL``.
        """
        return self is not DeliveryOutcome.NO_CHANNEL


class ResolutionTier(str, Enum):
    """How the request router settled on a session identifier."""

    EXPLICIT = "explicit"
    ONLY_OPEN = "only-open"
    MOST_RECENT = "most-recent"
    DEFAULT = "default"
