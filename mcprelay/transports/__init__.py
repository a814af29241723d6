# -*- coding: utf-8 -*-
"""Location: ./mcprelay/transports/__init__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

MCP Relay Transport Package.
This package provides push channel implementations for the relay:
- SSE: Server-Sent Events for relay-to-client streaming

Examples:
    >>> from mcprelay.transports import Transport, SSETransport
    >>> issubclass(SSETransport, Transport)
    True
    >>> from mcprelay.transports import __all__
    >>> sorted(__all__)
    ['SSETransport', 'Transport']
"""

from mcprelay.transports.base import Transport
from mcprelay.transports.sse_transport import SSETransport

__all__ = ["Transport", "SSETransport"]
