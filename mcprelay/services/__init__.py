# -*- coding: utf-8 -*-
"""Location: ./mcprelay/services/__init__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

Services Package.
Exposes core MCP Relay services:
- Backend gateway
- Reply delivery
- Request routing
- Logging

Only the leaf backend gateway is re-exported here; the other services depend
on the cache package and are imported from their modules.
"""

from mcprelay.services.backend_gateway import BackendError, BackendGateway, BackendNoAnswerError, BackendRateLimitError

__all__ = [
    "BackendGateway",
    "BackendError",
    "BackendRateLimitError",
    "BackendNoAnswerError",
]
