# -*- coding: utf-8 -*-
"""Location: ./mcprelay/cache/__init__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

Cache Package.
Provides in-memory state for the MCP Relay including:
- Session registry of open push channels
- Response caching for the designated repeated query
"""

from mcprelay.cache.session_registry import SessionRegistry
from mcprelay.cache.response_cache import ResponseCache

__all__ = ["ResponseCache", "SessionRegistry"]
