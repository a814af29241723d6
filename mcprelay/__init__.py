# -*- coding: utf-8 -*-
"""Location: ./mcprelay/__init__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

MCP Relay - a FastAPI-based relay that bridges MCP clients speaking JSON-RPC over
Server-Sent Events to a webhook-style chat backend.
"""

__author__ = "Mihai Criveti"
__copyright__ = "Copyright 2025"
__license__ = "Apache 2.0"
__version__ = "1.0.0"
__description__ = "JSON-RPC over SSE relay for webhook chat backends"
__packages__ = ["mcprelay"]

# Export main components for easier imports
__all__ = [
    "__version__",
    "__author__",
    "__license__",
]
