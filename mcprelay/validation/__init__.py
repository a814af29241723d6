# -*- coding: utf-8 -*-
"""Location: ./mcprelay/validation/__init__.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

Validation Package.
Provides validation components for the MCP Relay including:
- JSON-RPC request classification
- Reply envelope builders
"""

from mcprelay.validation.jsonrpc import error_envelope, JSONRPCError, MalformedRequest, parse_request, result_envelope, ValidRequest

__all__ = ["parse_request", "result_envelope", "error_envelope", "JSONRPCError", "ValidRequest", "MalformedRequest"]
