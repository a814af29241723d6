# -*- coding: utf-8 -*-
"""Location: ./mcprelay/validation/jsonrpc.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

JSON-RPC Validation.
This module decides, once and at the HTTP boundary, whether an inbound body is
a usable JSON-RPC 2.0 request, and builds the reply envelopes the relay sends
back (https://www.jsonrpc.org/specification).

Includes:
- Request validation into a ``ValidRequest | MalformedRequest`` sum type
- Result and error envelope builders
- Standard error codes

Examples:
    >>> from mcprelay.validation.jsonrpc import parse_request, ValidRequest, MalformedRequest
    >>> isinstance(parse_request({'jsonrpc': '2.0', 'method': 'tools/list', 'id': 1}), ValidRequest)
    True
    >>> bad = parse_request({'method': 'tools/list', 'id': 1})
    >>> isinstance(bad, MalformedRequest), bad.error.code
    (True, -32600)
    >>> result_envelope(7, {'ok': True})
    {'jsonrpc': '2.0', 'id': 7, 'result': {'ok': True}}
"""

# Standard
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

JSONRPC_VERSION = "2.0"

# Standard JSON-RPC error codes
INVALID_REQUEST = -32600  # Invalid Request object
INVALID_PARAMS = -32602  # Invalid method parameters, also used for unresolvable session ids
INTERNAL_ERROR = -32603  # Internal JSON-RPC error, also used for backend failures


class JSONRPCError(Exception):
    """JSON-RPC protocol error."""

    def __init__(
        self,
        code: int,
        message: str,
        data: Optional[Any] = None,
        request_id: Optional[Union[str, int]] = None,
    ):
        """Initialize JSON-RPC error.

        Args:
            code: Error code
            message: Error message
            data: Optional error data
            request_id: Optional request ID
        """
        self.code = code
        self.message = message
        self.data = data
        self.request_id = request_id
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to a JSON-RPC error response envelope.

        Returns:
            Error response dictionary

        Examples:
            >>> JSONRPCError(-32600, "Invalid Request", request_id=1).to_dict()
            {'jsonrpc': '2.0', 'id': 1, 'error': {'code': -32600, 'message': 'Invalid Request'}}

            >>> JSONRPCError(-32602, "Invalid params", data={"param": "value"}, request_id="abc").to_dict()
            {'jsonrpc': '2.0', 'id': 'abc', 'error': {'code': -32602, 'message': 'Invalid params', 'data': {'param': 'value'}}}

            Error without request ID:
            >>> JSONRPCError(-32603, "Internal error").to_dict()['id'] is None
            True
        """
        return error_envelope(self.request_id, self.code, self.message, self.data)


@dataclass(frozen=True)
class ValidRequest:
    """A well-formed JSON-RPC request.

    Attributes:
        method: Method name, never empty.
        request_id: Caller-chosen id; ``None`` for notifications or explicit nulls.
        params: Method parameters, an empty dict when absent.
    """

    method: str
    request_id: Optional[Union[str, int]] = None
    params: Union[Dict[str, Any], list] = field(default_factory=dict)

    @property
    def is_notification(self) -> bool:
        """Whether the caller omitted the id.

        Returns:
            bool: True when no reply correlation is possible.
        """
        return self.request_id is None


@dataclass(frozen=True)
class MalformedRequest:
    """A body that cannot be handled; carries the error to answer with."""

    error: JSONRPCError


RequestEnvelope = Union[ValidRequest, MalformedRequest]


def _extract_id(body: Any) -> Optional[Union[str, int]]:
    """Best-effort id recovery for error replies.

    Args:
        body: Raw request body.

    Returns:
        The request id when it has a valid type, else None.

    Examples:
        >>> _extract_id({'id': 3}), _extract_id({'id': True}), _extract_id([1])
        (3, None, None)
    """
    if not isinstance(body, dict):
        return None
    request_id = body.get("id")
    if isinstance(request_id, (str, int)) and not isinstance(request_id, bool):
        return request_id
    return None


def parse_request(body: Any) -> RequestEnvelope:
    """Classify an inbound body as a valid or malformed JSON-RPC request.

    Args:
        body: Decoded JSON body (any type).

    Returns:
        ValidRequest or MalformedRequest

    Examples:
        Valid request:
        >>> parse_request({"jsonrpc": "2.0", "method": "ping", "id": 1})
        ValidRequest(method='ping', request_id=1, params={})

        Null id is tolerated:
        >>> parse_request({"jsonrpc": "2.0", "method": "ping", "id": None}).request_id is None
        True

        Invalid version:
        >>> parse_request({"jsonrpc": "1.0", "method": "ping", "id": 1}).error.message
        'Invalid JSON-RPC version'

        Missing method:
        >>> parse_request({"jsonrpc": "2.0", "id": 1}).error.message
        'Invalid or missing method'

        Not an object:
        >>> parse_request(["jsonrpc"]).error.message
        'Invalid Request'

        Invalid params type:
        >>> parse_request({"jsonrpc": "2.0", "method": "t", "params": "x", "id": 1}).error.message
        'Invalid params type'

        Invalid id type:
        >>> parse_request({"jsonrpc": "2.0", "method": "t", "id": True}).error.message
        'Invalid request ID type'
    """
    if not isinstance(body, dict):
        return MalformedRequest(JSONRPCError(INVALID_REQUEST, "Invalid Request"))

    request_id = _extract_id(body)

    # Check jsonrpc version
    if body.get("jsonrpc") != JSONRPC_VERSION:
        return MalformedRequest(JSONRPCError(INVALID_REQUEST, "Invalid JSON-RPC version", request_id=request_id))

    # Check method
    method = body.get("method")
    if not isinstance(method, str) or not method:
        return MalformedRequest(JSONRPCError(INVALID_REQUEST, "Invalid or missing method", request_id=request_id))

    # Check ID, null is allowed
    raw_id = body.get("id")
    if raw_id is not None and request_id is None:
        return MalformedRequest(JSONRPCError(INVALID_REQUEST, "Invalid request ID type"))

    # Check params if present
    params = body.get("params")
    if params is None:
        params = {}
    elif not isinstance(params, (dict, list)):
        return MalformedRequest(JSONRPCError(INVALID_REQUEST, "Invalid params type", request_id=request_id))

    return ValidRequest(method=method, request_id=request_id, params=params)


def result_envelope(request_id: Optional[Union[str, int]], result: Any) -> Dict[str, Any]:
    """Build a success reply envelope.

    Args:
        request_id: Id echoed from the request.
        result: Result payload.

    Returns:
        Reply envelope.

    Examples:
        >>> result_envelope(None, 'text')
        {'jsonrpc': '2.0', 'id': None, 'result': 'text'}
    """
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def error_envelope(request_id: Optional[Union[str, int]], code: int, message: str, data: Optional[Any] = None) -> Dict[str, Any]:
    """Build an error reply envelope.

    Args:
        request_id: Id echoed from the request.
        code: JSON-RPC error code.
        message: Human readable message.
        data: Optional extra error data.

    Returns:
        Reply envelope.

    Examples:
        >>> error_envelope(2, INTERNAL_ERROR, 'boom')
        {'jsonrpc': '2.0', 'id': 2, 'error': {'code': -32603, 'message': 'boom'}}
    """
    error: Dict[str, Any] = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error}
