# -*- coding: utf-8 -*-
"""Location: ./mcprelay/services/backend_gateway.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

Backend Gateway.
This module forwards a single JSON-RPC request to the webhook-style chat
backend and turns the backend's reply into a result payload.

The backend speaks a chat protocol, not JSON-RPC: the request is embedded as
the text of a ``new_message`` event addressed to a conversation, and the answer
comes back as the text of the first reply message.

Requests are never retried here. Rate limiting is surfaced as
``BackendRateLimitError`` so that callers can back off.

Examples:
    >>> from mcprelay.services.backend_gateway import build_backend_body, parse_backend_reply
    >>> body = build_backend_body('sid-1', 'tools/list', {}, 7)
    >>> body['event'], body['chat']
    ('new_message', {'id': 'sid-1'})
    >>> body['text']
    '{"method": "tools/list", "params": {}, "id": 7}'
    >>> parse_backend_reply({'has_answer': True, 'messages': [{'text': '{"tools": []}'}]})
    {'tools': []}
"""

# Standard
import json
from typing import Any, Dict, Optional, Union

# Third-Party
import httpx

# First-Party
from mcprelay.config import settings
from mcprelay.services.logging_service import LoggingService

# Initialize logging service first
logging_service = LoggingService()
logger = logging_service.get_logger(__name__)

BACKEND_EVENT = "new_message"


class BackendError(Exception):
    """Base class for backend call failures.

    Examples:
        >>> err = BackendError("Backend returned HTTP 502")
        >>> str(err)
        'Backend returned HTTP 502'
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        """Initialize the error.

        Args:
            message: Human readable description.
            status_code: HTTP status returned by the backend, if any.
        """
        self.status_code = status_code
        super().__init__(message)


class BackendRateLimitError(BackendError):
    """Raised when the backend answers HTTP 429.

    Examples:
        >>> err = BackendRateLimitError("Backend rate limit exceeded", status_code=429)
        >>> isinstance(err, BackendError), err.status_code
        (True, 429)
    """


class BackendNoAnswerError(BackendError):
    """Raised when the backend reports that it has no answer.

    Examples:
        >>> isinstance(BackendNoAnswerError("No answer"), BackendError)
        True
    """


def build_backend_body(conversation_id: str, method: str, params: Any, request_id: Optional[Union[str, int]]) -> Dict[str, Any]:
    """Wrap a JSON-RPC request in a backend chat event.

    Args:
        conversation_id: Conversation the backend should file the message under.
        method: JSON-RPC method.
        params: JSON-RPC params.
        request_id: JSON-RPC id, may be None.

    Returns:
        Backend request body.
    """
    return {
        "event": BACKEND_EVENT,
        "chat": {"id": conversation_id},
        "text": json.dumps({"method": method, "params": params, "id": request_id}),
    }


def parse_backend_reply(payload: Any) -> Any:
    """Extract the result from a backend reply.

    The text of the first message is parsed as JSON when possible, otherwise
    returned as the raw string.

    Args:
        payload: Decoded backend response body.

    Returns:
        The result payload.

    Raises:
        BackendNoAnswerError: If the backend has no answer.
        BackendError: If the reply does not have the expected shape.

    Examples:
        >>> parse_backend_reply({'has_answer': True, 'messages': [{'text': 'plain words'}]})
        'plain words'
        >>> parse_backend_reply({'has_answer': False, 'messages': []})
        Traceback (most recent call last):
            ...
        mcprelay.services.backend_gateway.BackendNoAnswerError: Backend returned no answer
        >>> parse_backend_reply({'has_answer': True, 'messages': []})
        Traceback (most recent call last):
            ...
        mcprelay.services.backend_gateway.BackendError: Backend reply has no message text
    """
    if not isinstance(payload, dict):
        raise BackendError("Backend reply is not a JSON object")
    if not payload.get("has_answer"):
        raise BackendNoAnswerError("Backend returned no answer")

    messages = payload.get("messages")
    if not isinstance(messages, list) or not messages or not isinstance(messages[0], dict) or not isinstance(messages[0].get("text"), str):
        raise BackendError("Backend reply has no message text")

    text = messages[0]["text"]
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return text


class BackendGateway:
    """Stateless client for the chat backend.

    Attributes:
        _http_client: httpx client shared by every call

    Examples:
        >>> gateway = BackendGateway()
        >>> gateway.endpoint_for(None) == settings.default_backend_endpoint
        True
    """

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, timeout: Optional[float] = None):
        """Initialize the gateway.

        Args:
            http_client: Preconfigured client; one is created from settings when omitted.
            timeout: Request timeout in seconds, ``settings.backend_timeout`` by default.
        """
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(
            timeout=timeout if timeout is not None else settings.backend_timeout,
            verify=not settings.skip_ssl_verify,
        )

    async def initialize(self) -> None:
        """Initialize the gateway."""
        logger.info(f"Initializing backend gateway (default endpoint: {settings.default_backend_endpoint})")

    async def shutdown(self) -> None:
        """Close the HTTP client if the gateway created it."""
        if self._owns_client:
            await self._http_client.aclose()
        logger.info("Backend gateway shutdown complete")

    def endpoint_for(self, route_prefix: Optional[str]) -> str:
        """Webhook URL serving a route prefix.

        Args:
            route_prefix: Namespace tag, or None.

        Returns:
            str: webhook URL
        """
        return settings.build_backend_endpoint(route_prefix)

    async def call(
        self,
        method: str,
        params: Any = None,
        request_id: Optional[Union[str, int]] = None,
        conversation_id: Optional[str] = None,
        route_prefix: Optional[str] = None,
    ) -> Any:
        """Forward one request to the backend and return its result.

        Args:
            method: JSON-RPC method.
            params: JSON-RPC params.
            request_id: JSON-RPC id.
            conversation_id: Conversation id, the session id in practice.
            route_prefix: Selects the webhook target.

        Returns:
            The parsed result payload.

        Raises:
            BackendRateLimitError: On HTTP 429.
            BackendError: On transport failures, other non-2xx statuses or malformed replies.
        """
        url = self.endpoint_for(route_prefix)
        body = build_backend_body(conversation_id or settings.session_default_label, method, params if params is not None else {}, request_id)
        logger.info(f"Calling backend {url} for method={method}, conversation={conversation_id}")

        payload = await self._post(url, body)
        result = parse_backend_reply(payload)
        logger.debug(f"Backend answered method={method}, id={request_id}")
        return result

    async def probe(self) -> Dict[str, Any]:
        """Send a ``tools/list`` request to the default webhook and report what came back.

        Returns:
            Dict with ``backendEndpoint``, ``rawResponse`` and ``parsedTools``

        Raises:
            BackendError: If the backend cannot be reached or answers with an error status.
        """
        url = self.endpoint_for(None)
        logger.info(f"Probing backend {url}")
        payload = await self._post(url, build_backend_body("test", "tools/list", {}, 1))

        parsed = None
        try:
            parsed = parse_backend_reply(payload)
        except BackendError as e:
            logger.warning(f"Backend probe reply not usable: {e}")
        return {"backendEndpoint": url, "rawResponse": payload, "parsedTools": parsed}

    async def _post(self, url: str, body: Dict[str, Any]) -> Any:
        """POST a body to the backend and decode the JSON reply.

        Args:
            url: Webhook URL
            body: Request body

        Returns:
            Decoded JSON reply

        Raises:
            BackendRateLimitError: On HTTP 429.
            BackendError: On transport failures, other non-2xx statuses or non-JSON replies.
        """
        try:
            response = await self._http_client.post(url, json=body, headers={"Content-Type": "application/json"})
        except httpx.HTTPError as e:
            raise BackendError(f"Backend request failed: {e}") from e

        if response.status_code == 429:
            raise BackendRateLimitError("Backend rate limit exceeded", status_code=429)
        if response.status_code < 200 or response.status_code >= 300:
            logger.error(f"Backend error from {url}: HTTP {response.status_code} {response.text[:200]}")
            raise BackendError(f"Backend returned HTTP {response.status_code}", status_code=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise BackendError("Backend reply is not valid JSON", status_code=response.status_code) from e
