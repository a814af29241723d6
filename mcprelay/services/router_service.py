# -*- coding: utf-8 -*-
"""Location: ./mcprelay/services/router_service.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

Request Router.
This module drives a submitted JSON-RPC request from the HTTP boundary to its
reply: validation, session resolution, the ``initialize`` short-circuit, the
cached method, the backend call and finally delivery.

A request moves through ``received -> validated -> (cache-hit | backend-call)
-> delivered`` or ends in one of ``rejected-malformed``, ``rejected-no-session``
or ``backend-error``. Rejections are answered synchronously and never pushed.
Every other reply, including backend errors, goes through the delivery
service; the HTTP response carries the reply only when nothing was pushed.
"""

# Standard
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

# First-Party
from mcprelay.cache.response_cache import ResponseCache
from mcprelay.cache.session_registry import SessionRegistry
from mcprelay.config import settings
from mcprelay.models import DeliveryOutcome, Implementation, InitializeResult, ResolutionTier, ServerCapabilities
from mcprelay.services.backend_gateway import BackendError, BackendGateway
from mcprelay.services.delivery_service import DeliveryResult, DeliveryService
from mcprelay.services.logging_service import LoggingService
from mcprelay.validation.jsonrpc import error_envelope, INTERNAL_ERROR, INVALID_PARAMS, MalformedRequest, parse_request, result_envelope, ValidRequest

# Initialize logging service first
logging_service = LoggingService()
logger = logging_service.get_logger(__name__)

INITIALIZE_METHOD = "initialize"


@dataclass
class RequestContext:
    """Transient bookkeeping for one request.

    Attributes:
        request: The validated request.
        session_id: Resolved session identifier.
        tier: How the identifier was resolved.
        route_prefix: Effective namespace tag selecting the webhook.
    """

    request: ValidRequest
    session_id: str
    tier: ResolutionTier
    route_prefix: Optional[str] = None

    def log_fields(self) -> Dict[str, Any]:
        """Fields passed to the delivery service for logging.

        Returns:
            Dict[str, Any]: method, route prefix and tier
        """
        return {"method": self.request.method, "route_prefix": self.route_prefix, "tier": self.tier.value}


@dataclass
class RouterResponse:
    """What the HTTP layer should answer with.

    Attributes:
        status_code: HTTP status.
        content: JSON body.
        delivery: Delivery result, None for synchronous rejections.
    """

    status_code: int
    content: Dict[str, Any]
    delivery: Optional[DeliveryResult] = None


def initialize_result() -> Dict[str, Any]:
    """Capability descriptor returned for ``initialize``.

    Returns:
        Dict[str, Any]: handshake result

    Examples:
        >>> result = initialize_result()
        >>> result['protocolVersion'], result['capabilities'], result['serverInfo']['name']
        ('2024-11-05', {'tools': {}}, 'chatmi-mcp-server')
    """
    return InitializeResult(
        protocol_version=settings.protocol_version,
        capabilities=ServerCapabilities(tools={}),
        server_info=Implementation(name=settings.server_name, version=settings.server_version),
    ).model_dump(by_alias=True, exclude_none=True)


class RouterService:
    """Handles submitted JSON-RPC requests.

    Examples:
        >>> import asyncio
        >>> from mcprelay.cache.session_registry import SessionRegistry
        >>> registry = SessionRegistry()
        >>> router = RouterService(registry, gateway=None, cache=None)
        >>> response = asyncio.run(router.handle({'jsonrpc': '1.0', 'method': 'x', 'id': 1}))
        >>> response.status_code, response.content['error']['code']
        (400, -32600)
        >>> response = asyncio.run(router.handle({'jsonrpc': '2.0', 'method': 'initialize', 'id': 1}))
        >>> response.status_code, response.content['result']['protocolVersion']
        (200, '2024-11-05')
    """

    def __init__(
        self,
        registry: SessionRegistry,
        gateway: BackendGateway,
        cache: ResponseCache,
        delivery: Optional[DeliveryService] = None,
    ):
        """Initialize the router.

        Args:
            registry: Session registry
            gateway: Backend gateway
            cache: Response cache for the cached method
            delivery: Delivery service, built on the registry when omitted
        """
        self._registry = registry
        self._gateway = gateway
        self._cache = cache
        self._delivery = delivery or DeliveryService(registry)

    async def handle(
        self,
        body: Any,
        candidate_session_id: Optional[str] = None,
        request_prefix: Optional[str] = None,
        strict: Optional[bool] = None,
    ) -> RouterResponse:
        """Process one submitted request.

        Args:
            body: Decoded JSON body
            candidate_session_id: Session id supplied by the caller, if any
            request_prefix: Route prefix from the request path, if any
            strict: Override for strict session resolution

        Returns:
            RouterResponse
        """
        envelope = parse_request(body)
        if isinstance(envelope, MalformedRequest):
            logger.warning(f"Rejected malformed request: {envelope.error.message}")
            return RouterResponse(400, envelope.error.to_dict())

        request = envelope
        resolution = self._registry.resolve(candidate_session_id, strict=strict)
        if resolution.rejected:
            logger.warning(f"Rejected request method={request.method}: missing or invalid session id")
            return RouterResponse(400, error_envelope(request.request_id, INVALID_PARAMS, "Missing or invalid sessionId (must be UUID)"))

        context = RequestContext(
            request=request,
            session_id=resolution.session_id,
            tier=resolution.tier,
            route_prefix=self._route_prefix(resolution.session_id, request_prefix),
        )
        logger.info(f"Request method={request.method} id={request.request_id} session={context.session_id} ({context.tier.value}) route prefix={context.route_prefix or '(root)'}")

        try:
            result = await self._dispatch(context)
        except BackendError as e:
            logger.error(f"Backend error for method={request.method} session={context.session_id}: {e}")
            reply = error_envelope(request.request_id, INTERNAL_ERROR, str(e))
            return await self._deliver(context, reply, failed=True)

        return await self._deliver(context, result_envelope(request.request_id, result))

    def _route_prefix(self, session_id: str, request_prefix: Optional[str]) -> Optional[str]:
        """Pick the effective route prefix.

        The request path wins over the prefix the session was opened under.

        Args:
            session_id: Resolved session id
            request_prefix: Prefix from the request path

        Returns:
            The effective prefix, or None
        """
        session = self._registry.lookup(session_id)
        session_prefix = session.route_prefix if session else None
        if request_prefix and session_prefix and request_prefix != session_prefix:
            logger.warning(f"Route prefix mismatch for session {session_id}: request={request_prefix}, session={session_prefix}")
        return request_prefix or session_prefix

    async def _dispatch(self, context: RequestContext) -> Any:
        """Produce the result for a validated request.

        Args:
            context: Request context

        Returns:
            Result payload

        Raises:
            BackendError: If the backend call fails or no cached value exists.
        """
        request = context.request
        if request.method == INITIALIZE_METHOD:
            return initialize_result()

        if request.method == self._cache.method:
            return await self._cache.get_or_refresh(context.session_id, context.route_prefix, request.params)

        return await self._gateway.call(
            request.method,
            request.params,
            request.request_id,
            conversation_id=context.session_id,
            route_prefix=context.route_prefix,
        )

    async def _deliver(self, context: RequestContext, reply: Dict[str, Any], failed: bool = False) -> RouterResponse:
        """Push the reply or fall back to answering over HTTP.

        Args:
            context: Request context
            reply: Reply envelope
            failed: Whether the reply carries a backend error

        Returns:
            RouterResponse
        """
        delivery = await self._delivery.deliver(context.session_id, reply, context.log_fields())
        if delivery.outcome is DeliveryOutcome.NO_CHANNEL:
            return RouterResponse(500 if failed else 200, reply, delivery)

        ack: Dict[str, Union[str, None, list]] = {
            "status": "error sent via SSE" if failed else "sent via SSE",
            "sessionId": context.session_id,
            "routePrefix": context.route_prefix,
            "delivery": delivery.outcome.value,
        }
        return RouterResponse(202, ack, delivery)
