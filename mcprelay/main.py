# -*- coding: utf-8 -*-
"""Location: ./mcprelay/main.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

MCP Relay - Main FastAPI Application.

This module defines the HTTP surface of the relay. MCP clients open a
Server-Sent Events channel, learn the POST endpoint for their session from
the first event and submit JSON-RPC requests there. Requests are forwarded to
the chat backend and the replies pushed back over the channel.

Routes:
- ``GET /sse`` and ``GET /{channel_id}/sse``: open a push channel
- ``POST /sse``, ``POST /message`` and ``POST /{channel_id}/message``: submit a request
- ``GET /health``: connection and cache diagnostics
- ``POST /test/backend``: backend connectivity probe

State objects are built by ``create_app`` and kept on ``app.state``; tests pass
their own.
"""

# Standard
from contextlib import asynccontextmanager
from datetime import datetime, timezone
import json
from typing import Any, AsyncIterator, Optional
from urllib.parse import quote

# Third-Party
from fastapi import APIRouter, BackgroundTasks, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# First-Party
from mcprelay import __version__
from mcprelay.cache.response_cache import ResponseCache
from mcprelay.cache.session_registry import extract_session_id, generate_session_id, is_valid_session_id, SessionRegistry
from mcprelay.config import settings
from mcprelay.services.backend_gateway import BackendError, BackendGateway
from mcprelay.services.logging_service import LoggingService
from mcprelay.services.router_service import RouterService
from mcprelay.transports.sse_transport import SSETransport
from mcprelay.validation.jsonrpc import INVALID_PARAMS, INVALID_REQUEST, JSONRPCError

# Initialize logging service first
logging_service = LoggingService()
logger = logging_service.get_logger(__name__)

relay_router = APIRouter()


def _message_path(route_prefix: Optional[str], session_id: str) -> str:
    """POST path announced to a channel in its ``endpoint`` event.

    Args:
        route_prefix: Namespace the channel was opened under
        session_id: Session identifier

    Returns:
        str: relative URL including the percent-encoded session query parameter

    Examples:
        >>> _message_path(None, 'abc')
        '/message?sessionId=abc'
        >>> _message_path('sales', 'abc')
        '/sales/message?sessionId=abc'
        >>> _message_path(None, 'team a&x=1')
        '/message?sessionId=team%20a%26x%3D1'
    """
    prefix = f"/{route_prefix}" if route_prefix else ""
    return f"{settings.app_root_path}{prefix}/message?sessionId={quote(session_id, safe='')}"


async def _open_channel(request: Request, route_prefix: Optional[str]):
    """Open a push channel and register its session.

    Args:
        request: Incoming request
        route_prefix: Namespace tag from the path, if any

    Returns:
        The streaming response
    """
    registry: SessionRegistry = request.app.state.registry
    cache: ResponseCache = request.app.state.cache

    session_id = extract_session_id(request.query_params, request.headers)
    if not session_id or (settings.session_require_uuid and not is_valid_session_id(session_id)):
        if session_id:
            logger.warning(f"Replacing non-UUID session id on channel open: {session_id}")
        session_id = generate_session_id()

    transport = SSETransport(
        session_id=session_id,
        endpoint=_message_path(route_prefix, session_id),
        on_close=lambda t: registry.close(t.session_id, t),
    )
    await transport.connect()
    registry.open(session_id, transport, route_prefix)

    if settings.cache_warmup_on_connect:
        cache.trigger_refresh(session_id, "connect", route_prefix)

    response = await transport.create_sse_response(request)
    tasks = BackgroundTasks()
    tasks.add_task(transport.disconnect)
    response.background = tasks
    logger.info(f"SSE connection established: {session_id} (route prefix: {route_prefix or '(root)'})")
    return response


async def _submit(request: Request, route_prefix: Optional[str]) -> JSONResponse:
    """Hand a submitted request to the router.

    Args:
        request: Incoming request
        route_prefix: Namespace tag from the path, if any

    Returns:
        JSONResponse: acknowledgement or synchronous reply

    Raises:
        JSONRPCError: If the body is not decodable JSON.
    """
    router: RouterService = request.app.state.router
    try:
        body: Any = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"Request body is not valid JSON: {e}")
        raise JSONRPCError(INVALID_REQUEST, "Invalid JSON body") from e

    candidate = extract_session_id(request.query_params, request.headers)
    response = await router.handle(body, candidate_session_id=candidate, request_prefix=route_prefix)
    return JSONResponse(content=response.content, status_code=response.status_code)


@relay_router.get("/health")
async def healthcheck(request: Request):
    """
    Report relay status, open sessions, backend targets and cache state.

    Args:
        request (Request): The incoming request.

    Returns:
        dict: Health payload.
    """
    registry: SessionRegistry = request.app.state.registry
    cache: ResponseCache = request.app.state.cache
    return {
        "status": "ok",
        "connections": registry.count(),
        "sessions": registry.describe(),
        "backendBase": settings.backend_base_url,
        "backendDefault": settings.default_backend_endpoint,
        "cache": cache.stats(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@relay_router.post("/test/backend")
async def backend_probe(request: Request) -> JSONResponse:
    """
    Probe the default backend webhook with a ``tools/list`` request.

    Args:
        request (Request): The incoming request.

    Returns:
        JSONResponse: Probe outcome; status 500 when the backend cannot be reached.
    """
    gateway: BackendGateway = request.app.state.gateway
    try:
        probe = await gateway.probe()
    except BackendError as e:
        logger.error(f"Backend probe failed: {e}")
        return JSONResponse(status_code=500, content={"success": False, "error": str(e), "backendEndpoint": gateway.endpoint_for(None)})
    return JSONResponse(content={"success": True, **probe})


@relay_router.get("/sse")
async def sse_endpoint(request: Request):
    """
    Open a push channel without a route prefix.

    Args:
        request (Request): The incoming request.

    Returns:
        The SSE response object for the established connection.
    """
    return await _open_channel(request, None)


@relay_router.post("/sse")
@relay_router.post("/message")
async def message_endpoint(request: Request) -> JSONResponse:
    """
    Submit a JSON-RPC request without a route prefix.

    Args:
        request (Request): The incoming message request.

    Returns:
        JSONResponse: Acknowledgement when the reply was pushed, the reply otherwise.
    """
    return await _submit(request, None)


@relay_router.get("/{channel_id}/sse")
async def channel_sse_endpoint(request: Request, channel_id: str):
    """
    Open a push channel in the namespace ``channel_id``.

    Args:
        request (Request): The incoming request.
        channel_id (str): Route prefix selecting the backend webhook.

    Returns:
        The SSE response object for the established connection.
    """
    return await _open_channel(request, channel_id)


@relay_router.post("/{channel_id}/message")
async def channel_message_endpoint(request: Request, channel_id: str) -> JSONResponse:
    """
    Submit a JSON-RPC request in the namespace ``channel_id``.

    Args:
        request (Request): The incoming message request.
        channel_id (str): Route prefix selecting the backend webhook.

    Returns:
        JSONResponse: Acknowledgement when the reply was pushed, the reply otherwise.
    """
    return await _submit(request, channel_id)


async def jsonrpc_exception_handler(_request: Request, exc: JSONRPCError) -> JSONResponse:
    """Render a JSON-RPC error raised at the HTTP boundary as an error envelope.

    Args:
        _request: The FastAPI request object that triggered the error.
        exc: The protocol error.

    Returns:
        JSONResponse: 400 for request and session errors, 500 otherwise.

    Examples:
        >>> import asyncio
        >>> response = asyncio.run(jsonrpc_exception_handler(None, JSONRPCError(-32602, 'bad session', request_id=3)))
        >>> response.status_code
        400
        >>> json.loads(response.body)['error']
        {'code': -32602, 'message': 'bad session'}
    """
    status_code = 400 if exc.code in (INVALID_REQUEST, INVALID_PARAMS) else 500
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def create_app(
    registry: Optional[SessionRegistry] = None,
    gateway: Optional[BackendGateway] = None,
    cache: Optional[ResponseCache] = None,
) -> FastAPI:
    """Build the relay application.

    Args:
        registry: Session registry, a fresh one when omitted
        gateway: Backend gateway, a fresh one when omitted
        cache: Response cache, built on the gateway when omitted

    Returns:
        FastAPI: the configured application

    Examples:
        >>> app = create_app()
        >>> sorted(getattr(r, 'path', None) for r in app.routes if getattr(r, 'path', None) in ('/health', '/sse', '/message'))
        ['/health', '/message', '/sse', '/sse']
    """
    registry = registry or SessionRegistry()
    gateway = gateway or BackendGateway()
    cache = cache or ResponseCache(gateway)
    router = RouterService(registry, gateway, cache)

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        """
        Manage the application's startup and shutdown lifecycle.

        Args:
            _app (FastAPI): FastAPI app

        Yields:
            None

        Raises:
            Exception: Any error raised while initialising a service.
        """
        # Initialize logging service FIRST
        await logging_service.initialize()
        logger.info("Starting MCP Relay services")

        try:
            await gateway.initialize()
            await registry.initialize()
            await cache.initialize()
            logger.info("All services initialized successfully")
            yield
        except Exception as e:
            logger.error(f"Error during startup: {str(e)}")
            raise
        finally:
            logger.info("Shutting down MCP Relay services")
            for service in (cache, registry, gateway, logging_service):
                try:
                    await service.shutdown()
                except Exception as e:
                    logger.error(f"Error shutting down {service.__class__.__name__}: {str(e)}")
            logger.info("Shutdown complete")

    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        description="Relay bridging MCP clients over SSE to a webhook chat backend",
        root_path=settings.app_root_path,
        lifespan=lifespan,
    )
    app.state.registry = registry
    app.state.gateway = gateway
    app.state.cache = cache
    app.state.router = router

    if settings.cors_enabled:
        app.add_middleware(CORSMiddleware, **settings.cors_settings)

    app.add_exception_handler(JSONRPCError, jsonrpc_exception_handler)
    app.include_router(relay_router)
    return app


app = create_app()
