# -*- coding: utf-8 -*-
"""Location: ./mcprelay/cache/session_registry.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

Session Registry.
This module tracks the open push channels of the relay, keyed by session
identifier, and implements the identifier resolution policy used when a caller
cannot reliably echo its session id back.

The registry only holds weak references to transports: the HTTP layer owns
the stream, and once it is gone the registry entry resolves to nothing and is
pruned by a background sweep.

All mutating operations are synchronous. They run between suspension points of
the event loop, so no lock is needed.

Examples:
    Basic usage:

    >>> from mcprelay.cache.session_registry import SessionRegistry
    >>> class DummyTransport:
    ...     def is_live(self):
    ...         return True
    >>> reg = SessionRegistry()
    >>> transport = DummyTransport()
    >>> session = reg.open('8d7d4ad4-2f0e-4e5a-9a59-3f6f2a7c1e11', transport, route_prefix='sales')
    >>> reg.lookup('8d7d4ad4-2f0e-4e5a-9a59-3f6f2a7c1e11').transport is transport
    True
    >>> reg.count(), reg.list()
    (1, ['8d7d4ad4-2f0e-4e5a-9a59-3f6f2a7c1e11'])
    >>> reg.close('8d7d4ad4-2f0e-4e5a-9a59-3f6f2a7c1e11')
    >>> reg.lookup('8d7d4ad4-2f0e-4e5a-9a59-3f6f2a7c1e11') is None
    True
"""

# Standard
import asyncio
from dataclasses import dataclass, field
import re
import time
from typing import Any, Dict, List, Mapping, Optional
import uuid
import weakref

# First-Party
from mcprelay.config import settings
from mcprelay.models import ResolutionTier
from mcprelay.services.logging_service import LoggingService

# Initialize logging service first
logging_service: LoggingService = LoggingService()
logger = logging_service.get_logger(__name__)

UUID_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.IGNORECASE)

# Query parameters checked in order, then the header
SESSION_QUERY_PARAMS = ("sessionId", "session", "session_id")
SESSION_HEADER = "x-session-id"


def is_valid_session_id(value: Optional[str]) -> bool:
    """Check a session identifier against the UUID pattern.

    Args:
        value: Candidate identifier.

    Returns:
        bool: True for RFC 4122 UUIDs (versions 1-5).

    Examples:
        >>> is_valid_session_id('8d7d4ad4-2f0e-4e5a-9a59-3f6f2a7c1e11')
        True
        >>> is_valid_session_id('8D7D4AD4-2F0E-4E5A-9A59-3F6F2A7C1E11')
        True
        >>> is_valid_session_id('client-42')
        False
        >>> is_valid_session_id(None)
        False
    """
    return bool(value) and bool(UUID_PATTERN.match(value))


def extract_session_id(query_params: Mapping[str, str], headers: Mapping[str, str]) -> Optional[str]:
    """Pull a caller-supplied session identifier out of a request.

    Query parameters win over the ``X-Session-Id`` header.

    Args:
        query_params: Request query parameters.
        headers: Request headers (case-insensitive mapping in practice).

    Returns:
        The first non-empty identifier found, or None.

    Examples:
        >>> extract_session_id({'session': 'b'}, {'x-session-id': 'c'})
        'b'
        >>> extract_session_id({}, {'x-session-id': 'c'})
        'c'
        >>> extract_session_id({'sessionId': ''}, {}) is None
        True
    """
    for name in SESSION_QUERY_PARAMS:
        value = query_params.get(name)
        if value:
            return value
    return headers.get(SESSION_HEADER) or None


@dataclass
class Session:
    """A registered push channel.

    Attributes:
        session_id: Registry key.
        transport_ref: Weak reference to the transport owned by the HTTP layer.
        route_prefix: Namespace tag selecting a backend target, if any.
        opened_at: Monotonic time of registration, used for recency ordering.
    """

    session_id: str
    transport_ref: "weakref.ReferenceType[Any]"
    route_prefix: Optional[str] = None
    opened_at: float = field(default_factory=time.monotonic)

    @property
    def transport(self) -> Optional[Any]:
        """Dereference the transport.

        Returns:
            The transport, or None once it has been garbage collected.
        """
        return self.transport_ref()

    def is_live(self) -> bool:
        """Whether a write to this session would be attempted.

        Returns:
            bool: False when the transport is gone or reports itself not live.
        """
        transport = self.transport
        if transport is None:
            return False
        try:
            return bool(transport.is_live())
        except Exception as e:
            logger.warning(f"Liveness check failed for session {self.session_id}: {e}")
            return False


@dataclass(frozen=True)
class SessionResolution:
    """Result of resolving the session a request belongs to.

    Attributes:
        session_id: Resolved identifier, None only when rejected in strict mode.
        tier: Which rule produced the identifier.
    """

    session_id: Optional[str]
    tier: Optional[ResolutionTier]

    @property
    def rejected(self) -> bool:
        """Whether no identifier could be resolved.

        Returns:
            bool: True in strict mode when nothing matched.
        """
        return self.session_id is None


class SessionRegistry:
    """Registry of open push channels keyed by session identifier.

    Reopening an identifier supersedes the previous entry without closing the
    previous channel. Closing with an expected transport only removes the entry
    if it still points at that transport, so a superseded stream finishing late
    cannot evict its replacement.

    Attributes:
        _sessions: Mapping of session id to Session
        _prune_task: Background task removing dead entries

    Examples:
        >>> class T:
        ...     def __init__(self, live=True):
        ...         self.live = live
        ...     def is_live(self):
        ...         return self.live
        >>> reg = SessionRegistry()
        >>> old, new = T(), T()
        >>> _ = reg.open('sid', old)
        >>> _ = reg.open('sid', new)
        >>> reg.lookup('sid').transport is new
        True
        >>> reg.close('sid', old)  # stale close is ignored
        >>> reg.lookup('sid').transport is new
        True
        >>> reg.close('sid', new)
        >>> reg.count()
        0
    """

    def __init__(self, default_label: Optional[str] = None, prune_interval: Optional[float] = None):
        """Initialize an empty registry.

        Args:
            default_label: Identifier used when nothing else resolves, ``settings.session_default_label`` by default
            prune_interval: Seconds between dead-session sweeps, ``settings.session_prune_interval`` by default
        """
        self._sessions: Dict[str, Session] = {}
        self._default_label = default_label or settings.session_default_label
        self._prune_interval = prune_interval if prune_interval is not None else settings.session_prune_interval
        self._prune_task: Optional[asyncio.Task] = None

    async def initialize(self) -> None:
        """Start the background sweep for dead sessions."""
        logger.info("Initializing session registry")
        if self._prune_interval > 0:
            self._prune_task = asyncio.create_task(self._prune_loop())

    async def shutdown(self) -> None:
        """Cancel the sweep and drop all entries.

        Transports are not disconnected here; their streams end with the server.
        """
        logger.info("Shutting down session registry")
        if self._prune_task:
            self._prune_task.cancel()
            try:
                await self._prune_task
            except asyncio.CancelledError:
                pass
        self._sessions.clear()

    def open(self, session_id: str, transport: Any, route_prefix: Optional[str] = None) -> Session:
        """Register a push channel, replacing any entry under the same identifier.

        Args:
            session_id: Session identifier.
            transport: Transport object; only weakly referenced.
            route_prefix: Optional namespace tag.

        Returns:
            Session: The new entry.
        """
        previous = self._sessions.get(session_id)
        session = Session(session_id=session_id, transport_ref=weakref.ref(transport), route_prefix=route_prefix or None)
        self._sessions[session_id] = session
        if previous is not None:
            logger.info(f"Session {session_id} reopened; previous channel superseded")
        logger.info(f"Opened session: {session_id} (route prefix: {route_prefix or '(root)'}). Active: {len(self._sessions)}")
        return session

    def close(self, session_id: str, transport: Optional[Any] = None) -> None:
        """Remove a session. Idempotent.

        Args:
            session_id: Session identifier.
            transport: When given, only remove the entry if it still refers to this transport.
        """
        session = self._sessions.get(session_id)
        if session is None:
            return
        if transport is not None and session.transport is not None and session.transport is not transport:
            logger.debug(f"Ignoring close of superseded channel for session {session_id}")
            return
        del self._sessions[session_id]
        logger.info(f"Closed session: {session_id}. Active: {len(self._sessions)}")

    def lookup(self, session_id: Optional[str]) -> Optional[Session]:
        """Find a session by identifier.

        Args:
            session_id: Session identifier.

        Returns:
            The session, or None if absent or its transport is gone.
        """
        if not session_id:
            return None
        session = self._sessions.get(session_id)
        if session is None or session.transport is None:
            return None
        return session

    def count(self) -> int:
        """Number of registered sessions.

        Returns:
            int: entry count
        """
        return len(self._sessions)

    def list(self) -> List[str]:
        """Registered session identifiers, oldest first.

        Returns:
            List[str]: identifiers
        """
        return [s.session_id for s in self._ordered()]

    def describe(self) -> List[Dict[str, Any]]:
        """Diagnostics view used by the health endpoint.

        Returns:
            List of ``{"sessionId", "routePrefix", "live"}`` dicts.
        """
        return [{"sessionId": s.session_id, "routePrefix": s.route_prefix, "live": s.is_live()} for s in self._ordered()]

    def live_sessions(self) -> List[Session]:
        """Sessions whose transport would accept a write, oldest first.

        Returns:
            List[Session]: live sessions
        """
        return [s for s in self._ordered() if s.is_live()]

    def most_recent(self) -> Optional[Session]:
        """Most recently opened live session.

        Returns:
            The session, or None when nothing is live.
        """
        live = self.live_sessions()
        return live[-1] if live else None

    def resolve(self, candidate: Optional[str], strict: Optional[bool] = None, require_uuid: Optional[bool] = None) -> SessionResolution:
        """Decide which session a submitted request belongs to.

        A supplied identifier failing the UUID check is treated as absent.
        Without a usable identifier the chain continues with the only open
        session, then the most recently opened one, then the default label.
        Strict mode stops after the supplied identifier.

        Args:
            candidate: Identifier supplied by the caller, if any.
            strict: Reject instead of falling back, ``settings.session_strict`` by default.
            require_uuid: Enforce the UUID pattern, ``settings.session_require_uuid`` by default.

        Returns:
            SessionResolution

        Examples:
            >>> class T:
            ...     def is_live(self):
            ...         return True
            >>> reg = SessionRegistry(default_label='fallback')
            >>> reg.resolve(None, strict=False).tier.value
            'default'
            >>> reg.resolve(None, strict=True).rejected
            True
            >>> t = T()
            >>> _ = reg.open('8d7d4ad4-2f0e-4e5a-9a59-3f6f2a7c1e11', t)
            >>> r = reg.resolve('not-a-uuid', strict=False)
            >>> r.session_id, r.tier.value
            ('8d7d4ad4-2f0e-4e5a-9a59-3f6f2a7c1e11', 'only-open')
        """
        strict = settings.session_strict if strict is None else strict
        require_uuid = settings.session_require_uuid if require_uuid is None else require_uuid

        if candidate:
            if not require_uuid or is_valid_session_id(candidate):
                return SessionResolution(candidate, ResolutionTier.EXPLICIT)
            logger.warning(f"Ignoring non-UUID session id: {candidate}")

        if strict:
            return SessionResolution(None, None)

        live = self.live_sessions()
        if len(live) == 1:
            return SessionResolution(live[0].session_id, ResolutionTier.ONLY_OPEN)
        if live:
            return SessionResolution(live[-1].session_id, ResolutionTier.MOST_RECENT)
        return SessionResolution(self._default_label, ResolutionTier.DEFAULT)

    def prune(self) -> int:
        """Drop entries whose transport is gone or no longer live.

        Returns:
            int: number of entries removed
        """
        dead = [sid for sid, session in self._sessions.items() if not session.is_live()]
        for session_id in dead:
            del self._sessions[session_id]
        if dead:
            logger.info(f"Pruned {len(dead)} dead session(s). Active: {len(self._sessions)}")
        return len(dead)

    def _ordered(self) -> List[Session]:
        """Entries sorted by opening time.

        Returns:
            List[Session]: oldest first
        """
        return sorted(self._sessions.values(), key=lambda s: s.opened_at)

    async def _prune_loop(self) -> None:
        """Background task removing dead sessions every prune interval."""
        logger.info("Starting session prune task")
        while True:
            try:
                await asyncio.sleep(self._prune_interval)
                self.prune()
            except asyncio.CancelledError:
                logger.info("Session prune task cancelled")
                break
            except Exception as e:
                logger.error(f"Error in session prune task: {e}")


def generate_session_id() -> str:
    """Create a fresh session identifier.

    Returns:
        str: a uuid4 string

    Examples:
        >>> is_valid_session_id(generate_session_id())
        True
    """
    return str(uuid.uuid4())
