# -*- coding: utf-8 -*-
"""Location: ./mcprelay/services/delivery_service.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

Delivery Service.
This module decides which push channel receives a reply envelope. Clients of
the relay do not always echo their session id reliably, so delivery falls back
in order:

1. the session the request named, if it is live;
2. the only live session, if exactly one exists;
3. every live session, if more than one exists;
4. nothing, in which case the caller answers over HTTP.

Channels that are not live are never written to. A write that fails marks the
channel destroyed and the chain moves on, so each reply is pushed at most once
per channel and a ``no-channel`` outcome always means nothing was pushed.
"""

# Standard
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

# First-Party
from mcprelay.cache.session_registry import Session, SessionRegistry
from mcprelay.models import DeliveryOutcome
from mcprelay.services.logging_service import LoggingService

# Initialize logging service first
logging_service = LoggingService()
logger = logging_service.get_logger(__name__)


@dataclass
class DeliveryResult:
    """Outcome of a delivery attempt.

    Attributes:
        outcome: Which branch of the fallback chain applied.
        recipients: Session ids that received the envelope.

    Examples:
        >>> DeliveryResult(DeliveryOutcome.NO_CHANNEL).pushed
        False
        >>> DeliveryResult(DeliveryOutcome.DELIVERED_EXACT, ['a']).pushed
        True
    """

    outcome: DeliveryOutcome
    recipients: List[str] = field(default_factory=list)

    @property
    def pushed(self) -> bool:
        """Whether at least one channel received the envelope.

        Returns:
            bool: pushed flag
        """
        return self.outcome.pushed


class DeliveryService:
    """Routes reply envelopes to push channels.

    Examples:
        >>> import asyncio
        >>> from mcprelay.cache.session_registry import SessionRegistry
        >>> service = DeliveryService(SessionRegistry())
        >>> asyncio.run(service.deliver('missing', {'jsonrpc': '2.0', 'id': 1, 'result': {}})).outcome.value
        'no-channel'
    """

    def __init__(self, registry: SessionRegistry):
        """Initialize the service.

        Args:
            registry: Session registry to look channels up in
        """
        self._registry = registry

    async def deliver(self, session_id: Optional[str], envelope: Dict[str, Any], context: Optional[Dict[str, Any]] = None) -> DeliveryResult:
        """Push an envelope following the fallback chain.

        Args:
            session_id: Session the request was resolved to
            envelope: Reply envelope to push
            context: Extra request details for the log (method, route prefix)

        Returns:
            DeliveryResult
        """
        context = context or {}
        method = context.get("method")

        target = self._registry.lookup(session_id)
        if target is not None and target.is_live():
            if await self._write(target, envelope):
                logger.info(f"Delivered reply id={envelope.get('id')} method={method} to session {session_id}")
                return DeliveryResult(DeliveryOutcome.DELIVERED_EXACT, [target.session_id])

        live = [s for s in self._registry.live_sessions() if s.session_id != session_id]

        if len(live) == 1:
            fallback = live[0]
            if await self._write(fallback, envelope):
                logger.warning(f"Session {session_id} has no live channel; delivered reply id={envelope.get('id')} to only open session {fallback.session_id}")
                return DeliveryResult(DeliveryOutcome.DELIVERED_FALLBACK_SINGLE, [fallback.session_id])
            return self._no_channel(session_id, envelope)

        if live:
            recipients = []
            for session in live:
                if not session.is_live():
                    continue
                if await self._write(session, envelope):
                    recipients.append(session.session_id)
            if recipients:
                logger.warning(f"Session {session_id} has no live channel; broadcast reply id={envelope.get('id')} to {len(recipients)} sessions")
                return DeliveryResult(DeliveryOutcome.DELIVERED_FALLBACK_BROADCAST, recipients)

        return self._no_channel(session_id, envelope)

    def _no_channel(self, session_id: Optional[str], envelope: Dict[str, Any]) -> DeliveryResult:
        """Record that nothing could be pushed.

        Args:
            session_id: Session the request was resolved to
            envelope: Reply envelope

        Returns:
            DeliveryResult with ``no-channel``
        """
        logger.info(f"No live channel for session {session_id}; reply id={envelope.get('id')} goes back over HTTP")
        return DeliveryResult(DeliveryOutcome.NO_CHANNEL)

    async def _write(self, session: Session, envelope: Dict[str, Any]) -> bool:
        """Write to one channel, marking it unusable on failure.

        Args:
            session: Target session
            envelope: Reply envelope

        Returns:
            bool: True if the write succeeded
        """
        transport = session.transport
        if transport is None:
            return False
        try:
            await transport.send_message(envelope)
            return True
        except Exception as e:
            logger.warning(f"Write to session {session.session_id} failed: {e}")
            mark_destroyed = getattr(transport, "mark_destroyed", None)
            if callable(mark_destroyed):
                mark_destroyed(f"write failed: {e}")
            return False
