# -*- coding: utf-8 -*-
"""

Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

Shared fixtures for the MCP Relay test suite.

"""

# Standard
import json
from typing import Any, Dict, List

# Third-Party
import pytest

# First-Party
from mcprelay.cache.session_registry import SessionRegistry
from mcprelay.config import Settings

SESSION_A = "8d7d4ad4-2f0e-4e5a-9a59-3f6f2a7c1e11"
SESSION_B = "1b4e28ba-2fa1-41d2-883f-0016d3cca427"
SESSION_C = "6fa459ea-ee8a-4ca4-894e-db77e160355e"


class FakeTransport:
    """Stub implementing the subset of the transport API used by the registry and delivery."""

    def __init__(self, session_id: str = SESSION_A, live: bool = True, fail_writes: bool = False):
        self.session_id = session_id
        self.live = live
        self.fail_writes = fail_writes
        self.sent: List[Dict[str, Any]] = []
        self.destroyed_reason = None

    def is_live(self) -> bool:
        return self.live

    async def send_message(self, message: Dict[str, Any]) -> None:
        if self.fail_writes:
            raise ConnectionError("stream closed")
        if not self.live:
            raise RuntimeError("Transport not connected")
        # Deep-copy through JSON round-trip for realism
        self.sent.append(json.loads(json.dumps(message)))

    def mark_destroyed(self, reason: str = "client disconnected") -> None:
        self.live = False
        self.destroyed_reason = reason


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def make_transport():
    """Factory for fake push channels."""
    return FakeTransport


@pytest.fixture
def session_ids():
    """Three distinct valid session identifiers."""
    return SESSION_A, SESSION_B, SESSION_C


@pytest.fixture
def registry():
    """Registry without a background prune task."""
    return SessionRegistry(default_label="default", prune_interval=0)


@pytest.fixture
def clock():
    """Controllable clock for cache tests."""
    return FakeClock()


@pytest.fixture
def test_settings():
    """Settings pointed at a local backend."""
    return Settings(backend_base_url="http://backend.test/hooks", backend_webhook_suffix="bot_api_webhook")
