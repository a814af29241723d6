# -*- coding: utf-8 -*-
"""Unit tests for ``session_registry.py``.

Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: Mihai Criveti

Covered behaviours
------------------
* open / close / lookup / count / list / describe
* same-id reopen supersedes without disconnecting, stale close ignored
* weak references: a collected transport resolves to nothing
* identifier extraction from query parameters and headers
* resolution chain: explicit, only-open, most-recent, default, strict
* prune sweep and its background task
"""

# Future
from __future__ import annotations

# Standard
import asyncio
import gc

# Third-Party
import pytest

# First-Party
from mcprelay.cache.session_registry import extract_session_id, generate_session_id, is_valid_session_id, SessionRegistry
from mcprelay.models import ResolutionTier


# --------------------------------------------------------------------------- #
# Basic bookkeeping                                                           #
# --------------------------------------------------------------------------- #
def test_open_lookup_close(registry, make_transport, session_ids):
    sid, _, _ = session_ids
    transport = make_transport(sid)

    session = registry.open(sid, transport, route_prefix="sales")

    assert session.route_prefix == "sales"
    assert registry.lookup(sid).transport is transport
    assert registry.count() == 1
    assert registry.list() == [sid]
    assert registry.describe() == [{"sessionId": sid, "routePrefix": "sales", "live": True}]

    registry.close(sid)
    assert registry.lookup(sid) is None
    assert registry.count() == 0


def test_close_is_idempotent(registry):
    registry.close("never-opened")
    registry.close("never-opened")
    assert registry.count() == 0


def test_lookup_of_empty_id(registry):
    assert registry.lookup(None) is None
    assert registry.lookup("") is None


def test_reopen_supersedes_without_disconnecting(registry, make_transport, session_ids):
    sid, _, _ = session_ids
    old, new = make_transport(sid), make_transport(sid)

    registry.open(sid, old)
    registry.open(sid, new)

    assert registry.count() == 1
    assert registry.lookup(sid).transport is new
    # previous channel is left alone
    assert old.live is True


def test_stale_close_does_not_evict_replacement(registry, make_transport, session_ids):
    sid, _, _ = session_ids
    old, new = make_transport(sid), make_transport(sid)
    registry.open(sid, old)
    registry.open(sid, new)

    registry.close(sid, old)
    assert registry.lookup(sid).transport is new

    registry.close(sid, new)
    assert registry.lookup(sid) is None


def test_collected_transport_is_not_returned(registry, make_transport, session_ids):
    sid, _, _ = session_ids
    registry.open(sid, make_transport(sid))
    gc.collect()

    assert registry.lookup(sid) is None
    assert registry.live_sessions() == []
    assert registry.prune() == 1
    assert registry.count() == 0


def test_live_sessions_ordering_and_most_recent(registry, make_transport, session_ids):
    a, b, c = session_ids
    ta, tb, tc = make_transport(a), make_transport(b), make_transport(c, live=False)
    registry.open(a, ta)
    registry.open(b, tb)
    registry.open(c, tc)

    assert [s.session_id for s in registry.live_sessions()] == [a, b]
    assert registry.most_recent().session_id == b
    assert registry.list() == [a, b, c]


def test_most_recent_without_live_sessions(registry):
    assert registry.most_recent() is None


# --------------------------------------------------------------------------- #
# Identifier helpers                                                          #
# --------------------------------------------------------------------------- #
@pytest.mark.parametrize(
    "value,expected",
    [
        ("8d7d4ad4-2f0e-4e5a-9a59-3f6f2a7c1e11", True),
        ("8D7D4AD4-2F0E-4E5A-9A59-3F6F2A7C1E11", True),
        ("8d7d4ad4-2f0e-6e5a-9a59-3f6f2a7c1e11", False),  # version 6 not accepted
        ("8d7d4ad4-2f0e-4e5a-7a59-3f6f2a7c1e11", False),  # bad variant
        ("client-42", False),
        ("", False),
        (None, False),
    ],
)
def test_is_valid_session_id(value, expected):
    assert is_valid_session_id(value) is expected


def test_generate_session_id_is_valid():
    assert is_valid_session_id(generate_session_id())
    assert generate_session_id() != generate_session_id()


def test_extract_session_id_precedence():
    headers = {"x-session-id": "from-header"}
    assert extract_session_id({"sessionId": "a", "session": "b", "session_id": "c"}, headers) == "a"
    assert extract_session_id({"session": "b", "session_id": "c"}, headers) == "b"
    assert extract_session_id({"session_id": "c"}, headers) == "c"
    assert extract_session_id({}, headers) == "from-header"
    assert extract_session_id({}, {}) is None


# --------------------------------------------------------------------------- #
# Resolution chain                                                            #
# --------------------------------------------------------------------------- #
def test_resolve_explicit(registry, session_ids):
    sid, _, _ = session_ids
    resolution = registry.resolve(sid, strict=False)
    assert resolution.session_id == sid
    assert resolution.tier is ResolutionTier.EXPLICIT


def test_resolve_without_id_uses_only_open_channel(registry, make_transport, session_ids):
    sid, _, _ = session_ids
    transport = make_transport(sid)
    registry.open(sid, transport)

    resolution = registry.resolve(None, strict=False)

    assert resolution.session_id == sid
    assert resolution.tier is ResolutionTier.ONLY_OPEN


def test_resolve_invalid_id_treated_as_absent(registry, make_transport, session_ids):
    sid, _, _ = session_ids
    transport = make_transport(sid)
    registry.open(sid, transport)

    resolution = registry.resolve("client-42", strict=False, require_uuid=True)

    assert resolution.session_id == sid
    assert resolution.tier is ResolutionTier.ONLY_OPEN


def test_resolve_non_uuid_accepted_when_not_enforced(registry):
    resolution = registry.resolve("client-42", strict=False, require_uuid=False)
    assert resolution.session_id == "client-42"
    assert resolution.tier is ResolutionTier.EXPLICIT


def test_resolve_most_recent(registry, make_transport, session_ids):
    a, b, _ = session_ids
    ta, tb = make_transport(a), make_transport(b)
    registry.open(a, ta)
    registry.open(b, tb)

    resolution = registry.resolve(None, strict=False)

    assert resolution.session_id == b
    assert resolution.tier is ResolutionTier.MOST_RECENT


def test_resolve_default_label(registry):
    resolution = registry.resolve(None, strict=False)
    assert resolution.session_id == "default"
    assert resolution.tier is ResolutionTier.DEFAULT


def test_resolve_strict_rejects(registry, make_transport, session_ids):
    sid, _, _ = session_ids
    transport = make_transport(sid)
    registry.open(sid, transport)

    assert registry.resolve(None, strict=True).rejected
    assert registry.resolve("client-42", strict=True, require_uuid=True).rejected
    assert registry.resolve(sid, strict=True).session_id == sid


# --------------------------------------------------------------------------- #
# Pruning                                                                     #
# --------------------------------------------------------------------------- #
def test_prune_removes_dead_sessions(registry, make_transport, session_ids):
    a, b, _ = session_ids
    ta, tb = make_transport(a), make_transport(b, live=False)
    registry.open(a, ta)
    registry.open(b, tb)

    assert registry.prune() == 1
    assert registry.list() == [a]


@pytest.mark.asyncio
async def test_prune_task_lifecycle(make_transport, session_ids):
    sid, _, _ = session_ids
    registry = SessionRegistry(prune_interval=0.01)
    transport = make_transport(sid, live=False)
    registry.open(sid, transport)

    await registry.initialize()
    await asyncio.sleep(0.05)
    assert registry.count() == 0

    await registry.shutdown()
    assert registry._prune_task.done()


@pytest.mark.asyncio
async def test_shutdown_clears_sessions(registry, make_transport, session_ids):
    sid, _, _ = session_ids
    transport = make_transport(sid)
    registry.open(sid, transport)

    await registry.initialize()
    await registry.shutdown()

    assert registry.count() == 0
    assert transport.live is True
