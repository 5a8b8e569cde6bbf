"""Shared fixtures: engines driven through canned Unison transcripts."""

from __future__ import annotations

import pytest

from unisonui.core.engine import Engine, Phase

from transcripts import HEADER, ITEM_ONE, PROCEED, PROMPT_ONE, SIDES_ONE, feed


@pytest.fixture
def ready_engine() -> Engine:
    """An engine holding a one-item plan ("one", left to right)."""
    engine = Engine()
    engine.proc_start()
    feed(engine, HEADER, PROMPT_ONE, b"  ", ITEM_ONE, SIDES_ONE, PROMPT_ONE)
    assert engine.phase == Phase.READY
    return engine


@pytest.fixture
def syncing_engine(ready_engine: Engine) -> Engine:
    """The one-item engine after Unison has been told to propagate."""
    engine = ready_engine
    engine.sync()
    feed(engine, PROMPT_ONE, ITEM_ONE, PROCEED)
    assert engine.phase == Phase.SYNCING
    return engine
