"""Shared fixtures for the object history test suite."""

import pytest

from object_history.core.actors import Actor
from object_history.core.capture import HistoryEngine
from object_history.core.signals import set_engine
from object_history.core.units import close_unit, current_unit, open_unit


@pytest.fixture(autouse=True)
def fresh_unit():
    """Each test gets its own unit of work, discarded afterwards."""
    token = open_unit()
    yield current_unit()
    close_unit(token)


@pytest.fixture
def use_actor():
    """Install an engine whose resolver returns the given actor.

    Usage:
        def test_something(use_actor):
            use_actor(Actor(identifier=7, is_privileged=True))
    """

    def _install(actor):
        set_engine(HistoryEngine(actor_resolver=lambda: actor))

    yield _install
    set_engine(None)


@pytest.fixture
def privileged_actor() -> Actor:
    return Actor(identifier=7, is_privileged=True)


@pytest.fixture
def regular_actor() -> Actor:
    return Actor(identifier=3, is_privileged=False)
