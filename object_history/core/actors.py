import logging
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass

from django.db import DatabaseError

from .conf import history_settings

logger = logging.getLogger(__name__)

_current_request: ContextVar = ContextVar("object_history_request", default=None)
_bound_actor: ContextVar = ContextVar("object_history_actor", default=None)


@dataclass(frozen=True)
class Actor:
    identifier: int
    is_privileged: bool = False


def is_history_admin(user) -> bool:
    if not user or not getattr(user, "is_authenticated", False):
        return False
    if user.is_superuser or user.is_staff:
        return True
    group = history_settings()["ADMIN_GROUP"]
    if not group:
        return False
    # membership is looked up once per user object
    cached = getattr(user, "_history_admin_group", None)
    if cached is not None and cached[0] == group:
        return cached[1]
    is_member = user.groups.filter(name=group).exists()
    user._history_admin_group = (group, is_member)
    return is_member


def actor_for_user(user) -> Actor | None:
    if not getattr(user, "is_authenticated", False):
        return None
    identifier = getattr(user, "pk", None)
    if identifier is None:
        return None
    return Actor(identifier=identifier, is_privileged=is_history_admin(user))


def request_user_actor() -> Actor | None:
    """Actor from ``bind_actor`` if set, else the user of the current request."""
    actor = _bound_actor.get()
    if actor is not None:
        return actor
    request = _current_request.get()
    if request is None:
        return None
    return actor_for_user(getattr(request, "user", None))


@contextmanager
def bind_actor(actor: Actor | None):
    token = _bound_actor.set(actor)
    try:
        yield actor
    finally:
        _bound_actor.reset(token)


def bind_request(request):
    return _current_request.set(request)


def release_request(token):
    _current_request.reset(token)


def resolve_actor(resolver) -> Actor | None:
    """Call ``resolver``; any failure other than a database error means "no actor"."""
    if resolver is None:
        return None
    try:
        actor = resolver()
    except DatabaseError:
        raise
    except Exception:
        logger.warning("Actor resolution failed, recording change without an actor", exc_info=True)
        return None
    if actor is None or getattr(actor, "identifier", None) is None:
        return None
    return actor
