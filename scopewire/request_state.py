"""Access to the request scope stored in the state of an ASGI connection.

The scope lives in the ASGI connection `scope` mapping, the per-request environment shared by every
middleware of the pipeline, under a key that is unique to this process.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, MutableMapping, Union

from starlette.requests import HTTPConnection

from scopewire._constants import REQUEST_SCOPE_KEY
from scopewire.errors import MissingArgumentError

if TYPE_CHECKING:
    from scopewire.ioc.container import LifetimeScope

RequestContext = Union[HTTPConnection, MutableMapping[str, Any]]


def _environment(context: RequestContext | None) -> MutableMapping[str, Any]:
    if context is None:
        raise MissingArgumentError("context")

    return context.scope if isinstance(context, HTTPConnection) else context


def get_request_scope(context: RequestContext) -> LifetimeScope | None:
    """Return the lifetime scope of the current request or None when no scope was attached.

    :param context: A Starlette request or websocket, or the raw ASGI scope.
    """
    return _environment(context).get(REQUEST_SCOPE_KEY)


def set_request_scope(context: RequestContext, lifetime_scope: LifetimeScope) -> None:
    """Attach a lifetime scope to the request, replacing any scope already attached."""
    environment = _environment(context)

    if lifetime_scope is None:
        raise MissingArgumentError("lifetime_scope")

    environment[REQUEST_SCOPE_KEY] = lifetime_scope


def remove_request_scope(context: RequestContext) -> None:
    _environment(context).pop(REQUEST_SCOPE_KEY, None)
