from __future__ import annotations

import abc
import functools
import inspect
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, ClassVar, Union

from starlette.requests import HTTPConnection, Request
from starlette.websockets import WebSocket

from scopewire.errors import MiddlewareNotRegisteredError, RequestScopeNotFoundError, UnknownServiceRequestedError
from scopewire.ioc.util import first_parameter_name
from scopewire.request_state import get_request_scope, remove_request_scope, set_request_scope

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Receive, Scope, Send

    from scopewire.ioc.container import LifetimeScope

logger = logging.getLogger(__name__)

ScopeSource = Callable[[HTTPConnection], Union["LifetimeScope", Awaitable["LifetimeScope"]]]

_CONNECTION_TYPES = ("http", "websocket")


def _make_connection(scope: Scope, receive: Receive, send: Send) -> HTTPConnection:
    if scope["type"] == "http":
        return Request(scope, receive, send)

    return WebSocket(scope, receive, send)


async def _close_scope(lifetime_scope: Any, exc_val: BaseException | None = None) -> None:
    """Run every disposal path the scope exposes, async first.

    When `exc_val` is given and the scope is a context manager, it is exited with that exception so that generator
    factories see the failure. Scopes closing idempotently, like `LifetimeScope`, only dispose once.
    """
    exc_info = (type(exc_val), exc_val, exc_val.__traceback__) if exc_val is not None else (None, None, None)

    if exc_val is not None and (aexit := getattr(lifetime_scope, "__aexit__", None)):
        await aexit(*exc_info)
    elif aclose := getattr(lifetime_scope, "aclose", None):
        await aclose()

    if exc_val is not None and (exit_ := getattr(lifetime_scope, "__exit__", None)):
        exit_(*exc_info)
    elif close := getattr(lifetime_scope, "close", None):
        close()


async def _close_failed_scope(lifetime_scope: Any, exc_val: BaseException) -> None:
    """Close the scope after downstream raised `exc_val`. Cleanup failures are chained to it, never raised instead."""
    try:
        await _close_scope(lifetime_scope, exc_val)
    except BaseException as close_error:
        if close_error is not exc_val:
            raise exc_val from close_error


class RequestScopeMiddleware:
    """Attach a lifetime scope to every http and websocket connection passing through.

    The scope comes from `scope_source`. When `owns_scope` is set, the scope is closed once everything
    downstream has finished, whether it succeeded or raised. A scope already attached by an earlier stage is
    left untouched and `scope_source` is not called.
    """

    def __init__(self, app: ASGIApp, scope_source: ScopeSource, *, owns_scope: bool) -> None:
        self.app = app
        self.scope_source = scope_source
        self.owns_scope = owns_scope

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in _CONNECTION_TYPES or get_request_scope(scope) is not None:
            await self.app(scope, receive, send)
            return

        lifetime_scope = self.scope_source(_make_connection(scope, receive, send))
        if inspect.isawaitable(lifetime_scope):
            lifetime_scope = await lifetime_scope

        try:
            set_request_scope(scope, lifetime_scope)
            try:
                await self.app(scope, receive, send)
            except BaseException as e:
                if self.owns_scope:
                    await _close_failed_scope(lifetime_scope, e)
                raise

            if self.owns_scope:
                await _close_scope(lifetime_scope)
        finally:
            remove_request_scope(scope)


class Middleware(abc.ABC):
    """Base class for pure ASGI middleware that can be resolved from the container.

    The next app in the pipeline is always passed as the first constructor argument. Anything else the
    constructor asks for gets injected from the request scope.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    @abc.abstractmethod
    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        raise NotImplementedError


class ContainerMiddleware(Middleware):
    """Resolve `middleware_type` from the request scope on every call and delegate to it.

    Use `wrap` to obtain the subclass bound to a particular middleware type.
    """

    middleware_type: ClassVar[type]

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in _CONNECTION_TYPES:
            await self.app(scope, receive, send)
            return

        lifetime_scope = get_request_scope(scope)
        if lifetime_scope is None:
            # The injector is checked for at registration, but the state may have been tampered with since.
            raise RequestScopeNotFoundError(self.middleware_type)

        parameters = {}
        if app_parameter := first_parameter_name(self.middleware_type):
            parameters[app_parameter] = self.app

        try:
            middleware = await lifetime_scope.aget(self.middleware_type, **parameters)
        except UnknownServiceRequestedError as e:
            if e.klass is not self.middleware_type:
                raise
            raise MiddlewareNotRegisteredError(self.middleware_type) from e

        await middleware(scope, receive, send)


@functools.lru_cache(maxsize=None)
def wrap(middleware_type: type) -> type[ContainerMiddleware]:
    """Create the `ContainerMiddleware` subclass resolving `middleware_type`. Repeated calls return the same class."""
    name = f"ContainerMiddleware[{middleware_type.__qualname__}]"
    logger.debug("Creating %s", name)

    namespace = {"middleware_type": middleware_type, "__module__": __name__}

    return type(ContainerMiddleware)(name, (ContainerMiddleware,), namespace)  # type: ignore[no-any-return]


def is_container_middleware(klass: type) -> bool:
    return issubclass(klass, ContainerMiddleware)
