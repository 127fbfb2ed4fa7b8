"""Functions composing a `Pipeline` with a scopewire container."""

from __future__ import annotations

import inspect
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, TypeVar, Union, overload

from starlette.requests import HTTPConnection, Request
from starlette.websockets import WebSocket

from scopewire._constants import APP_DISPOSING_KEY, INJECTOR_REGISTERED_KEY, REQUEST_SCOPE_TAG
from scopewire.discovery import discover_middleware_types, is_middleware_type
from scopewire.errors import (
    InvalidMiddlewareTypeError,
    MissingArgumentError,
    RequestScopeInjectorNotRegisteredError,
    RequestScopeNotFoundError,
)
from scopewire.ioc.container import LifetimeScope
from scopewire.middleware import RequestScopeMiddleware, ScopeSource, wrap
from scopewire.pipeline import ShutdownSignal
from scopewire.request_state import get_request_scope

if TYPE_CHECKING:
    from starlette.responses import Response

    from scopewire.ioc.registry import ServiceRegistry
    from scopewire.pipeline import Pipeline

T = TypeVar("T")
logger = logging.getLogger(__name__)

ContainerHandler = Callable[[T, Request], Union["Response", Awaitable["Response"]]]


def _request_scope_source(container: LifetimeScope) -> ScopeSource:
    def _source(connection: HTTPConnection) -> LifetimeScope:
        def _configure(registry: ServiceRegistry) -> None:
            registry.register_instance(connection, as_type=HTTPConnection)
            registry.register_instance(connection, as_type=Request if isinstance(connection, Request) else WebSocket)

        return container.enter_scope(REQUEST_SCOPE_TAG, configure=_configure)

    return _source


def _register_injector(pipeline: Pipeline, scope_source: ScopeSource, *, owns_scope: bool) -> Pipeline:
    pipeline.use(RequestScopeMiddleware, scope_source, owns_scope=owns_scope)
    pipeline.properties[INJECTOR_REGISTERED_KEY] = True

    return pipeline


@overload
def use_request_scope(pipeline: Pipeline, container: LifetimeScope) -> Pipeline: ...


@overload
def use_request_scope(pipeline: Pipeline, container: ScopeSource) -> Pipeline: ...


def use_request_scope(pipeline: Pipeline, container: LifetimeScope | ScopeSource) -> Pipeline:
    """Open a lifetime scope for every request and make it available to everything after it in the pipeline.

    Add this before any middleware that needs the request scope.

    :param pipeline: The pipeline being composed.
    :param container: Either a container, in which case a child scope tagged `REQUEST_SCOPE_TAG` is opened per
    request and closed when the request completes, or a function returning the scope to use for a connection.
    Scopes returned by such a function are never closed by scopewire: whoever creates them owns them.
    The request scope can resolve the current `Request` or `WebSocket` as well as `HTTPConnection`.
    """
    if pipeline is None:
        raise MissingArgumentError("pipeline")

    if container is None:
        raise MissingArgumentError("container")

    if isinstance(container, LifetimeScope):
        return _register_injector(pipeline, _request_scope_source(container), owns_scope=True)

    return _register_injector(pipeline, container, owns_scope=False)


def is_request_scope_registered(pipeline: Pipeline) -> bool:
    """Whether `use_request_scope` was already called for the pipeline."""
    if pipeline is None:
        raise MissingArgumentError("pipeline")

    return INJECTOR_REGISTERED_KEY in pipeline.properties


def use_middleware_from_container(pipeline: Pipeline, middleware_type: type) -> Pipeline:
    """Add middleware that gets resolved from the request scope on every request.

    The middleware receives the next app as its first constructor argument. Everything else gets injected.

    :raises InvalidMiddlewareTypeError: When `middleware_type` is not concrete middleware.
    :raises RequestScopeInjectorNotRegisteredError: When the request scope was not added to the pipeline yet.
    """
    if pipeline is None:
        raise MissingArgumentError("pipeline")

    if middleware_type is None:
        raise MissingArgumentError("middleware_type")

    if not inspect.isclass(middleware_type) or not is_middleware_type(middleware_type):
        raise InvalidMiddlewareTypeError(middleware_type)

    if not is_request_scope_registered(pipeline):
        raise RequestScopeInjectorNotRegisteredError(middleware_type)

    return pipeline.use(wrap(middleware_type))


def use_container_middleware(pipeline: Pipeline, container: LifetimeScope) -> Pipeline:
    """Add the request scope followed by every middleware registered with the container, in registration order."""
    if pipeline is None:
        raise MissingArgumentError("pipeline")

    if container is None:
        raise MissingArgumentError("container")

    _register_injector(pipeline, _request_scope_source(container), owns_scope=True)

    for middleware_type in discover_middleware_types(container):
        pipeline.use(wrap(middleware_type))

    return pipeline


def run_from_container(pipeline: Pipeline, service_type: type[T], handler: ContainerHandler[T]) -> None:
    """End the pipeline with a handler receiving a service resolved from the request scope.

    :param service_type: The service to resolve for each request.
    :param handler: Called with the service and the request. Returns the response, optionally as an awaitable.
    :raises RequestScopeInjectorNotRegisteredError: When the request scope was not added to the pipeline yet.
    """
    if pipeline is None:
        raise MissingArgumentError("pipeline")

    if service_type is None:
        raise MissingArgumentError("service_type")

    if handler is None:
        raise MissingArgumentError("handler")

    if not is_request_scope_registered(pipeline):
        raise RequestScopeInjectorNotRegisteredError(service_type)

    async def _endpoint(request: Request) -> Any:
        lifetime_scope = get_request_scope(request)
        if lifetime_scope is None:
            raise RequestScopeNotFoundError(service_type)

        res = handler(await lifetime_scope.aget(service_type), request)

        return await res if inspect.isawaitable(res) else res

    pipeline.run(_endpoint)


def dispose_scope_on_shutdown(pipeline: Pipeline, lifetime_scope: LifetimeScope) -> Pipeline:
    """Close the scope when the host signals application shutdown.

    Does nothing when the host did not publish a shutdown signal that can fire.
    """
    if pipeline is None:
        raise MissingArgumentError("pipeline")

    if lifetime_scope is None:
        raise MissingArgumentError("lifetime_scope")

    signal = pipeline.properties.get(APP_DISPOSING_KEY)

    if isinstance(signal, ShutdownSignal) and signal.can_be_cancelled:
        signal.register(lifetime_scope.aclose)
    else:
        logger.debug("No shutdown signal available, %r will not be closed on shutdown", lifetime_scope)

    return pipeline
