from scopewire._annotations import Inject, service
from scopewire._constants import APP_DISPOSING_KEY, REQUEST_SCOPE_TAG
from scopewire.app_builder import (
    dispose_scope_on_shutdown,
    is_request_scope_registered,
    run_from_container,
    use_container_middleware,
    use_middleware_from_container,
    use_request_scope,
)
from scopewire.discovery import discover_middleware_types
from scopewire.ioc import AnyConcreteTypeSource, Container, LifetimeScope, ServiceRegistry, create_container
from scopewire.middleware import ContainerMiddleware, Middleware, RequestScopeMiddleware, wrap
from scopewire.pipeline import Pipeline, ShutdownSignal
from scopewire.request_state import get_request_scope, remove_request_scope, set_request_scope

__all__ = [
    "APP_DISPOSING_KEY",
    "REQUEST_SCOPE_TAG",
    "AnyConcreteTypeSource",
    "Container",
    "ContainerMiddleware",
    "Inject",
    "LifetimeScope",
    "Middleware",
    "Pipeline",
    "RequestScopeMiddleware",
    "ServiceRegistry",
    "ShutdownSignal",
    "create_container",
    "discover_middleware_types",
    "dispose_scope_on_shutdown",
    "get_request_scope",
    "is_request_scope_registered",
    "remove_request_scope",
    "run_from_container",
    "service",
    "set_request_scope",
    "use_container_middleware",
    "use_middleware_from_container",
    "use_request_scope",
    "wrap",
]
