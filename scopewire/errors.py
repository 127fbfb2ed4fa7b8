from __future__ import annotations

from typing import Any


class ScopewireError(Exception):
    """Base type for all exceptions raised by scopewire."""


class MissingArgumentError(ScopewireError, ValueError):
    """Raised when a required argument was passed as None."""

    def __init__(self, parameter_name: str) -> None:
        self.parameter_name = parameter_name
        super().__init__(f"Argument '{parameter_name}' is required and cannot be None.")


class DuplicateServiceRegistrationError(ScopewireError):
    """Raised when attempting to register a service with the same key twice."""

    def __init__(self, klass: Any) -> None:
        self.klass = klass
        super().__init__(f"Cannot register {klass} as it already exists.")


class InvalidRegistrationTypeError(ScopewireError):
    """Raised when attempting to register an invalid object type as a service."""

    def __init__(self, attempted: Any) -> None:
        super().__init__(f"Cannot register {attempted} with the container. Allowed types are callables and types.")


class FactoryReturnTypeIsEmptyError(ScopewireError):
    """Raised when a factory function has no return type defined."""

    def __init__(self, fn: Any) -> None:
        super().__init__(
            "Factory functions must specify a return type denoting the type of dependency it can create. "
            f"Please add a return type to {fn} or pass as_type."
        )


class UnknownParameterError(ScopewireError):
    """Raised when requesting a configuration value by name which does not exist."""

    def __init__(self, parameter_name: str) -> None:
        self.parameter_name = parameter_name
        super().__init__(f"Unknown configuration requested: {parameter_name}")


class UnknownServiceRequestedError(ScopewireError):
    """Raised when requesting an unknown type."""

    def __init__(self, klass: Any) -> None:
        self.klass = klass
        super().__init__(f"Cannot inject unknown service {klass}. Make sure it is registered with the container.")


class ScopeMismatchError(ScopewireError):
    """Raised when a service bound to a scope tag is requested outside any scope carrying that tag."""

    def __init__(self, klass: Any, scope_tag: str) -> None:
        self.klass = klass
        self.scope_tag = scope_tag
        super().__init__(
            f"Cannot create {klass}: it is bound to scopes tagged '{scope_tag}' "
            "and no such scope is visible from where it was requested."
        )


class LifetimeScopeClosedError(ScopewireError):
    """Raised when resolving from a scope that has already been closed."""

    def __init__(self, tag: str) -> None:
        super().__init__(f"Lifetime scope '{tag}' has been closed and can no longer resolve services.")


class ContainerCloseError(ScopewireError):
    """Contains a list of exceptions raised while closing a lifetime scope."""

    def __init__(self, errors: list[Exception]) -> None:
        self.errors = errors
        super().__init__(f"The following exceptions were raised while closing the scope: {errors}")


class ShutdownError(ScopewireError):
    """Contains a list of exceptions raised by shutdown callbacks."""

    def __init__(self, errors: list[Exception]) -> None:
        self.errors = errors
        super().__init__(f"The following exceptions were raised by shutdown callbacks: {errors}")


class PipelineError(ScopewireError):
    """Raised when the pipeline builder is used incorrectly."""


class RequestScopeInjectorNotRegisteredError(ScopewireError):
    """Raised when registering container-backed middleware before the request scope injector."""

    def __init__(self, klass: Any) -> None:
        self.klass = klass
        super().__init__(
            f"Cannot register {klass}: the request scope injector must be added to the pipeline first. "
            "Call use_request_scope or use_container_middleware before registering it."
        )


class RequestScopeNotFoundError(ScopewireError):
    """Raised when container-backed middleware runs without a request scope in the request state."""

    def __init__(self, klass: Any) -> None:
        self.klass = klass
        super().__init__(
            f"No request scope was found while resolving {klass}. "
            "Make sure the request scope injector runs before this middleware."
        )


class MiddlewareNotRegisteredError(ScopewireError):
    """Raised when the middleware type wrapped by a container adapter is not registered."""

    def __init__(self, klass: Any) -> None:
        self.klass = klass
        super().__init__(
            f"Middleware {klass} could not be resolved from the request scope. "
            "Make sure it is registered with the container."
        )


class InvalidMiddlewareTypeError(ScopewireError):
    """Raised when a type that is not concrete middleware is added to the pipeline as container middleware."""

    def __init__(self, klass: Any) -> None:
        self.klass = klass
        super().__init__(
            f"Cannot use {klass} as container middleware. "
            "It must be a concrete subclass of scopewire.Middleware or starlette's BaseHTTPMiddleware."
        )
