from __future__ import annotations

import logging
from inspect import Parameter
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping, TypeVar

from typing_extensions import Self

from scopewire._constants import ROOT_SCOPE_TAG
from scopewire.errors import (
    LifetimeScopeClosedError,
    ScopeMismatchError,
    ScopewireError,
    UnknownParameterError,
    UnknownServiceRequestedError,
)
from scopewire.ioc._exit_stack import ExitStack
from scopewire.ioc.registry import RegistrationSource, ServiceRegistry
from scopewire.ioc.types import FactoryType
from scopewire.ioc.util import stringify_type

if TYPE_CHECKING:
    from types import TracebackType

    from scopewire.ioc.types import Registration

T = TypeVar("T")
logger = logging.getLogger(__name__)


class LifetimeScope:
    """A unit of ownership for the services created within it.

    Scopes form a tree rooted at the `Container`. Lookups walk from a scope up to the root, so a child scope
    sees everything its ancestors registered plus what was registered for it via `configure`.
    Resolving `LifetimeScope` itself returns the scope doing the resolution.
    """

    __slots__ = ("_closed", "_config", "_exit_stack", "_objects", "parent", "registry", "tag")

    def __init__(
        self,
        registry: ServiceRegistry,
        *,
        tag: str | None = None,
        parent: LifetimeScope | None = None,
        config: Mapping[str, Any] | None = None,
    ) -> None:
        self.registry = registry
        self.tag = tag
        self.parent = parent
        self._config: Mapping[str, Any] = config or {}
        self._objects: dict[Any, Any] = {}
        self._exit_stack = ExitStack()
        self._closed = False

    def __repr__(self) -> str:
        return f"{type(self).__name__}(tag={self.tag!r}, closed={self._closed})"

    @property
    def closed(self) -> bool:
        return self._closed

    def enter_scope(
        self,
        tag: str | None = None,
        configure: Callable[[ServiceRegistry], None] | None = None,
    ) -> LifetimeScope:
        """Create a child scope.

        :param tag: Label of the new scope. Scoped services declared with a matching `scope_tag` are shared
        within the nearest scope carrying it.
        :param configure: Called with the registry of the new scope to add registrations visible only to it.
        """
        self._assert_open()
        registry = ServiceRegistry()

        if configure is not None:
            configure(registry)

        scope = LifetimeScope(registry, tag=tag, parent=self, config=self._config)
        logger.debug("Opened lifetime scope %r under %r", tag, self.tag)

        return scope

    def _assert_open(self) -> None:
        if self._closed:
            raise LifetimeScopeClosedError(str(self.tag))

    def _find(self, klass: Any) -> tuple[LifetimeScope, Registration] | None:
        scope: LifetimeScope | None = self

        while scope is not None:
            try:
                registration = scope.registry.get(klass)
            except TypeError:
                # Unhashable annotations can never be registered.
                return None

            if registration is not None:
                return scope, registration

            scope = scope.parent

        return None

    def _is_resolvable(self, klass: Any) -> bool:
        return klass is LifetimeScope or self._find(klass) is not None

    def _tagged_ancestor(self, tag: str) -> LifetimeScope | None:
        scope: LifetimeScope | None = self

        while scope is not None:
            if scope.tag == tag:
                return scope
            scope = scope.parent

        return None

    def _owner(self, registration: Registration, declaring_scope: LifetimeScope) -> LifetimeScope | None:
        """Return the scope caching the instance, None for transient services."""
        if registration.lifetime == "singleton":
            return declaring_scope

        if registration.lifetime == "scoped":
            if registration.scope_tag is None:
                return self

            owner = self._tagged_ancestor(registration.scope_tag)
            if owner is None:
                raise ScopeMismatchError(registration.service_type, registration.scope_tag)

            return owner

        return None

    def _config_value(self, key: str) -> Any:
        try:
            return self._config[key]
        except KeyError as e:
            raise UnknownParameterError(key) from e

    def _plan(self, registration: Registration, parameters: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
        """Split the factory arguments into ready values and service keys that still need resolving."""
        values: dict[str, Any] = {}
        pending: dict[str, Any] = {}

        for name, dependency in registration.dependencies.items():
            if name in parameters:
                values[name] = parameters[name]
            elif dependency.is_config:
                values[name] = self._config_value(dependency.annotation.config_key)  # type: ignore[union-attr]
            elif dependency.klass is not None and self._is_resolvable(dependency.klass):
                pending[name] = dependency.klass
            elif dependency.default is not Parameter.empty:
                continue
            elif dependency.klass is not None:
                raise UnknownServiceRequestedError(dependency.klass)
            else:
                msg = (
                    f"Parameter '{name}' of {stringify_type(registration.factory)} has no type annotation "
                    "and no default value. Pass it explicitly when resolving."
                )
                raise ScopewireError(msg)

        return values, pending

    def _prepare(self, klass: Any) -> tuple[Registration, LifetimeScope | None, Any]:
        self._assert_open()

        found = self._find(klass)
        if found is None:
            raise UnknownServiceRequestedError(klass)

        declaring_scope, registration = found
        owner = self._owner(registration, declaring_scope)
        cached = owner._objects.get(registration.service_type, _NOT_CREATED) if owner is not None else _NOT_CREATED

        return registration, owner, cached

    def _store(self, registration: Registration, owner: LifetimeScope | None, instance: Any) -> Any:
        if owner is not None:
            return owner._objects.setdefault(registration.service_type, instance)

        return instance

    def get(self, klass: type[T], **parameters: Any) -> T:
        """Get an instance of the requested type.

        :param klass: Key of the service, usually its class.
        :param parameters: Explicit arguments for the factory, matched by parameter name. These take precedence
        over anything the container would inject.
        :return: An instance of the requested object. Returns the cached one for singleton and scoped services.
        """
        if klass is LifetimeScope:
            return self  # type: ignore[return-value]

        registration, owner, cached = self._prepare(klass)
        if registration.is_instance:
            return registration.instance  # type: ignore[no-any-return]
        if cached is not _NOT_CREATED:
            return cached  # type: ignore[no-any-return]

        if registration.is_async:
            msg = (
                f"{stringify_type(klass)} is an async dependency and it cannot be created in a synchronous context. "
                "Use `await scope.aget(...)` instead."
            )
            raise ScopewireError(msg)

        target = owner or self
        kwargs, pending = target._plan(registration, parameters)
        for name, dependency in pending.items():
            kwargs[name] = target.get(dependency)

        if registration.factory_type == FactoryType.GENERATOR:
            gen = registration.factory(**kwargs)
            instance = next(gen)
            target._exit_stack.push(gen)
        else:
            instance = registration.factory(**kwargs)

        return self._store(registration, owner, instance)  # type: ignore[no-any-return]

    async def aget(self, klass: type[T], **parameters: Any) -> T:
        """Get an instance of the requested type, allowing async factories anywhere in the dependency chain.

        See `get` for the meaning of the arguments.
        """
        if klass is LifetimeScope:
            return self  # type: ignore[return-value]

        registration, owner, cached = self._prepare(klass)
        if registration.is_instance:
            return registration.instance  # type: ignore[no-any-return]
        if cached is not _NOT_CREATED:
            return cached  # type: ignore[no-any-return]

        target = owner or self
        kwargs, pending = target._plan(registration, parameters)
        for name, dependency in pending.items():
            kwargs[name] = await target.aget(dependency)

        factory_type = registration.factory_type
        if factory_type == FactoryType.GENERATOR:
            gen = registration.factory(**kwargs)
            instance = next(gen)
            target._exit_stack.push(gen)
        elif factory_type == FactoryType.ASYNC_GENERATOR:
            agen = registration.factory(**kwargs)
            instance = await agen.__anext__()
            target._exit_stack.push(agen)
        elif factory_type == FactoryType.COROUTINE_FN:
            instance = await registration.factory(**kwargs)
        else:
            instance = registration.factory(**kwargs)

        return self._store(registration, owner, instance)  # type: ignore[no-any-return]

    def close(self) -> None:
        """Close the scope, running the cleanup of generator factories. Closing twice is a no-op."""
        if self._closed:
            return

        self._closed = True
        logger.debug("Closing lifetime scope %r", self.tag)
        self._exit_stack.close()

    async def aclose(self) -> None:
        """Close the scope, running the cleanup of sync and async generator factories. Closing twice is a no-op."""
        if self._closed:
            return

        self._closed = True
        logger.debug("Closing lifetime scope %r", self.tag)
        await self._exit_stack.aclose()

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        _exc_type: type[BaseException] | None = None,
        exc_val: BaseException | None = None,
        _exc_tb: TracebackType | None = None,
    ) -> None:
        if not self._closed:
            self._closed = True
            self._exit_stack.close(exc_val)

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None = None,
        exc_val: BaseException | None = None,
        _exc_tb: TracebackType | None = None,
    ) -> None:
        if not self._closed:
            self._closed = True
            await self._exit_stack.aclose(exc_val)


_NOT_CREATED = object()


class Container(LifetimeScope):
    """The root scope. Owns singletons and lives for as long as the application does."""

    __slots__ = ()

    def __init__(self, registry: ServiceRegistry | None = None, config: Mapping[str, Any] | None = None) -> None:
        super().__init__(registry or ServiceRegistry(), tag=ROOT_SCOPE_TAG, config=config)


def create_container(
    services: Iterable[Any] = (),
    *,
    config: Mapping[str, Any] | None = None,
    sources: Iterable[RegistrationSource] = (),
) -> Container:
    """Create a container from a list of services.

    :param services: Classes or factory functions. Those decorated with `@service` are registered with the
    options given to the decorator, the rest as transient services keyed by their class or return type.
    :param config: Configuration values available for injection via `Inject(config="key")`.
    :param sources: Registration sources consulted for keys that were not registered explicitly.
    """
    registry = ServiceRegistry()

    for obj in services:
        declaration = getattr(obj, "__scopewire_registration__", None)
        # Subclasses inherit the attribute of a decorated base class.
        if declaration is not None and declaration.obj is obj:
            registry.register_declaration(declaration)
        else:
            registry.register(obj)

    for source in sources:
        registry.add_source(source)

    return Container(registry, config=config)
