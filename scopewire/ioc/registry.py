from __future__ import annotations

import inspect
import typing
from typing import TYPE_CHECKING, Any, Callable, Iterator

from scopewire.errors import (
    DuplicateServiceRegistrationError,
    FactoryReturnTypeIsEmptyError,
    InvalidRegistrationTypeError,
)
from scopewire.ioc.types import Registration, ServiceLifetime
from scopewire.ioc.util import get_dependencies, get_factory_type, get_return_type, is_concrete_class

if TYPE_CHECKING:
    from scopewire._annotations import ServiceDeclaration


class RegistrationSource:
    """Supplies registrations on demand for keys that were never registered explicitly."""

    def registration_for(self, key: Any) -> Registration | None:
        """Return a registration for the given key or None if this source cannot provide one."""
        raise NotImplementedError

    def registrations(self) -> Iterator[Registration]:
        """Registrations this source has provided so far."""
        raise NotImplementedError


class AnyConcreteTypeSource(RegistrationSource):
    """Catch-all source creating transient registrations for any concrete class.

    Parametrized generics of concrete classes, such as `list[str]`, are accepted too and get registered
    under the alias itself. Bare builtin classes such as `str` or `int` are never synthesized.
    Pass a predicate to narrow down which keys are accepted.
    """

    def __init__(self, predicate: Callable[[Any], bool] | None = None) -> None:
        self.predicate = predicate
        self._synthesized: dict[Any, Registration] = {}

    def _accepts(self, key: Any) -> bool:
        target = key if inspect.isclass(key) else typing.get_origin(key)

        if target is None or not is_concrete_class(target):
            return False

        # Bare builtins such as str or int would be created empty instead of falling back to parameter defaults.
        if key is target and target.__module__ == "builtins":
            return False

        return self.predicate is None or self.predicate(key)

    def registration_for(self, key: Any) -> Registration | None:
        if key in self._synthesized:
            return self._synthesized[key]

        if not self._accepts(key):
            return None

        factory = key if inspect.isclass(key) else typing.get_origin(key)
        registration = Registration(
            service_type=key,
            factory=factory,
            lifetime="transient",
            dependencies=get_dependencies(factory),
        )
        self._synthesized[key] = registration

        return registration

    def registrations(self) -> Iterator[Registration]:
        # Copy so that resolving while iterating does not break the iteration.
        yield from list(self._synthesized.values())


class ServiceRegistry:
    """Ordered collection of service registrations plus the sources consulted for unknown keys."""

    __slots__ = ("_registrations", "sources")

    def __init__(self) -> None:
        self._registrations: dict[Any, Registration] = {}
        self.sources: list[RegistrationSource] = []

    def register(
        self,
        obj: Any,
        *,
        lifetime: ServiceLifetime = "transient",
        as_type: Any | None = None,
        scope_tag: str | None = None,
    ) -> Registration:
        """Register a class or factory function.

        :param obj: A class, or a function returning the service. Generator functions yield the service and
        run the code after `yield` when the owning scope closes.
        :param lifetime: One of "singleton", "scoped" or "transient".
        :param as_type: Key to register the service under. Defaults to the class or the factory return type.
        :param scope_tag: For scoped services, share the instance in the nearest scope carrying this tag.
        """
        if not callable(obj):
            raise InvalidRegistrationTypeError(obj)

        key = as_type if as_type is not None else get_return_type(obj)
        if key is None:
            raise FactoryReturnTypeIsEmptyError(obj)

        return self._add(
            Registration(
                service_type=key,
                factory=obj,
                lifetime=lifetime,
                factory_type=get_factory_type(obj),
                scope_tag=scope_tag,
                dependencies=get_dependencies(obj),
            )
        )

    def register_instance(self, instance: Any, *, as_type: Any | None = None) -> Registration:
        """Register an existing object. The registry never takes ownership of it."""
        key = as_type if as_type is not None else type(instance)

        return self._add(
            Registration(
                service_type=key,
                factory=lambda: instance,
                lifetime="singleton",
                is_instance=True,
                instance=instance,
            )
        )

    def register_declaration(self, declaration: ServiceDeclaration) -> Registration:
        return self.register(
            declaration.obj,
            lifetime=declaration.lifetime,
            as_type=declaration.as_type,
            scope_tag=declaration.scope_tag,
        )

    def add_source(self, source: RegistrationSource) -> None:
        self.sources.append(source)

    def _add(self, registration: Registration) -> Registration:
        if registration.service_type in self._registrations:
            raise DuplicateServiceRegistrationError(registration.service_type)

        self._registrations[registration.service_type] = registration

        return registration

    def is_registered(self, key: Any) -> bool:
        """Whether the key was registered explicitly. Registration sources are not consulted."""
        return key in self._registrations

    def get(self, key: Any) -> Registration | None:
        """Find the registration for a key, falling back to the registration sources in the order they were added."""
        if registration := self._registrations.get(key):
            return registration

        for source in self.sources:
            if registration := source.registration_for(key):
                return registration

        return None

    def registrations(self) -> Iterator[Registration]:
        """Explicit registrations in registration order followed by everything the sources provided so far."""
        yield from list(self._registrations.values())

        for source in self.sources:
            yield from source.registrations()

    def __len__(self) -> int:
        return len(self._registrations)
