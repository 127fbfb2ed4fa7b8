from scopewire.ioc.container import Container, LifetimeScope, create_container
from scopewire.ioc.registry import AnyConcreteTypeSource, RegistrationSource, ServiceRegistry
from scopewire.ioc.types import Registration, ServiceLifetime

__all__ = [
    "AnyConcreteTypeSource",
    "Container",
    "LifetimeScope",
    "Registration",
    "RegistrationSource",
    "ServiceLifetime",
    "ServiceRegistry",
    "create_container",
]
