from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Dict, Optional

from typing_extensions import Literal

AnyCallable = Callable[..., Any]
ServiceLifetime = Literal["singleton", "scoped", "transient"]


class InjectableType:
    """Base type for anything that should be injected using annotation hints."""


@dataclass(frozen=True)
class ConfigInjectionRequest(InjectableType):
    """Flag to indicate to the registry that this argument is a configuration value."""

    __slots__ = ("config_key",)
    config_key: str


class FactoryType(Enum):
    REGULAR = auto()
    COROUTINE_FN = auto()
    GENERATOR = auto()
    ASYNC_GENERATOR = auto()


GENERATOR_FACTORY_TYPES = {FactoryType.GENERATOR, FactoryType.ASYNC_GENERATOR}
ASYNC_FACTORY_TYPES = {FactoryType.ASYNC_GENERATOR, FactoryType.COROUTINE_FN}


class AnnotatedParameter:
    """Represent a single parameter of a factory and how the container should satisfy it."""

    __slots__ = ("annotation", "default", "klass", "name")

    def __init__(
        self,
        name: str,
        klass: Any,
        annotation: InjectableType | None = None,
        default: Any = None,
    ) -> None:
        """Create a new AnnotatedParameter.

        :param name: Name of the parameter in the factory signature.
        :param klass: The type of the dependency, or None when the parameter carries no usable annotation.
        :param annotation: Any injection marker passed along. Such as Inject(config=...) calls.
        :param default: Default value of the parameter, `inspect.Parameter.empty` if there is none.
        """
        self.name = name
        self.klass = klass
        self.annotation = annotation
        self.default = default

    @property
    def is_config(self) -> bool:
        return isinstance(self.annotation, ConfigInjectionRequest)

    def __repr__(self) -> str:
        return f"AnnotatedParameter(name={self.name!r}, klass={self.klass!r}, annotation={self.annotation!r})"


@dataclass
class Registration:
    """A single entry of a service registry.

    `service_type` is the key the service is requested with. It is usually a class but catch-all
    registration sources may also synthesize entries for generic aliases such as `list[str]`.
    """

    service_type: Any
    factory: AnyCallable
    lifetime: ServiceLifetime = "transient"
    factory_type: FactoryType = FactoryType.REGULAR
    scope_tag: Optional[str] = None
    is_instance: bool = False
    instance: Any = None
    dependencies: Dict[str, AnnotatedParameter] = field(default_factory=dict)

    @property
    def is_async(self) -> bool:
        return self.factory_type in ASYNC_FACTORY_TYPES
