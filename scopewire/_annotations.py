from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, TypeVar, overload

from scopewire.ioc.types import ConfigInjectionRequest, InjectableType, ServiceLifetime

if TYPE_CHECKING:
    from collections.abc import Callable


def Inject(*, config: str) -> InjectableType:  # noqa: N802
    """Let the container know it must inject a configuration value into this parameter.

    Use as `Annotated[str, Inject(config="db_url")]`.

    :param config: Name of the configuration value passed to `create_container(config=...)`.
    """
    return ConfigInjectionRequest(config)


T = TypeVar("T")


@dataclass
class ServiceDeclaration:
    """Object containing service declaration metadata."""

    obj: Any
    lifetime: ServiceLifetime = "transient"
    as_type: Optional[Any] = None
    scope_tag: Optional[str] = None


@overload
def service(
    obj: None = None,
    *,
    lifetime: ServiceLifetime = "transient",
    as_type: Any | None = None,
    scope_tag: str | None = None,
) -> Callable[[T], T]:
    pass


@overload
def service(
    obj: T,
    *,
    lifetime: ServiceLifetime = "transient",
    as_type: Any | None = None,
    scope_tag: str | None = None,
) -> T:
    pass


def service(
    obj: T | None = None,
    *,
    lifetime: ServiceLifetime = "transient",
    as_type: Any | None = None,
    scope_tag: str | None = None,
) -> T | Callable[[T], T]:
    """Mark the decorated class or function as a scopewire service.

    :param lifetime: One of "singleton", "scoped" or "transient".
    :param as_type: Register the service under this key instead of its own type or return annotation.
    :param scope_tag: For scoped services, share a single instance within the nearest scope carrying this tag.
    """

    # Allow this to be used as a decorator factory or as a decorator directly.
    def _service_decorator(decorated_obj: T) -> T:
        decorated_obj.__scopewire_registration__ = ServiceDeclaration(  # type: ignore[attr-defined]
            obj=decorated_obj, lifetime=lifetime, as_type=as_type, scope_tag=scope_tag
        )
        return decorated_obj

    return _service_decorator if obj is None else _service_decorator(obj)
