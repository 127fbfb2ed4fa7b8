from __future__ import annotations

import inspect
import logging
from typing import TYPE_CHECKING

from starlette.middleware.base import BaseHTTPMiddleware

from scopewire.middleware import Middleware, is_container_middleware

if TYPE_CHECKING:
    from scopewire.ioc.container import LifetimeScope

logger = logging.getLogger(__name__)

MIDDLEWARE_BASE_TYPES = (Middleware, BaseHTTPMiddleware)


def is_middleware_type(klass: type) -> bool:
    """Whether the class is concrete middleware the container can provide, excluding container adapters."""
    return (
        issubclass(klass, MIDDLEWARE_BASE_TYPES)
        and not inspect.isabstract(klass)
        and klass not in MIDDLEWARE_BASE_TYPES
        and not is_container_middleware(klass)
    )


def discover_middleware_types(container: LifetimeScope) -> list[type]:
    """List the middleware types registered with the container, in registration order.

    Catch-all registration sources may have synthesized registrations for keys that are not classes, such as
    `list[str]`, so those are skipped before any subclass check.
    """
    found: dict[type, None] = {}

    for registration in container.registry.registrations():
        service_type = registration.service_type

        if not inspect.isclass(service_type) or service_type in found:
            continue

        if is_middleware_type(service_type):
            found[service_type] = None

    logger.debug("Discovered middleware types: %s", [klass.__qualname__ for klass in found])

    return list(found)
