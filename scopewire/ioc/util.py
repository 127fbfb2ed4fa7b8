from __future__ import annotations

import inspect
import typing
from inspect import Parameter
from typing import Any, Sequence

from scopewire.errors import ScopewireError
from scopewire.ioc.types import AnnotatedParameter, AnyCallable, FactoryType, InjectableType

_SKIPPED_PARAMETER_KINDS = {Parameter.VAR_POSITIONAL, Parameter.VAR_KEYWORD}


def get_factory_type(fn: AnyCallable) -> FactoryType:
    """Determine the type of factory based on the function signature."""
    if inspect.iscoroutinefunction(fn):
        return FactoryType.COROUTINE_FN

    if inspect.isgeneratorfunction(fn):
        return FactoryType.GENERATOR

    if inspect.isasyncgenfunction(fn):
        return FactoryType.ASYNC_GENERATOR

    return FactoryType.REGULAR


def _type_hints(target: AnyCallable) -> dict[str, Any]:
    hinted = target.__init__ if isinstance(target, type) else target  # type: ignore[misc]

    try:
        return typing.get_type_hints(hinted, include_extras=True)
    except NameError:
        # Unresolvable forward references. Keep whatever is already a real object.
        raw = getattr(hinted, "__annotations__", {})
        return {name: value for name, value in raw.items() if not isinstance(value, str)}
    except TypeError:
        return {}


def get_return_type(fn: AnyCallable) -> Any | None:
    """Return the type a factory creates, unwrapping the yield type of generator factories."""
    if isinstance(fn, type):
        return fn

    ret = _type_hints(fn).get("return")
    if ret is None:
        return None

    if inspect.isgeneratorfunction(fn) or inspect.isasyncgenfunction(fn):
        args = typing.get_args(ret)
        if not args:
            return None
        ret = args[0]  # Extract the yield type from the generator

    return ret


def _get_injection_marker(metadata: Sequence[Any]) -> InjectableType | None:
    markers = [item for item in metadata if isinstance(item, InjectableType)]

    if not markers:
        return None

    if len(markers) > 1:
        msg = f"Multiple scopewire annotations used: {markers}"
        raise ScopewireError(msg)

    return markers[0]


def get_dependencies(target: AnyCallable) -> dict[str, AnnotatedParameter]:
    """Collect the parameters needed to call the given class or factory.

    `*args` and `**kwargs` are never injected. Parameters without a usable annotation are kept with
    `klass=None` so that explicit arguments or defaults can still satisfy them.
    """
    try:
        signature = inspect.signature(target)
    except (TypeError, ValueError):
        return {}

    hints = _type_hints(target)
    res: dict[str, AnnotatedParameter] = {}

    for name, parameter in signature.parameters.items():
        if parameter.kind in _SKIPPED_PARAMETER_KINDS:
            continue

        klass = hints.get(name)
        marker = None

        if klass is not None and hasattr(klass, "__metadata__"):
            marker = _get_injection_marker(klass.__metadata__)
            klass = klass.__origin__

        res[name] = AnnotatedParameter(name=name, klass=klass, annotation=marker, default=parameter.default)

    return res


def is_concrete_class(value: Any) -> bool:
    """Whether the value is a class that can be instantiated."""
    return inspect.isclass(value) and not inspect.isabstract(value) and not getattr(value, "_is_protocol", False)


def first_parameter_name(klass: type) -> str | None:
    """Name of the first parameter accepted by the class constructor."""
    for name, parameter in inspect.signature(klass).parameters.items():
        if parameter.kind not in _SKIPPED_PARAMETER_KINDS:
            return name

    return None


def stringify_type(target: Any) -> str:
    if inspect.isclass(target) or inspect.isfunction(target):
        return f"{type(target).__name__.capitalize()} {target.__module__}.{target.__qualname__}"

    return repr(target)
