from __future__ import annotations

import inspect
from typing import Any, AsyncGenerator, Generator, Union

from scopewire.errors import ContainerCloseError, ScopewireError

FactoryGenerator = Union[Generator[Any, Any, Any], AsyncGenerator[Any, Any]]


class ExitStack:
    """Generators created by factories of a single scope, finalized last-in first-out when the scope closes."""

    __slots__ = ("_generators",)

    def __init__(self) -> None:
        self._generators: list[FactoryGenerator] = []

    def push(self, gen: FactoryGenerator) -> None:
        self._generators.append(gen)

    def __len__(self) -> int:
        return len(self._generators)

    def _pop_all(self) -> list[FactoryGenerator]:
        generators, self._generators = self._generators, []
        generators.reverse()
        return generators

    def close(self, exc_val: BaseException | None = None) -> None:
        if pending := [gen for gen in self._generators if inspect.isasyncgen(gen)]:
            msg = (
                "The following generators are async factories and closing them synchronously is not possible. "
                "Close the scope with `await scope.aclose()` or `async with` instead. "
                f"List of async factories encountered: {pending}."
            )
            raise ScopewireError(msg)

        errors: list[Exception] = []

        for gen in self._pop_all():
            try:
                if exc_val:
                    gen.throw(exc_val)  # type: ignore[union-attr]
                else:
                    gen.send(None)  # type: ignore[union-attr]
            except StopIteration:  # noqa: PERF203
                pass
            except BaseException as e:  # noqa: BLE001
                if e is exc_val:
                    continue
                if not isinstance(e, Exception):
                    raise
                errors.append(e)

        _raise_close_errors(errors, exc_val)

    async def aclose(self, exc_val: BaseException | None = None) -> None:
        errors: list[Exception] = []

        for gen in self._pop_all():
            try:
                if not inspect.isasyncgen(gen):
                    if exc_val:
                        gen.throw(exc_val)
                    else:
                        gen.send(None)
                elif exc_val:
                    await gen.athrow(exc_val)
                else:
                    await gen.asend(None)
            except (StopIteration, StopAsyncIteration):  # noqa: PERF203
                pass
            except BaseException as e:  # noqa: BLE001
                if e is exc_val:
                    continue
                if not isinstance(e, Exception):
                    raise
                errors.append(e)

        _raise_close_errors(errors, exc_val)


def _raise_close_errors(errors: list[Exception], exc_val: BaseException | None) -> None:
    """Report finalizer failures.

    When the scope is closing because of an exception, that exception stays the one being propagated and
    the finalizer failures are attached as its cause.
    """
    if not errors:
        return

    if exc_val is not None:
        raise exc_val from ContainerCloseError(errors)

    raise ContainerCloseError(errors)
