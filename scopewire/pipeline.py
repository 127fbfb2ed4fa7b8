from __future__ import annotations

import contextlib
import inspect
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.routing import Mount, request_response
from typing_extensions import Self

from scopewire._constants import APP_DISPOSING_KEY
from scopewire.errors import MissingArgumentError, PipelineError, ShutdownError

logger = logging.getLogger(__name__)

Endpoint = Callable[[Request], Union[Response, Awaitable[Response]]]
ShutdownCallback = Callable[[], Optional[Awaitable[None]]]


class ShutdownSignal:
    """Fires once when the host shuts the application down.

    An inert signal, created with `can_be_cancelled=False`, never fires and ignores registrations. Hosts
    without shutdown notifications publish one of those.
    """

    __slots__ = ("_callbacks", "_can_be_cancelled", "_fired")

    def __init__(self, *, can_be_cancelled: bool = True) -> None:
        self._can_be_cancelled = can_be_cancelled
        self._callbacks: list[ShutdownCallback] = []
        self._fired = False

    @classmethod
    def none(cls) -> ShutdownSignal:
        return cls(can_be_cancelled=False)

    @property
    def can_be_cancelled(self) -> bool:
        return self._can_be_cancelled

    @property
    def fired(self) -> bool:
        return self._fired

    def register(self, callback: ShutdownCallback) -> None:
        """Run the callback on shutdown. Coroutine results are awaited."""
        if not self._can_be_cancelled:
            return

        if self._fired:
            logger.warning("Shutdown already signaled, %r will not be called", callback)
            return

        self._callbacks.append(callback)

    async def fire(self) -> None:
        """Run every registered callback, last registered first.

        All callbacks run even if some of them fail. Failures are raised together afterwards.
        """
        if self._fired or not self._can_be_cancelled:
            return

        self._fired = True
        callbacks, self._callbacks = self._callbacks, []
        errors: list[Exception] = []

        for callback in reversed(callbacks):
            logger.debug("Running shutdown callback %r", callback)
            try:
                res = callback()
                if inspect.isawaitable(res):
                    await res
            except Exception as e:  # noqa: BLE001, PERF203
                errors.append(e)

        if errors:
            raise ShutdownError(errors)


async def _not_found(_request: Request) -> Response:
    return PlainTextResponse("Not Found", status_code=404)


class Pipeline:
    """Builds an ASGI application out of middleware executed in the order they were added.

    `properties` is shared with everything composing the pipeline. It always holds a `ShutdownSignal` under
    `APP_DISPOSING_KEY` which fires when the built application receives the lifespan shutdown event.
    """

    def __init__(self, properties: Dict[str, Any] | None = None) -> None:
        self.properties: Dict[str, Any] = dict(properties or {})
        self.properties.setdefault(APP_DISPOSING_KEY, ShutdownSignal())
        self._middleware: List[Middleware] = []
        self._endpoint: Endpoint | None = None

    @property
    def middleware(self) -> List[Middleware]:
        return list(self._middleware)

    def use(self, middleware_class: type, *args: Any, **kwargs: Any) -> Self:
        """Add an ASGI middleware class. It gets called with the next app followed by `args` and `kwargs`."""
        if middleware_class is None:
            raise MissingArgumentError("middleware_class")

        logger.debug("Adding middleware %s to pipeline", getattr(middleware_class, "__qualname__", middleware_class))
        self._middleware.append(Middleware(middleware_class, *args, **kwargs))

        return self

    def run(self, endpoint: Endpoint) -> None:
        """Set the endpoint handling every request that makes it through the middleware.

        :param endpoint: A function, sync or async, taking the request and returning a response.
        """
        if endpoint is None:
            raise MissingArgumentError("endpoint")

        if self._endpoint is not None:
            msg = "The pipeline already has a terminal endpoint."
            raise PipelineError(msg)

        self._endpoint = endpoint

    @property
    def shutdown_signal(self) -> Any:
        return self.properties.get(APP_DISPOSING_KEY)

    @contextlib.asynccontextmanager
    async def _lifespan(self, _app: Starlette) -> AsyncIterator[None]:
        yield

        signal = self.shutdown_signal
        if isinstance(signal, ShutdownSignal):
            await signal.fire()

    def build(self) -> Starlette:
        """Create the application. Requests reaching the end of the pipeline without an endpoint get a 404."""
        app = Starlette(
            routes=[Mount("/", app=request_response(self._endpoint or _not_found))],
            middleware=self.middleware,
            lifespan=self._lifespan,
        )
        app.state.pipeline_properties = self.properties

        return app
