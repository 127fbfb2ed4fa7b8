"""Serve with any ASGI server, e.g. `uvicorn examples.greeter_app:app`."""

import random

from starlette.requests import Request
from starlette.responses import PlainTextResponse
from starlette.types import ASGIApp, Receive, Scope, Send
from typing_extensions import Annotated

import scopewire
from scopewire import Inject, Middleware, service


@service(lifetime="singleton")
class GreeterService:
    def greet(self, name: str) -> str:
        return "{} {}".format(random.choice(["Hi", "Oye", "Përshëndetje", "Guten Tag"]), name)


@service(lifetime="scoped", scope_tag=scopewire.REQUEST_SCOPE_TAG)
class Visitor:
    def __init__(self, request: Request) -> None:
        self.name = request.query_params.get("name", "Anonymous")


class CacheHeaderMiddleware(Middleware):
    def __init__(self, app: ASGIApp, cache_dir: Annotated[str, Inject(config="cache_dir")]) -> None:
        super().__init__(app)
        self.cache_dir = cache_dir

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        async def send_with_header(message: dict) -> None:
            if message["type"] == "http.response.start":
                message.setdefault("headers", []).append((b"x-cache-dir", self.cache_dir.encode()))
            await send(message)

        await self.app(scope, receive, send_with_header)


class Handler:
    def __init__(self, greeter: GreeterService, visitor: Visitor) -> None:
        self.greeter = greeter
        self.visitor = visitor

    def handle(self) -> PlainTextResponse:
        return PlainTextResponse(self.greeter.greet(self.visitor.name))


container = scopewire.create_container(
    services=[GreeterService, Visitor, CacheHeaderMiddleware, Handler],
    config={"cache_dir": "/var/cache"},
)

pipeline = scopewire.Pipeline()
scopewire.use_container_middleware(pipeline, container)
scopewire.dispose_scope_on_shutdown(pipeline, container)
scopewire.run_from_container(pipeline, Handler, lambda handler, request: handler.handle())

app = pipeline.build()
