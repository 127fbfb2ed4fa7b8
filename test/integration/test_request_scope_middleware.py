from typing import Iterator, List, Optional

import pytest
import scopewire
from scopewire import (
    LifetimeScope,
    Pipeline,
    RequestScopeMiddleware,
    get_request_scope,
    service,
    set_request_scope,
    use_request_scope,
)
from scopewire.errors import ContainerCloseError
from starlette.applications import Starlette
from starlette.requests import HTTPConnection, Request
from starlette.responses import PlainTextResponse
from starlette.testclient import TestClient
from starlette.types import ASGIApp, Receive, Scope, Send
from starlette.websockets import WebSocket


class Resource:
    def __init__(self) -> None:
        self.closed = 0


class ScopeSpy:
    """Records the request scope seen before and after the rest of the pipeline ran."""

    def __init__(self, app: ASGIApp, seen: list) -> None:
        self.app = app
        self.seen = seen

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        self.seen.append(("before", get_request_scope(scope)))
        try:
            await self.app(scope, receive, send)
        finally:
            self.seen.append(("after", get_request_scope(scope)))


class PresetScope:
    """Attaches a scope of its own before the injector runs."""

    def __init__(self, app: ASGIApp, lifetime_scope: LifetimeScope) -> None:
        self.app = app
        self.lifetime_scope = lifetime_scope

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http":
            set_request_scope(scope, self.lifetime_scope)
        await self.app(scope, receive, send)


def _make_container(resources: List[Resource]) -> scopewire.Container:
    @service(lifetime="scoped")
    def resource_factory() -> Iterator[Resource]:
        resource = Resource()
        resources.append(resource)
        try:
            yield resource
        finally:
            resource.closed += 1

    return scopewire.create_container(services=[resource_factory])


@pytest.fixture()
def resources() -> List[Resource]:
    return []


def _endpoint(observed: list, *, fail: bool = False):  # noqa: ANN202
    async def endpoint(request: Request) -> PlainTextResponse:
        lifetime_scope: Optional[LifetimeScope] = get_request_scope(request)
        observed.append(lifetime_scope)
        resource = await lifetime_scope.aget(Resource)

        if fail:
            raise RuntimeError("endpoint failed")

        return PlainTextResponse(f"closed={resource.closed}")

    return endpoint


def test_scope_is_attached_only_while_downstream_runs(resources: List[Resource]) -> None:
    seen: list = []
    observed: list = []
    pipeline = Pipeline().use(ScopeSpy, seen)
    use_request_scope(pipeline, _make_container(resources))
    pipeline.run(_endpoint(observed))

    response = TestClient(pipeline.build()).get("/")

    assert response.text == "closed=0"
    assert seen == [("before", None), ("after", None)]
    assert isinstance(observed[0], LifetimeScope)
    assert observed[0].tag == scopewire.REQUEST_SCOPE_TAG
    assert observed[0].closed


def test_each_request_gets_its_own_scope(resources: List[Resource]) -> None:
    observed: list = []
    pipeline = Pipeline()
    use_request_scope(pipeline, _make_container(resources))
    pipeline.run(_endpoint(observed))
    client = TestClient(pipeline.build())

    client.get("/")
    client.get("/")

    assert observed[0] is not observed[1]
    assert resources[0] is not resources[1]


def test_owned_scope_is_closed_once_on_success(resources: List[Resource]) -> None:
    pipeline = Pipeline()
    use_request_scope(pipeline, _make_container(resources))
    pipeline.run(_endpoint([]))

    TestClient(pipeline.build()).get("/")

    assert [r.closed for r in resources] == [1]


def test_owned_scope_is_closed_once_when_downstream_raises(resources: List[Resource]) -> None:
    seen: list = []
    pipeline = Pipeline().use(ScopeSpy, seen)
    use_request_scope(pipeline, _make_container(resources))
    pipeline.run(_endpoint([], fail=True))

    with pytest.raises(RuntimeError, match="endpoint failed"):
        TestClient(pipeline.build()).get("/")

    assert [r.closed for r in resources] == [1]
    assert seen == [("before", None), ("after", None)]


def test_preset_scope_is_not_replaced_nor_closed(resources: List[Resource]) -> None:
    container = _make_container(resources)
    preset = container.enter_scope("preset")
    observed: list = []
    created: list = []

    def scope_source(connection: HTTPConnection) -> LifetimeScope:
        created.append(connection)
        return container.enter_scope()

    pipeline = Pipeline().use(PresetScope, preset)
    use_request_scope(pipeline, container)
    use_request_scope(pipeline, scope_source)
    pipeline.run(_endpoint(observed))

    response = TestClient(pipeline.build()).get("/")

    assert response.text == "closed=0"
    assert observed == [preset]
    assert created == []
    assert not preset.closed
    assert [r.closed for r in resources] == [0]


@pytest.mark.parametrize("fail", [False, True])
def test_provided_scope_is_never_closed(resources: List[Resource], fail: bool) -> None:
    container = _make_container(resources)
    provided: list = []

    def scope_source(connection: HTTPConnection) -> LifetimeScope:
        lifetime_scope = container.enter_scope()
        provided.append(lifetime_scope)
        return lifetime_scope

    pipeline = Pipeline()
    use_request_scope(pipeline, scope_source)
    pipeline.run(_endpoint([], fail=fail))
    client = TestClient(pipeline.build(), raise_server_exceptions=False)

    response = client.get("/")

    assert response.status_code == (500 if fail else 200)
    assert not provided[0].closed
    assert [r.closed for r in resources] == [0]


def test_async_scope_source_is_awaited(resources: List[Resource]) -> None:
    container = _make_container(resources)

    async def scope_source(connection: HTTPConnection) -> LifetimeScope:
        return container.enter_scope("async")

    observed: list = []
    pipeline = Pipeline()
    use_request_scope(pipeline, scope_source)
    pipeline.run(_endpoint(observed))

    TestClient(pipeline.build()).get("/")

    assert observed[0].tag == "async"


def test_scope_source_failure_propagates_without_cleanup() -> None:
    def scope_source(connection: HTTPConnection) -> LifetimeScope:
        raise LookupError("no scope for you")

    seen: list = []
    pipeline = Pipeline().use(ScopeSpy, seen)
    use_request_scope(pipeline, scope_source)

    with pytest.raises(LookupError):
        TestClient(pipeline.build()).get("/")

    assert seen == [("before", None), ("after", None)]


def test_request_is_resolvable_from_request_scope() -> None:
    container = scopewire.create_container()

    async def endpoint(request: Request) -> PlainTextResponse:
        lifetime_scope = get_request_scope(request)
        resolved = await lifetime_scope.aget(Request)
        connection = await lifetime_scope.aget(HTTPConnection)

        return PlainTextResponse(f"{resolved.url.path} {connection is resolved}")

    pipeline = Pipeline()
    use_request_scope(pipeline, container)
    pipeline.run(endpoint)

    assert TestClient(pipeline.build()).get("/hello").text == "/hello True"


def test_websocket_connections_get_a_scope() -> None:
    container = scopewire.create_container()
    observed: list = []

    class WebSocketApp:
        def __init__(self, app: ASGIApp) -> None:
            self.app = app

        async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
            if scope["type"] != "websocket":
                await self.app(scope, receive, send)
                return

            lifetime_scope = get_request_scope(scope)
            observed.append(lifetime_scope)
            websocket = await lifetime_scope.aget(WebSocket)
            await websocket.accept()
            await websocket.send_text("hello")
            await websocket.close()

    pipeline = Pipeline()
    use_request_scope(pipeline, container)
    pipeline.use(WebSocketApp)

    with TestClient(pipeline.build()).websocket_connect("/ws") as websocket:
        assert websocket.receive_text() == "hello"

    assert observed[0].tag == scopewire.REQUEST_SCOPE_TAG


def _failing_pipeline(factory) -> Starlette:  # noqa: ANN001
    async def endpoint(request: Request) -> PlainTextResponse:
        await get_request_scope(request).aget(Resource)
        raise RuntimeError("endpoint failed")

    pipeline = Pipeline()
    use_request_scope(pipeline, scopewire.create_container(services=[factory]))
    pipeline.run(endpoint)

    return pipeline.build()


def test_downstream_error_survives_failing_cleanup() -> None:
    @service(lifetime="scoped")
    def resource_factory() -> Iterator[Resource]:
        try:
            yield Resource()
        finally:
            raise OSError("cleanup failed")

    with pytest.raises(RuntimeError, match="endpoint failed") as e:
        TestClient(_failing_pipeline(resource_factory)).get("/")

    assert isinstance(e.value.__cause__, ContainerCloseError)
    assert [type(err) for err in e.value.__cause__.errors] == [OSError]


def test_generator_factories_see_downstream_error() -> None:
    seen: list = []

    @service(lifetime="scoped")
    def resource_factory() -> Iterator[Resource]:
        try:
            yield Resource()
        except RuntimeError as e:
            seen.append(str(e))
            raise

    with pytest.raises(RuntimeError, match="endpoint failed"):
        TestClient(_failing_pipeline(resource_factory)).get("/")

    assert seen == ["endpoint failed"]


class DualScope:
    """Scope exposing both disposal paths without being a context manager."""

    def __init__(self) -> None:
        self.calls: List[str] = []

    async def aclose(self) -> None:
        self.calls.append("aclose")

    def close(self) -> None:
        self.calls.append("close")


async def test_owned_scope_runs_both_disposal_paths() -> None:
    dual = DualScope()

    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        assert get_request_scope(scope) is dual

    middleware = RequestScopeMiddleware(app, lambda connection: dual, owns_scope=True)
    await middleware({"type": "http"}, None, None)  # type: ignore[arg-type]

    assert dual.calls == ["aclose", "close"]


async def test_foreign_scope_cleanup_failure_is_chained_to_downstream_error() -> None:
    class FailingScope(DualScope):
        async def aclose(self) -> None:
            raise OSError("cleanup failed")

    async def app(scope: Scope, receive: Receive, send: Send) -> None:
        raise RuntimeError("endpoint failed")

    middleware = RequestScopeMiddleware(app, lambda connection: FailingScope(), owns_scope=True)
    http_scope: dict = {"type": "http"}

    with pytest.raises(RuntimeError, match="endpoint failed") as e:
        await middleware(http_scope, None, None)  # type: ignore[arg-type]

    assert isinstance(e.value.__cause__, OSError)
    assert get_request_scope(http_scope) is None
