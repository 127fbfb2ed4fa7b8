import pytest
import scopewire
from scopewire import (
    LifetimeScope,
    Middleware,
    Pipeline,
    get_request_scope,
    service,
    use_container_middleware,
    use_middleware_from_container,
    use_request_scope,
    wrap,
)
from scopewire.errors import MiddlewareNotRegisteredError, RequestScopeNotFoundError, UnknownServiceRequestedError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.testclient import TestClient
from starlette.types import Receive, Scope, Send


@service(lifetime="singleton")
class Greeter:
    def greet(self, name: str) -> str:
        return f"Hello {name}"


@service(lifetime="scoped")
class RequestLog:
    def __init__(self) -> None:
        self.entries: list = []


class Echo(BaseHTTPMiddleware):
    observed_scopes: list = []

    def __init__(self, app, lifetime_scope: LifetimeScope) -> None:  # noqa: ANN001
        super().__init__(app)
        self.lifetime_scope = lifetime_scope

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        Echo.observed_scopes.append((self.lifetime_scope, get_request_scope(request)))
        return PlainTextResponse("echo")


class Recorder(Middleware):
    def __init__(self, app, log: RequestLog, greeter: Greeter) -> None:  # noqa: ANN001
        super().__init__(app)
        self.log = log
        self.greeter = greeter

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        self.log.entries.append(self.greeter.greet(type(self).__name__))
        await self.app(scope, receive, send)


class SecondRecorder(Recorder): ...


class NeedsMissingDependency(Middleware):
    def __init__(self, app, greeter: Greeter, missing: "Missing") -> None:  # noqa: ANN001
        super().__init__(app)


class Missing: ...


async def show_log(request: Request) -> PlainTextResponse:
    log = await get_request_scope(request).aget(RequestLog)
    return PlainTextResponse(", ".join(log.entries))


@pytest.fixture(autouse=True)
def _reset_echo() -> None:
    Echo.observed_scopes = []


def test_echo_resolved_from_request_scope() -> None:
    container = scopewire.create_container(services=[Echo])
    pipeline = Pipeline()
    use_request_scope(pipeline, container)
    use_middleware_from_container(pipeline, Echo)

    response = TestClient(pipeline.build()).get("/")

    assert response.text == "echo"
    [(resolved_with, attached)] = Echo.observed_scopes
    assert resolved_with is attached
    assert resolved_with.tag == scopewire.REQUEST_SCOPE_TAG


def test_middleware_gets_next_app_and_dependencies() -> None:
    container = scopewire.create_container(services=[Greeter, RequestLog, Recorder, SecondRecorder])
    pipeline = Pipeline()
    use_container_middleware(pipeline, container)
    pipeline.run(show_log)

    response = TestClient(pipeline.build()).get("/")

    assert response.text == "Hello Recorder, Hello SecondRecorder"


def test_middleware_order_follows_registration_order() -> None:
    container = scopewire.create_container(services=[Greeter, RequestLog, SecondRecorder, Recorder])
    pipeline = Pipeline()
    use_container_middleware(pipeline, container)
    pipeline.run(show_log)

    assert TestClient(pipeline.build()).get("/").text == "Hello SecondRecorder, Hello Recorder"


def test_middleware_is_resolved_per_request() -> None:
    container = scopewire.create_container(services=[Greeter, RequestLog, Recorder])
    pipeline = Pipeline()
    use_container_middleware(pipeline, container)
    pipeline.run(show_log)
    client = TestClient(pipeline.build())

    assert client.get("/").text == "Hello Recorder"
    assert client.get("/").text == "Hello Recorder"


def test_unregistered_middleware() -> None:
    pipeline = Pipeline()
    use_request_scope(pipeline, scopewire.create_container())
    use_middleware_from_container(pipeline, Echo)

    with pytest.raises(MiddlewareNotRegisteredError) as e:
        TestClient(pipeline.build()).get("/")

    assert e.value.klass is Echo
    assert isinstance(e.value.__cause__, UnknownServiceRequestedError)


def test_missing_dependency_of_middleware_is_not_reported_as_unregistered() -> None:
    pipeline = Pipeline()
    use_request_scope(pipeline, scopewire.create_container(services=[Greeter, NeedsMissingDependency]))
    use_middleware_from_container(pipeline, NeedsMissingDependency)

    with pytest.raises(UnknownServiceRequestedError) as e:
        TestClient(pipeline.build()).get("/")

    assert e.value.klass is Missing


def test_adapter_without_request_scope() -> None:
    container = scopewire.create_container(services=[Echo])
    pipeline = Pipeline()
    # Bypass the registration check to simulate a pipeline where the injector never ran.
    pipeline.use(wrap(Echo))

    with pytest.raises(RequestScopeNotFoundError) as e:
        TestClient(pipeline.build()).get("/")

    assert e.value.klass is Echo
    assert container.registry.is_registered(Echo)


def test_adapters_pass_lifespan_through() -> None:
    container = scopewire.create_container(services=[Echo])
    pipeline = Pipeline()
    use_container_middleware(pipeline, container)

    with TestClient(pipeline.build()) as client:
        assert client.get("/").text == "echo"


class Greeting(Middleware):
    def __init__(self, app, text: str = "hi", retries: int = 3) -> None:  # noqa: ANN001
        super().__init__(app)
        self.text = text
        self.retries = retries

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await PlainTextResponse(f"{self.text}/{self.retries}")(scope, receive, send)


def test_catch_all_source_does_not_override_middleware_defaults() -> None:
    container = scopewire.create_container(services=[Greeting], sources=[scopewire.AnyConcreteTypeSource()])
    pipeline = Pipeline()
    use_container_middleware(pipeline, container)

    assert TestClient(pipeline.build()).get("/").text == "hi/3"
