import time

import pytest

from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.middleware.request_context import (
    REQUEST_ID_PREFIX,
    RequestContext,
    RequestContextMiddleware,
    clear_request_context,
    generate_request_id,
    get_request_context,
    get_request_id,
    set_request_context,
    update_request_context,
)


def test_request_context_dataclass() -> None:
    ctx = RequestContext(request_id="123", chat_id="c1")
    assert ctx.request_id == "123"
    assert ctx.to_log_context()["chat_id"] == "c1"

    time.sleep(0.01)
    assert ctx.elapsed_ms > 0


def test_generate_request_id() -> None:
    rid1 = generate_request_id()
    rid2 = generate_request_id()
    assert rid1.startswith(REQUEST_ID_PREFIX)
    assert rid1 != rid2


def test_context_var_management() -> None:
    set_request_context(RequestContext(request_id="test"))
    assert get_request_id() == "test"

    update_request_context(task_id="t1", model="gpt-4o")
    ctx = get_request_context()
    assert ctx is not None
    assert ctx.task_id == "t1"
    assert ctx.extra == {"model": "gpt-4o"}

    clear_request_context()
    assert get_request_context() is None


@pytest.fixture
def client() -> TestClient:
    app = FastAPI()
    app.add_middleware(RequestContextMiddleware)

    @app.get("/api/v1/chats/{chat_id}/messages")
    def chat_ctx(chat_id: str) -> dict[str, str | None]:
        ctx = get_request_context()
        assert ctx is not None
        return {"chat_id": ctx.chat_id, "task_id": ctx.task_id, "request_id": ctx.request_id}

    @app.get("/api/v1/tasks/{task_id}/get")
    def task_ctx(task_id: str) -> dict[str, str | None]:
        ctx = get_request_context()
        assert ctx is not None
        return {"task_id": ctx.task_id}

    @app.post("/api/v1/chats/create")
    def create_ctx() -> dict[str, str | None]:
        ctx = get_request_context()
        assert ctx is not None
        return {"chat_id": ctx.chat_id}

    return TestClient(app)


def test_middleware_sets_headers(client: TestClient) -> None:
    response = client.get("/api/v1/chats/abc/messages")
    assert response.headers["X-Request-ID"].startswith(REQUEST_ID_PREFIX)
    assert response.headers["X-Response-Time"].endswith("ms")


def test_middleware_honors_incoming_request_id(client: TestClient) -> None:
    response = client.get("/api/v1/chats/abc/messages", headers={"X-Request-ID": "trace-1"})
    assert response.headers["X-Request-ID"] == "trace-1"
    assert response.json()["request_id"] == "trace-1"


def test_resource_ids_extracted(client: TestClient) -> None:
    assert client.get("/api/v1/chats/abc/messages").json()["chat_id"] == "abc"
    assert client.get("/api/v1/tasks/t-9/get").json()["task_id"] == "t-9"


def test_action_segments_are_not_ids(client: TestClient) -> None:
    assert client.post("/api/v1/chats/create").json()["chat_id"] is None
