import asyncpg
import pytest

from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel

from api.middleware.exception_handlers import (
    AppException,
    ChatNotFoundError,
    ContentFilteredError,
    ExternalServiceError,
    TaskNotFoundError,
    ToolExecutionError,
    ValidationException,
    register_exception_handlers,
)
from models.error_models import ErrorCode


# Setup a test app
@pytest.fixture
def test_app() -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app)
    return app


@pytest.fixture
def client(test_app: FastAPI) -> TestClient:
    # raise_server_exceptions=False ensures that we get the 500 response
    # instead of the client re-raising the exception.
    return TestClient(test_app, raise_server_exceptions=False)


def test_app_exception(test_app: FastAPI, client: TestClient) -> None:
    @test_app.get("/app_error")
    def raise_app_error() -> None:
        raise AppException(code=ErrorCode.INTERNAL_ERROR, message="Test error", details={"foo": "bar"})

    response = client.get("/app_error")
    assert response.status_code == 500
    data = response.json()["error"]
    assert data["code"] == -32603
    assert data["message"] == "Test error"
    assert data["details"] == [{"field": "foo", "message": "bar"}]


def test_chat_not_found(test_app: FastAPI, client: TestClient) -> None:
    @test_app.get("/chat")
    def raise_not_found() -> None:
        raise ChatNotFoundError("abc")

    response = client.get("/chat")
    assert response.status_code == 404
    data = response.json()["error"]
    assert data["code"] == ErrorCode.RESOURCE_NOT_FOUND.value
    assert data["message"] == "Chat 'abc' not found"


def test_task_not_found_uses_invalid_params(test_app: FastAPI, client: TestClient) -> None:
    @test_app.get("/task")
    def raise_not_found() -> None:
        raise TaskNotFoundError("t-1")

    response = client.get("/task")
    assert response.status_code == 404
    data = response.json()["error"]
    assert data["code"] == -32602
    assert data["message"] == "Task not found with ID: t-1"


def test_validation_exception(test_app: FastAPI, client: TestClient) -> None:
    @test_app.get("/validation_error")
    def raise_validation_error() -> None:
        raise ValidationException(message="Message content cannot be empty")

    response = client.get("/validation_error")
    assert response.status_code == 400
    data = response.json()["error"]
    assert data["code"] == ErrorCode.INVALID_PARAMS.value
    assert data["message"] == "Message content cannot be empty"


def test_request_validation_error(test_app: FastAPI, client: TestClient) -> None:
    class Item(BaseModel):
        name: str
        age: int

    @test_app.post("/pydantic")
    def create_item(item: Item) -> Item:
        return item

    response = client.post("/pydantic", json={"name": "foo", "age": "not_an_int"})
    assert response.status_code == 400
    data = response.json()["error"]
    assert data["message"] == "Request validation failed"
    assert data["details"][0]["field"] == "body.age"


def test_external_service_error(test_app: FastAPI, client: TestClient) -> None:
    @test_app.get("/upstream")
    def raise_upstream() -> None:
        raise ExternalServiceError("LLM backend", "connection refused")

    response = client.get("/upstream")
    assert response.status_code == 502
    assert response.json()["error"]["message"] == "LLM backend: connection refused"


def test_tool_execution_error_is_external(test_app: FastAPI, client: TestClient) -> None:
    @test_app.get("/tool")
    def raise_tool() -> None:
        raise ToolExecutionError("search", "HTTP 500")

    response = client.get("/tool")
    assert response.status_code == 502
    assert response.json()["error"]["code"] == ErrorCode.EXTERNAL_SERVICE_ERROR.value


def test_content_filtered(test_app: FastAPI, client: TestClient) -> None:
    @test_app.get("/filtered")
    def raise_filtered() -> None:
        raise ContentFilteredError("AI response was empty after filtering tool-related content.", raw_length=12)

    response = client.get("/filtered")
    assert response.status_code == 422
    assert response.json()["error"]["code"] == ErrorCode.CONTENT_FILTERED.value


def test_asyncpg_error(test_app: FastAPI, client: TestClient) -> None:
    @test_app.get("/db")
    def raise_db() -> None:
        raise asyncpg.PostgresError("Connection failed")

    response = client.get("/db")
    assert response.status_code == 500
    data = response.json()["error"]
    assert data["code"] == ErrorCode.DATABASE_ERROR.value
    assert data["message"] == "Database operation failed"


def test_generic_exception_hides_details(test_app: FastAPI, client: TestClient) -> None:
    @test_app.get("/boom")
    def raise_generic() -> None:
        raise RuntimeError("secret internals")

    response = client.get("/boom")
    assert response.status_code == 500
    data = response.json()["error"]
    assert data["code"] == ErrorCode.SERVER_ERROR.value
    assert "secret internals" not in data["message"]
    assert "debug" not in data
