from unittest.mock import AsyncMock, MagicMock

import pytest

from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.dependencies import get_app_settings, get_tool_registry
from api.routes.v1.tools import router
from models.mcp_models import ToolDescriptor

SEARCH_TOOL = ToolDescriptor(
    name="search",
    description="Web search",
    inputSchema={"type": "object", "properties": {"q": {"type": "string"}}},
    server_name="research",
    server_url="http://research:8080/mcp",
)


@pytest.fixture
def mock_registry() -> MagicMock:
    registry = MagicMock()
    registry.get_tools.return_value = [SEARCH_TOOL]
    registry.refresh = AsyncMock(return_value=[SEARCH_TOOL])
    return registry


@pytest.fixture
def client(mock_registry: MagicMock) -> TestClient:
    app = FastAPI()
    app.include_router(router, prefix="/tools")

    settings = MagicMock()
    settings.app_version = "1.1.0-test"
    app.dependency_overrides[get_tool_registry] = lambda: mock_registry
    app.dependency_overrides[get_app_settings] = lambda: settings
    return TestClient(app)


def test_list_tools(client: TestClient) -> None:
    response = client.get("/tools")

    assert response.status_code == 200
    assert response.json() == [
        {
            "name": "search",
            "description": "Web search",
            "inputSchema": {"type": "object", "properties": {"q": {"type": "string"}}},
            "sourceMcpServerName": "research",
            "sourceMcpServerUrl": "http://research:8080/mcp",
        }
    ]


def test_refresh_success(client: TestClient, mock_registry: MagicMock) -> None:
    response = client.post("/tools/refresh")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "success"
    assert body["toolCount"] == 1
    mock_registry.refresh.assert_awaited_once()


def test_refresh_failure_reports_error(client: TestClient, mock_registry: MagicMock) -> None:
    mock_registry.refresh.side_effect = RuntimeError("registry closed")

    response = client.post("/tools/refresh")

    assert response.status_code == 500
    body = response.json()
    assert body["status"] == "error"
    assert "registry closed" in body["message"]
    assert "toolCount" not in body


def test_status(client: TestClient) -> None:
    body = client.get("/tools/status").json()
    assert body["status"] == "healthy"
    assert body["availableTools"] == 1
    assert body["version"] == "1.1.0-test"
