"""Middleware tests: request ID, CORS, error bodies."""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_request_id_generated(client: AsyncClient) -> None:
    """Request ID is auto-generated when not provided."""
    response = await client.get("/health")
    assert "x-request-id" in response.headers
    assert len(response.headers["x-request-id"]) == 36  # UUID format


@pytest.mark.asyncio
async def test_request_id_preserved(client: AsyncClient) -> None:
    response = await client.get("/health", headers={"X-Request-Id": "test-abc-123"})
    assert response.headers["x-request-id"] == "test-abc-123"


@pytest.mark.asyncio
async def test_cors_preflight(client: AsyncClient) -> None:
    response = await client.options(
        "/api/v1/coins/balance",
        headers={
            "Origin": "http://localhost:5173",
            "Access-Control-Request-Method": "GET",
        },
    )
    assert response.headers["access-control-allow-origin"] == "http://localhost:5173"


@pytest.mark.asyncio
async def test_unknown_route_is_json_404(client: AsyncClient) -> None:
    response = await client.get("/api/v1/nope")
    assert response.status_code == 404
    assert response.json() == {"detail": "Not Found"}


@pytest.mark.asyncio
async def test_request_validation_lists_errors(client: AsyncClient, auth_headers: dict[str, str]) -> None:
    response = await client.post("/api/v1/coins/award", json={"amount": 0, "source": "bonus"}, headers=auth_headers)
    assert response.status_code == 422
    data = response.json()
    assert data["detail"] == "Validation error"
    assert data["errors"][0]["loc"] == ["body", "amount"]


@pytest.mark.asyncio
@pytest.mark.parametrize("supplied", ["x" * 65, "bad id with spaces", ""])
async def test_unsafe_request_id_replaced(client: AsyncClient, supplied: str) -> None:
    response = await client.get("/health", headers={"X-Request-Id": supplied})
    returned = response.headers["x-request-id"]
    assert returned != supplied
    assert len(returned) == 36


@pytest.mark.asyncio
async def test_cors_allows_bearer_header(client: AsyncClient) -> None:
    response = await client.options(
        "/api/v1/coins/spend",
        headers={
            "Origin": "http://localhost:5173",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "Authorization, Content-Type",
        },
    )
    assert response.status_code == 200
    assert "authorization" in response.headers["access-control-allow-headers"].lower()


@pytest.mark.asyncio
async def test_cors_exposes_retry_after(client: AsyncClient) -> None:
    response = await client.get("/health", headers={"Origin": "http://localhost:5173"})
    exposed = response.headers["access-control-expose-headers"]
    assert "Retry-After" in exposed
    assert "X-Request-Id" in exposed


@pytest.mark.asyncio
async def test_validation_error_body_survives_nan(client: AsyncClient, auth_headers: dict[str, str]) -> None:
    """Non-finite input is reported without being echoed back."""
    response = await client.post(
        "/api/v1/challenges/today/attempts",
        content='{"value": NaN}',
        headers={**auth_headers, "Content-Type": "application/json"},
    )
    assert response.status_code == 422
    [error] = response.json()["errors"]
    assert set(error) == {"loc", "msg", "type"}
