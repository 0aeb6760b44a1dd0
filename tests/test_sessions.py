from __future__ import annotations

from fastapi.testclient import TestClient

from scriptshare.api.sessions import SessionRegistry


def test_issue_resolve_and_revoke() -> None:
    registry = SessionRegistry()
    first = registry.issue("1")
    second = registry.issue("1")
    other = registry.issue("2")

    assert first != second
    assert registry.resolve(first) == "1"
    assert registry.resolve("unknown") is None
    assert registry.resolve(None) is None

    assert registry.revoke(first) is True
    assert registry.revoke(first) is False
    assert registry.resolve(first) is None

    assert registry.revoke_user("1") == 1
    assert registry.resolve(second) is None
    assert registry.resolve(other) == "2"


def _token(client: TestClient) -> str:
    response = client.post(
        "/api/login", json={"email": "admin@example.com", "password": "x"}
    )
    return response.json()["token"]


def test_bearer_credentials_take_precedence(client: TestClient) -> None:
    token = _token(client)

    both = client.get(
        "/api/users",
        headers={"Authorization": f"Bearer {token}", "X-Session-Token": "stale"},
    )
    assert both.status_code == 200

    lowercase = client.get("/api/users", headers={"Authorization": f"bearer {token}"})
    assert lowercase.status_code == 200


def test_other_schemes_fall_back_to_session_header(client: TestClient) -> None:
    token = _token(client)

    response = client.get(
        "/api/users",
        headers={"Authorization": "Basic YWRtaW46eA==", "X-Session-Token": token},
    )

    assert response.status_code == 200


def test_missing_or_blank_credentials_act_as_guest(client: TestClient) -> None:
    assert client.get("/api/users").status_code == 401
    assert client.get("/api/users", headers={"Authorization": "Bearer "}).status_code == 401
    assert client.get("/api/users", headers={"X-Session-Token": "  "}).status_code == 401
    assert client.get("/api/scripts", headers={"Authorization": "Bearer "}).status_code == 200
    assert client.post("/api/logout").json() == {"success": False}


def test_security_schemes_are_documented(client: TestClient) -> None:
    schemes = client.get("/openapi.json").json()["components"]["securitySchemes"]

    assert schemes["HTTPBearer"]["scheme"] == "bearer"
    assert schemes["APIKeyHeader"]["in"] == "header"
    assert schemes["APIKeyHeader"]["name"] == "X-Session-Token"
