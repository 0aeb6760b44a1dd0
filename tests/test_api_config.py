from __future__ import annotations

from fastapi.testclient import TestClient

from conftest import upload_script


def test_get_config_returns_seeded_vocabulary(client: TestClient) -> None:
    response = client.get("/api/config")

    assert response.status_code == 200
    payload = response.json()
    assert payload["availableTags"][:3] == ["Deduction", "Mystery", "Sci-Fi"]
    assert payload["systemSettings"]["maxUploadSizeKB"] == 10240
    assert payload["systemSettings"]["requireScriptApproval"] is True


def test_replace_config_overwrites_the_document(
    client: TestClient, admin_headers: dict[str, str]
) -> None:
    config = client.get("/api/config").json()
    config["availableTags"] = ["Only"]
    config["systemSettings"]["maxUploadsPerDay"] = 3

    response = client.put("/api/config", json=config, headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["success"] is True
    stored = client.get("/api/config").json()
    assert stored["availableTags"] == ["Only"]
    assert stored["systemSettings"]["maxUploadsPerDay"] == 3


def test_replace_config_permissions(
    client: TestClient, admin_headers: dict[str, str], user_headers: dict[str, str]
) -> None:
    config = client.get("/api/config").json()
    config["availableTags"].append("Party")

    assert client.put("/api/config", json=config).status_code == 401
    assert client.put("/api/config", json=config, headers=user_headers).status_code == 403

    client.put(
        "/api/users/2",
        json={"permissions": {"canManageTags": True}},
        headers=admin_headers,
    )
    assert client.put("/api/config", json=config, headers=user_headers).status_code == 200

    config["systemSettings"]["allowUserRegistration"] = False
    assert client.put("/api/config", json=config, headers=user_headers).status_code == 403


def test_add_tag_trims_and_deduplicates(
    client: TestClient, admin_headers: dict[str, str]
) -> None:
    added = client.post("/api/config/tags", json={"tag": "  Party "}, headers=admin_headers)
    assert added.status_code == 200
    assert added.json()["config"]["availableTags"][-1] == "Party"

    again = client.post("/api/config/tags", json={"tag": "Party"}, headers=admin_headers)
    assert again.json()["config"]["availableTags"].count("Party") == 1

    cased = client.post("/api/config/tags", json={"tag": "party"}, headers=admin_headers)
    assert "party" in cased.json()["config"]["availableTags"]

    blank = client.post("/api/config/tags", json={"tag": "   "}, headers=admin_headers)
    assert blank.status_code == 400


def test_tag_edits_need_manage_tags(
    client: TestClient, user_headers: dict[str, str]
) -> None:
    assert client.post("/api/config/tags", json={"tag": "X"}).status_code == 401
    assert (
        client.post("/api/config/tags", json={"tag": "X"}, headers=user_headers).status_code
        == 403
    )
    assert client.delete("/api/config/tags/Horror", headers=user_headers).status_code == 403


def test_removing_a_tag_leaves_script_tags_untouched(
    client: TestClient, admin_headers: dict[str, str]
) -> None:
    script = upload_script(client, admin_headers, tags="Horror").json()["script"]

    response = client.delete("/api/config/tags/Horror", headers=admin_headers)

    assert response.status_code == 200
    assert "Horror" not in response.json()["config"]["availableTags"]
    assert client.get(f"/api/scripts/{script['id']}").json()["tags"] == ["Horror"]
    assert client.get("/api/scripts/3").json()["tags"] == ["Horror", "Medieval", "Easy"]

    missing = client.delete("/api/config/tags/Unknown", headers=admin_headers)
    assert missing.status_code == 200


def test_config_changes_notify_subscribers(
    client: TestClient, admin_headers: dict[str, str]
) -> None:
    received: list[list[str]] = []
    service = client.app.state.config_service
    service.notifier.subscribe(lambda config: received.append(config.available_tags))

    def broken(config: object) -> None:
        raise RuntimeError("subscriber failure")

    service.notifier.subscribe(broken)

    response = client.post("/api/config/tags", json={"tag": "Fresh"}, headers=admin_headers)

    assert response.status_code == 200
    assert received and received[-1][-1] == "Fresh"
