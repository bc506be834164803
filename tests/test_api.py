from __future__ import annotations

import logging

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from entitlements.main import app
from entitlements.schemas import SyncOptions, SyncResult


def create_category(client: TestClient, name: str, **extra) -> dict:
    response = client.post("/admin/categories", json={"name": name, **extra})
    assert response.status_code == 201, response.text
    return response.json()


def create_display_feature(client: TestClient, category_id: int, name: str) -> dict:
    response = client.post(
        "/admin/display-features",
        json={"category_id": category_id, "name": name, "description": f"{name} for everyone"},
    )
    assert response.status_code == 201, response.text
    return response.json()


def create_system_feature(client: TestClient, **payload) -> dict:
    response = client.post("/admin/system-features", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_healthcheck(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_admin_token_gate(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ADMIN_TOKEN", "console-secret")

    denied = client.get("/admin/categories")
    assert denied.status_code == 401

    wrong = client.get("/admin/categories", headers={"X-Admin-Token": "nope"})
    assert wrong.status_code == 401

    allowed = client.get("/admin/categories", headers={"X-Admin-Token": "console-secret"})
    assert allowed.status_code == 200
    assert allowed.json() == []


def test_category_lifecycle(client: TestClient) -> None:
    chat = create_category(client, "Chat", description="Messaging")
    voice = create_category(client, "Voice")
    support = create_category(client, "Support", display_order=1)

    listed = client.get("/admin/categories").json()
    assert [(item["name"], item["display_order"]) for item in listed] == [
        ("Support", 1),
        ("Chat", 2),
        ("Voice", 3),
    ]

    reordered = client.post(f"/admin/categories/{voice['id']}/reorder", json={"display_order": 1})
    assert reordered.status_code == 200, reordered.text
    assert [item["id"] for item in reordered.json()] == [voice["id"], support["id"], chat["id"]]

    out_of_range = client.post(f"/admin/categories/{voice['id']}/reorder", json={"display_order": 4})
    assert out_of_range.status_code == 422

    renamed = client.patch(f"/admin/categories/{chat['id']}", json={"description": "Text chat"})
    assert renamed.status_code == 200
    assert renamed.json()["description"] == "Text chat"

    empty_name = client.post("/admin/categories", json={"name": ""})
    assert empty_name.status_code == 422
    assert empty_name.json()["errors"][0]["field"] == "name"

    deleted = client.delete(f"/admin/categories/{support['id']}")
    assert deleted.status_code == 204
    assert client.get(f"/admin/categories/{support['id']}").status_code == 404
    assert [item["display_order"] for item in client.get("/admin/categories").json()] == [1, 2]


def test_display_feature_unknown_category(client: TestClient) -> None:
    response = client.post("/admin/display-features", json={"category_id": 404, "name": "Ghost"})
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


def test_plan_assignment_round_trip_and_rejection(client: TestClient) -> None:
    category = create_category(client, "Chat")
    chat_feature = create_display_feature(client, category["id"], "Unlimited chat")
    limit = create_system_feature(
        client,
        key="max_messages_per_day",
        name="Max messages per day",
        type="Limit",
        default_value=100,
    )
    assert limit["type"] == "limit"
    assert limit["default_value"] == 100

    bundle = {
        "display_feature_ids": [chat_feature["id"]],
        "system_feature_values": {str(limit["id"]): 250},
        "character_limits": {
            "char-1": {
                "message_limit": 500,
                "token_limit": 20000,
                "priority": 1,
                "is_accessible": True,
                "rate_limit_per_minute": 10,
            },
        },
    }
    saved = client.put("/admin/plans/pro/features", json=bundle)
    assert saved.status_code == 200, saved.text
    assert saved.json()["revision"] == 1

    stored = client.get("/admin/plans/pro/features").json()
    assert stored["display_feature_ids"] == bundle["display_feature_ids"]
    assert stored["display_feature_overrides"] == {
        str(chat_feature["id"]): {"is_included": True, "custom_value": None},
    }
    assert stored["system_feature_values"] == bundle["system_feature_values"]
    assert stored["character_limits"] == bundle["character_limits"]

    bundle["character_limits"]["char-1"]["message_limit"] = -5
    rejected = client.put("/admin/plans/pro/features", json=bundle)
    assert rejected.status_code == 422
    body = rejected.json()
    assert body["error"] == "validation_error"
    assert [(error["section"], error["field"]) for error in body["errors"]] == [
        ("character_limits", "char-1.message_limit"),
    ]

    unchanged = client.get("/admin/plans/pro/features").json()
    assert unchanged["revision"] == 1
    assert unchanged["character_limits"]["char-1"]["message_limit"] == 500


def test_unknown_plan_returns_404(client: TestClient) -> None:
    response = client.put("/admin/plans/enterprise/features", json={})
    assert response.status_code == 404
    assert client.get("/admin/plans/enterprise/features").status_code == 404


def test_malformed_bundle_uses_error_envelope(client: TestClient) -> None:
    response = client.put("/admin/plans/pro/features", json={"display_feature_ids": "everything"})
    assert response.status_code == 422
    body = response.json()
    assert body["error"] == "validation_error"
    assert body["errors"][0]["section"] == "body"
    assert body["errors"][0]["field"].startswith("display_feature_ids")


def test_referenced_feature_delete_conflict(client: TestClient) -> None:
    category = create_category(client, "Chat")
    feature = create_display_feature(client, category["id"], "Unlimited chat")
    tools = create_system_feature(
        client,
        key="enabled_tools",
        name="Enabled tools",
        type="list",
        allowed_values=["search", "code"],
        default_value=["search"],
    )

    assigned = client.put(
        "/admin/plans/pro/features",
        json={
            "display_feature_ids": [feature["id"]],
            "system_feature_values": {str(tools["id"]): ["code"]},
        },
    )
    assert assigned.status_code == 200, assigned.text

    blocked = client.delete(f"/admin/display-features/{feature['id']}")
    assert blocked.status_code == 409
    assert blocked.json()["errors"][0]["field"] == "pro"
    assert client.delete(f"/admin/system-features/{tools['id']}").status_code == 409
    assert client.delete(f"/admin/categories/{category['id']}").status_code == 409

    immutable = client.patch(f"/admin/system-features/{tools['id']}", json={"type": "boolean"})
    assert immutable.status_code == 422
    assert immutable.json()["errors"][0]["field"] == "type"

    cleared = client.put("/admin/plans/pro/features", json={})
    assert cleared.status_code == 200
    assert cleared.json()["revision"] == 2

    assert client.delete(f"/admin/display-features/{feature['id']}").status_code == 204
    assert client.delete(f"/admin/system-features/{tools['id']}").status_code == 204
    assert client.get("/admin/system-features").json() == []


def test_character_ranking_preview(client: TestClient) -> None:
    client.put(
        "/admin/plans/pro/features",
        json={
            "character_limits": {
                "char-2": {"message_limit": 10, "token_limit": 10, "priority": 3},
                "char-1": {"message_limit": 10, "token_limit": "unlimited", "priority": 3},
                "char-4": {"message_limit": 10, "token_limit": 10, "priority": 1},
            }
        },
    )
    ranking = client.get("/admin/plans/pro/features/characters").json()
    assert [row["character_id"] for row in ranking] == ["char-1", "char-2", "char-4"]
    assert ranking[0]["token_limit"] == "unlimited"


def test_character_limit_fields_are_required(client: TestClient) -> None:
    missing = client.put(
        "/admin/plans/pro/features",
        json={"character_limits": {"char-1": {"token_limit": 10, "priority": 1}}},
    )
    assert missing.status_code == 422
    assert [(error["section"], error["field"]) for error in missing.json()["errors"]] == [
        ("body", "character_limits.char-1.message_limit"),
    ]

    misspelled = client.put(
        "/admin/plans/pro/features",
        json={"character_limits": {"char-1": {"messsage_limit": 10, "token_limit": 10, "priority": 1}}},
    )
    assert misspelled.status_code == 422
    fields = {error["field"] for error in misspelled.json()["errors"]}
    assert fields == {"character_limits.char-1.message_limit", "character_limits.char-1.messsage_limit"}

    assert client.get("/admin/plans/pro/features").json()["revision"] == 0


def test_storage_failure_returns_503_and_keeps_bundle(
    client: TestClient,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    limits = {"char-1": {"message_limit": 5, "token_limit": 5, "priority": 1}}
    assert client.put("/admin/plans/pro/features", json={"character_limits": limits}).status_code == 200

    def failing_commit(self: Session) -> None:
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(Session, "commit", failing_commit)
    limits["char-1"]["message_limit"] = 50
    failed = client.put("/admin/plans/pro/features", json={"character_limits": limits})
    assert failed.status_code == 503
    assert failed.json()["error"] == "persistence_error"

    monkeypatch.undo()
    stored = client.get("/admin/plans/pro/features").json()
    assert stored["revision"] == 1
    assert stored["character_limits"]["char-1"]["message_limit"] == 5


def test_assignment_emits_structured_event(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)
    client.put("/admin/plans/free/features", json={})

    events = [record.msg for record in caplog.records if isinstance(record.msg, dict)]
    [assigned] = [event for event in events if event["event"] == "plan_features_assigned"]
    assert assigned["plan_id"] == "free"
    assert assigned["revision"] == 1
    assert assigned["service"] == "plan-entitlements"


def test_model_pricing_update(client: TestClient) -> None:
    rejected = client.patch(
        "/admin/models/gpt-x/pricing",
        json={"pricing_input": -1, "pricing_output": 0.002},
    )
    assert rejected.status_code == 422
    assert rejected.json()["errors"][0]["field"] == "pricing_input"

    [model] = client.get("/admin/models").json()
    assert (model["pricing_input"], model["pricing_output"]) == ("0.001000", "0.002000")

    updated = client.patch(
        "/admin/models/gpt-x/pricing",
        json={"pricing_input": "0.0025", "pricing_output": "0.01"},
    )
    assert updated.status_code == 200, updated.text
    assert (updated.json()["pricing_input"], updated.json()["pricing_output"]) == ("0.002500", "0.010000")

    missing = client.patch("/admin/models/gpt-none/pricing", json={"pricing_input": 1, "pricing_output": 1})
    assert missing.status_code == 404


def test_boolean_price_rejected(client: TestClient) -> None:
    response = client.patch(
        "/admin/models/gpt-x/pricing",
        json={"pricing_input": True, "pricing_output": "0.002"},
    )
    assert response.status_code == 422
    assert [(error["field"], error["reason"]) for error in response.json()["errors"]] == [
        ("pricing_input", "must be a decimal number"),
    ]
    [model] = client.get("/admin/models").json()
    assert model["pricing_input"] == "0.001000"


class StaticSyncer:
    def sync_catalog(self, options: SyncOptions) -> SyncResult:
        return SyncResult(models_added=1, models_total=5, duration_ms=42)


def test_model_sync_requires_configured_syncer(client: TestClient) -> None:
    assert client.post("/admin/models/sync", json={}).status_code == 503

    app.state.catalog_syncer = StaticSyncer()
    first = client.post("/admin/models/sync", json={})
    assert first.status_code == 200
    assert first.json()["models_added"] == 1

    second = client.post("/admin/models/sync", json={})
    assert second.json()["skipped"] is True

    state = client.get("/admin/models/sync/state").json()
    assert state["is_fresh"] is True
    assert state["last_result"]["models_total"] == 5
