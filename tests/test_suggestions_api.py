from __future__ import annotations

from fastapi.testclient import TestClient

from suggestion_engine.api.main import create_app
from suggestion_engine.config.settings import Settings
from suggestion_engine.storage.memory import InMemoryBoardStore, InMemorySuggestionStore


def _create(client: TestClient, content: dict, **overrides) -> dict:
    body = {
        "type": "board",
        "user_id": "u-1",
        "session_id": "s-1",
        "content": content,
        "original_message": "Plan my launch",
    }
    body.update(overrides)
    response = client.post("/suggestions", json=body)
    assert response.status_code == 201, response.text
    return response.json()


def test_create_accept_and_read_board(client: TestClient, board_content) -> None:
    created = _create(client, board_content)
    assert created["status"] == "pending"
    assert created["content"]["boardName"] == "Launch"
    assert created["content"]["columns"][0]["tasks"][0]["id"] == "T1"

    accept_resp = client.post(
        f"/suggestions/{created['id']}/accept", json={"message": "Looks good"}
    )
    assert accept_resp.status_code == 200
    accepted = accept_resp.json()
    assert accepted["status"] == "accepted"

    board_resp = client.get(f"/boards/{accepted['metadata']['boardId']}")
    assert board_resp.status_code == 200
    board = board_resp.json()
    assert [column["name"] for column in board["columns"]] == ["To Do", "Done"]
    assert len(board["columns"][0]["tasks"]) == 1
    assert len(board["columns"][0]["tasks"][0]["subtasks"]) == 2


def test_accept_records_review_messages(client: TestClient, messages, board_content) -> None:
    created = _create(client, board_content)

    client.post(f"/suggestions/{created['id']}/accept", json={"message": "Ship it"})

    assert [item.content for item in messages.for_session("s-1")] == [
        "Ship it",
        "✅ The suggestion has been accepted and processed.",
    ]


def test_accept_without_body(client: TestClient, messages, board_content) -> None:
    created = _create(client, board_content)

    response = client.post(f"/suggestions/{created['id']}/accept")

    assert response.status_code == 200
    assert messages.for_session("s-1") == []


def test_second_accept_conflicts(client: TestClient, board_content) -> None:
    created = _create(client, board_content)
    client.post(f"/suggestions/{created['id']}/reject")

    response = client.post(f"/suggestions/{created['id']}/accept")

    assert response.status_code == 409
    assert "already 'rejected'" in response.json()["detail"]


def test_modify_endpoint_merges_content(client: TestClient, board_content) -> None:
    created = _create(client, board_content)

    response = client.post(
        f"/suggestions/{created['id']}/modify",
        json={"content": {"boardName": "Launch v2"}, "message": "rename"},
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "modified"
    assert payload["type"] == "board"
    assert payload["content"]["boardName"] == "Launch v2"
    assert len(payload["content"]["columns"]) == 2


def test_modify_with_bad_content_is_422(client: TestClient, board_content) -> None:
    created = _create(client, board_content)

    response = client.post(
        f"/suggestions/{created['id']}/modify", json={"content": {"columns": 3}}
    )

    assert response.status_code == 422


def test_create_with_mismatched_content_is_422(client: TestClient) -> None:
    response = client.post(
        "/suggestions",
        json={
            "type": "task-improvement",
            "user_id": "u",
            "session_id": "s",
            "content": {"boardName": "x"},
        },
    )

    assert response.status_code == 422


def test_missing_suggestion_is_404(client: TestClient) -> None:
    assert client.get("/suggestions/missing").status_code == 404
    assert client.post("/suggestions/missing/reject").status_code == 404


def test_session_listing_and_task_lookup(client: TestClient, board_content) -> None:
    first = _create(client, board_content)
    second = _create(client, {"boardName": "Other", "columns": []})
    client.post(f"/suggestions/{second['id']}/reject")

    listed = client.get("/sessions/s-1/suggestions").json()
    pending = client.get("/sessions/s-1/suggestions/pending").json()
    by_user = client.get("/users/u-1/suggestions").json()
    found = client.get("/sessions/s-1/tasks/T1/suggestion")
    missing = client.get("/sessions/s-1/tasks/T9/suggestion")

    assert [item["id"] for item in listed] == [second["id"], first["id"]]
    assert [item["id"] for item in pending] == [first["id"]]
    assert len(by_user) == 2
    assert found.status_code == 200
    assert found.json()["id"] == first["id"]
    assert missing.status_code == 404


def test_generation_endpoints_return_503_without_model(client: TestClient) -> None:
    response = client.post(
        "/suggestions/generate/board",
        json={"user_id": "u", "session_id": "s", "message": "Plan a trip"},
    )

    assert response.status_code == 503


def _llm_app(fake_llm, *responses):
    llm = fake_llm(*responses)
    suggestion_store = InMemorySuggestionStore()
    board_store = InMemoryBoardStore()
    app = create_app(
        suggestion_store=suggestion_store,
        board_store=board_store,
        llm_client=llm,
        settings_override=Settings(storage_backend="memory", llm_timeout_s=2.0),
    )
    return TestClient(app), llm


def test_generate_board_creates_pending_suggestion(fake_llm) -> None:
    client, llm = _llm_app(
        fake_llm,
        {
            "boardName": "Trip",
            "thoughtProcess": "Before and during.",
            "columns": [{"name": "Before", "tasks": [{"title": "Book flights"}]}],
        },
    )

    response = client.post(
        "/suggestions/generate/board",
        json={"user_id": "u", "session_id": "s", "message": "Plan a trip to Lisbon"},
    )

    assert response.status_code == 201
    payload = response.json()
    assert payload["type"] == "board"
    assert payload["status"] == "pending"
    assert payload["original_message"] == "Plan a trip to Lisbon"
    assert payload["content"]["columns"][0]["tasks"][0]["position"] == 0
    assert len(llm.calls) == 1


def test_generate_board_with_prose_is_400(fake_llm) -> None:
    client, _ = _llm_app(fake_llm, "Let me think about that for a while.")

    response = client.post(
        "/suggestions/generate/board",
        json={"user_id": "u", "session_id": "s", "message": "Plan a trip"},
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "Failed to generate board suggestion"


def test_generate_with_blank_input_is_400(fake_llm) -> None:
    client, llm = _llm_app(fake_llm)

    board = client.post(
        "/suggestions/generate/board",
        json={"user_id": "u", "session_id": "s", "message": "   "},
    )
    breakdown = client.post(
        "/suggestions/generate/task-breakdown",
        json={"user_id": "u", "session_id": "s", "message": "split", "title": "  "},
    )

    assert board.status_code == 400
    assert board.json()["detail"] == "Failed to generate board suggestion"
    assert breakdown.status_code == 400
    assert llm.calls == []
    assert client.get("/sessions/s/suggestions").json() == []


def test_generate_improvement_for_unknown_task_is_404(fake_llm) -> None:
    client, llm = _llm_app(fake_llm)

    response = client.post(
        "/suggestions/generate/task-improvement",
        json={"user_id": "u", "session_id": "s", "message": "better", "task_id": "ghost"},
    )

    assert response.status_code == 404
    assert llm.calls == []


def test_generate_breakdown_and_improvement(fake_llm) -> None:
    client, _ = _llm_app(
        fake_llm,
        {"task": {"title": "Pack"}, "subtasks": [{"title": "Clothes"}, {"title": "Charger"}]},
        {"title": "Pack carry-on bag", "description": "Under 7kg"},
    )

    breakdown = client.post(
        "/suggestions/generate/task-breakdown",
        json={"user_id": "u", "session_id": "s", "message": "split", "title": "Pack"},
    )
    improvement = client.post(
        "/suggestions/generate/task-improvement",
        json={"user_id": "u", "session_id": "s", "message": "clarify", "title": "Pack"},
    )

    assert breakdown.status_code == 201
    assert [item["title"] for item in breakdown.json()["content"]["subtasks"]] == [
        "Clothes",
        "Charger",
    ]
    assert improvement.status_code == 201
    content = improvement.json()["content"]
    assert content["originalTask"]["title"] == "Pack"
    assert content["improvedTask"]["title"] == "Pack carry-on bag"


def test_materialization_failure_is_500_and_status_stays_accepted(
    board_store, suggestion_store, client: TestClient, board_content, monkeypatch
) -> None:
    created = _create(client, board_content)

    def fail(board):
        raise ConnectionError("db down")

    monkeypatch.setattr(board_store, "insert_board", fail)

    response = client.post(f"/suggestions/{created['id']}/accept")

    assert response.status_code == 500
    assert response.json() == {"detail": "Materialization failed"}
    assert suggestion_store.get_suggestion(created["id"]).status == "accepted"


def test_unexpected_errors_return_generic_500(
    suggestion_store, client: TestClient, monkeypatch
) -> None:
    def explode(user_id):
        raise RuntimeError("connection string with password")

    monkeypatch.setattr(suggestion_store, "list_by_user", explode)
    safe_client = TestClient(client.app, raise_server_exceptions=False)

    response = safe_client.get("/users/u-1/suggestions")

    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error"}


def test_purge_expired_endpoint(client: TestClient, board_content) -> None:
    _create(client, board_content)

    response = client.post("/suggestions/purge-expired")

    assert response.status_code == 200
    assert response.json() == {"deleted": 0}
