"""Tests for the HTTP surface."""
from fastapi.testclient import TestClient

from pkc.services.conversation_service import APOLOGY_MESSAGE

USER = {"X-User-Id": "user-1"}
OTHER_USER = {"X-User-Id": "user-2"}


def upload(client: TestClient, content: bytes, filename: str = "notes.txt", headers=USER):
    return client.post(
        "/api/files/upload",
        files={"file": (filename, content, "text/plain")},
        headers=headers,
    )


class TestHealthAndModels:
    def test_health(self, client: TestClient):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"ok": True}

    def test_request_id_echoed(self, client: TestClient):
        response = client.get("/api/health", headers={"X-Request-ID": "trace-123"})
        assert response.headers["X-Request-ID"] == "trace-123"

    def test_invalid_request_id_replaced(self, client: TestClient):
        response = client.get("/api/health", headers={"X-Request-ID": "bad id!"})
        assert response.headers["X-Request-ID"] != "bad id!"
        assert len(response.headers["X-Request-ID"]) == 36

    def test_models_grouped_by_provider(self, client: TestClient):
        data = client.get("/api/models").json()
        assert "openai" in data
        assert "ollama" in data


class TestFilesApi:
    def test_upload_returns_201_with_chunk_count(self, client: TestClient):
        response = upload(client, b"a" * 5000)

        assert response.status_code == 201
        data = response.json()
        assert data["ok"] is True
        assert data["chunks_created"] == 3
        assert data["duplicate"] is False
        assert data["tags"] == ["work", "notes"]

    def test_duplicate_upload_returns_original(self, client: TestClient):
        first = upload(client, b"same content").json()
        second = upload(client, b"same content", filename="copy.txt").json()

        assert second["file_id"] == first["file_id"]
        assert second["duplicate"] is True
        assert second["chunks_created"] == 0

    def test_empty_upload_rejected(self, client: TestClient):
        response = upload(client, b"")

        assert response.status_code == 400
        assert response.json() == {
            "ok": False,
            "error": "E_INVALID_REQUEST",
            "detail": "No file content provided",
        }

    def test_list_and_delete_files(self, client: TestClient):
        file_id = upload(client, b"b" * 2500).json()["file_id"]

        files = client.get("/api/files", headers=USER).json()
        assert [(f["id"], f["num_chunks"]) for f in files] == [(file_id, 2)]
        assert client.get("/api/files", headers=OTHER_USER).json() == []

        assert client.delete(f"/api/files/{file_id}", headers=OTHER_USER).status_code == 404
        assert client.delete(f"/api/files/{file_id}", headers=USER).status_code == 200
        assert client.get("/api/files", headers=USER).json() == []

    def test_missing_user_header_rejected(self, client: TestClient):
        response = client.get("/api/files")
        assert response.status_code == 422


class TestChatApi:
    def test_new_chat_returns_thread_and_messages(self, client: TestClient):
        response = client.post("/api/chat", json={"message": "What is the capital of France?"}, headers=USER)

        assert response.status_code == 200
        data = response.json()
        assert isinstance(data["thread_id"], int)
        assert data["mode"] == "general"
        assert [m["role"] for m in data["messages"]] == ["user", "assistant"]
        assert data["messages"][1]["content"] == "Here is what I found."

    def test_grounded_chat_lists_sources(self, client: TestClient):
        text = (
            b"Invoice 2041 from Acme Corporation lists consulting services delivered in March "
            b"with a total amount due of 4,500 euros payable within thirty days."
        )
        upload(client, text, filename="invoice.txt")

        data = client.post("/api/chat", json={"message": "How much is the Acme invoice?"}, headers=USER).json()

        assert data["mode"] == "grounded"
        assert [s["filename"] for s in data["sources"]] == ["invoice.txt"]

    def test_continue_thread(self, client: TestClient):
        thread_id = client.post("/api/chat", json={"message": "First"}, headers=USER).json()["thread_id"]

        data = client.post(
            "/api/chat", json={"message": "Second", "thread_id": thread_id}, headers=USER
        ).json()

        assert data["thread_id"] == thread_id
        assert len(data["messages"]) == 4

    def test_completion_failure_still_succeeds(self, client: TestClient, completion):
        completion.fail.add("answer")

        response = client.post("/api/chat", json={"message": "Hello"}, headers=USER)

        assert response.status_code == 200
        assert response.json()["messages"][-1]["content"] == APOLOGY_MESSAGE

    def test_blank_message_rejected(self, client: TestClient):
        response = client.post("/api/chat", json={"message": "   "}, headers=USER)

        assert response.status_code == 400
        assert response.json()["error"] == "E_INVALID_REQUEST"

    def test_unknown_model_rejected(self, client: TestClient):
        response = client.post("/api/chat", json={"message": "Hi", "model": "openai:not-a-model"}, headers=USER)

        assert response.status_code == 400
        assert "Unknown model" in response.json()["detail"]

    def test_thread_listing_reading_and_deletion(self, client: TestClient):
        thread_id = client.post("/api/chat", json={"message": "Hello"}, headers=USER).json()["thread_id"]

        threads = client.get("/api/chat", headers=USER).json()["threads"]
        assert [t["id"] for t in threads] == [thread_id]
        assert client.get("/api/chat", headers=OTHER_USER).json()["threads"] == []

        thread = client.get(f"/api/chat/{thread_id}", headers=USER).json()
        assert thread["thread"]["title"] == "Hello"
        assert len(thread["messages"]) == 2
        assert thread["summary"]["short"] == "Short summary."

        assert client.delete(f"/api/chat/{thread_id}", headers=USER).status_code == 200
        assert client.get(f"/api/chat/{thread_id}", headers=USER).status_code == 404

    def test_other_users_thread_is_not_found(self, client: TestClient):
        thread_id = client.post("/api/chat", json={"message": "Hello"}, headers=USER).json()["thread_id"]

        response = client.post(
            "/api/chat", json={"message": "Let me in", "thread_id": thread_id}, headers=OTHER_USER
        )

        assert response.status_code == 404
        assert response.json() == {
            "ok": False,
            "error": "E_NOT_FOUND",
            "detail": "Thread not found or access denied",
        }
