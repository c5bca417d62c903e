"""Tests for the Quart HTTP API."""
import httpx
import pytest

from ragreader.config import EmbeddingSettings, GenerationSettings
from ragreader.main import create_app
from ragreader.services import build_services

SAMPLE_TEXT = (
    "Retrieval augmented generation grounds answers in documents. "
    "The quick brown fox jumps over the lazy dog."
)


def make_services(tmp_path, status_code=200):
    def handler(request: httpx.Request) -> httpx.Response:
        if status_code != 200:
            return httpx.Response(status_code, json={"error": {"message": "Service unavailable"}})
        return httpx.Response(
            200, json={"choices": [{"message": {"role": "assistant", "content": "Stub answer."}}]}
        )

    return build_services(
        db_path=tmp_path / "api.sqlite",
        embedding_settings=EmbeddingSettings(provider="local", batch_delay=0.0),
        generation_settings=GenerationSettings(provider="groq", api_key="test-key"),
        transport=httpx.MockTransport(handler),
    )


@pytest.fixture
def services(tmp_path):
    return make_services(tmp_path)


@pytest.fixture
def app(services):
    return create_app(services)


@pytest.fixture
def source_file(tmp_path):
    path = tmp_path / "guide.txt"
    path.write_text(SAMPLE_TEXT, encoding="utf-8")
    return path


async def add_document(client, path, name=None):
    payload = {"path": str(path)}
    if name:
        payload["name"] = name
    response = await client.post("/api/documents", json=payload)
    assert response.status_code == 201
    return await response.get_json()


@pytest.mark.asyncio
async def test_health(app):
    response = await app.test_client().get("/health/live")

    assert response.status_code == 200
    assert (await response.get_json())["status"] == "alive"


@pytest.mark.asyncio
async def test_add_list_get_delete_document(app, source_file):
    client = app.test_client()

    created = await add_document(client, source_file, name="Guide")

    assert created["name"] == "Guide"
    assert created["chunk_count"] == 1
    assert created["status"][0] == "Validating document..."
    assert created["status"][-1] == "Document added successfully!"

    listing = await (await client.get("/api/documents")).get_json()
    assert [d["id"] for d in listing["documents"]] == [created["id"]]

    detail = await (await client.get(f"/api/documents/{created['id']}")).get_json()
    assert detail["content"] == SAMPLE_TEXT
    assert detail["chunks"][0]["document_id"] == created["id"]

    response = await client.delete(f"/api/documents/{created['id']}")
    assert response.status_code == 204

    response = await client.get(f"/api/documents/{created['id']}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_delete_unknown_document(app):
    response = await app.test_client().delete("/api/documents/missing")

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_add_document_requires_path(app):
    response = await app.test_client().post("/api/documents", json={})

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_add_missing_file_is_validation_error(app, tmp_path):
    response = await app.test_client().post("/api/documents", json={"path": str(tmp_path / "nope.txt")})

    assert response.status_code == 400
    assert "Document not found" in (await response.get_json())["error"]


@pytest.mark.asyncio
async def test_clear_documents(app, source_file):
    client = app.test_client()
    await add_document(client, source_file)
    await add_document(client, source_file)

    body = await (await client.delete("/api/documents")).get_json()

    assert body["documents_deleted"] == 2
    stats = await (await client.get("/api/stats")).get_json()
    assert stats["documents"] == 0
    assert stats["chunks"] == 0


@pytest.mark.asyncio
async def test_search(app, source_file):
    client = app.test_client()
    created = await add_document(client, source_file)

    response = await client.post(
        "/api/search",
        json={"query": "Retrieval augmented generation grounds answers in documents", "threshold": -1.0},
    )

    results = (await response.get_json())["results"]
    assert results[0]["document_id"] == created["id"]
    assert results[0]["similarity"] <= 1.0


@pytest.mark.asyncio
async def test_search_requires_query(app):
    response = await app.test_client().post("/api/search", json={"query": "  "})

    assert response.status_code == 400


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"query": 123},
        {"query": ["a list"]},
        {"query": "long sentence", "k": "3"},
        {"query": "long sentence", "k": 2.5},
        {"query": "long sentence", "k": True},
        {"query": "long sentence", "threshold": "0.5"},
        {"query": "long sentence", "threshold": False},
    ],
)
async def test_search_rejects_bad_parameters(app, payload):
    response = await app.test_client().post("/api/search", json=payload)

    assert response.status_code == 400
    assert (await response.get_json())["error"]


@pytest.mark.asyncio
async def test_search_rejects_non_object_body(app):
    response = await app.test_client().post("/api/search", json=["query"])

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_search_with_lone_surrogate_query(app, source_file):
    client = app.test_client()
    await add_document(client, source_file)

    response = await client.post(
        "/api/search",
        data='{"query": "hello \\ud800 world", "threshold": -1}',
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 200
    assert len((await response.get_json())["results"]) == 1


@pytest.mark.asyncio
async def test_chat_rejects_lone_surrogate_message(app):
    response = await app.test_client().post(
        "/api/chat",
        data='{"message": "hello \\ud800 world"}',
        headers={"Content-Type": "application/json"},
    )

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_search_against_other_dimension_conflicts(app, services, make_document):
    services.store.store(make_document(embeddings=[(1.0, 0.0, 0.0)]))

    response = await app.test_client().post("/api/search", json={"query": "anything"})

    assert response.status_code == 409


@pytest.mark.asyncio
async def test_chat_records_session(app, source_file):
    client = app.test_client()
    await add_document(client, source_file)

    response = await client.post("/api/chat", json={"message": "What does the fox do?"})
    body = await response.get_json()

    assert response.status_code == 200
    assert body["response"] == "Stub answer."
    assert body["session_id"]

    messages = await (await client.get(f"/api/sessions/{body['session_id']}/messages")).get_json()
    assert [m["role"] for m in messages["messages"]] == ["user", "assistant"]

    followup = await client.post(
        "/api/chat", json={"message": "And then?", "session_id": body["session_id"]}
    )
    assert (await followup.get_json())["session_id"] == body["session_id"]


@pytest.mark.asyncio
async def test_chat_generation_failure_keeps_user_turn(tmp_path):
    app = create_app(make_services(tmp_path, status_code=503))
    client = app.test_client()

    response = await client.post("/api/chat", json={"message": "Hello?", "use_rag": False})
    body = await response.get_json()

    assert response.status_code == 502
    assert "Service unavailable" in body["error"]

    messages = await (await client.get(f"/api/sessions/{body['session_id']}/messages")).get_json()
    assert messages["messages"] == [{"role": "user", "content": "Hello?"}]


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [{}, {"message": "   "}, {"message": "x" * 2001}])
async def test_chat_rejects_bad_messages(app, payload):
    response = await app.test_client().post("/api/chat", json=payload)

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_unknown_session(app):
    response = await app.test_client().get("/api/sessions/nope/messages")

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_stats(app, source_file):
    client = app.test_client()
    await add_document(client, source_file)

    stats = await (await client.get("/api/stats")).get_json()

    assert stats["documents"] == 1
    assert stats["embedding_dimension"] == 1536
    assert stats["embedding_provider"] == "local"
    assert stats["generation"]["has_api_key"] == "true"


@pytest.mark.asyncio
async def test_reload_settings_from_environment(app, monkeypatch):
    monkeypatch.delenv("EMBEDDING_API_KEY", raising=False)
    monkeypatch.setenv("LLM_PROVIDER", "openrouter")
    monkeypatch.setenv("LLM_API_KEY", "or-key")
    monkeypatch.setenv("LLM_MODEL", "openai/gpt-4o-mini")

    body = await (await app.test_client().post("/api/settings/reload")).get_json()

    assert body["embedding_provider"] == "local"
    assert body["generation"] == {
        "provider": "openrouter",
        "model": "openai/gpt-4o-mini",
        "has_api_key": "true",
    }
