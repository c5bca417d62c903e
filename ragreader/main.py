"""Quart HTTP API for RAG Reader."""
import asyncio
from typing import Optional

from quart import Quart, jsonify, request
import structlog

from ragreader import config
from ragreader.errors import DimensionMismatch, ProviderError, RagError, ValidationError
from ragreader.log_setup import configure_logging
from ragreader.services import Services, build_services

logger = structlog.get_logger()

MAX_MESSAGE_LENGTH = 2000


def _is_utf8(text: str) -> bool:
    try:
        text.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def _search_error(data: dict) -> Optional[str]:
    """Describe what is wrong with a search request body, or None if it is valid."""
    query = data.get("query")
    if not isinstance(query, str) or not query.strip():
        return "Missing 'query' in request body"

    k = data.get("k")
    if k is not None and (isinstance(k, bool) or not isinstance(k, int)):
        return "'k' must be an integer"

    threshold = data.get("threshold")
    if threshold is not None and (
        isinstance(threshold, bool) or not isinstance(threshold, (int, float))
    ):
        return "'threshold' must be a number"

    return None


def create_app(services: Optional[Services] = None) -> Quart:
    """Create the Quart application.

    Args:
        services: Component graph (built from config and environment if not provided)
    """
    app = Quart(__name__)
    services = services or build_services()
    app.config["SERVICES"] = services

    @app.errorhandler(ValidationError)
    async def handle_validation_error(error: ValidationError):
        return jsonify({"error": str(error)}), 400

    @app.errorhandler(DimensionMismatch)
    async def handle_dimension_mismatch(error: DimensionMismatch):
        return jsonify({"error": str(error)}), 409

    @app.errorhandler(ProviderError)
    async def handle_provider_error(error: ProviderError):
        logger.error("provider_error", error=str(error))
        return jsonify({"error": str(error)}), 502

    @app.errorhandler(RagError)
    async def handle_rag_error(error: RagError):
        logger.error("pipeline_error", error=str(error), error_type=type(error).__name__)
        return jsonify({"error": str(error)}), 500

    @app.errorhandler(404)
    async def not_found(error):
        return jsonify({"error": "Not found"}), 404

    @app.route("/health/live")
    async def health_live():
        """Liveness probe - check if app is running."""
        return jsonify({"status": "alive"}), 200

    @app.route("/api/stats")
    async def stats():
        """Corpus counts and provider configuration."""
        return jsonify({
            **await asyncio.to_thread(services.store.get_stats),
            "embedding_provider": services.embedder.provider,
            "embedding_stats": services.embedder.stats,
            "generation": services.generator.current_config,
        })

    @app.route("/api/documents", methods=["GET"])
    async def list_documents():
        documents = await asyncio.to_thread(services.store.get_all)
        return jsonify({"documents": [d.to_dict() for d in documents]})

    @app.route("/api/documents/<document_id>", methods=["GET"])
    async def get_document(document_id: str):
        document = await asyncio.to_thread(services.store.get, document_id)
        if document is None:
            return jsonify({"error": "Document not found"}), 404
        return jsonify(document.to_dict(include_chunks=True))

    @app.route("/api/documents", methods=["POST"])
    async def add_document():
        """Ingest a document from a path on the server.

        Expects JSON body:
        {
            "path": "/path/to/file.txt",
            "name": "optional display name"
        }
        """
        data = await request.get_json(silent=True)
        if not data or not data.get("path"):
            return jsonify({"error": "Missing 'path' in request body"}), 400

        statuses = []
        document = await services.ingest.ingest_file(
            data["path"],
            name=data.get("name"),
            status_callback=statuses.append,
        )
        response = document.to_dict()
        response["status"] = statuses
        return jsonify(response), 201

    @app.route("/api/documents/<document_id>", methods=["DELETE"])
    async def delete_document(document_id: str):
        if await asyncio.to_thread(services.store.delete, document_id):
            return "", 204
        return jsonify({"error": "Document not found"}), 404

    @app.route("/api/documents", methods=["DELETE"])
    async def clear_documents():
        deleted = await asyncio.to_thread(services.store.clear)
        return jsonify({"documents_deleted": deleted})

    @app.route("/api/search", methods=["POST"])
    async def search():
        """Similarity search without generation.

        Expects JSON body: {"query": "...", "k": 5, "threshold": 0.1}
        """
        data = await request.get_json(silent=True)
        if not isinstance(data, dict):
            return jsonify({"error": "Missing 'query' in request body"}), 400

        error = _search_error(data)
        if error:
            return jsonify({"error": error}), 400

        results = await services.retriever.search(
            data["query"],
            k=data.get("k"),
            threshold=data.get("threshold"),
        )
        return jsonify({"results": [r.to_dict() for r in results]})

    @app.route("/api/chat", methods=["POST"])
    async def chat():
        """Answer a question over the stored documents.

        Expects JSON body:
        {
            "message": "user message text",
            "session_id": "optional-session-id",  // creates new if not provided
            "use_rag": true  // optional, defaults to true
        }
        """
        data = await request.get_json(silent=True)
        if not isinstance(data, dict) or "message" not in data:
            return jsonify({"error": "Missing 'message' in request body"}), 400

        message = str(data["message"]).strip()
        if not message:
            return jsonify({"error": "Message cannot be empty"}), 400
        if len(message) > MAX_MESSAGE_LENGTH:
            return jsonify({"error": f"Message too long (max {MAX_MESSAGE_LENGTH} characters)"}), 400
        if not _is_utf8(message):
            return jsonify({"error": "Message must be valid UTF-8 text"}), 400

        conversations = services.conversations
        session_id = data.get("session_id")
        if not session_id or not conversations.has_session(session_id):
            session_id = conversations.create_session()

        try:
            answer = await conversations.ask(
                session_id, message, use_rag=bool(data.get("use_rag", True))
            )
        except ProviderError as e:
            logger.error("chat_generation_failed", session_id=session_id, error=str(e))
            return jsonify({"error": str(e), "session_id": session_id}), 502

        return jsonify({
            "response": answer.content,
            "session_id": session_id,
            "sources": [s.to_dict() for s in answer.sources],
        })

    @app.route("/api/sessions/<session_id>/messages", methods=["GET"])
    async def session_messages(session_id: str):
        if not services.conversations.has_session(session_id):
            return jsonify({"error": "Session not found"}), 404
        messages = services.conversations.get_messages(session_id)
        return jsonify({"messages": [m.to_dict() for m in messages]})

    @app.route("/api/settings/reload", methods=["POST"])
    async def reload_settings():
        """Re-read provider configuration from the environment."""
        services.reload()
        return jsonify({
            "embedding_provider": services.embedder.provider,
            "embedding_dimension": services.embedder.dimension,
            "generation": services.generator.current_config,
        })

    return app


if __name__ == "__main__":
    configure_logging(config.LOG_LEVEL)
    create_app().run(host="127.0.0.1", port=5000, debug=True)
