"""SQLite persistence for documents, chunks and their embeddings.

Two tables:
- documents: one row per ingested document, including its full text
- chunks: the document's chunks with offsets and JSON-serialized embeddings

Every mutation runs inside a single transaction; chunks are owned by their
document and removed with it (ON DELETE CASCADE).
"""
import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple
import structlog

from ragreader import config
from ragreader.errors import DimensionMismatch, PersistenceError, ValidationError
from ragreader.models import Chunk, Document

logger = structlog.get_logger()

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS documents (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        path TEXT NOT NULL,
        content TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chunks (
        id TEXT PRIMARY KEY,
        document_id TEXT NOT NULL,
        chunk_index INTEGER NOT NULL,
        content TEXT NOT NULL,
        start_index INTEGER NOT NULL,
        end_index INTEGER NOT NULL,
        embedding TEXT NOT NULL,
        embedding_dim INTEGER NOT NULL,
        FOREIGN KEY (document_id) REFERENCES documents (id) ON DELETE CASCADE
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_chunks_document_id ON chunks(document_id)",
    "CREATE INDEX IF NOT EXISTS idx_documents_created_at ON documents(created_at)",
)


def _encode_timestamp(value: datetime) -> str:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.isoformat()


def _encode_embedding(embedding: Sequence[float]) -> str:
    return json.dumps([float(v) for v in embedding])


def _decode_embedding(raw: str, expected_dim: int, chunk_id: str) -> List[float]:
    """Deserialize an embedding, failing if its length differs from what was written."""
    try:
        values = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise PersistenceError(f"Corrupt embedding for chunk {chunk_id}: {e}") from e

    if not isinstance(values, list) or len(values) != expected_dim:
        actual = len(values) if isinstance(values, list) else "non-list"
        raise PersistenceError(
            f"Corrupt embedding for chunk {chunk_id}: expected {expected_dim} values, got {actual}"
        )

    try:
        return [float(v) for v in values]
    except (TypeError, ValueError) as e:
        raise PersistenceError(f"Corrupt embedding for chunk {chunk_id}: {e}") from e


class DocumentStore:
    """Transactional document, chunk and embedding store."""

    def __init__(self, db_path: Optional[Path] = None):
        """Initialize the store and create the schema if needed.

        Args:
            db_path: SQLite database file (default from config)
        """
        self.db_path = Path(db_path or config.DB_PATH)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.init_database()

    def get_connection(self) -> sqlite3.Connection:
        """Open a connection with foreign keys enforced.

        Returns:
            sqlite3.Connection with row_factory set to sqlite3.Row
        """
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[sqlite3.Connection]:
        """Run a block in one transaction, rolling back on any failure."""
        conn = self.get_connection()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"{operation}_failed", error=str(e), db_path=str(self.db_path))
            raise PersistenceError(f"{operation.replace('_', ' ').capitalize()} failed: {e}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @contextmanager
    def _reading(self, operation: str) -> Iterator[sqlite3.Connection]:
        conn = self.get_connection()
        try:
            yield conn
        except sqlite3.Error as e:
            logger.error(f"{operation}_failed", error=str(e))
            raise PersistenceError(f"{operation.replace('_', ' ').capitalize()} failed: {e}") from e
        finally:
            conn.close()

    def init_database(self) -> None:
        """Create tables and indexes if they don't exist."""
        with self._transaction("database_init") as conn:
            for statement in SCHEMA:
                conn.execute(statement)
        logger.info("database_initialized", db_path=str(self.db_path))

    # Writes

    def store(self, document: Document) -> None:
        """Upsert a document and replace its chunk set atomically.

        Args:
            document: Document with embedded chunks

        Raises:
            ValidationError: If the document is empty or its chunks are malformed
            DimensionMismatch: If its embeddings disagree with each other or the corpus
            PersistenceError: If the transaction fails
        """
        dimension = self._validate_document(document)

        with self._transaction("document_store") as conn:
            self._check_corpus_dimension(conn, dimension, exclude_id=document.id)
            self._write_document(conn, document)

        logger.info(
            "document_stored",
            document_id=document.id,
            name=document.name,
            chunk_count=len(document.chunks),
            embedding_dim=dimension,
        )

    def store_many(self, documents: List[Document], replace: bool = False) -> None:
        """Write several documents in one transaction.

        Args:
            documents: Documents with embedded chunks
            replace: If True, the documents replace the whole corpus

        Raises:
            ValidationError, DimensionMismatch, PersistenceError: As for store()
        """
        dimensions = {self._validate_document(doc) for doc in documents}
        dimensions.discard(None)
        if len(dimensions) > 1:
            low, high = sorted(dimensions)[:2]
            raise DimensionMismatch(low, high, "Documents have mixed embedding dimensions")
        dimension = dimensions.pop() if dimensions else None

        with self._transaction("document_store_many") as conn:
            if replace:
                conn.execute("DELETE FROM chunks")
                conn.execute("DELETE FROM documents")
            else:
                for doc in documents:
                    self._check_corpus_dimension(conn, dimension, exclude_id=doc.id)
            for doc in documents:
                self._write_document(conn, doc)

        logger.info("documents_stored", count=len(documents), replace=replace)

    def delete(self, document_id: str) -> bool:
        """Delete a document and all of its chunks.

        Returns:
            True if the document existed
        """
        with self._transaction("document_delete") as conn:
            chunk_cursor = conn.execute(
                "DELETE FROM chunks WHERE document_id = ?", (document_id,)
            )
            doc_cursor = conn.execute("DELETE FROM documents WHERE id = ?", (document_id,))
            deleted = doc_cursor.rowcount > 0

        if deleted:
            logger.info(
                "document_deleted",
                document_id=document_id,
                chunks_deleted=chunk_cursor.rowcount,
            )
        return deleted

    def clear(self) -> int:
        """Delete every document and chunk.

        Returns:
            Number of documents deleted
        """
        with self._transaction("store_clear") as conn:
            conn.execute("DELETE FROM chunks")
            count = conn.execute("DELETE FROM documents").rowcount

        logger.info("store_cleared", documents_deleted=count)
        return count

    # Reads

    def get(self, document_id: str) -> Optional[Document]:
        """Get a document with its chunks, or None if it doesn't exist."""
        with self._reading("document_get") as conn:
            row = conn.execute(
                "SELECT * FROM documents WHERE id = ?", (document_id,)
            ).fetchone()
            if row is None:
                return None
            chunk_rows = conn.execute(
                "SELECT * FROM chunks WHERE document_id = ? ORDER BY chunk_index",
                (document_id,),
            ).fetchall()

        return self._row_to_document(row).with_chunks(
            [self._row_to_chunk(r) for r in chunk_rows]
        )

    def get_all(self) -> List[Document]:
        """Get all documents, newest first, each with its chunks."""
        with self._reading("documents_get_all") as conn:
            doc_rows = conn.execute(
                "SELECT * FROM documents ORDER BY created_at DESC, rowid DESC"
            ).fetchall()
            chunk_rows = conn.execute(
                "SELECT * FROM chunks ORDER BY document_id, chunk_index"
            ).fetchall()

        chunks_by_doc: Dict[str, List[Chunk]] = {}
        for row in chunk_rows:
            chunks_by_doc.setdefault(row["document_id"], []).append(self._row_to_chunk(row))

        return [
            self._row_to_document(row).with_chunks(chunks_by_doc.get(row["id"], []))
            for row in doc_rows
        ]

    def iter_chunks(self) -> List[Tuple[Chunk, Document]]:
        """All chunks in storage order, each paired with its document snapshot."""
        with self._reading("chunks_scan") as conn:
            doc_rows = conn.execute("SELECT * FROM documents").fetchall()
            chunk_rows = conn.execute("SELECT * FROM chunks ORDER BY rowid").fetchall()

        documents = {row["id"]: self._row_to_document(row) for row in doc_rows}
        return [
            (self._row_to_chunk(row), documents[row["document_id"]])
            for row in chunk_rows
            if row["document_id"] in documents
        ]

    def count_documents(self) -> int:
        with self._reading("document_count") as conn:
            return conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]

    def count_chunks(self) -> int:
        with self._reading("chunk_count") as conn:
            return conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]

    def get_embedding_dimension(self) -> Optional[int]:
        """Embedding dimension of the stored corpus, or None if it is empty."""
        with self._reading("embedding_dimension") as conn:
            row = conn.execute("SELECT embedding_dim FROM chunks LIMIT 1").fetchone()
        return row[0] if row else None

    def get_stats(self) -> Dict[str, Optional[int]]:
        return {
            "documents": self.count_documents(),
            "chunks": self.count_chunks(),
            "embedding_dimension": self.get_embedding_dimension(),
        }

    # Helpers

    def _validate_document(self, document: Document) -> Optional[int]:
        """Check the document invariants and return its embedding dimension."""
        if not document.content or not document.content.strip():
            raise ValidationError(f"Document {document.id} has no content")

        dimension = None
        for chunk in document.chunks:
            if chunk.document_id != document.id:
                raise ValidationError(
                    f"Chunk {chunk.id} belongs to {chunk.document_id}, not {document.id}"
                )
            if not chunk.has_embedding:
                raise ValidationError(f"Chunk {chunk.id} has no embedding")
            if dimension is None:
                dimension = len(chunk.embedding)
            elif len(chunk.embedding) != dimension:
                raise DimensionMismatch(dimension, len(chunk.embedding))

        return dimension

    def _check_corpus_dimension(
        self, conn: sqlite3.Connection, dimension: Optional[int], exclude_id: str
    ) -> None:
        if dimension is None:
            return
        row = conn.execute(
            "SELECT embedding_dim FROM chunks WHERE document_id != ? AND embedding_dim != ? LIMIT 1",
            (exclude_id, dimension),
        ).fetchone()
        if row is not None:
            raise DimensionMismatch(
                row[0],
                dimension,
                f"Corpus embeddings have dimension {row[0]}, document has {dimension}. "
                "Re-embed the corpus after switching providers.",
            )

    def _write_document(self, conn: sqlite3.Connection, document: Document) -> None:
        conn.execute(
            """
            INSERT INTO documents (id, name, path, content, created_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                path = excluded.path,
                content = excluded.content,
                created_at = excluded.created_at
            """,
            (
                document.id,
                document.name,
                document.path,
                document.content,
                _encode_timestamp(document.created_at),
            ),
        )

        conn.execute("DELETE FROM chunks WHERE document_id = ?", (document.id,))

        conn.executemany(
            """
            INSERT INTO chunks (
                id, document_id, chunk_index, content,
                start_index, end_index, embedding, embedding_dim
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    chunk.id,
                    chunk.document_id,
                    index,
                    chunk.content,
                    chunk.start_index,
                    chunk.end_index,
                    _encode_embedding(chunk.embedding),
                    len(chunk.embedding),
                )
                for index, chunk in enumerate(document.chunks)
            ],
        )

    @staticmethod
    def _row_to_document(row: sqlite3.Row) -> Document:
        return Document(
            id=row["id"],
            name=row["name"],
            path=row["path"],
            content=row["content"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    @staticmethod
    def _row_to_chunk(row: sqlite3.Row) -> Chunk:
        return Chunk(
            id=row["id"],
            document_id=row["document_id"],
            content=row["content"],
            start_index=row["start_index"],
            end_index=row["end_index"],
            embedding=_decode_embedding(row["embedding"], row["embedding_dim"], row["id"]),
        )
