"""Application configuration with sensible defaults."""
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("RAGREADER_DATA_DIR", str(BASE_DIR / "data")))

# Database
DB_PATH = Path(os.getenv("RAGREADER_DB_PATH", str(DATA_DIR / "rag_vector_store.sqlite")))

# RAG parameters (character-based)
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "500"))
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "50"))
RETRIEVAL_TOP_K = int(os.getenv("RETRIEVAL_TOP_K", "5"))
SIMILARITY_THRESHOLD = float(os.getenv("SIMILARITY_THRESHOLD", "0.1"))
EMBEDDING_BATCH_DELAY = float(os.getenv("EMBEDDING_BATCH_DELAY", "0.1"))  # seconds between API calls

# Embedding providers
OPENAI_EMBEDDINGS_URL = "https://api.openai.com/v1/embeddings"
HUGGINGFACE_EMBEDDINGS_URL = "https://api-inference.huggingface.co/pipeline/feature-extraction"

EMBEDDING_DEFAULTS = {
    # provider: (model, dimension)
    "openai": ("text-embedding-3-small", 1536),
    "huggingface": ("sentence-transformers/all-MiniLM-L6-v2", 384),
    "local": ("local-hash", 1536),
}

# Generation providers
GROQ_CHAT_URL = "https://api.groq.com/openai/v1/chat/completions"
OPENROUTER_CHAT_URL = "https://openrouter.ai/api/v1/chat/completions"

GENERATION_MODELS = {
    "groq": [
        "llama-3.1-8b-instant",
        "llama-3.3-70b-versatile",
        "gemma2-9b-it",
    ],
    "openrouter": [
        "openai/gpt-4o-mini",
        "anthropic/claude-3-haiku",
        "meta-llama/llama-3-8b-instruct",
        "mistralai/mixtral-8x7b-instruct",
    ],
}

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def _env(name: str) -> Optional[str]:
    value = os.getenv(name)
    return value if value else None


class EmbeddingSettings(BaseModel):
    """Configuration value for the embedding provider."""

    provider: str = "openai"
    api_key: Optional[str] = None
    model: Optional[str] = None
    dimension: Optional[int] = Field(default=None, gt=0)
    timeout: float = 30.0
    batch_delay: float = Field(default=EMBEDDING_BATCH_DELAY, ge=0.0)
    fallback_on_error: bool = True

    @property
    def is_api_configured(self) -> bool:
        return bool(self.api_key)

    @property
    def resolved_provider(self) -> str:
        """Provider actually used for API calls; unknown names fall back to local."""
        if not self.is_api_configured or self.provider not in EMBEDDING_DEFAULTS:
            return "local"
        return self.provider

    @property
    def resolved_model(self) -> str:
        provider = self.provider if self.provider in EMBEDDING_DEFAULTS else "local"
        return self.model or EMBEDDING_DEFAULTS[provider][0]

    @property
    def resolved_dimension(self) -> int:
        if self.dimension:
            return self.dimension
        provider = self.provider if self.provider in EMBEDDING_DEFAULTS else "local"
        return EMBEDDING_DEFAULTS[provider][1]

    @classmethod
    def from_env(cls) -> "EmbeddingSettings":
        dimension = _env("EMBEDDING_DIMENSION")
        return cls(
            provider=os.getenv("EMBEDDING_PROVIDER", "openai"),
            api_key=_env("EMBEDDING_API_KEY"),
            model=_env("EMBEDDING_MODEL"),
            dimension=int(dimension) if dimension else None,
            batch_delay=EMBEDDING_BATCH_DELAY,
            fallback_on_error=os.getenv("EMBEDDING_FALLBACK", "true").lower() != "false",
        )


class GenerationSettings(BaseModel):
    """Configuration value for the chat-completion provider."""

    provider: str = "groq"
    api_key: Optional[str] = None
    model: str = "llama-3.1-8b-instant"
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=1024, gt=0)
    timeout: float = 60.0

    @property
    def is_api_configured(self) -> bool:
        return bool(self.api_key)

    @classmethod
    def from_env(cls) -> "GenerationSettings":
        return cls(
            provider=os.getenv("LLM_PROVIDER", "groq"),
            api_key=_env("LLM_API_KEY"),
            model=os.getenv("LLM_MODEL", "llama-3.1-8b-instant"),
        )
