"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Source validation and text extraction
- Sentence chunking with overlap
- Embedding generation with a deterministic local fallback
- Cosine similarity ranking
- Retrieval and context assembly
- Question answering
"""
