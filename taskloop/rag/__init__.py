"""
TaskLoop RAG module.

Embedding clients and vector stores used to enrich task results and to
retrieve context for new tasks.

Optional backends: pip install taskloop[chroma,local]
"""


def __getattr__(name):
    """Lazy imports to avoid requiring heavy dependencies at startup."""
    if name in ("Embedder", "OpenAIEmbedder", "SentenceTransformerEmbedder", "create_embedder"):
        from taskloop.rag import embedding

        return getattr(embedding, name)
    elif name in ("VectorStore", "PineconeStore", "ChromaStore", "InMemoryStore", "QueryMatch",
                  "create_vector_store"):
        from taskloop.rag import vectorstore

        return getattr(vectorstore, name)
    raise AttributeError(f"module 'taskloop.rag' has no attribute {name}")


__all__ = [
    "Embedder",
    "OpenAIEmbedder",
    "SentenceTransformerEmbedder",
    "create_embedder",
    "VectorStore",
    "PineconeStore",
    "ChromaStore",
    "InMemoryStore",
    "QueryMatch",
    "create_vector_store",
]
