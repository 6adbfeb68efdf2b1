"""
TaskLoop Vector Store - Persistent similarity search over task results.

Three backends share one interface:

- ``PineconeStore``: Pinecone REST API over httpx (the production store)
- ``ChromaStore``: a local ChromaDB collection per index
- ``InMemoryStore``: numpy cosine search, for tests and offline dry runs
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import httpx
import numpy as np

from taskloop.errors import ConfigError, VectorStoreError
from taskloop.rag.embedding import cosine_similarity
from taskloop.validation.config import Config

logger = logging.getLogger(__name__)


@dataclass
class QueryMatch:
    """A single hit from a similarity query."""

    id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


class VectorStore(ABC):
    """Interface shared by all vector store backends."""

    @abstractmethod
    def list_indexes(self) -> List[str]:
        """Names of the indexes that already exist."""

    @abstractmethod
    def create_index(self, name: str, dimension: int) -> None:
        """Create a cosine-similarity index."""

    @abstractmethod
    def upsert(
        self,
        index: str,
        id: str,
        vector: Sequence[float],
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Insert or replace one entry. Returns the number of upserted entries."""

    @abstractmethod
    def query(self, index: str, vector: Sequence[float], top_k: int) -> List[QueryMatch]:
        """Return up to ``top_k`` entries nearest to ``vector``, best first."""

    def close(self) -> None:
        """Release any connections held by the store."""

    def __enter__(self) -> "VectorStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def ensure_index(self, name: str, dimension: int) -> bool:
        """
        Create the index unless it already exists.

        Returns:
            True if the index was created by this call.
        """
        if name in self.list_indexes():
            logger.debug("Index %s already exists", name)
            return False
        logger.info("Creating index %s (dimension=%d)", name, dimension)
        self.create_index(name, dimension)
        return True


class PineconeStore(VectorStore):
    """
    Pinecone pod-based index accessed through its REST API.

    Index management goes to the regional controller
    (``https://controller.<region>.pinecone.io``); data operations go to the
    index host (``https://<index>-<project>.svc.<region>.pinecone.io``).

    Example:
        >>> store = PineconeStore(api_key="...", region="us-east1-gcp", project_id="abc123")
        >>> store.ensure_index("tasks", 1536)
        >>> store.query("tasks", vector, top_k=5)
    """

    POD_TYPE = "p1.x1"

    def __init__(
        self,
        api_key: str,
        region: str,
        project_id: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ):
        self.api_key = api_key
        self.region = region
        self.project_id = project_id
        self._client = client or httpx.Client(timeout=timeout)

    @property
    def controller_url(self) -> str:
        return f"https://controller.{self.region}.pinecone.io"

    def index_url(self, index: str) -> str:
        if not self.project_id:
            raise VectorStoreError("Pinecone project id is required for data operations")
        return f"https://{index}-{self.project_id}.svc.{self.region}.pinecone.io"

    def _request(self, method: str, url: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        headers = {"Api-Key": self.api_key, "Accept": "application/json"}
        try:
            response = self._client.request(method, url, headers=headers, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise VectorStoreError(
                f"Pinecone {method} {url} failed with {e.response.status_code}: {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            raise VectorStoreError(f"Pinecone {method} {url} failed: {e}") from e

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise VectorStoreError(f"Pinecone {method} {url} returned invalid JSON: {e}") from e

    def list_indexes(self) -> List[str]:
        data = self._request("GET", f"{self.controller_url}/databases") or []
        if not isinstance(data, list):
            raise VectorStoreError(f"Unexpected Pinecone index listing: {str(data)[:200]}")
        return [str(name) for name in data]

    def create_index(self, name: str, dimension: int) -> None:
        self._request(
            "POST",
            f"{self.controller_url}/databases",
            {
                "name": name,
                "dimension": dimension,
                "metric": "cosine",
                "pods": 1,
                "replicas": 1,
                "pod_type": self.POD_TYPE,
            },
        )

    def upsert(self, index, id, vector, metadata=None) -> int:
        logger.debug("Storing %s to Pinecone index %s", id, index)
        entry: Dict[str, Any] = {"id": id, "values": [float(v) for v in vector]}
        if metadata:
            entry["metadata"] = metadata
        data = self._request("POST", f"{self.index_url(index)}/vectors/upsert", {"vectors": [entry]})
        try:
            return int((data or {}).get("upsertedCount", 0))
        except (TypeError, ValueError, AttributeError) as e:
            raise VectorStoreError(f"Unexpected Pinecone upsert response: {str(data)[:200]}") from e

    def query(self, index, vector, top_k) -> List[QueryMatch]:
        logger.debug("Querying Pinecone index %s (top_k=%d)", index, top_k)
        data = self._request(
            "POST",
            f"{self.index_url(index)}/query",
            {
                "vector": [float(v) for v in vector],
                "topK": top_k,
                "includeMetadata": True,
            },
        )
        try:
            matches = [
                QueryMatch(id=m["id"], score=float(m.get("score", 0.0)), metadata=m.get("metadata") or {})
                for m in (data or {}).get("matches", [])
            ]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise VectorStoreError(f"Unexpected Pinecone query response: {str(data)[:200]}") from e
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches

    def close(self) -> None:
        self._client.close()


class ChromaStore(VectorStore):
    """
    Local vector store using ChromaDB, one collection per index.

    Example:
        >>> store = ChromaStore(persist_directory=".taskloop/chroma")
        >>> store.ensure_index("tasks", 384)
    """

    def __init__(self, persist_directory: Optional[str] = None):
        """
        Initialize the store.

        Args:
            persist_directory: Directory to persist the database.
                In-memory when omitted.
        """
        self.persist_directory = persist_directory
        self._client = None

    @property
    def client(self):
        """Lazy-load the ChromaDB client."""
        if self._client is None:
            try:
                import chromadb
                from chromadb.config import Settings
            except ImportError:
                raise ImportError(
                    "chromadb is required for the chroma backend. "
                    "Install with: pip install taskloop[chroma]"
                )

            if self.persist_directory:
                Path(self.persist_directory).mkdir(parents=True, exist_ok=True)
                self._client = chromadb.PersistentClient(
                    path=self.persist_directory,
                    settings=Settings(anonymized_telemetry=False),
                )
            else:
                self._client = chromadb.Client(Settings(anonymized_telemetry=False))
        return self._client

    def list_indexes(self) -> List[str]:
        # Newer chromadb returns names, older returns Collection objects
        return [c if isinstance(c, str) else c.name for c in self.client.list_collections()]

    def create_index(self, name: str, dimension: int) -> None:
        self.client.get_or_create_collection(
            name=name,
            metadata={"hnsw:space": "cosine", "dimension": dimension},
        )

    def _collection(self, index: str):
        return self.client.get_or_create_collection(name=index, metadata={"hnsw:space": "cosine"})

    def upsert(self, index, id, vector, metadata=None) -> int:
        metadata = metadata or {}
        self._collection(index).upsert(
            ids=[id],
            embeddings=[[float(v) for v in vector]],
            metadatas=[metadata] if metadata else None,
            documents=[str(metadata.get("result", ""))],
        )
        return 1

    def query(self, index, vector, top_k) -> List[QueryMatch]:
        collection = self._collection(index)
        n_results = min(top_k, collection.count())
        if n_results <= 0:
            return []

        results = collection.query(
            query_embeddings=[[float(v) for v in vector]],
            n_results=n_results,
            include=["metadatas", "distances"],
        )

        matches = []
        if results["ids"] and results["ids"][0]:
            metadatas = results["metadatas"][0] if results.get("metadatas") else None
            for i, entry_id in enumerate(results["ids"][0]):
                # For cosine distance: similarity = 1 - distance
                distance = results["distances"][0][i] if results.get("distances") else 0.0
                matches.append(
                    QueryMatch(
                        id=entry_id,
                        score=1.0 - float(distance),
                        metadata=dict(metadatas[i] or {}) if metadatas else {},
                    )
                )
        return matches


class InMemoryStore(VectorStore):
    """Process-local store; contents are lost when the process exits."""

    def __init__(self):
        self._indexes: Dict[str, Dict[str, Any]] = {}

    def list_indexes(self) -> List[str]:
        return list(self._indexes)

    def create_index(self, name: str, dimension: int) -> None:
        self._indexes.setdefault(name, {"dimension": dimension, "ids": [], "vectors": [], "metadata": []})

    def _index(self, name: str) -> Dict[str, Any]:
        try:
            return self._indexes[name]
        except KeyError:
            raise VectorStoreError(f"Index not found: {name}")

    def upsert(self, index, id, vector, metadata=None) -> int:
        data = self._index(index)
        values = np.asarray(vector, dtype=np.float32)
        if values.shape != (data["dimension"],):
            raise VectorStoreError(
                f"Vector dimension {values.shape[0] if values.ndim else 0} "
                f"does not match index dimension {data['dimension']}"
            )

        if id in data["ids"]:
            position = data["ids"].index(id)
            data["vectors"][position] = values
            data["metadata"][position] = dict(metadata or {})
        else:
            data["ids"].append(id)
            data["vectors"].append(values)
            data["metadata"].append(dict(metadata or {}))
        return 1

    def query(self, index, vector, top_k) -> List[QueryMatch]:
        data = self._index(index)
        if not data["ids"] or top_k <= 0:
            return []

        scores = cosine_similarity(np.asarray(vector, dtype=np.float32), np.vstack(data["vectors"]))
        order = np.argsort(-scores, kind="stable")[:top_k]
        return [
            QueryMatch(id=data["ids"][i], score=float(scores[i]), metadata=dict(data["metadata"][i]))
            for i in order
        ]

    def count(self, index: str) -> int:
        return len(self._index(index)["ids"])


def create_vector_store(config: Config) -> VectorStore:
    """Build the vector store selected by the ``vector_store`` config section."""
    settings = config.merged.vector_store

    if settings.backend == "pinecone":
        if not settings.api_key:
            raise ConfigError("PINECONE_API_KEY is required for the pinecone backend")
        if not settings.region:
            raise ConfigError("PINECONE_REGION is required for the pinecone backend")
        return PineconeStore(
            api_key=settings.api_key,
            region=settings.region,
            project_id=settings.project_id,
            timeout=config.merged.agent.timeout,
        )
    if settings.backend == "chroma":
        return ChromaStore(persist_directory=settings.persist_directory)
    if settings.backend == "memory":
        return InMemoryStore()

    raise ConfigError(f"Unknown vector store backend: {settings.backend}")
