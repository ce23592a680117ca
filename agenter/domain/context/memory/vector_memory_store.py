from typing import Dict, List, Any, Optional
from urllib.parse import urlparse
import asyncio
import math

import chromadb
import structlog

from agenter.domain.context.context_ranker import tokenize
from agenter.domain.models.facts import ObjectiveFact

logger = structlog.get_logger(__name__)

DEFAULT_EMBEDDING_DIM = 48

_FNV_OFFSET = 2166136261
_FNV_PRIME = 16777619


def stable_hash(text: str) -> int:
    """32-bit FNV-1a over the code points of the text"""

    value = _FNV_OFFSET
    for char in text:
        value ^= ord(char)
        value = (value * _FNV_PRIME) & 0xFFFFFFFF
    return value


def embed_text(text: str, dim: int = DEFAULT_EMBEDDING_DIM) -> List[float]:
    """Deterministic bag-of-hashed-tokens embedding, L2-normalized"""

    vector = [0.0] * dim
    for token in tokenize(text, min_length=1):
        vector[stable_hash(token) % dim] += 1.0

    norm = math.sqrt(sum(value * value for value in vector))
    if norm > 0:
        vector = [value / norm for value in vector]
    return vector


class VectorMemoryStore:
    """Similarity index over facts backed by a Chroma collection

    The index is eventually consistent with the fact log; callers treat every
    failure here as degradation, never as a fault.
    """

    def __init__(self, client: Any, collection_name: str, embedding_dim: int = DEFAULT_EMBEDDING_DIM):
        self.client = client
        self.collection_name = collection_name
        self.embedding_dim = embedding_dim
        self.collection: Optional[Any] = None
        self._lock = asyncio.Lock()

    @classmethod
    async def connect(
        cls,
        url: Optional[str],
        collection_name: str,
        embedding_dim: int = DEFAULT_EMBEDDING_DIM
    ) -> Optional["VectorMemoryStore"]:
        """Open the collection, or return None when the service is unusable"""

        if not url:
            return None

        parsed = urlparse(url)
        ssl = parsed.scheme == "https"
        port = parsed.port or (443 if ssl else 80)

        try:
            client = await asyncio.to_thread(
                chromadb.HttpClient, host=parsed.hostname or "localhost", port=port, ssl=ssl
            )
            await asyncio.to_thread(client.heartbeat)
            store = cls(client, collection_name, embedding_dim)
            await store._open_collection()
        except Exception as e:
            logger.warning("Similarity index unavailable", url=url, error=str(e))
            return None

        logger.info("Similarity index connected", url=url, collection=collection_name)
        return store

    async def _open_collection(self) -> None:
        self.collection = await asyncio.to_thread(
            self.client.get_or_create_collection,
            name=self.collection_name,
            embedding_function=None,
        )

    async def upsert(self, fact_id: str, embedding: List[float], document: str, metadata: Dict[str, Any]) -> None:
        """Insert or replace one entry"""

        if self.collection is None:
            return
        async with self._lock:
            await asyncio.to_thread(
                self.collection.upsert,
                ids=[fact_id],
                embeddings=[embedding],
                documents=[document],
                metadatas=[metadata],
            )

    async def upsert_fact(self, fact: ObjectiveFact) -> None:
        await self.upsert(
            fact.id,
            embed_text(fact.content, self.embedding_dim),
            fact.content,
            {"type": fact.type.value, "timestamp": fact.timestamp},
        )

    async def query(self, embedding: List[float], limit: int) -> List[str]:
        """Ids of the nearest entries, closest first"""

        if self.collection is None or limit <= 0:
            return []
        result = await asyncio.to_thread(
            self.collection.query,
            query_embeddings=[embedding],
            n_results=limit,
        )
        ids = (result or {}).get("ids") or []
        if not ids:
            return []
        return [item for item in ids[0] if isinstance(item, str)]

    async def query_similar(self, text: str, limit: int) -> List[str]:
        return await self.query(embed_text(text, self.embedding_dim), limit)

    async def reset_collection(self) -> None:
        """Drop and recreate the collection"""

        async with self._lock:
            try:
                await asyncio.to_thread(self.client.delete_collection, name=self.collection_name)
            finally:
                await self._open_collection()
