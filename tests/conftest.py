"""Pytest fixtures for testing."""

import math
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import pytest

from agenter.domain.context.context_retriever import HybridRetriever
from agenter.domain.context.memory.fact_store import FactStore
from agenter.domain.models.facts import ObjectiveFact
from agenter.infrastructure.config.settings import (
    ActivationToolSettings,
    ComparisonToolSettings,
    EmotionToolSettings,
    MetacognitionToolSettings,
    Settings,
    WorkingMemoryToolSettings,
)
from agenter.infrastructure.llm.completion import TextCompleter

ACTIVATION_MODEL = "activation-model"
WORKING_MEMORY_MODEL = "working-memory-model"
EMOTION_MODEL = "emotion-model"
COMPARISON_MODEL = "comparison-model"
METACOGNITION_MODEL = "metacognition-model"
RESPONDER_MODEL = "responder-model"

Reply = Union[str, List[str], Callable[[Sequence[Any]], str]]


class ScriptedCompleter(TextCompleter):
    """Replies chosen by model name; lists are consumed in order, the last item repeats"""

    def __init__(self, replies: Optional[Dict[str, Reply]] = None, default: str = "", chunk_size: int = 7):
        self.replies: Dict[str, Reply] = dict(replies or {})
        self.default = default
        self.chunk_size = chunk_size
        self.calls: List[Dict[str, Any]] = []

    def calls_for(self, model: str) -> List[Dict[str, Any]]:
        return [call for call in self.calls if call["model"] == model]

    def _reply_for(self, model: Optional[str], messages: Sequence[Any]) -> str:
        reply = self.replies.get(model or "", self.default)
        if callable(reply):
            return reply(messages)
        if isinstance(reply, list):
            return reply.pop(0) if len(reply) > 1 else reply[0]
        return reply

    async def stream(self, messages, *, model=None, temperature=None, top_p=None):
        self.calls.append({
            "model": model,
            "messages": list(messages),
            "temperature": temperature,
            "top_p": top_p,
        })
        text = self._reply_for(model, messages)
        for start in range(0, len(text), self.chunk_size):
            yield text[start:start + self.chunk_size]


class StubVectorStore:
    """Similarity index double returning preset ids"""

    def __init__(self, ids: Optional[List[str]] = None, fail: bool = False):
        self.ids = list(ids or [])
        self.fail = fail
        self.upserted: List[ObjectiveFact] = []
        self.queries: List[Dict[str, Any]] = []
        self.reset_count = 0

    async def upsert_fact(self, fact: ObjectiveFact) -> None:
        if self.fail:
            raise ConnectionError("index unreachable")
        self.upserted.append(fact)

    async def query_similar(self, text: str, limit: int) -> List[str]:
        self.queries.append({"text": text, "limit": limit})
        if self.fail:
            raise ConnectionError("index unreachable")
        return self.ids[:limit]

    async def reset_collection(self) -> None:
        if self.fail:
            raise ConnectionError("index unreachable")
        self.reset_count += 1


class FakeCollection:
    """In-memory stand-in for a Chroma collection using cosine distance"""

    def __init__(self, name: str):
        self.name = name
        self.entries: Dict[str, Dict[str, Any]] = {}

    def upsert(self, ids, embeddings, documents, metadatas):
        for fact_id, embedding, document, metadata in zip(ids, embeddings, documents, metadatas):
            self.entries[fact_id] = {"embedding": embedding, "document": document, "metadata": metadata}

    def query(self, query_embeddings, n_results):
        query = query_embeddings[0]

        def distance(embedding):
            dot = sum(a * b for a, b in zip(query, embedding))
            norm = math.sqrt(sum(a * a for a in query)) * math.sqrt(sum(b * b for b in embedding))
            return 1.0 - (dot / norm if norm else 0.0)

        ranked = sorted(self.entries.items(), key=lambda item: distance(item[1]["embedding"]))
        return {"ids": [[fact_id for fact_id, _ in ranked[:n_results]]]}


class FakeChromaClient:
    def __init__(self, fail_delete: bool = False):
        self.collections: Dict[str, FakeCollection] = {}
        self.deleted: List[str] = []
        self.fail_delete = fail_delete

    def get_or_create_collection(self, name, embedding_function=None):
        return self.collections.setdefault(name, FakeCollection(name))

    def delete_collection(self, name):
        if self.fail_delete:
            raise ValueError(f"Collection {name} does not exist")
        self.deleted.append(name)
        self.collections.pop(name, None)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Create test settings with one model name per cognition tool."""
    return Settings(
        llm_provider="mock",
        storage_dir=tmp_path / "data",
        deepseek_model=RESPONDER_MODEL,
        log_level="DEBUG",
        activation=ActivationToolSettings(model=ACTIVATION_MODEL),
        working_memory=WorkingMemoryToolSettings(model=WORKING_MEMORY_MODEL),
        emotion=EmotionToolSettings(model=EMOTION_MODEL),
        comparison=ComparisonToolSettings(model=COMPARISON_MODEL),
        metacognition=MetacognitionToolSettings(model=METACOGNITION_MODEL),
    )


@pytest.fixture
def fact_log_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "mid_term.jsonl"


@pytest.fixture
def fact_store(fact_log_path: Path) -> FactStore:
    """Create a fact store without a similarity index."""
    return FactStore(fact_log_path)


@pytest.fixture
def retriever(fact_store: FactStore) -> HybridRetriever:
    return HybridRetriever(fact_store)


@pytest.fixture
def chroma_client() -> FakeChromaClient:
    return FakeChromaClient()
