"""Tests for the hashed embedding and the Chroma-backed index."""

import math

import pytest

from agenter.domain.context.memory.vector_memory_store import (
    DEFAULT_EMBEDDING_DIM,
    VectorMemoryStore,
    embed_text,
    stable_hash,
)
from agenter.domain.models.facts import FactType, create_fact

from conftest import FakeChromaClient


class TestEmbedding:
    """Tests for the deterministic embedding."""

    def test_stable_hash_matches_fnv1a(self):
        assert stable_hash("") == 2166136261
        assert stable_hash("a") == 0xE40C292C
        assert stable_hash("hello") == stable_hash("hello")

    def test_embedding_shape_and_norm(self):
        vector = embed_text("Created file hello.txt")

        assert len(vector) == DEFAULT_EMBEDDING_DIM
        assert math.isclose(math.sqrt(sum(value * value for value in vector)), 1.0, rel_tol=1e-9)

    def test_empty_text_is_zero_vector(self):
        assert embed_text("", dim=8) == [0.0] * 8

    def test_case_and_punctuation_insensitive(self):
        assert embed_text("Hello, World!") == embed_text("hello world")

    def test_custom_dimension(self):
        assert len(embed_text("abc", dim=16)) == 16

    def test_repeated_tokens_add_weight(self):
        # "a" and "b" hash to buckets 4 and 5 of 8
        expected = [0.0] * 8
        expected[4] = 1 / math.sqrt(5)
        expected[5] = 2 / math.sqrt(5)

        assert embed_text("a b b", dim=8) == expected
        assert embed_text("a b b") != embed_text("a b")


class TestVectorMemoryStore:
    """Tests for VectorMemoryStore over a fake collection."""

    @pytest.mark.asyncio
    async def test_connect_without_url_disables_index(self):
        assert await VectorMemoryStore.connect(None, "agenter-memory") is None
        assert await VectorMemoryStore.connect("", "agenter-memory") is None

    @pytest.mark.asyncio
    async def test_upsert_and_query_nearest_first(self, chroma_client):
        store = VectorMemoryStore(chroma_client, "test-memory")
        await store._open_collection()

        name_fact = create_fact(FactType.USER_MSG, "my name is alice")
        file_fact = create_fact(FactType.TOOL_RESULT, "created file hello txt")
        await store.upsert_fact(name_fact)
        await store.upsert_fact(file_fact)

        ids = await store.query_similar("what is my name alice", limit=2)

        assert ids[0] == name_fact.id
        metadata = chroma_client.collections["test-memory"].entries[file_fact.id]["metadata"]
        assert metadata == {"type": "TOOL_RESULT", "timestamp": file_fact.timestamp}

    @pytest.mark.asyncio
    async def test_query_without_collection_is_empty(self, chroma_client):
        store = VectorMemoryStore(chroma_client, "test-memory")

        assert await store.query_similar("anything", limit=3) == []

    @pytest.mark.asyncio
    async def test_reset_collection(self, chroma_client):
        store = VectorMemoryStore(chroma_client, "test-memory")
        await store._open_collection()
        await store.upsert_fact(create_fact(FactType.USER_MSG, "to be removed"))

        await store.reset_collection()

        assert chroma_client.deleted == ["test-memory"]
        assert await store.query_similar("removed", limit=5) == []

    @pytest.mark.asyncio
    async def test_failed_reset_still_reopens_collection(self):
        client = FakeChromaClient(fail_delete=True)
        store = VectorMemoryStore(client, "test-memory")
        await store._open_collection()
        # dropped behind the store's back
        client.collections.clear()

        with pytest.raises(ValueError):
            await store.reset_collection()

        fact = create_fact(FactType.USER_MSG, "after reset")
        await store.upsert_fact(fact)

        assert store.collection is client.collections["test-memory"]
        assert await store.query_similar("after reset", limit=1) == [fact.id]
