"""Tests for keyword ranking and hybrid retrieval."""

import pytest

from agenter.domain.context.context_ranker import ContextRanker, normalize_text, split_tokens, tokenize
from agenter.domain.context.context_retriever import HybridRetriever
from agenter.domain.context.memory.fact_store import FactStore
from agenter.domain.models.facts import FactType, ObjectiveFact, create_fact
from agenter.infrastructure.observability.logging import metrics

from conftest import StubVectorStore


def _fact(fact_id: str, content: str, timestamp: int) -> ObjectiveFact:
    return ObjectiveFact(id=fact_id, timestamp=timestamp, type=FactType.USER_MSG, content=content)


class TestContextRanker:
    """Tests for ContextRanker."""

    def test_normalize_and_split(self):
        assert normalize_text("  Hello\n  WORLD ") == "hello world"
        assert split_tokens("Create hello.txt, then create it again") == [
            "create", "hello", "txt", "then", "it", "again"
        ]
        assert split_tokens("a b cc") == ["cc"]
        assert split_tokens("a b cc", min_length=1) == ["a", "b", "cc"]
        assert tokenize("b a b", min_length=1) == ["b", "a", "b"]

    def test_rank_by_score_then_store_order(self):
        facts = [
            _fact("1", "beta only", 1),
            _fact("2", "alpha and beta", 2),
            _fact("3", "nothing here", 3),
            _fact("4", "beta again", 4),
        ]

        ranked = ContextRanker().rank_facts("alpha beta", facts, limit=10)

        assert [fact.id for fact in ranked] == ["2", "1", "4"]

    def test_limit_and_empty_query(self):
        facts = [_fact(str(i), "beta", i) for i in range(5)]
        ranker = ContextRanker()

        assert [fact.id for fact in ranker.rank_facts("beta", facts, limit=2)] == ["0", "1"]
        assert ranker.rank_facts("?", facts, limit=2) == []
        assert ranker.rank_facts("beta", facts, limit=0) == []


class TestHybridRetriever:
    """Tests for HybridRetriever."""

    @pytest.mark.asyncio
    async def test_keyword_only_without_index(self, fact_store, retriever):
        await fact_store.append(create_fact(FactType.USER_MSG, "my name is Alice"))
        await fact_store.append(create_fact(FactType.USER_MSG, "the weather is nice"))

        result = await retriever.search("what is my name", limit=5)

        assert [fact.content for fact in result.facts][0] == "my name is Alice"
        assert result.trace == [
            f'ContextRanker.rank_facts(query="what is my name", limit=5) -> {len(result.facts)} facts'
        ]

    @pytest.mark.asyncio
    async def test_no_match_returns_empty(self, fact_store, retriever):
        await fact_store.append(create_fact(FactType.USER_MSG, "create a file"))
        await fact_store.append(create_fact(FactType.TOOL_RESULT, "Created file at /tmp/x.txt"))

        result = await retriever.search("zzz-no-match", 5)

        assert result.facts == []
        assert result.trace == ['ContextRanker.rank_facts(query="zzz-no-match", limit=5) -> 0 facts']

    @pytest.mark.asyncio
    async def test_similarity_results_come_first(self, fact_log_path):
        index = StubVectorStore()
        store = FactStore(fact_log_path, index)
        name_fact = await store.append(create_fact(FactType.USER_MSG, "my name is Alice"))
        other_fact = await store.append(create_fact(FactType.USER_MSG, "unrelated note"))
        index.ids = [other_fact.id]

        result = await HybridRetriever(store, index).search("name", limit=5)

        assert [fact.id for fact in result.facts] == [other_fact.id, name_fact.id]
        assert result.trace[0] == 'VectorMemoryStore.query(text="name", limit=5) -> 1 facts'
        assert result.trace[1] == 'ContextRanker.rank_facts(query="name", limit=4) -> 1 facts'

    @pytest.mark.asyncio
    async def test_results_are_deduplicated(self, fact_log_path):
        index = StubVectorStore()
        store = FactStore(fact_log_path, index)
        fact = await store.append(create_fact(FactType.USER_MSG, "my name is Alice"))
        index.ids = [fact.id]

        result = await HybridRetriever(store, index).search("name", limit=5)

        assert [item.id for item in result.facts] == [fact.id]

    @pytest.mark.asyncio
    async def test_full_similarity_skips_keyword_pass(self, fact_log_path):
        index = StubVectorStore()
        store = FactStore(fact_log_path, index)
        facts = [await store.append(create_fact(FactType.USER_MSG, f"note {i}")) for i in range(3)]
        index.ids = [fact.id for fact in facts]

        result = await HybridRetriever(store, index).search("note", limit=2)

        assert [fact.id for fact in result.facts] == [facts[0].id, facts[1].id]
        assert len(result.trace) == 1

    @pytest.mark.asyncio
    async def test_stale_ids_are_dropped(self, fact_log_path):
        index = StubVectorStore(ids=["gone"])
        store = FactStore(fact_log_path, index)
        fact = await store.append(create_fact(FactType.USER_MSG, "kept"))
        index.ids = ["gone", fact.id]

        result = await HybridRetriever(store, index).search("zzz", limit=5)

        assert [item.id for item in result.facts] == [fact.id]

    @pytest.mark.asyncio
    async def test_index_failure_degrades_to_keywords(self, fact_log_path):
        index = StubVectorStore(fail=True)
        store = FactStore(fact_log_path, index)
        await store.append(create_fact(FactType.USER_MSG, "my name is Alice"))
        before = metrics.metrics.get("retrieval.degraded", 0)

        result = await HybridRetriever(store, index).search("name", limit=5)

        assert [fact.content for fact in result.facts] == ["my name is Alice"]
        assert all(line.startswith("ContextRanker") for line in result.trace)
        assert metrics.metrics["retrieval.degraded"] > before
