from typing import Dict, List, Optional
from pydantic import BaseModel, Field
import structlog

from agenter.domain.models.facts import ObjectiveFact
from agenter.infrastructure.observability.logging import metrics
from .context_ranker import ContextRanker
from .memory.fact_store import FactStore
from .memory.vector_memory_store import VectorMemoryStore

logger = structlog.get_logger(__name__)


class SearchResult(BaseModel):
    """Merged retrieval result with the calls that produced it"""
    facts: List[ObjectiveFact] = Field(default_factory=list)
    trace: List[str] = Field(default_factory=list)


class HybridRetriever:
    """Combines similarity search with keyword ranking over the fact log"""

    def __init__(
        self,
        fact_store: FactStore,
        vector_store: Optional[VectorMemoryStore] = None,
        ranker: Optional[ContextRanker] = None
    ):
        self.fact_store = fact_store
        self.vector_store = vector_store
        self.ranker = ranker or ContextRanker()

    async def search(self, query: str, limit: int) -> SearchResult:
        """Similarity results first, then keyword results, deduplicated by id"""

        trace: List[str] = []
        all_facts = await self.fact_store.read_all()
        facts_by_id: Dict[str, ObjectiveFact] = {fact.id: fact for fact in all_facts}

        similar_facts = await self._search_similar(query, limit, facts_by_id, trace)

        keyword_facts: List[ObjectiveFact] = []
        remaining = max(0, limit - len(similar_facts))
        if remaining > 0:
            keyword_facts = self.ranker.rank_facts(query, all_facts, remaining)
            trace.append(
                f'ContextRanker.rank_facts(query="{query}", limit={remaining}) -> {len(keyword_facts)} facts'
            )

        merged: Dict[str, ObjectiveFact] = {}
        for fact in similar_facts + keyword_facts:
            merged.setdefault(fact.id, fact)

        logger.debug(
            "Hybrid search finished",
            similar=len(similar_facts),
            keyword=len(keyword_facts),
            merged=len(merged)
        )

        return SearchResult(facts=list(merged.values()), trace=trace)

    async def _search_similar(
        self,
        query: str,
        limit: int,
        facts_by_id: Dict[str, ObjectiveFact],
        trace: List[str]
    ) -> List[ObjectiveFact]:
        if self.vector_store is None or limit <= 0:
            return []

        try:
            ids = await self.vector_store.query_similar(query, limit)
        except Exception as e:
            logger.warning("Similarity search failed, using keywords only", error=str(e))
            metrics.increment_counter("retrieval.degraded", tags={"operation": "query"})
            return []

        # ids the log no longer holds are stale index entries
        facts = [facts_by_id[fact_id] for fact_id in ids if fact_id in facts_by_id]
        trace.append(f'VectorMemoryStore.query(text="{query}", limit={limit}) -> {len(facts)} facts')
        return facts
