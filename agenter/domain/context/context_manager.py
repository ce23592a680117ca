from typing import Dict, List, Optional, Sequence
import json

import structlog
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from pydantic import ValidationError

from agenter.domain.models.cognitive_state import CognitiveState, RecallResult, RecallTrace
from agenter.domain.models.facts import ObjectiveFact
from agenter.domain.orchestration.subagent.base_subagent import extract_json_object
from agenter.infrastructure.llm.completion import TextCompleter, to_chat_messages
from agenter.infrastructure.observability.logging import metrics, recall_logger
from .context_retriever import HybridRetriever
from .memory.fact_store import FactStore
from .state.state_deriver import derive_cognitive_state

logger = structlog.get_logger(__name__)

REMEMBERER_SYSTEM_PROMPT = "\n".join([
    "You are a memory organizer.",
    "TASK: BUILD_COGNITIVE_STATE",
    "Given RAW_FACTS_JSON, summarize the current goal, plan status, key facts, and last action result.",
    "Return JSON with keys: current_goal, plan_status, key_facts, last_action_result.",
])


def merge_facts(recent: Sequence[ObjectiveFact], related: Sequence[ObjectiveFact]) -> List[ObjectiveFact]:
    """Union by id in timestamp order"""

    merged: Dict[str, ObjectiveFact] = {}
    for fact in list(related) + list(recent):
        merged[fact.id] = fact
    return sorted(merged.values(), key=lambda fact: fact.timestamp)


def build_rememberer_messages(trigger: str, facts: Sequence[ObjectiveFact]) -> List[BaseMessage]:
    raw_facts = json.dumps([fact.to_record() for fact in facts], ensure_ascii=False)
    return [
        SystemMessage(content=REMEMBERER_SYSTEM_PROMPT),
        HumanMessage(content=f"TRIGGER={trigger}\nRAW_FACTS_JSON={raw_facts}"),
    ]


def parse_cognitive_state(raw: str) -> Optional[CognitiveState]:
    """Cognitive state from the first JSON object of a reply, if well-formed"""

    block = extract_json_object(raw)
    if block is None:
        return None
    try:
        return CognitiveState.model_validate(json.loads(block))
    except (json.JSONDecodeError, ValidationError):
        return None


class ContextManager:
    """Rebuilds the cognitive state from the fact log with a single completion"""

    def __init__(
        self,
        fact_store: FactStore,
        retriever: HybridRetriever,
        completer: TextCompleter,
        model: Optional[str] = None,
        recent_limit: int = 100,
        related_limit: int = 50
    ):
        self.fact_store = fact_store
        self.retriever = retriever
        self.completer = completer
        self.model = model
        self.recent_limit = recent_limit
        self.related_limit = related_limit

    async def recall(self, trigger: str) -> CognitiveState:
        result = await self.recall_with_trace(trigger)
        return result.cognitive_state

    async def recall_with_trace(self, trigger: str) -> RecallResult:
        """Cognitive state plus the exact prompt and raw completion"""

        recall_logger.log_recall_event("start", trigger, {"mode": "single"})

        recent = await self.fact_store.recent(self.recent_limit)
        related = await self.retriever.search(trigger, self.related_limit)
        merged = merge_facts(recent, related.facts)

        tool_calls = [f"FactStore.recent(limit={self.recent_limit}) -> {len(recent)} facts"]
        tool_calls.extend(related.trace)

        messages = build_rememberer_messages(trigger, merged)
        raw_response = await self.completer.complete(messages, model=self.model)

        cognitive_state = parse_cognitive_state(raw_response)
        if cognitive_state is None:
            logger.warning("Unusable cognitive state reply, deriving from facts", facts=len(merged))
            metrics.increment_counter("recall.derived")
            cognitive_state = derive_cognitive_state(merged)

        trace = RecallTrace(
            trigger=trigger,
            recent_count=len(recent),
            related_count=len(related.facts),
            merged_count=len(merged),
            rounds=1,
            tool_calls=tool_calls,
            messages=to_chat_messages(messages),
            raw_response=raw_response,
        )

        recall_logger.log_recall_event("complete", trigger, {"mode": "single", "merged": len(merged)})
        return RecallResult(cognitive_state=cognitive_state, trace=trace)

    async def derive(self, limit: Optional[int] = None) -> CognitiveState:
        """Fallback state from the most recent facts, no model call"""

        facts = await self.fact_store.recent(limit or self.recent_limit)
        return derive_cognitive_state(facts)
