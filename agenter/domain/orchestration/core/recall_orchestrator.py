from typing import TypedDict, List, Dict, Any, Optional, AsyncIterator, Tuple
from contextlib import suppress
import asyncio
import uuid

from langgraph.graph import StateGraph, END
import structlog

from agenter.domain.context.context_retriever import HybridRetriever
from agenter.domain.context.memory.fact_store import FactStore
from agenter.domain.exceptions import RecallCancelled
from agenter.domain.models.cognitive_state import RecallTrace, WorkingMemory
from agenter.domain.models.facts import ObjectiveFact
from agenter.domain.models.frames import (
    ActivateFrame,
    BaseFrame,
    CompleteFrame,
    FeelFrame,
    HoldFrame,
    InterruptFrame,
    MetacognitionFrame,
    StartFrame,
    StateUpdateFrame,
)
from agenter.domain.orchestration.subagent.schemas import ActivatedMemory, EmotionResult
from agenter.domain.tool.tool_registry import CognitionToolRegistry
from agenter.infrastructure.observability.logging import metrics, recall_logger
from .recall_summary import build_final_state, build_partial_state

logger = structlog.get_logger(__name__)

MAX_RECALL_ROUNDS = 5


class RecallRun:
    """Event channel and cancellation flag of one in-flight recall"""

    def __init__(self, cancel: Optional[asyncio.Event] = None):
        self.id = str(uuid.uuid4())
        self.queue: "asyncio.Queue[BaseFrame]" = asyncio.Queue()
        self.cancel = cancel or asyncio.Event()

    async def emit(self, frame: BaseFrame):
        await self.queue.put(frame)

    def checkpoint(self):
        """Raise when the consumer asked to stop"""
        if self.cancel.is_set():
            raise RecallCancelled("Recall cancelled by consumer")


class RecallGraphState(TypedDict):
    """State for the recall graph"""
    run: RecallRun
    trigger: str
    round: int
    context_facts: List[ObjectiveFact]
    working_memory: WorkingMemory
    round_memories: List[ActivatedMemory]
    activated_facts: List[Dict[str, Any]]
    emotions: List[Tuple[str, EmotionResult]]
    confidence: float
    next_action: Optional[str]


class RecallOrchestrator:
    """Bounded multi-round recall driven as a LangGraph state machine

    Every stage emits frames onto the run's queue; ``recall_stream`` yields
    them in emission order and always ends with a complete or interrupt frame.
    """

    def __init__(
        self,
        tools: CognitionToolRegistry,
        fact_store: FactStore,
        retriever: HybridRetriever,
        max_rounds: int = MAX_RECALL_ROUNDS,
        recent_limit: int = 100,
        related_limit: int = 50
    ):
        self.tools = tools
        self.fact_store = fact_store
        self.retriever = retriever
        self.max_rounds = max_rounds
        self.recent_limit = recent_limit
        self.related_limit = related_limit
        self.workflow = self._create_workflow()

    def _create_workflow(self):
        """Create the recall graph"""

        workflow = StateGraph(RecallGraphState)

        workflow.add_node("start", self.start_node)
        workflow.add_node("activate", self.activate_node)
        workflow.add_node("hold", self.hold_node)
        workflow.add_node("feel", self.feel_node)
        workflow.add_node("metacognition", self.metacognition_node)
        workflow.add_node("complete", self.complete_node)

        workflow.set_entry_point("start")

        workflow.add_edge("start", "activate")
        workflow.add_edge("activate", "hold")
        workflow.add_edge("hold", "feel")
        workflow.add_edge("feel", "metacognition")

        workflow.add_conditional_edges(
            "metacognition",
            self.route_after_metacognition,
            {
                "continue": "activate",
                "complete": "complete"
            }
        )

        workflow.add_edge("complete", END)

        return workflow.compile()

    async def recall_stream(
        self,
        trigger: str,
        cancel: Optional[asyncio.Event] = None
    ) -> AsyncIterator[BaseFrame]:
        """Yield recall frames until a terminal frame"""

        run = RecallRun(cancel)
        task = asyncio.create_task(self._drive(trigger, run))
        try:
            while True:
                frame = await run.queue.get()
                yield frame
                if frame.is_terminal:
                    break
        finally:
            if not task.done():
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task

    async def _drive(self, trigger: str, run: RecallRun):
        structlog.contextvars.bind_contextvars(recall_id=run.id)

        initial: RecallGraphState = {
            "run": run,
            "trigger": trigger,
            "round": 0,
            "context_facts": [],
            "working_memory": WorkingMemory(),
            "round_memories": [],
            "activated_facts": [],
            "emotions": [],
            "confidence": 0.0,
            "next_action": None,
        }
        # each round visits four nodes
        config = {"recursion_limit": 4 * self.max_rounds + 8}

        loop = asyncio.get_running_loop()
        started = loop.time()
        try:
            await self.workflow.ainvoke(initial, config=config)
        except RecallCancelled:
            recall_logger.log_recall_event("interrupt", trigger, {"reason": "cancelled"})
            metrics.increment_counter("recall.cancelled")
            await run.emit(InterruptFrame(reason="cancelled"))
        except Exception as e:
            logger.error("Recall interrupted", error=str(e), error_type=type(e).__name__)
            recall_logger.log_recall_event("interrupt", trigger, {"reason": str(e)})
            metrics.increment_counter("recall.interrupted", tags={"error": type(e).__name__})
            await run.emit(InterruptFrame(reason=str(e) or type(e).__name__))
        else:
            metrics.record_latency("recall", (loop.time() - started) * 1000)

    async def start_node(self, state: RecallGraphState) -> Dict[str, Any]:
        """Announce the recall and gather activation context"""

        trigger = state["trigger"]
        await state["run"].emit(StartFrame(trigger=trigger))
        recall_logger.log_recall_event("start", trigger)

        recent = await self.fact_store.recent(self.recent_limit)
        related = await self.retriever.search(trigger, self.related_limit)
        for line in related.trace:
            logger.debug("Retrieval call", call=line)

        merged: Dict[str, ObjectiveFact] = {}
        for fact in related.facts + recent:
            merged.setdefault(fact.id, fact)
        context_facts = sorted(merged.values(), key=lambda fact: fact.timestamp)

        return {"round": 0, "context_facts": context_facts}

    async def activate_node(self, state: RecallGraphState) -> Dict[str, Any]:
        """Activate memories for this round's cue"""

        run = state["run"]
        run.checkpoint()

        round_number = state["round"] + 1
        working_memory = state["working_memory"]
        cue = state["trigger"] if round_number == 1 else working_memory.as_text()

        recall_logger.log_round_transition(round_number, "metacognition" if round_number > 1 else "start", "activate")

        result = await self.tools.activate(cue, "semantic", state["context_facts"])
        await run.emit(ActivateFrame(round=round_number, data=result))

        activated = list(state["activated_facts"])
        activated.extend(
            {"content": memory.content, "relevance": memory.relevance, "round": round_number}
            for memory in result.memories
        )

        return {
            "round": round_number,
            "round_memories": list(result.memories),
            "activated_facts": activated,
        }

    async def hold_node(self, state: RecallGraphState) -> Dict[str, Any]:
        """Fold this round's memories into working memory"""

        new_info = "; ".join(memory.content for memory in state["round_memories"])
        result = await self.tools.hold(new_info, state["working_memory"].slots)

        working_memory = WorkingMemory.from_slots(result.slots)
        await state["run"].emit(HoldFrame(data=result.model_copy(update={"slots": list(working_memory.slots)})))

        return {"working_memory": working_memory}

    async def feel_node(self, state: RecallGraphState) -> Dict[str, Any]:
        """Tag every activated memory concurrently and join"""

        run = state["run"]

        async def feel_one(memory: ActivatedMemory) -> Tuple[str, EmotionResult]:
            emotion = await self.tools.feel(memory.content)
            await run.emit(FeelFrame(data=emotion))
            await run.emit(StateUpdateFrame(
                field="emotional_marker",
                value=emotion.model_dump(),
                reason=f'Emotional analysis of "{memory.content[:20]}..."'
            ))
            return memory.content, emotion

        tasks = [asyncio.create_task(feel_one(memory)) for memory in state["round_memories"]]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

        return {"emotions": list(state["emotions"]) + list(results)}

    async def metacognition_node(self, state: RecallGraphState) -> Dict[str, Any]:
        """Decide whether another round is worth it"""

        partial_state = build_partial_state(
            state["trigger"],
            state["working_memory"],
            len(state["activated_facts"]),
            state["emotions"],
            state["confidence"],
        )
        result = await self.tools.metacognitive_check(partial_state, state["trigger"])
        await state["run"].emit(MetacognitionFrame(data=result))

        update: Dict[str, Any] = {"confidence": result.confidence}
        keep_going = (
            result.should_continue
            and bool(result.suggested_queries)
            and state["round"] < self.max_rounds
        )
        if keep_going:
            update["working_memory"] = state["working_memory"].push(result.suggested_queries)
            update["next_action"] = "continue"
        else:
            update["next_action"] = "complete"

        recall_logger.log_round_transition(
            state["round"],
            "metacognition",
            update["next_action"],
            {"confidence": result.confidence, "gaps": len(result.gaps)}
        )
        return update

    def route_after_metacognition(self, state: RecallGraphState) -> str:
        return state.get("next_action") or "complete"

    async def complete_node(self, state: RecallGraphState) -> Dict[str, Any]:
        """Build the final cognitive state and trace"""

        activated = state["activated_facts"]
        final_state = build_final_state(state["trigger"], state["working_memory"], state["emotions"])
        trace = RecallTrace(
            trigger=state["trigger"],
            recent_count=sum(1 for fact in activated if fact["round"] == 1),
            related_count=sum(1 for fact in activated if fact["round"] > 1),
            merged_count=len(activated),
            rounds=state["round"],
            tool_calls=[
                f'emotion-tagging("{content[:15]}...")' for content, _ in state["emotions"]
            ],
        )

        await state["run"].emit(CompleteFrame(state=final_state, trace=trace))
        recall_logger.log_recall_event(
            "complete",
            state["trigger"],
            {"rounds": trace.rounds, "activated": trace.merged_count}
        )
        return {"next_action": None}
