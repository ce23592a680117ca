from dataclasses import dataclass
from typing import Optional

import structlog

from agenter.domain.context.context_manager import ContextManager
from agenter.domain.context.context_retriever import HybridRetriever
from agenter.domain.context.memory.fact_store import FactStore
from agenter.domain.context.memory.vector_memory_store import VectorMemoryStore
from agenter.domain.orchestration.core.recall_orchestrator import RecallOrchestrator
from agenter.domain.streaming.streaming_handler import StreamingHandler
from agenter.domain.tool.tool_registry import CognitionToolRegistry
from agenter.infrastructure.config.settings import Settings
from agenter.infrastructure.llm.completion import TextCompleter, build_completer

logger = structlog.get_logger(__name__)


@dataclass
class AgenterServices:
    """The wired-up object graph shared by the server and the CLI"""
    settings: Settings
    completer: TextCompleter
    fact_store: FactStore
    retriever: HybridRetriever
    tools: CognitionToolRegistry
    orchestrator: RecallOrchestrator
    context_manager: ContextManager
    streaming: StreamingHandler
    vector_store: Optional[VectorMemoryStore] = None

    async def aclose(self):
        await self.completer.aclose()


def wire_services(
    settings: Settings,
    completer: TextCompleter,
    vector_store: Optional[VectorMemoryStore] = None
) -> AgenterServices:
    """Assemble services around an existing completer and index"""

    fact_store = FactStore(settings.fact_log_path, vector_store)
    retriever = HybridRetriever(fact_store, vector_store)
    tools = CognitionToolRegistry(settings, completer)
    orchestrator = RecallOrchestrator(
        tools,
        fact_store,
        retriever,
        max_rounds=settings.max_recall_rounds,
        recent_limit=settings.recent_fact_limit,
        related_limit=settings.related_fact_limit,
    )
    context_manager = ContextManager(
        fact_store,
        retriever,
        completer,
        model=settings.deepseek_model,
        recent_limit=settings.recent_fact_limit,
        related_limit=settings.related_fact_limit,
    )
    streaming = StreamingHandler(
        completer,
        fact_store,
        expose_metacognition=settings.expose_metacognition,
        responder_model=settings.deepseek_model,
    )
    return AgenterServices(
        settings=settings,
        completer=completer,
        fact_store=fact_store,
        retriever=retriever,
        tools=tools,
        orchestrator=orchestrator,
        context_manager=context_manager,
        streaming=streaming,
        vector_store=vector_store,
    )


async def build_services(settings: Settings) -> AgenterServices:
    """Build services from settings; fails fast on missing credentials"""

    settings.require_completion_credentials()
    completer = build_completer(settings)
    vector_store = await VectorMemoryStore.connect(
        settings.chroma_url, settings.chroma_collection, settings.embedding_dim
    )
    if vector_store is None:
        logger.info("Similarity search disabled, using keyword retrieval only")

    logger.info("Services ready", provider=settings.provider, storage=str(settings.fact_log_path))
    return wire_services(settings, completer, vector_store)
