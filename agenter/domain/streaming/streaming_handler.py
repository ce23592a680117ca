from typing import AsyncIterator, Optional, Tuple
import json
import structlog

from agenter.application.websocket.connection_manager import ConnectionContext
from agenter.application.websocket.schema.events import EventType, ServerEvent, create_event
from agenter.domain.context.memory.fact_store import FactStore
from agenter.domain.models.cognitive_state import CognitiveState, RecallResult
from agenter.domain.models.facts import FactType, create_fact
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
from agenter.infrastructure.llm.completion import TextCompleter
from .response_parser import ParsedResponse, ResponderMeta, ResponderStreamParser, build_responder_messages

logger = structlog.get_logger(__name__)


def format_memory_text(result: RecallResult) -> str:
    """Human-readable summary of a recall for display"""

    state = result.cognitive_state
    return "\n".join([
        f"tool: {' | '.join(result.trace.tool_calls)}",
        f"current_goal: {state.current_goal}",
        f"plan_status: {json.dumps(state.plan_status, ensure_ascii=False)}",
        f"key_facts: {json.dumps(state.key_facts, ensure_ascii=False)}",
        f"last_action_result: {state.last_action_result}",
    ])


class StreamingHandler:
    """Streams recall frames and responder output to one connection"""

    def __init__(
        self,
        completer: TextCompleter,
        fact_store: FactStore,
        expose_metacognition: bool = False,
        responder_model: Optional[str] = None
    ):
        self.completer = completer
        self.fact_store = fact_store
        self.expose_metacognition = expose_metacognition
        self.responder_model = responder_model

    def frame_to_event(self, request_id: int, tab_id: int, frame: BaseFrame) -> Optional[ServerEvent]:
        """Client event for a recall frame, or None when it stays internal"""

        if isinstance(frame, StartFrame):
            return create_event(request_id, EventType.RECALL_START, tab_id=tab_id, trigger=frame.trigger)
        if isinstance(frame, ActivateFrame):
            return create_event(
                request_id,
                EventType.RECALL_ACTIVATE,
                tab_id=tab_id,
                round=frame.round,
                memories=frame.data.memories,
                pattern=frame.data.activation_pattern,
            )
        if isinstance(frame, HoldFrame):
            return create_event(
                request_id,
                EventType.RECALL_HOLD,
                tab_id=tab_id,
                slots=frame.data.slots,
                operations=frame.data.operations,
            )
        if isinstance(frame, FeelFrame):
            return create_event(
                request_id,
                EventType.RECALL_FEEL,
                tab_id=tab_id,
                valence=frame.data.valence,
                arousal=frame.data.arousal,
                priority=frame.data.priority,
            )
        if isinstance(frame, StateUpdateFrame):
            return create_event(
                request_id,
                EventType.RECALL_STATE_UPDATE,
                tab_id=tab_id,
                field=frame.field,
                value=frame.value,
                reason=frame.reason,
            )
        if isinstance(frame, MetacognitionFrame):
            if not self.expose_metacognition:
                return None
            return create_event(request_id, EventType.RECALL_METACOGNITION, tab_id=tab_id, **frame.data.model_dump())
        if isinstance(frame, CompleteFrame):
            return create_event(
                request_id,
                EventType.RECALL_RESULT,
                tab_id=tab_id,
                cognitive_state=frame.state,
                recall_trace=frame.trace,
            )
        if isinstance(frame, InterruptFrame):
            return create_event(request_id, EventType.RECALL_INTERRUPT, tab_id=tab_id, reason=frame.reason)

        logger.warning("Unknown recall frame", frame_type=str(frame.type))
        return None

    async def stream_recall(
        self,
        context: ConnectionContext,
        request_id: int,
        tab_id: int,
        frames: AsyncIterator[BaseFrame]
    ) -> Tuple[Optional[CognitiveState], Optional[str]]:
        """Forward frames; returns the final state or the interrupt reason"""

        async for frame in frames:
            event = self.frame_to_event(request_id, tab_id, frame)
            if event is not None:
                await context.send(event)
            if isinstance(frame, CompleteFrame):
                return frame.state, None
            if isinstance(frame, InterruptFrame):
                return None, frame.reason
        return None, "recall ended without a result"

    async def stream_response(
        self,
        context: ConnectionContext,
        request_id: int,
        tab_id: int,
        cognitive_state: CognitiveState,
        user_message: str
    ) -> ParsedResponse:
        """Stream the responder reply and record it as an AI thought"""

        parser = ResponderStreamParser()
        messages = build_responder_messages(cognitive_state, user_message)

        async for chunk in self.completer.stream(messages, model=self.responder_model):
            for item in parser.feed(chunk):
                await self._send_parser_event(context, request_id, tab_id, item)
        for item in parser.finish():
            await self._send_parser_event(context, request_id, tab_id, item)

        parsed = parser.result()
        await self.fact_store.append(
            create_fact(FactType.AI_THOUGHT, parsed.reply, {"kind": "chat_reply"})
        )

        await context.send(
            create_event(
                request_id,
                EventType.RESPOND_DONE,
                tab_id=tab_id,
                reply=parsed.reply,
                summary=parsed.summary,
                tools=parsed.tools,
            )
        )
        return parsed

    async def _send_parser_event(self, context: ConnectionContext, request_id: int, tab_id: int, item):
        if isinstance(item, ResponderMeta):
            await context.send(
                create_event(request_id, EventType.RESPOND_META, tab_id=tab_id, summary=item.summary, tools=item.tools)
            )
        else:
            await context.send(create_event(request_id, EventType.RESPOND_DELTA, tab_id=tab_id, delta=item))
