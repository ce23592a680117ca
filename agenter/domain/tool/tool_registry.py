from typing import Dict, List, Any, Optional, Sequence
import json

from pydantic import BaseModel

from agenter.domain.orchestration.subagent.base_subagent import CognitionTool, CognitionToolKind
from agenter.domain.orchestration.subagent.schemas import (
    ACTIVATE_SCHEMA_HINT,
    COMPARE_SCHEMA_HINT,
    EMOTION_SCHEMA_HINT,
    METACOGNITION_SCHEMA_HINT,
    WORKING_MEMORY_SCHEMA_HINT,
    ActivateResult,
    CompareResult,
    EmotionResult,
    MetacognitionResult,
    WorkingMemoryResult,
)
from agenter.domain.models.facts import ObjectiveFact
from agenter.infrastructure.config.settings import Settings
from agenter.infrastructure.llm.completion import TextCompleter


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


class CognitionToolRegistry:
    """Registry of the cognition tools, one per kind"""

    def __init__(self, settings: Settings, completer: TextCompleter):
        self.tools: Dict[CognitionToolKind, CognitionTool] = {}
        self.completer = completer
        self._register_defaults(settings)

    def _register_defaults(self, settings: Settings):
        self.register_tool(CognitionTool(
            CognitionToolKind.ACTIVATION, settings.activation, ActivateResult,
            ACTIVATE_SCHEMA_HINT, self.completer
        ))
        self.register_tool(CognitionTool(
            CognitionToolKind.WORKING_MEMORY, settings.working_memory, WorkingMemoryResult,
            WORKING_MEMORY_SCHEMA_HINT, self.completer
        ))
        self.register_tool(CognitionTool(
            CognitionToolKind.EMOTION_TAGGING, settings.emotion, EmotionResult,
            EMOTION_SCHEMA_HINT, self.completer
        ))
        self.register_tool(CognitionTool(
            CognitionToolKind.COMPARISON, settings.comparison, CompareResult,
            COMPARE_SCHEMA_HINT, self.completer
        ))
        self.register_tool(CognitionTool(
            CognitionToolKind.METACOGNITIVE_CHECK, settings.metacognition, MetacognitionResult,
            METACOGNITION_SCHEMA_HINT, self.completer
        ))

    def register_tool(self, tool: CognitionTool):
        """Register a tool, replacing any tool of the same kind"""

        self.tools[tool.kind] = tool

    def get_tool(self, kind: CognitionToolKind) -> CognitionTool:
        return self.tools[kind]

    def get_available_tools(self) -> List[Dict[str, Any]]:
        """Get information about every registered tool"""

        return [tool.get_info() for tool in self.tools.values()]

    async def invoke(self, kind: CognitionToolKind, user_content: str) -> BaseModel:
        """Single dispatch point for every cognition tool"""

        return await self.get_tool(kind).invoke(user_content)

    async def activate(
        self,
        cue: str,
        modality: str = "semantic",
        context_facts: Optional[Sequence[ObjectiveFact]] = None
    ) -> ActivateResult:
        """Memory fragments related to a cue"""

        lines = [f"Cue: {cue}", f"Modality: {modality}"]
        if context_facts:
            traces = [
                {"content": fact.content, "type": fact.type.value, "timestamp": fact.timestamp}
                for fact in context_facts
            ]
            lines.append(f"Available memory traces: {_dumps(traces)}")
        return await self.invoke(CognitionToolKind.ACTIVATION, "\n".join(lines))

    async def hold(self, new_info: str, current_slots: Sequence[Optional[str]]) -> WorkingMemoryResult:
        """Updated working-memory slots after taking in new information"""

        content = (
            f"New information: {new_info}\n"
            f"Current working memory: {_dumps(list(current_slots))}"
        )
        return await self.invoke(CognitionToolKind.WORKING_MEMORY, content)

    async def feel(self, content: str) -> EmotionResult:
        """Emotional tag for one memory fragment"""

        return await self.invoke(CognitionToolKind.EMOTION_TAGGING, f"Content: {content}")

    async def compare(self, item_a: str, item_b: str, aspect: str) -> CompareResult:
        content = f"Item A: {item_a}\nItem B: {item_b}\nAspect: {aspect}"
        return await self.invoke(CognitionToolKind.COMPARISON, content)

    async def metacognitive_check(self, partial_state: Dict[str, Any], trigger: str) -> MetacognitionResult:
        """Whether the partial recall is enough to answer the trigger"""

        content = (
            f"User trigger: {trigger}\n"
            f"Current cognitive state: {_dumps(partial_state)}"
        )
        return await self.invoke(CognitionToolKind.METACOGNITIVE_CHECK, content)
