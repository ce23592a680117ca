from typing import Dict, Any, Optional, Type, TypeVar, Generic
from datetime import datetime, timezone
from enum import Enum
import json
import time

import structlog
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, ValidationError

from agenter.domain.exceptions import StructuredOutputError
from agenter.infrastructure.config.settings import CognitionToolSettings
from agenter.infrastructure.llm.completion import TextCompleter
from agenter.infrastructure.observability.logging import metrics, recall_logger

logger = structlog.get_logger(__name__)

ResultT = TypeVar("ResultT", bound=BaseModel)


class CognitionToolKind(str, Enum):
    """The five cognition tools the recall loop can call"""
    ACTIVATION = "activation"
    WORKING_MEMORY = "working-memory"
    EMOTION_TAGGING = "emotion-tagging"
    COMPARISON = "comparison"
    METACOGNITIVE_CHECK = "metacognitive-check"


def extract_json_object(text: str) -> Optional[str]:
    """First balanced ``{...}`` block in the text, braces inside strings ignored"""

    start = text.find("{")
    if start < 0:
        return None

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start:index + 1]
    return None


class CognitionTool(Generic[ResultT]):
    """One model-backed cognition tool with a fixed output schema"""

    def __init__(
        self,
        kind: CognitionToolKind,
        settings: CognitionToolSettings,
        result_model: Type[ResultT],
        schema_hint: str,
        completer: TextCompleter
    ):
        self.kind = kind
        self.name = kind.value
        self.settings = settings
        self.result_model = result_model
        self.schema_hint = schema_hint
        self.completer = completer
        self.created_at = datetime.now(timezone.utc)
        self.last_active = self.created_at

    def build_messages(self, user_content: str):
        return [
            SystemMessage(content=self.settings.system_prompt),
            HumanMessage(
                content=(
                    f"{user_content}\n\n"
                    f"Respond with exactly one JSON object matching this schema: {self.schema_hint}"
                )
            ),
        ]

    async def invoke(self, user_content: str) -> ResultT:
        """Run one completion and validate its JSON reply"""

        self.update_activity()
        started = time.perf_counter()
        raw = ""
        try:
            raw = await self.completer.complete(
                self.build_messages(user_content),
                model=self.settings.model,
                temperature=self.settings.temperature,
                top_p=self.settings.top_p,
            )
            result = self.parse(raw)
        except Exception as e:
            duration_ms = (time.perf_counter() - started) * 1000
            recall_logger.log_tool_invocation(
                self.name, self.settings.model, duration_ms=duration_ms, success=False, error=str(e)
            )
            metrics.increment_counter("tool.failed", tags={"tool": self.name})
            raise

        duration_ms = (time.perf_counter() - started) * 1000
        recall_logger.log_tool_invocation(self.name, self.settings.model, duration_ms=duration_ms)
        metrics.record_latency(f"tool.{self.name}", duration_ms)
        return result

    def parse(self, raw: str) -> ResultT:
        """Validate the first JSON object of a reply against the result model"""

        block = extract_json_object(raw)
        if block is None:
            raise StructuredOutputError(f"{self.name}: reply holds no JSON object", raw_response=raw)

        try:
            data = json.loads(block)
        except json.JSONDecodeError as e:
            raise StructuredOutputError(f"{self.name}: invalid JSON ({e.msg})", raw_response=raw) from e

        if not isinstance(data, dict):
            raise StructuredOutputError(f"{self.name}: reply is not a JSON object", raw_response=raw)

        try:
            return self.result_model.model_validate(data)
        except ValidationError as e:
            logger.debug("Tool reply failed validation", tool=self.name, errors=e.error_count())
            raise StructuredOutputError(f"{self.name}: reply does not match schema", raw_response=raw) from e

    def update_activity(self):
        """Update last activity timestamp"""
        self.last_active = datetime.now(timezone.utc)

    def get_info(self) -> Dict[str, Any]:
        """Get tool information"""
        return {
            "name": self.name,
            "model": self.settings.model,
            "temperature": self.settings.temperature,
            "top_p": self.settings.top_p,
            "created_at": self.created_at.isoformat(),
            "last_active": self.last_active.isoformat()
        }
