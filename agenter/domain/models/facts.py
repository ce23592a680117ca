from typing import Dict, Any, Optional
from pydantic import BaseModel, Field, StrictInt, StrictStr
from enum import Enum
import threading
import time
import uuid


class FactType(str, Enum):
    """Kinds of events recorded in the fact log"""
    USER_MSG = "USER_MSG"
    AI_THOUGHT = "AI_THOUGHT"
    TOOL_RESULT = "TOOL_RESULT"
    SYSTEM_EVENT = "SYSTEM_EVENT"


class ObjectiveFact(BaseModel):
    """One immutable, timestamped event in the append-only log"""
    model_config = {"frozen": True}

    id: StrictStr = Field(description="Globally unique fact identifier")
    timestamp: StrictInt = Field(description="Milliseconds since the epoch")
    type: FactType
    content: StrictStr
    metadata: Optional[Dict[str, Any]] = None

    def to_record(self) -> Dict[str, Any]:
        """Plain dict for the log line; metadata is omitted when absent"""

        record: Dict[str, Any] = {
            "id": self.id,
            "timestamp": self.timestamp,
            "type": self.type.value,
            "content": self.content,
        }
        if self.metadata is not None:
            record["metadata"] = self.metadata
        return record

    def render(self) -> str:
        return f"[{self.type.value}] {self.content}"


_clock_lock = threading.Lock()
_last_timestamp = 0


def now_ms() -> int:
    """Millisecond clock that never goes backwards within the process"""

    global _last_timestamp
    with _clock_lock:
        current = time.time_ns() // 1_000_000
        if current < _last_timestamp:
            current = _last_timestamp
        _last_timestamp = current
        return current


def create_fact(
    fact_type: FactType,
    content: str,
    metadata: Optional[Dict[str, Any]] = None
) -> ObjectiveFact:
    """Build a new fact with a fresh id and the current timestamp"""

    return ObjectiveFact(
        id=str(uuid.uuid4()),
        timestamp=now_ms(),
        type=fact_type,
        content=content,
        metadata=metadata,
    )
