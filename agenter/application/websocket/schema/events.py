from typing import Dict, Any, Optional
from pydantic import BaseModel
from enum import Enum

from agenter.domain.models.cognitive_state import CognitiveState


class ClientMessageType(str, Enum):
    """Message types a client may send"""
    PING = "ping"
    RECALL = "recall"
    RESPOND = "respond"
    RESET = "reset"
    CHAT = "chat"
    HISTORY_PREV = "history_prev"
    HISTORY_NEXT = "history_next"


class EventType(str, Enum):
    """Event types the server sends"""
    CONNECTED = "connected"
    PONG = "pong"
    ERROR = "error"
    RECALL_RESULT = "recall_result"
    RESPOND_META = "respond_meta"
    RESPOND_DELTA = "respond_delta"
    RESPOND_DONE = "respond_done"
    RESET_DONE = "reset_done"
    HISTORY_RESULT = "history_result"
    RECALL_START = "recall_start"
    RECALL_ACTIVATE = "recall_activate"
    RECALL_HOLD = "recall_hold"
    RECALL_FEEL = "recall_feel"
    RECALL_STATE_UPDATE = "recall_state_update"
    RECALL_METACOGNITION = "recall_metacognition"
    RECALL_INTERRUPT = "recall_interrupt"
    RECALL_FALLBACK = "recall_fallback"


class ClientMessage(BaseModel):
    """One request from a client"""
    model_config = {"extra": "ignore"}

    id: int = 0
    type: str
    tab_id: Optional[int] = None
    message: Optional[str] = None
    cognitive_state: Optional[CognitiveState] = None
    current_draft: Optional[str] = None


class ServerEvent(BaseModel):
    """Flat event sent to a client; payload fields sit beside id and type"""
    model_config = {"extra": "allow"}

    id: Optional[int] = None
    type: str

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    return value


def create_event(request_id: Optional[int], event_type: EventType, **data: Any) -> ServerEvent:
    """Build an event, dumping any nested models"""

    payload = {key: _jsonable(value) for key, value in data.items()}
    return ServerEvent(id=request_id, type=event_type.value, **payload)


def create_error(request_id: Optional[int], message: str, tab_id: Optional[int] = None) -> ServerEvent:
    return create_event(request_id, EventType.ERROR, tab_id=tab_id, message=message)
