from typing import Dict, Any, Literal
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from enum import Enum

from agenter.domain.models.cognitive_state import CognitiveState, RecallTrace
from agenter.domain.orchestration.subagent.schemas import (
    ActivateResult,
    EmotionResult,
    MetacognitionResult,
    WorkingMemoryResult,
)


class FrameType(str, Enum):
    """Recall progress frame types"""
    START = "start"
    ACTIVATE = "activate"
    HOLD = "hold"
    FEEL = "feel"
    STATE_UPDATE = "state_update"
    METACOGNITION = "metacognition"
    COMPLETE = "complete"
    INTERRUPT = "interrupt"


TERMINAL_FRAME_TYPES = (FrameType.COMPLETE, FrameType.INTERRUPT)


class BaseFrame(BaseModel):
    """Base model for all recall frames"""
    type: FrameType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_FRAME_TYPES


class StartFrame(BaseFrame):
    type: Literal[FrameType.START] = FrameType.START
    trigger: str


class ActivateFrame(BaseFrame):
    type: Literal[FrameType.ACTIVATE] = FrameType.ACTIVATE
    round: int
    data: ActivateResult


class HoldFrame(BaseFrame):
    """Working-memory update; data.slots is always the 4-slot array"""
    type: Literal[FrameType.HOLD] = FrameType.HOLD
    data: WorkingMemoryResult


class FeelFrame(BaseFrame):
    type: Literal[FrameType.FEEL] = FrameType.FEEL
    data: EmotionResult


class StateUpdateFrame(BaseFrame):
    type: Literal[FrameType.STATE_UPDATE] = FrameType.STATE_UPDATE
    field: str
    value: Dict[str, Any]
    reason: str


class MetacognitionFrame(BaseFrame):
    """Internal diagnostic, hidden from clients unless exposed"""
    type: Literal[FrameType.METACOGNITION] = FrameType.METACOGNITION
    data: MetacognitionResult


class CompleteFrame(BaseFrame):
    type: Literal[FrameType.COMPLETE] = FrameType.COMPLETE
    state: CognitiveState
    trace: RecallTrace


class InterruptFrame(BaseFrame):
    type: Literal[FrameType.INTERRUPT] = FrameType.INTERRUPT
    reason: str

