"""Responder reply grammar.

A structured reply looks like::

    SUMMARY: <one sentence>
    TOOLS: <comma-separated names | NONE>
    ANSWER:
    <markdown answer>

Headers may come in any order before ``ANSWER:``. Anything else before the
sentinel, or a reply with no sentinel at all, makes the whole payload the
answer.
"""

from typing import List, Optional, Sequence, Union
import json

from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from pydantic import BaseModel, Field

from agenter.domain.models.cognitive_state import CognitiveState

SUMMARY_HEADER = "SUMMARY:"
TOOLS_HEADER = "TOOLS:"
ANSWER_SENTINEL = "ANSWER:"
HEADERS = (SUMMARY_HEADER, TOOLS_HEADER, ANSWER_SENTINEL)
SUMMARY_UNAVAILABLE = "(summary unavailable)"


class ResponderMeta(BaseModel):
    summary: str = SUMMARY_UNAVAILABLE
    tools: List[str] = Field(default_factory=list)
    structured: bool = False


class ParsedResponse(BaseModel):
    reply: str
    summary: str = SUMMARY_UNAVAILABLE
    tools: List[str] = Field(default_factory=list)


def parse_tools(value: str) -> List[str]:
    value = value.strip()
    if not value or value.upper() == "NONE":
        return []
    return [name.strip() for name in value.split(",") if name.strip()]


def _could_be_header(partial: str) -> bool:
    candidate = partial.strip().upper()
    return any(header.startswith(candidate) or candidate.startswith(header) for header in HEADERS)


ParserEvent = Union[ResponderMeta, str]


class ResponderStreamParser:
    """Applies the reply grammar to a stream of chunks

    ``feed`` and ``finish`` return events in order: exactly one
    ``ResponderMeta`` followed by answer text deltas.
    """

    def __init__(self):
        self.raw = ""
        self.meta: Optional[ResponderMeta] = None
        self._pending = ""
        self._summary: Optional[str] = None
        self._tools: List[str] = []
        self._answer_parts: List[str] = []

    @property
    def answer(self) -> str:
        return "".join(self._answer_parts).strip()

    def feed(self, chunk: str) -> List[ParserEvent]:
        self.raw += chunk
        if self.meta is not None:
            return self._delta(chunk)

        self._pending += chunk
        events: List[ParserEvent] = []
        while self.meta is None and "\n" in self._pending:
            line, self._pending = self._pending.split("\n", 1)
            events.extend(self._header_line(line, rest=self._pending, terminated=True))

        if self.meta is None and self._pending and not _could_be_header(self._pending):
            events.extend(self._unstructured())
        return events

    def finish(self) -> List[ParserEvent]:
        if self.meta is not None:
            return []
        if self._pending.strip().upper().startswith(ANSWER_SENTINEL):
            line, self._pending = self._pending, ""
            return self._header_line(line, rest="", terminated=False)
        # no sentinel at all
        return self._unstructured()

    def result(self) -> ParsedResponse:
        meta = self.meta or ResponderMeta()
        return ParsedResponse(reply=self.answer, summary=meta.summary, tools=meta.tools)

    def _header_line(self, line: str, rest: str, terminated: bool) -> List[ParserEvent]:
        stripped = line.strip()
        upper = stripped.upper()
        if not stripped:
            return []
        if upper.startswith(SUMMARY_HEADER):
            self._summary = stripped[len(SUMMARY_HEADER):].strip() or self._summary
            return []
        if upper.startswith(TOOLS_HEADER):
            self._tools = parse_tools(stripped[len(TOOLS_HEADER):])
            return []
        if upper.startswith(ANSWER_SENTINEL):
            self.meta = ResponderMeta(
                summary=self._summary or SUMMARY_UNAVAILABLE,
                tools=self._tools,
                structured=True,
            )
            self._pending = ""
            events: List[ParserEvent] = [self.meta]
            inline = stripped[len(ANSWER_SENTINEL):].strip()
            if inline:
                events.extend(self._delta(inline + ("\n" if terminated else "")))
            events.extend(self._delta(rest))
            return events
        return self._unstructured()

    def _unstructured(self) -> List[ParserEvent]:
        self.meta = ResponderMeta()
        self._pending = ""
        return [self.meta] + self._delta(self.raw)

    def _delta(self, text: str) -> List[ParserEvent]:
        if not text:
            return []
        self._answer_parts.append(text)
        return [text]


def parse_responder_output(text: str) -> ParsedResponse:
    """Apply the reply grammar to a complete reply"""

    parser = ResponderStreamParser()
    parser.feed(text)
    parser.finish()
    return parser.result()


RESPONDER_INSTRUCTIONS = [
    "You are Agenter, a helpful assistant.",
    "TASK: RESPOND_USER",
    "Use only COGNITIVE_STATE_JSON to answer the user.",
    "Return in the exact format:",
    "SUMMARY: <one sentence>",
    "TOOLS: <comma-separated or NONE>",
    "ANSWER:",
    "<answer in markdown>",
    "Do NOT reveal chain-of-thought.",
]


def build_responder_messages(cognitive_state: CognitiveState, user_message: str) -> Sequence[BaseMessage]:
    state_json = json.dumps(cognitive_state.model_dump(), ensure_ascii=False)
    system = "\n".join(RESPONDER_INSTRUCTIONS + [f"COGNITIVE_STATE_JSON={state_json}"])
    return [SystemMessage(content=system), HumanMessage(content=user_message)]
