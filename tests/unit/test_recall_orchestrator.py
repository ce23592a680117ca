"""Tests for the streaming recall state machine."""

import asyncio
import json
from typing import List

import pytest

from agenter.domain.models.facts import FactType, create_fact
from agenter.domain.models.frames import BaseFrame, FrameType
from agenter.domain.orchestration.core.recall_orchestrator import RecallOrchestrator
from agenter.domain.orchestration.core.recall_summary import IDENTITY_GOAL
from agenter.domain.tool.tool_registry import CognitionToolRegistry

from conftest import (
    ACTIVATION_MODEL,
    EMOTION_MODEL,
    METACOGNITION_MODEL,
    WORKING_MEMORY_MODEL,
    ScriptedCompleter,
)

ACTIVATE_REPLY = json.dumps({
    "memories": [
        {"content": "User name is Alice", "relevance": 0.9},
        {"content": "Created file hello.txt", "relevance": 0.7},
    ],
    "activation_pattern": "identity",
})
HOLD_REPLY = json.dumps({
    "slots": ["User name is Alice", "Created file hello.txt", None, None],
    "operations": ["replace"],
    "reason": "new information",
})
FEEL_REPLY = '{"valence": "positive", "arousal": 0.4, "priority": "high", "reason": "identity"}'
STOP_REPLY = '{"should_continue": false, "gaps": [], "suggested_queries": [], "confidence": 0.9}'
CONTINUE_REPLY = '{"should_continue": true, "gaps": ["more"], "suggested_queries": ["find more"], "confidence": 0.3}'


def scripted(**overrides) -> ScriptedCompleter:
    replies = {
        ACTIVATION_MODEL: ACTIVATE_REPLY,
        WORKING_MEMORY_MODEL: HOLD_REPLY,
        EMOTION_MODEL: FEEL_REPLY,
        METACOGNITION_MODEL: STOP_REPLY,
    }
    replies.update(overrides)
    return ScriptedCompleter(replies)


def build_orchestrator(settings, fact_store, retriever, completer) -> RecallOrchestrator:
    tools = CognitionToolRegistry(settings, completer)
    return RecallOrchestrator(tools, fact_store, retriever, max_rounds=settings.max_recall_rounds)


async def collect(orchestrator: RecallOrchestrator, trigger: str, cancel=None) -> List[BaseFrame]:
    return [frame async for frame in orchestrator.recall_stream(trigger, cancel=cancel)]


def types(frames: List[BaseFrame]) -> List[FrameType]:
    return [frame.type for frame in frames]


class TestRecallOrchestrator:
    """Tests for RecallOrchestrator."""

    @pytest.mark.asyncio
    async def test_single_round_then_complete(self, settings, fact_store, retriever):
        orchestrator = build_orchestrator(settings, fact_store, retriever, scripted())

        frames = await collect(orchestrator, "What is my name?")
        frame_types = types(frames)

        assert frame_types[:3] == [FrameType.START, FrameType.ACTIVATE, FrameType.HOLD]
        assert sorted(frame_types[3:7]) == sorted([FrameType.FEEL, FrameType.FEEL, FrameType.STATE_UPDATE, FrameType.STATE_UPDATE])
        assert frame_types[7:] == [FrameType.METACOGNITION, FrameType.COMPLETE]

        complete = frames[-1]
        assert complete.is_terminal
        assert complete.trace.rounds == 1
        assert complete.trace.recent_count == 2
        assert complete.trace.related_count == 0
        assert complete.trace.merged_count == 2
        assert complete.trace.tool_calls == [
            'emotion-tagging("User name is Al...")',
            'emotion-tagging("Created file he...")',
        ]

    @pytest.mark.asyncio
    async def test_final_state_derivation(self, settings, fact_store, retriever):
        orchestrator = build_orchestrator(settings, fact_store, retriever, scripted())

        frames = await collect(orchestrator, "What is my name?")
        state = frames[-1].state

        assert state.current_goal == IDENTITY_GOAL
        assert state.key_facts == ["User name is Alice", "Created file hello.txt"]
        assert state.plan_status == ["Create the file (done)"]
        assert state.last_action_result == "Created file hello.txt"

    @pytest.mark.asyncio
    async def test_start_frame_carries_trigger(self, settings, fact_store, retriever):
        orchestrator = build_orchestrator(settings, fact_store, retriever, scripted())

        frames = await collect(orchestrator, "hello there")

        assert frames[0].type == FrameType.START
        assert frames[0].trigger == "hello there"
        assert frames[1].round == 1

    @pytest.mark.asyncio
    async def test_at_most_five_rounds(self, settings, fact_store, retriever):
        completer = scripted(**{METACOGNITION_MODEL: CONTINUE_REPLY})
        orchestrator = build_orchestrator(settings, fact_store, retriever, completer)

        frames = await collect(orchestrator, "keep going")

        activates = [frame for frame in frames if frame.type == FrameType.ACTIVATE]
        assert [frame.round for frame in activates] == [1, 2, 3, 4, 5]
        assert len(completer.calls_for(ACTIVATION_MODEL)) == 5
        assert frames[-1].type == FrameType.COMPLETE
        assert frames[-1].trace.rounds == 5
        assert frames[-1].trace.recent_count == 2
        assert frames[-1].trace.related_count == 8
        assert frames[-1].trace.merged_count == 10

    @pytest.mark.asyncio
    async def test_later_rounds_use_working_memory_as_cue(self, settings, fact_store, retriever):
        completer = scripted(**{METACOGNITION_MODEL: [CONTINUE_REPLY, STOP_REPLY]})
        orchestrator = build_orchestrator(settings, fact_store, retriever, completer)

        await collect(orchestrator, "What is my name?")

        cues = [call["messages"][1].content.splitlines()[0] for call in completer.calls_for(ACTIVATION_MODEL)]
        assert cues == [
            "Cue: What is my name?",
            "Cue: User name is Alice Created file hello.txt find more",
        ]

    @pytest.mark.asyncio
    async def test_stops_when_no_queries_suggested(self, settings, fact_store, retriever):
        reply = '{"should_continue": true, "gaps": ["?"], "suggested_queries": [], "confidence": 0.2}'
        completer = scripted(**{METACOGNITION_MODEL: reply})
        orchestrator = build_orchestrator(settings, fact_store, retriever, completer)

        frames = await collect(orchestrator, "anything")

        assert types(frames).count(FrameType.ACTIVATE) == 1
        assert frames[-1].trace.rounds == 1

    @pytest.mark.asyncio
    async def test_hold_frame_always_has_four_slots(self, settings, fact_store, retriever):
        long_hold = json.dumps({"slots": ["a", "b", "c", "d", "e", "f"], "operations": [], "reason": ""})
        short_hold = json.dumps({"slots": ["a"], "operations": [], "reason": ""})

        for reply, expected in [(long_hold, ["a", "b", "c", "d"]), (short_hold, ["a", None, None, None])]:
            completer = scripted(**{WORKING_MEMORY_MODEL: reply})
            orchestrator = build_orchestrator(settings, fact_store, retriever, completer)

            frames = await collect(orchestrator, "slots")
            hold = next(frame for frame in frames if frame.type == FrameType.HOLD)

            assert hold.data.slots == expected

    @pytest.mark.asyncio
    async def test_metacognition_sees_partial_state(self, settings, fact_store, retriever):
        completer = scripted()
        orchestrator = build_orchestrator(settings, fact_store, retriever, completer)

        await collect(orchestrator, "What is my name?")

        content = completer.calls_for(METACOGNITION_MODEL)[0]["messages"][1].content
        partial = json.loads(content.split("Current cognitive state: ", 1)[1].split("\n\nRespond with", 1)[0])
        assert partial["trigger"] == "What is my name?"
        assert partial["working_memory"] == ["User name is Alice", "Created file hello.txt"]
        assert partial["activated_facts_count"] == 2
        assert partial["emotions"][0] == {"content": "User name is Alice", "valence": "positive", "priority": "high"}
        assert partial["confidence"] == 0.0

    @pytest.mark.asyncio
    async def test_activation_sees_retrieved_facts(self, settings, fact_store, retriever):
        await fact_store.append(create_fact(FactType.USER_MSG, "my name is Alice"))
        completer = scripted()
        orchestrator = build_orchestrator(settings, fact_store, retriever, completer)

        await collect(orchestrator, "What is my name?")

        content = completer.calls_for(ACTIVATION_MODEL)[0]["messages"][1].content
        assert "my name is Alice" in content

    @pytest.mark.asyncio
    async def test_missing_json_interrupts(self, settings, fact_store, retriever):
        completer = scripted(**{ACTIVATION_MODEL: "Sorry, I have nothing to add."})
        orchestrator = build_orchestrator(settings, fact_store, retriever, completer)

        frames = await collect(orchestrator, "What is my name?")

        assert types(frames) == [FrameType.START, FrameType.INTERRUPT]
        assert "activation" in frames[-1].reason
        assert frames[-1].is_terminal

    @pytest.mark.asyncio
    async def test_failed_emotion_call_interrupts_before_metacognition(self, settings, fact_store, retriever):
        completer = scripted(**{EMOTION_MODEL: "no structure"})
        orchestrator = build_orchestrator(settings, fact_store, retriever, completer)

        frames = await collect(orchestrator, "What is my name?")

        assert frames[-1].type == FrameType.INTERRUPT
        assert FrameType.METACOGNITION not in types(frames)
        assert FrameType.COMPLETE not in types(frames)

    @pytest.mark.asyncio
    async def test_cancel_between_rounds(self, settings, fact_store, retriever):
        cancel = asyncio.Event()

        def continue_then_cancel(messages):
            cancel.set()
            return CONTINUE_REPLY

        completer = scripted(**{METACOGNITION_MODEL: continue_then_cancel})
        orchestrator = build_orchestrator(settings, fact_store, retriever, completer)

        frames = await collect(orchestrator, "What is my name?", cancel=cancel)

        assert types(frames).count(FrameType.ACTIVATE) == 1
        assert frames[-1].type == FrameType.INTERRUPT
        assert frames[-1].reason == "cancelled"

    @pytest.mark.asyncio
    async def test_consumer_can_stop_early(self, settings, fact_store, retriever):
        orchestrator = build_orchestrator(settings, fact_store, retriever, scripted())

        stream = orchestrator.recall_stream("What is my name?")
        first = await stream.__anext__()
        await stream.aclose()

        assert first.type == FrameType.START
