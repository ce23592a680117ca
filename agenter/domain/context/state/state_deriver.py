"""Deterministic cognitive state built straight from the fact log.

Used whenever a model-produced state is unusable: a recall stream that ends
in an interrupt, or a non-streaming recall whose reply does not hold the four
required fields.
"""

from typing import List, Sequence
from dataclasses import dataclass

from agenter.domain.context.context_ranker import normalize_text
from agenter.domain.models.cognitive_state import CognitiveState
from agenter.domain.models.facts import FactType, ObjectiveFact


KEY_FACT_TYPES = (FactType.USER_MSG, FactType.TOOL_RESULT)
NO_ACTION_MARKER = "No action yet"
ALL_DONE_GOAL = "All tasks completed"


@dataclass(frozen=True)
class Milestone:
    label: str
    markers: Sequence[str]


MILESTONES = (
    Milestone("Create the file", ("created file", "created hello.txt")),
    Milestone("Read the file", ("read file", "read hello.txt")),
    Milestone("Delete the file", ("deleted file", "deleted hello.txt")),
)


def detect_progress(facts: Sequence[ObjectiveFact]) -> List[bool]:
    """One flag per milestone, in create, read, delete order"""

    texts = [normalize_text(fact.content) for fact in facts]
    return [
        any(marker in text for text in texts for marker in milestone.markers)
        for milestone in MILESTONES
    ]


def build_current_goal(progress: Sequence[bool]) -> str:
    for milestone, done in zip(MILESTONES, progress):
        if not done:
            return milestone.label
    return ALL_DONE_GOAL


def build_plan_status(progress: Sequence[bool]) -> List[str]:
    return [
        f"{milestone.label} ({'done' if done else 'todo'})"
        for milestone, done in zip(MILESTONES, progress)
    ]


def build_key_facts(facts: Sequence[ObjectiveFact], limit: int = 5) -> List[str]:
    ordered = sorted(facts, key=lambda fact: fact.timestamp)
    relevant = [fact for fact in ordered if fact.type in KEY_FACT_TYPES]
    return [fact.render() for fact in relevant[-limit:]]


def find_last_action_result(facts: Sequence[ObjectiveFact]) -> str:
    for fact in reversed(facts):
        if fact.type == FactType.TOOL_RESULT:
            return fact.content
    return NO_ACTION_MARKER


def derive_cognitive_state(facts: Sequence[ObjectiveFact]) -> CognitiveState:
    """Cognitive state from raw facts without any model call"""

    progress = detect_progress(facts)
    return CognitiveState(
        current_goal=build_current_goal(progress),
        plan_status=build_plan_status(progress),
        key_facts=build_key_facts(facts),
        last_action_result=find_last_action_result(facts),
    )
