"""Summaries built from the accumulated recall state.

The partial summary feeds each round's metacognitive check; the final
summary becomes the CognitiveState of a completed recall.
"""

from typing import Dict, Any, List, Sequence, Tuple

from agenter.domain.context.context_ranker import normalize_text, split_tokens
from agenter.domain.models.cognitive_state import CognitiveState, WorkingMemory
from agenter.domain.orchestration.subagent.schemas import EmotionResult


NO_RECENT_ACTION = "No recent action"
IDENTITY_GOAL = "Confirm the user's identity and answer questions about their name"
FILE_TASK_GOAL = "Help the user complete the file task"
GENERIC_PLAN = [
    "Understand the request (done)",
    "Retrieve relevant memory (done)",
    "Compose the answer (active)",
]

IDENTITY_PHRASES = ("who are you", "who am i", "名字", "叫什么")
IDENTITY_WORDS = {"name", "identity"}
FILE_PHRASES = ("文件", "创建")
FILE_WORDS = {"file", "files", "create"}
COMPLETION_PHRASES = ("完成", "已", "成功")
COMPLETION_WORDS = {"completed", "done", "success", "successfully", "succeeded", "created", "deleted"}

# (label, english words, other-script phrases)
PLAN_STEPS: Tuple[Tuple[str, frozenset, Tuple[str, ...]], ...] = (
    ("Create the file", frozenset({"create", "creates", "created", "creating"}), ("创建",)),
    ("Read the file", frozenset({"read", "reads", "reading"}), ("读取",)),
    ("Delete the file", frozenset({"delete", "deletes", "deleted", "deleting"}), ("删除",)),
)

EmotionRecord = Tuple[str, EmotionResult]


def _mentions(text: str, words: Sequence[str], phrases: Sequence[str]) -> bool:
    normalized = normalize_text(text)
    if any(phrase in normalized for phrase in phrases):
        return True
    tokens = set(split_tokens(normalized, min_length=1))
    return bool(tokens & set(words))


def is_completion(text: str) -> bool:
    return _mentions(text, COMPLETION_WORDS, COMPLETION_PHRASES)


def build_partial_state(
    trigger: str,
    working_memory: WorkingMemory,
    activated_count: int,
    emotions: Sequence[EmotionRecord],
    confidence: float
) -> Dict[str, Any]:
    """Compact view of an in-flight recall for the metacognitive check"""

    return {
        "trigger": trigger,
        "working_memory": working_memory.entries(),
        "activated_facts_count": activated_count,
        "emotions": [
            {"content": content[:30], "valence": emotion.valence, "priority": emotion.priority}
            for content, emotion in emotions
        ],
        "confidence": confidence,
    }


def infer_goal(trigger: str) -> str:
    if _mentions(trigger, IDENTITY_WORDS, IDENTITY_PHRASES):
        return IDENTITY_GOAL
    if _mentions(trigger, FILE_WORDS, FILE_PHRASES):
        return FILE_TASK_GOAL
    return f"Respond to user: {trigger[:30]}"


def infer_plan(entries: Sequence[str]) -> List[str]:
    """File steps mentioned in working memory, or the generic answer plan"""

    steps = []
    for label, words, phrases in PLAN_STEPS:
        mentions = [entry for entry in entries if _mentions(entry, words, phrases)]
        if not mentions:
            continue
        status = "done" if any(is_completion(entry) for entry in mentions) else "todo"
        steps.append(f"{label} ({status})")
    return steps or list(GENERIC_PLAN)


def find_last_action(entries: Sequence[str]) -> str:
    for entry in entries:
        if is_completion(entry):
            return entry
    return NO_RECENT_ACTION


def build_final_state(
    trigger: str,
    working_memory: WorkingMemory,
    emotions: Sequence[EmotionRecord]
) -> CognitiveState:
    """Cognitive state from working memory and emotional priorities"""

    entries = working_memory.entries()
    high_priority = [content for content, emotion in emotions if emotion.priority == "high"]
    key_facts = list(dict.fromkeys(high_priority + entries[:5]))[:10]

    return CognitiveState(
        current_goal=infer_goal(trigger),
        plan_status=infer_plan(entries),
        key_facts=key_facts,
        last_action_result=find_last_action(entries),
    )
