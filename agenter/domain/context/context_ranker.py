from typing import List, Sequence
from dataclasses import dataclass
import re

from agenter.domain.models.facts import ObjectiveFact


_WHITESPACE = re.compile(r"\s+")
_TOKEN_SPLIT = re.compile(r"[\W_]+", re.UNICODE)


def normalize_text(text: str) -> str:
    """Lowercase and collapse whitespace"""
    return _WHITESPACE.sub(" ", text.lower()).strip()


def tokenize(text: str, min_length: int = 2) -> List[str]:
    """Lowercase alphanumeric tokens in order, repeats kept"""

    return [
        token for token in _TOKEN_SPLIT.split(normalize_text(text))
        if len(token) >= min_length
    ]


def split_tokens(text: str, min_length: int = 2) -> List[str]:
    """Distinct lowercase alphanumeric tokens in first-seen order"""
    return list(dict.fromkeys(tokenize(text, min_length)))


@dataclass(frozen=True)
class RankedFact:
    fact: ObjectiveFact
    score: int


class ContextRanker:
    """Ranks facts by keyword overlap with a query"""

    def score(self, keywords: Sequence[str], content: str) -> int:
        """Number of distinct keywords contained in the content"""

        text = normalize_text(content)
        return sum(1 for keyword in keywords if keyword in text)

    def rank_facts(self, query: str, facts: Sequence[ObjectiveFact], limit: int) -> List[ObjectiveFact]:
        """Top facts by descending score, ties kept in store order"""

        keywords = split_tokens(query)
        if not keywords or limit <= 0:
            return []

        ranked = [
            RankedFact(fact=fact, score=self.score(keywords, fact.content))
            for fact in facts
        ]
        ranked = [item for item in ranked if item.score > 0]
        # sorted() is stable, so equal scores keep append order
        ranked = sorted(ranked, key=lambda item: item.score, reverse=True)

        return [item.fact for item in ranked[:limit]]
