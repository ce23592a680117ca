from typing import Callable, List, Optional
from pathlib import Path
import asyncio
import json
import os

import structlog
from pydantic import ValidationError

from agenter.domain.exceptions import StorageError
from agenter.domain.models.facts import FactType, ObjectiveFact
from agenter.infrastructure.observability.logging import metrics, recall_logger
from .vector_memory_store import VectorMemoryStore

logger = structlog.get_logger(__name__)


def parse_fact_line(line: str) -> Optional[ObjectiveFact]:
    """Parse one log line, or None when it is not a valid fact"""

    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None
    try:
        return ObjectiveFact.model_validate(data)
    except ValidationError:
        return None


class FactStore:
    """Durable append-only log of facts stored as JSON lines

    One writer per store instance; appends from the same process are
    serialized through an asyncio lock. The similarity index, when present,
    receives every appended fact on a best-effort basis.
    """

    def __init__(self, path: Path, vector_store: Optional[VectorMemoryStore] = None):
        self.path = Path(path)
        self.vector_store = vector_store
        self._lock = asyncio.Lock()

    async def append(self, fact: ObjectiveFact) -> ObjectiveFact:
        """Write a fact and return once it is on disk"""

        line = json.dumps(fact.to_record(), ensure_ascii=False) + "\n"

        async with self._lock:
            try:
                await asyncio.to_thread(self._write_line, line)
            except OSError as e:
                raise StorageError(f"Failed to append to {self.path}: {e}") from e

        recall_logger.log_fact_event("append", fact_id=fact.id, fact_type=fact.type.value)
        metrics.increment_counter("facts.appended", tags={"type": fact.type.value})

        await self._index(fact)
        return fact

    async def read_all(self) -> List[ObjectiveFact]:
        """All facts in append order; malformed lines are skipped"""

        try:
            content = await asyncio.to_thread(self._read_text)
        except OSError as e:
            raise StorageError(f"Failed to read {self.path}: {e}") from e

        facts = []
        # split on "\n" only: content may hold raw U+2028 which splitlines() breaks on
        for line in content.split("\n"):
            line = line.rstrip("\r")
            if not line.strip():
                continue
            fact = parse_fact_line(line)
            if fact is None:
                logger.debug("Skipping malformed fact line", path=str(self.path))
                continue
            facts.append(fact)
        return facts

    async def recent(self, n: int) -> List[ObjectiveFact]:
        """The last n facts"""

        if n <= 0:
            return []
        facts = await self.read_all()
        return facts[-n:]

    async def since(self, timestamp: int) -> List[ObjectiveFact]:
        """Facts with a timestamp at or after the given one"""

        facts = await self.read_all()
        return [fact for fact in facts if fact.timestamp >= timestamp]

    async def has_fact(self, predicate: Callable[[ObjectiveFact], bool]) -> bool:
        facts = await self.read_all()
        return any(predicate(fact) for fact in facts)

    async def has_user_message(self, content: str) -> bool:
        """Whether this exact user message was already recorded"""

        return await self.has_fact(
            lambda fact: fact.type == FactType.USER_MSG and fact.content == content
        )

    async def reset(self) -> None:
        """Truncate the log and empty the similarity index"""

        async with self._lock:
            try:
                await asyncio.to_thread(self._truncate)
            except OSError as e:
                raise StorageError(f"Failed to reset {self.path}: {e}") from e

        recall_logger.log_fact_event("reset", details={"path": str(self.path)})

        if self.vector_store is not None:
            try:
                await self.vector_store.reset_collection()
            except Exception as e:
                logger.warning("Similarity index reset failed", error=str(e))
                metrics.increment_counter("retrieval.degraded", tags={"operation": "reset"})

    async def _index(self, fact: ObjectiveFact) -> None:
        if self.vector_store is None:
            return
        try:
            await self.vector_store.upsert_fact(fact)
        except Exception as e:
            logger.warning("Similarity index upsert failed", fact_id=fact.id, error=str(e))
            metrics.increment_counter("retrieval.degraded", tags={"operation": "upsert"})

    def _ensure_parent(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _write_line(self, line: str) -> None:
        self._ensure_parent()
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(line)
            f.flush()
            os.fsync(f.fileno())

    def _read_text(self) -> str:
        if not self.path.exists():
            return ""
        return self.path.read_text(encoding="utf-8")

    def _truncate(self) -> None:
        self._ensure_parent()
        with open(self.path, "w", encoding="utf-8") as f:
            f.flush()
            os.fsync(f.fileno())
