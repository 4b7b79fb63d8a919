"""In-memory queue of tasks waiting for dispatch."""

from __future__ import annotations

import heapq
import itertools
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from orchestrion.core.models.task import TaskPriority

if TYPE_CHECKING:
    from orchestrion.core.models.task import Task


@dataclass
class QueuedTask:
    """Runtime projection of a pending task."""

    task_id: str
    priority: TaskPriority
    scheduled_at: datetime
    retry_count: int = 0
    max_retries: int = 3
    timeout_ms: int = 30000
    created_at: datetime | None = None
    sequence: int = field(default=0, compare=False)

    @classmethod
    def from_task(cls, task: Task, scheduled_at: datetime | None = None) -> QueuedTask:
        return cls(
            task_id=task.id,
            priority=task.priority,
            scheduled_at=scheduled_at or task.scheduled_at,
            retry_count=task.retry_count,
            max_retries=task.max_retries,
            timeout_ms=task.timeout_ms,
            created_at=task.created_at,
        )

    def sort_key(self) -> tuple[int, datetime, int]:
        # Negate priority so higher priority comes first
        return (-self.priority.value, self.scheduled_at, self.sequence)

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "priority": self.priority.name,
            "scheduled_at": self.scheduled_at.isoformat(),
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "timeout_ms": self.timeout_ms,
        }


class TaskQueue:
    """
    Priority queue with scheduled-time eligibility.

    Only entries whose ``scheduled_at`` is not in the future are eligible.
    Among eligible entries the highest priority wins, then the earliest
    ``scheduled_at``, then insertion order. Entries are keyed by task id,
    so a task is queued at most once.
    """

    def __init__(self) -> None:
        self._entries: dict[str, QueuedTask] = {}
        self._heap: list[tuple[tuple[int, datetime, int], str]] = []
        self._sequence = itertools.count()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._entries

    def push(self, entry: QueuedTask) -> None:
        """Add an entry, replacing any existing entry for the same task."""
        if entry.task_id in self._entries:
            self.remove(entry.task_id)
        entry.sequence = next(self._sequence)
        self._entries[entry.task_id] = entry
        heapq.heappush(self._heap, (entry.sort_key(), entry.task_id))

    def get(self, task_id: str) -> QueuedTask | None:
        return self._entries.get(task_id)

    def remove(self, task_id: str) -> QueuedTask | None:
        entry = self._entries.pop(task_id, None)
        if entry is not None:
            self._rebuild()
        return entry

    def update(
        self,
        task_id: str,
        *,
        priority: TaskPriority | None = None,
        scheduled_at: datetime | None = None,
        max_retries: int | None = None,
        timeout_ms: int | None = None,
    ) -> bool:
        """Update a queued entry in place. Returns False if not queued."""
        entry = self._entries.get(task_id)
        if entry is None:
            return False
        if priority is not None:
            entry.priority = priority
        if scheduled_at is not None:
            entry.scheduled_at = scheduled_at
        if max_retries is not None:
            entry.max_retries = max_retries
        if timeout_ms is not None:
            entry.timeout_ms = timeout_ms
        if priority is not None or scheduled_at is not None:
            self._rebuild()
        return True

    def peek_next(self, now: datetime) -> QueuedTask | None:
        """Best eligible entry at ``now`` without removing it."""
        return self._take_eligible(now, remove=False)

    def pop_next(self, now: datetime) -> QueuedTask | None:
        return self._take_eligible(now, remove=True)

    def snapshot(self) -> list[QueuedTask]:
        """All entries in dispatch order, ignoring eligibility."""
        return [self._entries[task_id] for _, task_id in sorted(self._heap)]

    def clear(self) -> None:
        self._entries.clear()
        self._heap.clear()

    def _take_eligible(self, now: datetime, *, remove: bool) -> QueuedTask | None:
        # Entries scheduled in the future are popped aside and pushed back
        deferred: list[tuple[tuple[int, datetime, int], str]] = []
        found: tuple[tuple[int, datetime, int], str] | None = None
        while self._heap:
            item = heapq.heappop(self._heap)
            if self._entries[item[1]].scheduled_at <= now:
                found = item
                break
            deferred.append(item)

        for item in deferred:
            heapq.heappush(self._heap, item)
        if found is None:
            return None
        if remove:
            return self._entries.pop(found[1])
        heapq.heappush(self._heap, found)
        return self._entries[found[1]]

    def _rebuild(self) -> None:
        self._heap = [(entry.sort_key(), entry.task_id) for entry in self._entries.values()]
        heapq.heapify(self._heap)
