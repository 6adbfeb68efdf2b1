"""
TaskLoop Tasks - Task records and the priority-ordered task queue.

The queue also owns the id counter, so ids stay unique and strictly
increasing for the whole run no matter which agent creates the task.
"""

from collections import deque
from dataclasses import dataclass
from typing import Deque, Iterable, Iterator, List, Optional


@dataclass(frozen=True)
class Task:
    """A unit of work. Never mutated once created."""

    id: int
    name: str


@dataclass
class ResultRecord:
    """Output of one execution, kept only until it has been stored."""

    task: Task
    result_text: str

    @property
    def entry_id(self) -> str:
        """Vector store id for this result."""
        return f"result_{self.task.id}"

    @property
    def metadata(self) -> dict:
        return {"task": self.task.name, "result": self.result_text}


class TaskQueue:
    """
    Ordered collection of tasks; index 0 runs next.

    Example:
        >>> queue = TaskQueue()
        >>> queue.push_back(queue.new_task("Write a plan"))
        >>> queue.pop_front()
        Task(id=1, name='Write a plan')
        >>> queue.pop_front() is None
        True
    """

    def __init__(self, tasks: Optional[Iterable[Task]] = None, last_id: int = 0):
        self._tasks: Deque[Task] = deque()
        self._last_id = last_id
        for task in tasks or ():
            self.push_back(task)

    def __len__(self) -> int:
        return len(self._tasks)

    def __iter__(self) -> Iterator[Task]:
        return iter(list(self._tasks))

    def __bool__(self) -> bool:
        return bool(self._tasks)

    @property
    def last_id(self) -> int:
        """Highest id handed out or seen so far."""
        return self._last_id

    def next_id(self) -> int:
        """Reserve and return a fresh id."""
        self._last_id += 1
        return self._last_id

    def new_task(self, name: str) -> Task:
        """Create a task with a fresh id. The task is not queued."""
        return Task(id=self.next_id(), name=name)

    def pop_front(self) -> Optional[Task]:
        """Remove and return the next task, or None when the queue is empty."""
        if not self._tasks:
            return None
        return self._tasks.popleft()

    def push_back(self, task: Task) -> None:
        """Append a task. Raises ValueError if its id is already queued."""
        if any(t.id == task.id for t in self._tasks):
            raise ValueError(f"Task id {task.id} is already queued")
        self._tasks.append(task)
        self._last_id = max(self._last_id, task.id)

    def replace_all(self, tasks: Iterable[Task]) -> None:
        """Replace the queue contents with ``tasks`` in the given order.

        Later entries repeating an id already seen are dropped.
        """
        seen = set()
        ordered: Deque[Task] = deque()
        for task in tasks:
            if task.id in seen:
                continue
            seen.add(task.id)
            ordered.append(task)
            self._last_id = max(self._last_id, task.id)
        self._tasks = ordered

    def names(self) -> List[str]:
        return [t.name for t in self._tasks]
