"""
TaskLoop Main Loop - Execute, enrich, create, prioritize, sleep, repeat.

Each iteration:
1. Pop the next task (an empty queue makes the iteration idle)
2. Execute it with context from the vector store
3. Embed the result and upsert it into the vector store
4. Create follow-up tasks and append them
5. Reprioritize the queue
6. Sleep for the configured interval

The loop has no terminal state. ``run()`` continues until the process is
stopped unless ``max_iterations`` is given.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from taskloop.core.agents import ContextAgent, ExecutionAgent, PrioritizationAgent, TaskCreationAgent
from taskloop.core.tasks import ResultRecord, Task, TaskQueue
from taskloop.errors import TaskLoopError
from taskloop.providers.base import Provider, ProviderFactory
from taskloop.rag.embedding import Embedder, create_embedder
from taskloop.rag.vectorstore import VectorStore, create_vector_store
from taskloop.validation.config import Config

logger = logging.getLogger(__name__)


class LoopState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass
class IterationResult:
    """What happened during one iteration."""

    iteration: int
    task: Optional[Task] = None
    result_text: str = ""
    new_tasks: List[Task] = field(default_factory=list)
    task_list: List[Task] = field(default_factory=list)  # queue before the pop
    queue: List[Task] = field(default_factory=list)  # queue after prioritization
    error: Optional[str] = None

    @property
    def idle(self) -> bool:
        return self.task is None


class TaskLoop:
    """
    Single-threaded driver for the four agents.

    ``sleep`` is injectable so tests can run the loop without waiting.

    Example:
        >>> loop = build_loop(Config.load())
        >>> loop.run()  # runs until interrupted
    """

    def __init__(
        self,
        objective: str,
        queue: TaskQueue,
        execution_agent: ExecutionAgent,
        creation_agent: TaskCreationAgent,
        prioritization_agent: PrioritizationAgent,
        embedder: Embedder,
        store: VectorStore,
        index_name: str,
        interval: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        keep_going: bool = False,
    ):
        self.objective = objective
        self.queue = queue
        self.execution_agent = execution_agent
        self.creation_agent = creation_agent
        self.prioritization_agent = prioritization_agent
        self.embedder = embedder
        self.store = store
        self.index_name = index_name
        self.interval = interval
        self.keep_going = keep_going
        self._sleep = sleep
        self.iteration = 0
        self.current_task: Optional[Task] = None

    @property
    def state(self) -> LoopState:
        return LoopState.RUNNING if self.queue else LoopState.IDLE

    def enrich(self, record: ResultRecord) -> None:
        """Embed a result and store it with its task name."""
        vector = self.embedder.embed_query(record.result_text)
        self.store.upsert(self.index_name, record.entry_id, vector.tolist(), record.metadata)
        logger.debug("Stored %s", record.entry_id)

    def step(self) -> IterationResult:
        """
        Run one iteration.

        Agent failures propagate. The popped task is not re-queued (it is
        kept in ``current_task``), and the rest of the queue is restored to
        what it was before the step, dropping any tasks created by it.
        """
        self.iteration += 1
        self.current_task = None
        result = IterationResult(iteration=self.iteration, task_list=list(self.queue))

        task = self.queue.pop_front()
        if task is None:
            logger.debug("Task queue is empty; idling")
            return result
        self.current_task = result.task = task

        remaining = list(self.queue)
        try:
            self._advance(task, result)
        except Exception:
            self.queue.replace_all(remaining)
            raise
        return result

    def _advance(self, task: Task, result: IterationResult) -> None:
        result.result_text = self.execution_agent.run(self.objective, task)
        self.enrich(ResultRecord(task=task, result_text=result.result_text))

        new_tasks = self.creation_agent.run(
            self.objective,
            result.result_text,
            task.name,
            self.queue.names(),
        )
        for new_task in new_tasks:
            logger.info("Adding task %d: %s", new_task.id, new_task.name)
            self.queue.push_back(new_task)
        result.new_tasks = new_tasks

        prioritized = self.prioritization_agent.run(
            self.objective,
            list(self.queue),
            start_number=task.id + 1,
        )
        self.queue.replace_all(prioritized)
        result.queue = list(self.queue)

    def run(
        self,
        max_iterations: Optional[int] = None,
        on_iteration: Optional[Callable[[IterationResult], None]] = None,
    ) -> int:
        """
        Loop forever, or for ``max_iterations`` iterations.

        Sleeps ``interval`` seconds after every iteration, idle or not.
        With ``keep_going`` a failing iteration is logged and the loop
        continues; otherwise the error propagates.

        Returns:
            Number of iterations performed.
        """
        count = 0
        while max_iterations is None or count < max_iterations:
            try:
                result = self.step()
            except TaskLoopError as e:
                if not self.keep_going:
                    raise
                logger.error("Iteration %d failed: %s", self.iteration, e)
                result = IterationResult(
                    iteration=self.iteration,
                    task=self.current_task,
                    queue=list(self.queue),
                    error=str(e),
                )
            if on_iteration:
                on_iteration(result)
            count += 1
            self._sleep(self.interval)
        return count


def build_loop(
    config: Config,
    provider: Optional[Provider] = None,
    embedder: Optional[Embedder] = None,
    store: Optional[VectorStore] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> TaskLoop:
    """
    Wire a TaskLoop from configuration.

    Collaborators not passed in are created from ``config``. The vector
    index is created if missing and the queue is seeded with the initial
    task (id 1).
    """
    settings = config.merged
    objective = config.require_objective()

    provider = provider or ProviderFactory.create(settings.agent.model, config)
    embedder = embedder or create_embedder(config)
    store = store or create_vector_store(config)

    index_name = settings.vector_store.index_name
    store.ensure_index(index_name, settings.vector_store.dimension)

    queue = TaskQueue()
    queue.push_back(queue.new_task(settings.loop.initial_task))

    context_agent = ContextAgent(embedder, store, index_name)
    return TaskLoop(
        objective=objective,
        queue=queue,
        execution_agent=ExecutionAgent(provider, context_agent, settings.loop.context_results),
        creation_agent=TaskCreationAgent(provider, queue),
        prioritization_agent=PrioritizationAgent(provider, lossless=settings.loop.lossless),
        embedder=embedder,
        store=store,
        index_name=index_name,
        interval=settings.loop.interval,
        sleep=sleep,
        keep_going=settings.loop.keep_going,
    )
