"""
TaskLoop Agents - The four prompt-driven steps of the task loop.

Each agent is one outbound call (plus, for context, one embedding and one
vector query). Agents hold their collaborators but no run state: the task
queue is passed in or owned by the loop.

- ContextAgent: nearest stored results for a query
- ExecutionAgent: performs one task
- TaskCreationAgent: proposes follow-up tasks from a result
- PrioritizationAgent: reorders the remaining queue
"""

import logging
import textwrap
from typing import Dict, List, Optional, Sequence

from taskloop.core.parsing import parse_task_list
from taskloop.core.tasks import Task, TaskQueue
from taskloop.providers.base import Provider
from taskloop.rag.embedding import Embedder
from taskloop.rag.vectorstore import VectorStore

logger = logging.getLogger(__name__)


def _normalize(name: str) -> str:
    return " ".join(name.strip().rstrip(".").split()).casefold()


class ContextAgent:
    """Looks up previously stored results similar to a query."""

    def __init__(self, embedder: Embedder, store: VectorStore, index_name: str, field: str = "task"):
        self.embedder = embedder
        self.store = store
        self.index_name = index_name
        self.field = field

    def run(self, query: str, n: int) -> List[str]:
        """
        Return the ``field`` metadata of the ``n`` nearest entries, most
        similar first. Entries without that field are skipped.
        """
        logger.debug("Getting context for %r", query)
        vector = self.embedder.embed_query(query)
        matches = self.store.query(self.index_name, vector, top_k=n)
        matches.sort(key=lambda m: m.score, reverse=True)
        return [str(m.metadata[self.field]) for m in matches if m.metadata.get(self.field)]


class ExecutionAgent:
    """Runs one task against the completion provider."""

    def __init__(self, provider: Provider, context_agent: ContextAgent, context_results: int = 5):
        self.provider = provider
        self.context_agent = context_agent
        self.context_results = context_results

    def _build_prompt(self, objective: str, context: Sequence[str], task: Task) -> str:
        completed = "\n".join(context) if context else "None yet."
        return textwrap.dedent(
            """\
            You are an AI who performs one task based on the following objective: {objective}.
            Take into account these previously completed tasks:
            {completed}
            Your task: {task}
            Response:"""
        ).format(objective=objective, completed=completed, task=task.name)

    def run(self, objective: str, task: Task) -> str:
        """Execute ``task`` and return the stripped response text."""
        logger.info("Executing task %d: %s", task.id, task.name)
        context = self.context_agent.run(task.name, self.context_results)
        response = self.provider.complete(self._build_prompt(objective, context, task))
        return response.content.strip()


class TaskCreationAgent:
    """Turns the result of a task into new tasks."""

    def __init__(self, provider: Provider, queue: TaskQueue):
        self.provider = provider
        self.queue = queue

    def _build_prompt(
        self,
        objective: str,
        result: str,
        task_name: str,
        existing_names: Sequence[str],
    ) -> str:
        incomplete = "\n".join(f"- {name}" for name in existing_names) or "(none)"
        return textwrap.dedent(
            """\
            You are a task creation AI that uses the result of an execution agent to create new tasks with the following objective: {objective}.
            The last completed task has the result:
            {result}
            This result was based on this task description: {task_name}.
            These are incomplete tasks:
            {incomplete}
            Based on the result, create new tasks to be completed by the AI system that do not overlap with incomplete tasks.
            Return the tasks as a numbered list, one task per line, like:
            1. First task
            2. Second task"""
        ).format(objective=objective, result=result, task_name=task_name, incomplete=incomplete)

    def run(
        self,
        objective: str,
        result: str,
        task_name: str,
        existing_names: Sequence[str],
    ) -> List[Task]:
        """
        Propose new tasks.

        Names repeating an incomplete task (or each other) are dropped.
        Every accepted name gets a fresh id from the queue's counter;
        the tasks are returned, not queued.
        """
        response = self.provider.complete(self._build_prompt(objective, result, task_name, existing_names))
        parsed = parse_task_list(response.content)
        if parsed.diagnostic:
            logger.warning("Task creation output: %s", parsed.diagnostic)

        seen = {_normalize(name) for name in existing_names}
        tasks = []
        for name in parsed.names:
            key = _normalize(name)
            if key in seen:
                logger.debug("Dropping duplicate task %r", name)
                continue
            seen.add(key)
            tasks.append(self.queue.new_task(name))
        return tasks


class PrioritizationAgent:
    """
    Asks the model to clean up and reorder the task list.

    Parsed names are mapped back to the queued tasks by name, first
    unused match wins, so ids survive the round trip. Names the model
    invented are dropped.

    With ``lossless`` (the default) tasks the model left out are appended
    in their previous order, and a response with no recognisable names
    keeps the old order. Without it, omitted tasks are lost.
    """

    def __init__(self, provider: Provider, lossless: bool = True):
        self.provider = provider
        self.lossless = lossless

    def _build_prompt(self, objective: str, names: Sequence[str], start_number: int) -> str:
        listing = "\n".join(f"- {name}" for name in names)
        return textwrap.dedent(
            """\
            You are a task prioritization AI tasked with cleaning the formatting of and reprioritizing the following tasks:
            {listing}
            Consider the ultimate objective of your team: {objective}.
            Do not remove any tasks. Return the result as a numbered list, like:
            #. First task
            #. Second task
            Start the task list with number {start_number}."""
        ).format(listing=listing, objective=objective, start_number=start_number)

    def reorder(self, tasks: Sequence[Task], names: Sequence[str]) -> List[Task]:
        """Map ``names`` back onto ``tasks``."""
        available: Dict[str, List[Task]] = {}
        for task in tasks:
            available.setdefault(_normalize(task.name), []).append(task)

        ordered: List[Task] = []
        for name in names:
            candidates = available.get(_normalize(name))
            if candidates:
                ordered.append(candidates.pop(0))
            else:
                logger.debug("Prioritized name %r matches no queued task", name)

        if not self.lossless:
            dropped = len(tasks) - len(ordered)
            if dropped:
                logger.warning("Prioritization dropped %d task(s)", dropped)
            return ordered

        if not ordered and tasks:
            logger.warning("Prioritization output matched no tasks; keeping previous order")
            return list(tasks)

        used = {id(task) for task in ordered}
        missing = [task for task in tasks if id(task) not in used]
        if missing:
            logger.info("Prioritization omitted %d task(s); appending them", len(missing))
        return ordered + missing

    def run(self, objective: str, tasks: Sequence[Task], start_number: Optional[int] = None) -> List[Task]:
        """Return ``tasks`` in the model's priority order."""
        if not tasks:
            return []

        start_number = start_number if start_number is not None else tasks[0].id
        response = self.provider.complete(
            self._build_prompt(objective, [t.name for t in tasks], start_number)
        )
        parsed = parse_task_list(response.content)
        if parsed.diagnostic:
            logger.warning("Prioritization output: %s", parsed.diagnostic)
        return self.reorder(tasks, parsed.names)
