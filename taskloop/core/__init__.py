"""TaskLoop core module: tasks, agents and the main loop."""

from taskloop.core.agents import ContextAgent, ExecutionAgent, PrioritizationAgent, TaskCreationAgent
from taskloop.core.loop import IterationResult, LoopState, TaskLoop, build_loop
from taskloop.core.parsing import ParseResult, parse_task_list
from taskloop.core.tasks import ResultRecord, Task, TaskQueue

__all__ = [
    "ContextAgent",
    "ExecutionAgent",
    "PrioritizationAgent",
    "TaskCreationAgent",
    "IterationResult",
    "LoopState",
    "TaskLoop",
    "build_loop",
    "ParseResult",
    "parse_task_list",
    "ResultRecord",
    "Task",
    "TaskQueue",
]
