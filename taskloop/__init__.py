"""
TaskLoop - A minimal autonomous task-loop agent.

Given an objective and a first task, TaskLoop keeps going:

- executes the next task with a language model
- stores the result in a vector database
- derives new tasks from the result
- reprioritizes what is left

Architecture:
- One single-threaded loop, one blocking call at a time
- Completion, embedding and vector store backends are pluggable
- The vector index is the only persistent state
"""

__version__ = "0.1.0"
__license__ = "Apache-2.0"

from taskloop.core.loop import TaskLoop, build_loop
from taskloop.core.tasks import Task, TaskQueue

__all__ = [
    "Task",
    "TaskLoop",
    "TaskQueue",
    "build_loop",
    "__version__",
]
