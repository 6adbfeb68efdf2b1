"""Shared fakes for the external collaborators."""

import hashlib
from typing import Callable, List, Union

import numpy as np
import pytest

from taskloop.core.agents import ContextAgent, ExecutionAgent, PrioritizationAgent, TaskCreationAgent
from taskloop.core.loop import TaskLoop
from taskloop.core.tasks import TaskQueue
from taskloop.errors import ProviderError
from taskloop.providers.base import ProviderResponse
from taskloop.rag.embedding import Embedder
from taskloop.rag.vectorstore import InMemoryStore

INDEX = "test-index"
DIM = 16


class FakeProvider:
    """Completion client that answers from a script.

    Each scripted item is a string, an exception instance to raise, or a
    callable taking the prompt.
    """

    provider_name = "fake"

    def __init__(self, responses: List[Union[str, Exception, Callable[[str], str]]] = None, default: str = ""):
        self.responses = list(responses or [])
        self.default = default
        self.prompts: List[str] = []

    def complete(self, prompt: str, **kwargs) -> ProviderResponse:
        self.prompts.append(prompt)
        item = self.responses.pop(0) if self.responses else self.default
        if isinstance(item, Exception):
            raise item
        if callable(item):
            item = item(prompt)
        return ProviderResponse(content=item, model="fake-model", provider=self.provider_name)


class HashEmbedder(Embedder):
    """Bag-of-words feature hashing; identical texts map to identical vectors."""

    model_name = "hash"

    def __init__(self, dim: int = DIM):
        self.dim = dim
        self.calls: List[str] = []

    def embed_documents(self, documents):
        rows = []
        for doc in documents:
            self.calls.append(doc)
            vec = np.zeros(self.dim, dtype=np.float32)
            for token in doc.lower().split():
                digest = hashlib.sha256(token.encode("utf-8")).digest()
                vec[int.from_bytes(digest[:8], "big") % self.dim] += 1.0
            rows.append(vec)
        return np.vstack(rows)


@pytest.fixture
def embedder():
    return HashEmbedder()


@pytest.fixture
def store():
    store = InMemoryStore()
    store.create_index(INDEX, DIM)
    return store


def make_loop(provider, embedder, store, initial_task="Develop a task list", lossless=True, keep_going=False):
    """Wire a TaskLoop around fakes with a recording no-op sleep."""
    queue = TaskQueue()
    queue.push_back(queue.new_task(initial_task))
    sleeps = []
    loop = TaskLoop(
        objective="Plan a picnic",
        queue=queue,
        execution_agent=ExecutionAgent(provider, ContextAgent(embedder, store, INDEX), context_results=5),
        creation_agent=TaskCreationAgent(provider, queue),
        prioritization_agent=PrioritizationAgent(provider, lossless=lossless),
        embedder=embedder,
        store=store,
        index_name=INDEX,
        interval=1.5,
        sleep=sleeps.append,
        keep_going=keep_going,
    )
    loop.sleeps = sleeps
    return loop


def provider_error(message="quota exceeded"):
    return ProviderError(message)
