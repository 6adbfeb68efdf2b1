"""Tests for the main task loop."""

import httpx
import pytest

from conftest import INDEX, FakeProvider, make_loop
from taskloop.core.loop import LoopState, build_loop
from taskloop.core.tasks import Task
from taskloop.errors import ConfigError, ProviderError
from taskloop.providers.base import GroqProvider
from taskloop.rag.vectorstore import InMemoryStore
from taskloop.validation.config import Config


def _script(*responses):
    """Execution, creation and prioritization responses for successive iterations."""
    return FakeProvider(list(responses))


class TestStep:
    def test_full_iteration(self, embedder, store):
        provider = _script(
            "Found a riverside park.",              # execution
            "1. Buy sandwiches\n2. Check weather",   # creation
            "1. Check weather\n2. Buy sandwiches",   # prioritization
        )
        loop = make_loop(provider, embedder, store)

        result = loop.step()

        assert result.task == Task(1, "Develop a task list")
        assert result.result_text == "Found a riverside park."
        assert [t.name for t in result.new_tasks] == ["Buy sandwiches", "Check weather"]
        assert [(t.id, t.name) for t in loop.queue] == [(3, "Check weather"), (2, "Buy sandwiches")]
        assert result.queue == list(loop.queue)
        assert result.task_list == [Task(1, "Develop a task list")]

    def test_result_is_enriched_into_store(self, embedder, store):
        provider = _script("Found a riverside park.", "", "")
        loop = make_loop(provider, embedder, store)

        loop.step()

        matches = store.query(INDEX, embedder.embed_query("Found a riverside park."), top_k=1)
        assert matches[0].id == "result_1"
        assert matches[0].metadata == {"task": "Develop a task list", "result": "Found a riverside park."}

    def test_agent_order(self, embedder, store):
        provider = _script("result", "1. next task", "1. next task")
        make_loop(provider, embedder, store).step()

        execution, creation, prioritization = provider.prompts
        assert "Your task: Develop a task list" in execution
        assert "task creation AI" in creation
        assert "task prioritization AI" in prioritization

    def test_empty_queue_is_idle(self, embedder, store):
        provider = FakeProvider()
        loop = make_loop(provider, embedder, store)
        loop.queue.pop_front()

        assert loop.state is LoopState.IDLE
        result = loop.step()

        assert result.idle
        assert provider.prompts == []
        assert embedder.calls == []

    def test_queue_drains_to_idle(self, embedder, store):
        provider = _script("done", "nothing to add")
        loop = make_loop(provider, embedder, store)

        assert loop.state is LoopState.RUNNING
        loop.step()
        assert loop.state is LoopState.IDLE
        # prioritization is skipped for an empty queue
        assert len(provider.prompts) == 2

    def test_execution_failure_leaves_queue_intact(self, embedder, store):
        provider = _script(ProviderError("rate limited"))
        loop = make_loop(provider, embedder, store)
        loop.queue.push_back(loop.queue.new_task("Buy sandwiches"))
        loop.queue.push_back(loop.queue.new_task("Check weather"))

        with pytest.raises(ProviderError):
            loop.step()

        assert [(t.id, t.name) for t in loop.queue] == [(2, "Buy sandwiches"), (3, "Check weather")]
        assert store.count(INDEX) == 0

    def test_creation_failure_leaves_queue_intact(self, embedder, store):
        provider = _script("result", ProviderError("network down"))
        loop = make_loop(provider, embedder, store)
        loop.queue.push_back(loop.queue.new_task("Buy sandwiches"))

        with pytest.raises(ProviderError):
            loop.step()

        assert loop.queue.names() == ["Buy sandwiches"]

    def test_prioritization_failure_restores_queue(self, embedder, store):
        provider = _script("result", "1. Buy sandwiches\n2. Check weather", ProviderError("timeout"))
        loop = make_loop(provider, embedder, store)
        loop.queue.push_back(loop.queue.new_task("Pack blanket"))

        with pytest.raises(ProviderError):
            loop.step()

        assert [(t.id, t.name) for t in loop.queue] == [(2, "Pack blanket")]
        assert loop.current_task == Task(1, "Develop a task list")

    def test_ids_unique_across_iterations(self, embedder, store):
        provider = _script(
            "r1", "1. a\n2. b", "1. b\n2. a",
            "r2", "1. c", "1. c\n2. a",
        )
        loop = make_loop(provider, embedder, store)

        created = loop.step().new_tasks + loop.step().new_tasks

        ids = [t.id for t in created]
        assert ids == [2, 3, 4]
        assert [t.id for t in loop.queue] == [4, 2]


class TestRun:
    def test_sleeps_after_every_iteration(self, embedder, store):
        provider = _script("done", "")
        loop = make_loop(provider, embedder, store)

        count = loop.run(max_iterations=3)

        assert count == 3
        assert loop.sleeps == [1.5, 1.5, 1.5]
        # first iteration runs the task, the next two idle
        assert len(provider.prompts) == 2

    def test_on_iteration_callback(self, embedder, store):
        provider = _script("done", "")
        loop = make_loop(provider, embedder, store)
        seen = []

        loop.run(max_iterations=2, on_iteration=seen.append)

        assert [r.idle for r in seen] == [False, True]
        assert [r.iteration for r in seen] == [1, 2]

    def test_error_propagates_by_default(self, embedder, store):
        loop = make_loop(_script(ProviderError("boom")), embedder, store)
        with pytest.raises(ProviderError):
            loop.run(max_iterations=5)
        assert loop.sleeps == []

    def test_keep_going_logs_and_continues(self, embedder, store):
        provider = _script(ProviderError("boom"))
        loop = make_loop(provider, embedder, store, keep_going=True)
        loop.queue.push_back(loop.queue.new_task("second"))
        seen = []

        count = loop.run(max_iterations=2, on_iteration=seen.append)

        assert count == 2
        assert seen[0].error == "boom"
        assert seen[1].task == Task(2, "second")
        assert loop.sleeps == [1.5, 1.5]

    def test_failed_iteration_names_its_task(self, embedder, store):
        loop = make_loop(_script(ProviderError("boom")), embedder, store, keep_going=True)
        seen = []

        loop.run(max_iterations=1, on_iteration=seen.append)

        assert seen[0].task == Task(1, "Develop a task list")
        assert seen[0].queue == []

    def test_keep_going_survives_malformed_response(self, embedder, store, monkeypatch):
        reply = httpx.Response(200, json={"error": "overloaded"}, request=httpx.Request("POST", "https://x"))
        monkeypatch.setattr(httpx, "post", lambda url, **kwargs: reply)
        provider = GroqProvider(
            model="llama3-70b-8192",
            config=Config(env={"GROQ_API_KEY": "gsk-test"}),
        )
        loop = make_loop(provider, embedder, store, keep_going=True)
        seen = []

        count = loop.run(max_iterations=2, on_iteration=seen.append)

        assert count == 2
        assert "Unexpected groq response" in seen[0].error
        assert seen[1].idle


class TestBuildLoop:
    def _config(self, **loop):
        return Config(local_config={
            "loop": {"objective": "Plan a picnic", **loop},
            "vector_store": {"backend": "memory", "index_name": INDEX, "dimension": 16},
        })

    def test_seeds_initial_task_and_creates_index(self, embedder):
        store = InMemoryStore()
        loop = build_loop(
            self._config(initial_task="Find a park", interval=0.25),
            provider=FakeProvider(),
            embedder=embedder,
            store=store,
            sleep=lambda s: None,
        )

        assert list(loop.queue) == [Task(1, "Find a park")]
        assert loop.interval == 0.25
        assert INDEX in store.list_indexes()
        assert loop.objective == "Plan a picnic"

    def test_missing_objective(self, embedder):
        config = Config(local_config={"vector_store": {"backend": "memory"}})
        with pytest.raises(ConfigError):
            build_loop(config, provider=FakeProvider(), embedder=embedder, store=InMemoryStore())

    def test_lossless_flag_reaches_agent(self, embedder):
        loop = build_loop(
            self._config(lossless=False),
            provider=FakeProvider(),
            embedder=embedder,
            store=InMemoryStore(),
        )
        assert loop.prioritization_agent.lossless is False
