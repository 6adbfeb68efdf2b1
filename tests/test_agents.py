"""Tests for the four agents."""

import pytest

from conftest import INDEX, FakeProvider
from taskloop.core.agents import ContextAgent, ExecutionAgent, PrioritizationAgent, TaskCreationAgent
from taskloop.core.tasks import Task, TaskQueue
from taskloop.errors import EmbeddingError, ProviderError


def _store_result(store, embedder, task_id, task_name, result):
    store.upsert(
        INDEX,
        f"result_{task_id}",
        embedder.embed_query(result).tolist(),
        {"task": task_name, "result": result},
    )


# ---------------------------------------------------------------------------
# Context agent
# ---------------------------------------------------------------------------


class TestContextAgent:
    def test_empty_index_gives_no_context(self, embedder, store):
        agent = ContextAgent(embedder, store, INDEX)
        assert agent.run("anything", 5) == []

    def test_most_similar_first(self, embedder, store):
        _store_result(store, embedder, 1, "Find a park", "city park near the river")
        _store_result(store, embedder, 2, "Pick food", "sandwiches and lemonade")

        agent = ContextAgent(embedder, store, INDEX)
        context = agent.run("sandwiches and lemonade", 2)

        assert context == ["Pick food", "Find a park"]

    def test_limits_to_n(self, embedder, store):
        for i in range(4):
            _store_result(store, embedder, i, f"task {i}", f"result {i}")
        agent = ContextAgent(embedder, store, INDEX)
        assert len(agent.run("result", 2)) == 2

    def test_embeds_the_query(self, embedder, store):
        ContextAgent(embedder, store, INDEX).run("Buy milk", 3)
        assert embedder.calls == ["Buy milk"]

    def test_skips_entries_without_field(self, embedder, store):
        store.upsert(INDEX, "x", embedder.embed_query("loose").tolist(), {"result": "loose"})
        assert ContextAgent(embedder, store, INDEX).run("loose", 3) == []

    def test_embedding_failure_propagates(self, store):
        class BrokenEmbedder:
            def embed_query(self, text):
                raise EmbeddingError("embedding service down")

        with pytest.raises(EmbeddingError):
            ContextAgent(BrokenEmbedder(), store, INDEX).run("x", 5)


# ---------------------------------------------------------------------------
# Execution agent
# ---------------------------------------------------------------------------


class TestExecutionAgent:
    def test_prompt_and_trimmed_result(self, embedder, store):
        _store_result(store, embedder, 1, "Find a park", "Riverside park")
        provider = FakeProvider(["   The weather is sunny.  \n"])
        agent = ExecutionAgent(provider, ContextAgent(embedder, store, INDEX))

        result = agent.run("Plan a picnic", Task(2, "Check the weather"))

        assert result == "The weather is sunny."
        prompt = provider.prompts[0]
        assert "Plan a picnic" in prompt
        assert "Check the weather" in prompt
        assert "Find a park" in prompt
        assert prompt.rstrip().endswith("Response:")

    def test_provider_failure_propagates(self, embedder, store):
        provider = FakeProvider([ProviderError("401 unauthorized")])
        agent = ExecutionAgent(provider, ContextAgent(embedder, store, INDEX))

        with pytest.raises(ProviderError):
            agent.run("Plan a picnic", Task(1, "Check the weather"))


# ---------------------------------------------------------------------------
# Task creation agent
# ---------------------------------------------------------------------------


class TestTaskCreationAgent:
    def test_creates_tasks_in_order(self):
        queue = TaskQueue()
        queue.push_back(queue.new_task("initial"))
        agent = TaskCreationAgent(FakeProvider(["1. Buy milk\n2. Walk dog\n"]), queue)

        tasks = agent.run("objective", "result", "initial", [])

        assert [t.name for t in tasks] == ["Buy milk", "Walk dog"]
        assert [t.id for t in tasks] == [2, 3]
        # returned, not queued
        assert len(queue) == 1

    def test_ids_keep_increasing_across_calls(self):
        queue = TaskQueue()
        agent = TaskCreationAgent(FakeProvider(["1. a\n2. b", "1. c"]), queue)

        first = agent.run("o", "r", "t", [])
        second = agent.run("o", "r", "t", [])

        ids = [t.id for t in first + second]
        assert ids == sorted(ids)
        assert len(set(ids)) == len(ids)

    def test_blank_response_gives_no_tasks(self):
        queue = TaskQueue()
        agent = TaskCreationAgent(FakeProvider(["\n\n\n"]), queue)
        assert agent.run("o", "r", "t", []) == []
        assert queue.last_id == 0

    def test_garbled_response_gives_no_tasks(self):
        agent = TaskCreationAgent(FakeProvider(["As an AI language model..."]), TaskQueue())
        assert agent.run("o", "r", "t", []) == []

    def test_existing_and_repeated_names_dropped(self):
        agent = TaskCreationAgent(
            FakeProvider(["1. Walk dog\n2. Buy milk\n3. buy milk.\n4. Feed cat"]),
            TaskQueue(),
        )
        tasks = agent.run("o", "r", "t", ["Walk dog"])
        assert [t.name for t in tasks] == ["Buy milk", "Feed cat"]

    def test_prompt_lists_incomplete_tasks(self):
        provider = FakeProvider(["1. x"])
        TaskCreationAgent(provider, TaskQueue()).run("Plan a picnic", "Found a park", "Find a park", ["Buy food"])

        prompt = provider.prompts[0]
        assert "Plan a picnic" in prompt
        assert "Found a park" in prompt
        assert "Find a park" in prompt
        assert "- Buy food" in prompt


# ---------------------------------------------------------------------------
# Prioritization agent
# ---------------------------------------------------------------------------


class TestPrioritizationAgent:
    def test_reorders_preserving_ids(self):
        a, b = Task(1, "A"), Task(2, "B")
        agent = PrioritizationAgent(FakeProvider(["2. B\n1. A"]))

        assert agent.run("o", [a, b]) == [b, a]

    def test_empty_task_list_makes_no_call(self):
        provider = FakeProvider()
        assert PrioritizationAgent(provider).run("o", []) == []
        assert provider.prompts == []

    def test_prompt_start_number(self):
        provider = FakeProvider(["4. A"])
        PrioritizationAgent(provider).run("Plan a picnic", [Task(4, "A")], start_number=4)
        assert "Start the task list with number 4." in provider.prompts[0]
        assert "- A" in provider.prompts[0]

    def test_matches_ignore_case_and_trailing_period(self):
        a, b = Task(1, "Buy milk"), Task(2, "Walk dog")
        agent = PrioritizationAgent(FakeProvider(["1. walk dog.\n2. Buy  milk"]))
        assert agent.run("o", [a, b]) == [b, a]

    def test_duplicate_names_first_unused_match(self):
        first, second = Task(1, "Call Bob"), Task(2, "Call Bob")
        agent = PrioritizationAgent(FakeProvider(["1. Call Bob\n2. Call Bob"]))
        assert agent.run("o", [first, second]) == [first, second]

    def test_unknown_names_dropped(self):
        a = Task(1, "A")
        agent = PrioritizationAgent(FakeProvider(["1. Z\n2. A"]))
        assert agent.run("o", [a]) == [a]

    def test_lossless_appends_omitted_tasks(self):
        a, b, c = Task(1, "A"), Task(2, "B"), Task(3, "C")
        agent = PrioritizationAgent(FakeProvider(["1. C"]), lossless=True)
        assert agent.run("o", [a, b, c]) == [c, a, b]

    def test_lossless_keeps_order_when_nothing_matches(self):
        a, b = Task(1, "A"), Task(2, "B")
        agent = PrioritizationAgent(FakeProvider(["I could not do that."]), lossless=True)
        assert agent.run("o", [a, b]) == [a, b]

    def test_lossy_drops_omitted_tasks(self):
        a, b, c = Task(1, "A"), Task(2, "B"), Task(3, "C")
        agent = PrioritizationAgent(FakeProvider(["1. C\n2. Renamed B"]), lossless=False)
        assert agent.run("o", [a, b, c]) == [c]

    def test_lossy_garbled_output_empties_queue(self):
        agent = PrioritizationAgent(FakeProvider(["???"]), lossless=False)
        assert agent.run("o", [Task(1, "A")]) == []
