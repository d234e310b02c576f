"""End-to-end runs through the task orchestrator with a scripted model."""
import asyncio
import json

import pytest

from conftest import DOUBLE_SCHEMA, DOUBLE_SOURCE, no_sleep, plan_reply
from toolsmith.errors import PlanError
from toolsmith.memory_store import SimilarMemory
from toolsmith.orchestrator import SubtaskSpec, TaskOrchestrator, parse_plan

PLAN_NEEDLE = "Transform the given task into a sequence of subtasks"

TWO_STEP_PLAN = [
    {"task": "first:Compute the answer", "script": "21 * 2", "chat": "Multiplies.", "resultVar": "answer"},
    {"task": "second:Build on it", "script": "results['answer'] + 1", "chat": "Adds one."},
]


@pytest.fixture
def orchestrator(registry, memory, gateway, settings, config):
    return TaskOrchestrator(registry, memory, gateway, settings=settings, config=config, sleep=no_sleep)


class TestParsePlan:
    def test_nested_list_is_unwrapped(self):
        plan = parse_plan(json.dumps([TWO_STEP_PLAN]))
        assert [s.task_id for s in plan] == ["first", "second"]

    def test_task_without_description(self):
        spec = SubtaskSpec(task="solo", script="1")
        assert spec.task_id == "solo"
        assert spec.description == "solo"

    def test_not_a_list(self):
        with pytest.raises(PlanError):
            parse_plan('{"task": "a:b", "script": "1"}')

    def test_missing_script(self):
        with pytest.raises(PlanError):
            parse_plan('[{"task": "a:b"}]')


class TestRun:
    def test_two_subtasks_share_result_var(self, orchestrator, provider):
        provider.on(PLAN_NEEDLE, plan_reply(TWO_STEP_PLAN))
        result = asyncio.run(orchestrator.run("compute the answer plus one", result_var="final"))

        assert result.success is True, result.error
        assert [r["id"] for r in result.data] == ["first", "second"]
        assert [r["result"] for r in result.data] == [42, 43]
        assert result.store["first"] == 42
        assert result.store["answer"] == 42
        assert result.store["first_results"] == 42
        assert result.store["second_chat"] == "Adds one."
        assert result.store["final"] == result.data

    def test_events_follow_subtask_order(self, orchestrator, provider):
        provider.on(PLAN_NEEDLE, plan_reply(TWO_STEP_PLAN))
        asyncio.run(orchestrator.run("compute the answer plus one"))
        types = [e.type for e in orchestrator.events.recent() if e.type.startswith(("first", "second", "taskId"))]
        assert types == [
            "taskId", "first_task", "first_chat", "first_script", "first_results",
            "taskId", "second_task", "second_chat", "second_script", "second_results",
        ]

    def test_memory_is_stored_with_used_tools(self, orchestrator, registry, memory, provider):
        asyncio.run(registry.add("double", DOUBLE_SOURCE, dict(DOUBLE_SCHEMA), []))
        plan = [{"task": "dbl:Double four", "script": "await tools.double(value=4)", "chat": "Doubles."}]
        provider.on(PLAN_NEEDLE, plan_reply(plan))

        result = asyncio.run(orchestrator.run("double four please"))
        assert result.data[0]["result"] == 8

        matches = asyncio.run(memory.find_similar("double four please", 0.9))
        assert len(matches) == 1
        record = matches[0].record
        assert record.used_capabilities == ["double"]
        assert json.loads(record.response)[0]["scriptResult"] == 8
        assert 0.5 < record.confidence <= 1.0

    def test_confident_memory_is_adapted_instead_of_replanned(self, orchestrator, memory, provider):
        provider.on(PLAN_NEEDLE, plan_reply(TWO_STEP_PLAN))
        provider.on("adapting previous responses", "adapted answer")
        request = "compute the answer plus one"

        first = asyncio.run(orchestrator.run(request))
        before = asyncio.run(memory.find_similar(request, 0.9))[0].record.confidence
        second = asyncio.run(orchestrator.run(request))

        assert first.success and second.success
        assert second.data == "adapted answer"
        assert len(provider.calls_for(PLAN_NEEDLE)) == 1
        adapt_prompt = provider.calls_for("adapting previous responses")[0][1].content
        assert f"Previous Input: {request}" in adapt_prompt
        after = asyncio.run(memory.find_similar(request, 0.9))[0].record.confidence
        assert after >= before - 1e-6

    def test_reused_memory_confidence_never_drops(self, orchestrator, memory, provider, monkeypatch):
        provider.on("adapting previous responses", "adapted answer")
        record = asyncio.run(memory.store_memory("rotate the api keys", "[]", 0.99))

        async def near_match(text, threshold, limit=10):
            return [SimilarMemory(record=record, similarity=0.91)]

        monkeypatch.setattr(memory, "find_similar", near_match)
        result = asyncio.run(orchestrator.run("rotate all api keys"))

        assert result.data == "adapted answer"
        assert record.confidence >= 0.99

    def test_unreadable_plan_is_reported_not_raised(self, orchestrator, provider):
        provider.on(PLAN_NEEDLE, "Sorry, I can only chat.")
        result = asyncio.run(orchestrator.run("anything"))
        assert result.success is False
        assert "list of subtasks" in result.error

    def test_failing_script_exhausts_repair(self, orchestrator, provider, settings):
        plan = [{"task": "bad:Always fails", "script": "raise RuntimeError('nope')", "chat": ""}]
        provider.on(PLAN_NEEDLE, plan_reply(plan))
        provider.on("Analyze the provided script", '{"modifiedScript": "raise RuntimeError(\'nope\')", "explanation": ""}')

        result = asyncio.run(orchestrator.run("break things"))
        assert result.success is False
        assert result.error == f"Script execution failed after {settings.repair_attempt_limit} attempts."

    def test_script_can_call_llm_skill(self, registry, memory, gateway, settings, config, provider):
        from toolsmith.skill_library import SkillLibrary

        orchestrator = TaskOrchestrator(
            registry, memory, gateway, skills=SkillLibrary(), settings=settings, config=config, sleep=no_sleep
        )
        plan = [{"task": "ask:Ask the model", "script": "await tools.call_llm(prompt='say hi')", "chat": ""}]
        provider.on(PLAN_NEEDLE, plan_reply(plan))
        provider.on("You are a precise assistant", "hi there")
        result = asyncio.run(orchestrator.run("greet me"))
        assert result.success is True, result.error
        assert result.data[0]["result"] == "hi there"
        system_prompt = provider.calls_for(PLAN_NEEDLE)[0][0].content
        assert "call_llm(prompt: str" in system_prompt
