#!/usr/bin/env python3
"""
Task orchestrator: turns a natural-language request into subtasks and runs them.

A request is first matched against memory. A confident enough match is adapted to
the new request with a single model call. Otherwise the model decomposes the
request into an ordered plan of scripts that run one after another against the
capability table, each able to read the results of the ones before it.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from pydantic import BaseModel, Field
from pydantic import ValidationError as SchemaMismatch

from toolsmith.confidence import ConfidenceCalculator
from toolsmith.config import Settings
from toolsmith.errors import PlanError
from toolsmith.events import EventBus
from toolsmith.execution_context import ExecutionContext, RunContext, build_execution_context
from toolsmith.llm_provider import ChatMessage
from toolsmith.memory_store import MemoryStore, SimilarMemory
from toolsmith.resilience import RetryPolicy, ScriptRepairer
from toolsmith.script_executor import ScriptExecutor
from toolsmith.utils import extract_json_values, extract_used_tools

ADAPT_SYSTEM = "You are an AI assistant tasked with adapting previous responses to new inputs."

ADAPT_PROMPT = """Given a new input and a similar previous experience, please adapt the previous response to fit the new input:

Previous Input: {input}
Previous Response: {response}
Tools Used: {tools}
New Input: {new_input}

Adapted Response:"""

PLAN_PROMPT = """Transform the given task into a sequence of subtasks, each with a Python script that uses the provided tools to achieve the subtask objective.

Available Tools:

{tools}

Similar Past Experiences:

{memories}

Process:

1. Analyze the task and identify necessary steps, considering similar past experiences
2. Decompose into subtasks with clear objectives and input/output
3. For each subtask, write a Python script body using the tools
  a. The script runs inside `async def __subtask__(tools, results, store, emit)`
  b. Call tools with `await tools.<name>({{...}})` or keyword arguments
  c. Read earlier results with `results["<taskId>"]` or `results["<resultVar>"]`
  d. End the script with the subtask deliverable as the last expression or a `return`
4. Provide a concise explanation of the subtask's purpose and approach

Data Management:

- Name a resultVar when later subtasks need this subtask's output; it is stored under that key.
- Include only resultVar names in responses, not the actual data.

Output Format:
```json
[
  {{
    "task": "<taskId>:<description>",
    "script": "<Python script body>",
    "chat": "<subtask explanation>",
    "resultVar": "<optional result variable>"
  }}
]
```

Example:
```json
[
  {{
    "task": "draft_summary:Summarize the release notes",
    "script": "notes = await tools.call_llm(prompt='Summarize: ' + store.get('notes', ''))\\nnotes",
    "chat": "Asks the model for a short summary of the notes.",
    "resultVar": "summary"
  }},
  {{
    "task": "title:Write a title for the summary",
    "script": "await tools.call_llm(prompt='Title for: ' + results['summary'])",
    "chat": "Builds a title from the summary produced by the previous subtask."
  }}
]
```

CRITICAL: Verify the JSON output for accuracy and completeness before submission. *** OUTPUT ONLY JSON ***"""


class SubtaskSpec(BaseModel):
    task: str
    script: str
    chat: str = ""
    resultVar: Optional[str] = Field(default=None)

    @property
    def task_id(self) -> str:
        return self.task.split(":", 1)[0].strip() or self.task

    @property
    def description(self) -> str:
        parts = self.task.split(":", 1)
        return parts[1].strip() if len(parts) > 1 else self.task


@dataclass
class RunResult:
    success: bool
    data: Any = None
    error: Optional[str] = None
    run_id: Optional[str] = None
    store: Dict[str, Any] = field(default_factory=dict, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "data": self.data, "error": self.error, "run_id": self.run_id}


def parse_plan(text: str) -> List[SubtaskSpec]:
    values = extract_json_values(text)
    plan = next((v for v in values if isinstance(v, list)), None)
    if plan and isinstance(plan[0], list):
        plan = plan[0]
    if not plan:
        raise PlanError(
            "The task must be a list of subtasks. Check the format and try again. RETURN ONLY JSON RESPONSES",
            context={"reply": text[:500]},
        )
    try:
        return [SubtaskSpec.model_validate(item) for item in plan]
    except SchemaMismatch as exc:
        raise PlanError(f"Subtask plan did not validate: {exc.error_count()} error(s)", context={"reply": text[:500]}) from exc


class TaskOrchestrator:
    def __init__(
        self,
        registry,
        memory: MemoryStore,
        model,
        skills=None,
        settings: Optional[Settings] = None,
        config: Optional[Dict[str, Any]] = None,
        events: Optional[EventBus] = None,
        executor: Optional[ScriptExecutor] = None,
        policy: Optional[RetryPolicy] = None,
        sleep=asyncio.sleep,
    ):
        self.registry = registry
        self.memory = memory
        self.model = model
        self.skills = skills
        self.settings = settings or Settings.from_config(config)
        self.events = events or EventBus()
        self.confidence = ConfidenceCalculator(config)
        self.executor = executor or ScriptExecutor(self.settings.script_timeout_sec)
        self.policy = policy or RetryPolicy.from_settings(self.settings, sleep=sleep)
        self.repairer = ScriptRepairer(
            self.executor,
            self.build_context,
            registry=registry,
            model=model,
            limit=self.settings.repair_attempt_limit,
            delay=self.settings.repair_delay_sec,
            error_log=self.settings.error_log,
            auto_capture=self.settings.auto_capture_scripts,
            sleep=sleep,
        )
        self._background: Set[asyncio.Task] = set()

    def build_context(self, run: RunContext) -> ExecutionContext:
        return build_execution_context(run, self.registry, self.skills, self.model, self.policy)

    def _capability_listing(self, names: List[str]) -> str:
        parts = []
        if self.skills is not None:
            parts.append(self.skills.get_compact_representation())
        if self.registry is not None:
            parts.append(self.registry.get_compact_representation(names or None))
        return "\n".join(p for p in parts if p) or "(none)"

    @staticmethod
    def _memories_listing(memories: List[SimilarMemory]) -> str:
        return "\n".join(
            f"\nInput: {m.record.input}\nResponse: {m.record.response}\n"
            f"Tools Used: {', '.join(m.record.used_capabilities)}\n"
            f"Confidence: {m.record.confidence}\nSimilarity: {m.similarity}\n"
            for m in memories
        ) or "(none)"

    async def _predict(self, request: str) -> List[str]:
        if self.registry is None:
            return []
        try:
            prediction = await self.registry.predict_likely_capabilities(request)
        except Exception as exc:
            print(f"[Orchestrator] Capability prediction skipped: {exc}", flush=True)
            return []
        return list(prediction.likely)

    async def _refresh_memory(self, match: SimilarMemory) -> None:
        updated = self.confidence.update_confidence(match.record.confidence, match.similarity)
        await self.memory.update_memory(match.record, updated)

    async def _boost_memory(self, match: SimilarMemory) -> None:
        boosted = self.confidence.boost_confidence(match.record.confidence, match.similarity)
        await self.memory.update_memory(match.record, boosted)

    async def _adapt_memory(self, match: SimilarMemory, request: str) -> str:
        prompt = ADAPT_PROMPT.format(
            input=match.record.input,
            response=match.record.response,
            tools=", ".join(match.record.used_capabilities),
            new_input=request,
        )
        return await self.model.complete(
            [ChatMessage(role="system", content=ADAPT_SYSTEM), ChatMessage(role="user", content=prompt)],
            slot="planner",
        )

    async def decompose(self, request: str, capability_names: List[str], memories: List[SimilarMemory]) -> List[SubtaskSpec]:
        system = PLAN_PROMPT.format(
            tools=self._capability_listing(capability_names),
            memories=self._memories_listing(memories),
        )
        reply = await self.model.complete(
            [
                ChatMessage(role="system", content=system),
                ChatMessage(role="user", content=json.dumps({"task": request}, ensure_ascii=False)),
            ],
            slot="planner",
        )
        return parse_plan(reply)

    def _schedule_improvement(self) -> None:
        if self.registry is None or not self.settings.improve_after_run:
            return
        task = asyncio.get_running_loop().create_task(self._improve())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _improve(self) -> None:
        try:
            improved = await self.registry.improve_tools()
        except Exception as exc:
            print(f"[Orchestrator] Background improvement failed: {exc}", flush=True)
            return
        if improved:
            print(f"[Orchestrator] Improved tools: {', '.join(improved)}", flush=True)

    async def drain(self) -> None:
        """Wait for background improvement passes started by earlier runs."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def run_subtasks(self, plan: List[SubtaskSpec], run: RunContext) -> List[Dict[str, Any]]:
        results: List[Dict[str, Any]] = []
        for spec in plan:
            task_id = spec.task_id
            run.store["currentTaskId"] = task_id
            run.emit("taskId", task_id)

            run.store[f"{task_id}_task"] = spec.model_dump()
            run.emit(f"{task_id}_task", spec.model_dump())
            run.store[f"{task_id}_chat"] = spec.chat
            run.emit(f"{task_id}_chat", spec.chat)
            run.store[f"{task_id}_script"] = spec.script
            run.emit(f"{task_id}_script", spec.script)

            print(f"[Orchestrator] Running subtask {task_id}", flush=True)
            script_result = await self.repairer.run(spec.script, run)

            run.store[task_id] = script_result
            run.store[f"{task_id}_results"] = script_result
            if spec.resultVar:
                run.store[spec.resultVar] = script_result

            outcome = {"id": task_id, "task": spec.description, "script": spec.script, "result": script_result}
            run.emit(f"{task_id}_results", outcome)
            results.append(outcome)
        return results

    async def run(self, request: str, result_var: Optional[str] = None, store: Optional[Dict[str, Any]] = None) -> RunResult:
        run = RunContext(request=request, events=self.events, store=dict(store or {}))
        run.bind_loop()
        try:
            likely = await self._predict(request)
            matches = await self.memory.find_similar(request, self.settings.similarity_threshold)

            if matches:
                best = max(matches, key=lambda m: m.record.confidence * m.similarity)
                adjusted = self.confidence.calculate_retrieval_confidence(best.record.confidence, best.similarity)
                if adjusted > self.settings.confidence_threshold:
                    print(f"[Orchestrator] Reusing memory #{best.record.id} (adjusted confidence {adjusted:.2f})", flush=True)
                    adapted = await self._adapt_memory(best, request)
                    await self._boost_memory(best)
                    run.emit("text", adapted)
                    if result_var:
                        run.store[result_var] = adapted
                    return RunResult(success=True, data=adapted, run_id=run.run_id, store=run.store)

            plan = await self.decompose(request, likely, matches)
            if result_var:
                run.store[result_var] = []

            results = await self.run_subtasks(plan, run)

            used: Set[str] = set()
            for spec in plan:
                used |= extract_used_tools(spec.script)

            tasks = [{**spec.model_dump(), "scriptResult": r["result"]} for spec, r in zip(plan, results)]
            response = json.dumps(tasks, ensure_ascii=False, default=str)
            initial = self.confidence.calculate_initial_confidence(1.0, response)
            await self.memory.store_memory(request, response, initial, used)

            for match in matches:
                await self._refresh_memory(match)

            if result_var:
                run.store[result_var] = results
            self._schedule_improvement()
            return RunResult(success=True, data=results, run_id=run.run_id, store=run.store)
        except Exception as exc:
            print(f"[Orchestrator] Run failed: {exc}", flush=True)
            run.emit("error", str(exc))
            return RunResult(success=False, error=str(exc), run_id=run.run_id, store=run.store)
