#!/usr/bin/env python3
"""
Toolsmith Capability Registry
Owns the named, versioned capabilities an agent can call: adding and standardizing
them, versioning and rolling back, generating and running their test harnesses,
improving the ones that fail, and keeping their usage metrics.
"""

import json
import os
import time
from pathlib import Path
from types import ModuleType
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field
from pydantic import ValidationError as SchemaMismatch

from toolsmith.capability import (
    DEFAULT_VERSION,
    METRIC_KINDS,
    CapabilityMetrics,
    CapabilityUnit,
    HarnessContext,
    HarnessResult,
    bump_patch,
    load_source_module,
    now_iso,
    run_harness,
    source_digest,
    write_module,
)
from toolsmith.errors import NoHarness, NotFound, ToolsmithError, ValidationError
from toolsmith.events import EventBus
from toolsmith.llm_provider import ChatMessage
from toolsmith.model_gateway import ModelGateway
from toolsmith.module_loader import run_callable
from toolsmith.registry_writer import RegistryWriter
from toolsmith.toolbook_utils import missing_required, signature_from_schema
from toolsmith.utils import extract_code, extract_json, normalize_source


class LikelyCapabilities(BaseModel):
    likely: List[str] = Field(default_factory=list)
    newly_needed: List[str] = Field(default_factory=list)


class ScriptAnalysis(BaseModel):
    name: str
    description: str
    methodSignature: str
    modifiedScript: str


class ReviewDecision(BaseModel):
    action: Literal["keep", "modify", "remove"]
    reason: str = ""
    modifications: str = ""


STANDARDIZE_PROMPT = """
You standardize capability code into the Toolsmith module format.
Fold the given code into the execute function of the template below, fix obvious
problems, and keep the behavior the schema describes.

Template:
```python
# Capability module: {name}


async def execute(params, api):
    \"\"\"{description}\"\"\"
    # params is a dict of inputs; api exposes store, emit(event, payload),
    # call_tool(name, params) and model.
    ...
```

Return ONLY the complete Python module. No commentary.
"""

HARNESS_PROMPT = """
You write test harnesses for Python capability modules. Given the module source
and its schema, write a harness module that exercises it thoroughly, in exactly
this shape:

```python
def before_all(context):
    context.log("before_all")


async def test_returns_expected_value(context):
    result = await context.execute({"value": 2})
    context.check(result == 4, "doubles its input")


async def test_rejects_missing_value(context):
    context.log("missing value")
```

context.execute(params) runs the capability, context.check(condition, message)
fails the harness when condition is false, context.log(message) records progress.
Every test step must be a function whose name starts with test_.
Return ONLY Python code.
"""

IMPROVE_PROMPT = """
You improve Python capability modules. Given the module source, its schema and its
latest test results, return an improved version of the module that keeps the
execute(params, api) entry point. If you cannot improve it, return the original
source unchanged. Return ONLY Python code.
"""

PREDICT_PROMPT = """
Given a user request and the list of existing capabilities, predict which existing
capabilities the request will most likely use, and name new capabilities that would
need to be created to service it.
"""

ANALYZE_PROMPT = """
Given the following script and task description, decide whether the script is a
unique, reusable piece of functionality that the existing capabilities do not
already cover.

Existing capabilities: {existing}

Script:
{script}

Task Description:
{task}

If it is reusable, answer with JSON:
{{
  "name": "snake_case_name",
  "description": "Brief description",
  "methodSignature": "snake_case_name(param1: type, param2: type) -> type",
  "modifiedScript": "a complete Python module defining async def execute(params, api)"
}}
If the existing capabilities already cover it, answer with null.
RETURN RAW JSON ONLY.
"""

REVIEW_PROMPT = """
Review this auto-generated capability and decide whether to keep, modify or remove it.

Name: {name}
Description: {description}
Signature: {signature}
Source:
{source}

When the action is "modify", put the full replacement module in "modifications".
"""


class CapabilityRegistry:
    def __init__(
        self,
        repo_path: Path,
        model: Optional[ModelGateway] = None,
        events: Optional[EventBus] = None,
    ):
        self.repo_path = Path(repo_path)
        self.repo_path.mkdir(parents=True, exist_ok=True)
        self.registry_file = self.repo_path / ".registry.json"
        self.metrics_file = self.repo_path / ".metrics.json"
        self.harness_dir = self.repo_path / "_harness"
        self.model = model
        self.events = events or EventBus()

        self._units: Dict[str, CapabilityUnit] = {}
        self._metrics: Dict[str, CapabilityMetrics] = {}
        # name -> (source digest, loaded module)
        self._modules: Dict[str, Tuple[str, ModuleType]] = {}
        self._writer = RegistryWriter()
        self._load()

    # ------------------------------------------------------------------ storage

    def _load(self) -> None:
        if self.registry_file.exists():
            try:
                data = json.loads(self.registry_file.read_text(encoding="utf-8")) or {}
                for raw in data.get("tools", []):
                    unit = CapabilityUnit.from_dict(raw)
                    self._units[unit.name] = unit
                print(f"[Registry] Loaded {len(self._units)} capabilities from {self.registry_file}", flush=True)
            except (OSError, ValueError, KeyError) as exc:
                print(f"[Registry] Failed to load registry: {exc}", flush=True)
                self._units = {}
        if self.metrics_file.exists():
            try:
                raw_metrics = json.loads(self.metrics_file.read_text(encoding="utf-8")) or {}
                self._metrics = {name: CapabilityMetrics.from_dict(m) for name, m in raw_metrics.items()}
            except (OSError, ValueError, TypeError) as exc:
                print(f"[Registry] Failed to load metrics: {exc}", flush=True)
                self._metrics = {}
        for name, unit in self._units.items():
            unit.metrics = self._metrics.setdefault(name, CapabilityMetrics())

    def _atomic_write(self, path: Path, payload: Any) -> None:
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, path)

    def _save_registry(self) -> None:
        self._atomic_write(self.registry_file, {"tools": [u.to_dict() for u in self._units.values()]})

    def _save_metrics(self) -> None:
        self._atomic_write(self.metrics_file, {name: m.to_dict() for name, m in self._metrics.items()})

    def _record_metric(self, name: str, kind: str, data: Any = None) -> None:
        metrics = self._metrics.setdefault(name, CapabilityMetrics())
        metrics.record(kind, data)

    # ------------------------------------------------------------------ reads

    @property
    def names(self) -> List[str]:
        return list(self._units.keys())

    def __contains__(self, name: str) -> bool:
        return name in self._units

    def __len__(self) -> int:
        return len(self._units)

    def list_units(self, tags: Optional[List[str]] = None) -> List[CapabilityUnit]:
        units = list(self._units.values())
        if tags:
            units = [u for u in units if all(t in u.tags for t in tags)]
        return units

    def find_by_source(self, source: str) -> Optional[CapabilityUnit]:
        target = normalize_source(source)
        if not target:
            return None
        for unit in self._units.values():
            if unit.active and normalize_source(unit.source) == target:
                return unit
        return None

    def get(self, name_or_source: str) -> Optional[CapabilityUnit]:
        unit = self._units.get(name_or_source)
        if unit is not None:
            return unit
        return self.find_by_source(name_or_source)

    def _require(self, name: str) -> CapabilityUnit:
        unit = self._units.get(name)
        if unit is None:
            raise NotFound(f"Tool not found: {name}", context={"name": name})
        return unit

    def get_metrics(self, name: str) -> CapabilityMetrics:
        self._require(name)
        return self._metrics[name]

    def get_history(self, name: str) -> List[str]:
        self._require(name)
        return list(self._metrics.get(name, CapabilityMetrics()).versions)

    def get_compact_representation(self, names: Optional[List[str]] = None) -> str:
        units = [u for u in self._units.values() if u.active]
        if names:
            wanted = set(names)
            selected = [u for u in units if u.name in wanted]
            units = selected or units
        return "\n".join(u.compact() for u in units)

    def generate_report(self, fmt: str = "text") -> Any:
        if fmt == "json":
            return {name: m.to_dict() for name, m in self._metrics.items()}

        lines = ["Tool Registry Report", "=====================", ""]
        for name, m in self._metrics.items():
            stats = m.execution_stats
            fastest = f"{stats.fastest_execution_time:.2f}ms" if stats.total_executions else "n/a"
            last = f"{stats.last_execution_time:.2f}ms" if stats.last_execution_time is not None else "n/a"
            lines.extend([
                f"Tool: {name}",
                "------------------",
                f"Current Version: {m.versions[-1] if m.versions else 'n/a'}",
                f"Total Updates: {m.total_updates}",
                f"Last Updated: {m.last_updated}",
                "Test Results:",
                f"  Total Runs: {m.test_results.total_runs}",
                f"  Passed: {m.test_results.passed}",
                f"  Failed: {m.test_results.failed}",
                f"  Last Run: {m.test_results.last_run}",
                "Execution Stats:",
                f"  Total Executions: {stats.total_executions}",
                f"  Average Execution Time: {stats.average_execution_time:.2f}ms",
                f"  Fastest Execution Time: {fastest}",
                f"  Slowest Execution Time: {stats.slowest_execution_time:.2f}ms",
                f"  Last Execution Time: {last}",
                f"Error Rate: {m.error_rate * 100:.2f}%",
                f"Usage Count: {m.usage_count}",
                "",
            ])
        return "\n".join(lines)

    # ------------------------------------------------------------------ mutations

    async def add(
        self,
        name: str,
        source: str,
        schema: Optional[Dict[str, Any]] = None,
        tags: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        if not name or not name.isidentifier():
            raise ValidationError(f"Capability name must be an identifier: {name!r}")
        if not source or not source.strip():
            raise ValidationError(f"Capability {name} has no source")
        if name in self._units:
            print(f"[Registry] Tool {name} already exists; add ignored.", flush=True)
            return False

        schema = dict(schema or {})
        schema.setdefault("name", name)
        schema.setdefault("signature", signature_from_schema(name, schema))

        try:
            standardized = await self.standardize(name, source, schema)
        except Exception as exc:
            print(f"[Registry] Failed to standardize {name}; using original source. ({exc})", flush=True)
            standardized = source

        def _commit() -> bool:
            if name in self._units:
                return False
            now = now_iso()
            meta = {
                "original_query": "",
                "creation_date": now,
                "last_modified_date": now,
                "author": "agent",
                "dependencies": [],
            }
            meta.update(metadata or {})
            unit = CapabilityUnit(
                name=name,
                source=standardized,
                schema=schema,
                version=DEFAULT_VERSION,
                tags=sorted(set(tags or [])),
                metadata=meta,
            )
            unit.record_snapshot()
            self._units[name] = unit
            self._metrics[name] = CapabilityMetrics()
            unit.metrics = self._metrics[name]
            self._record_metric(name, "version", unit.version)
            write_module(self.repo_path, name, unit.source)
            self._save_registry()
            self._save_metrics()
            return True

        added = await self._writer.submit(f"add:{name}", _commit)
        if added:
            print(f"[Registry] Tool {name} added at {DEFAULT_VERSION}.", flush=True)
            self.events.emit("info", f"Tool {name} added")
        return added

    async def update(
        self,
        name: str,
        source: Optional[str] = None,
        schema: Optional[Dict[str, Any]] = None,
        tags: Optional[List[str]] = None,
        active: Optional[bool] = None,
    ) -> CapabilityUnit:
        new_schema = None
        if schema is not None:
            new_schema = dict(schema)
            new_schema.setdefault("name", name)
            new_schema.setdefault("signature", signature_from_schema(name, new_schema))

        def _commit():
            unit = self._require(name)
            source_changed = source is not None and source != unit.source
            schema_changed = new_schema is not None and new_schema != unit.schema
            if source_changed:
                unit.source = source
            if schema_changed:
                unit.schema = new_schema
            if tags is not None:
                unit.tags = sorted(set(tags))
            if active is not None:
                unit.active = active
            changed = source_changed or schema_changed
            if changed:
                unit.version = bump_patch(unit.latest_version())
                unit.metadata["last_modified_date"] = now_iso()
                unit.record_snapshot()
                self._record_metric(name, "version", unit.version)
                write_module(self.repo_path, name, unit.source)
                self._save_metrics()
            self._save_registry()
            return unit, changed

        unit, changed = await self._writer.submit(f"update:{name}", _commit)
        if changed:
            print(f"[Registry] Tool {name} updated to version {unit.version}.", flush=True)
            await self.generate_test_harness(name)
        return unit

    async def update_metadata(self, name: str, metadata: Dict[str, Any]) -> Dict[str, Any]:
        def _commit():
            unit = self._require(name)
            unit.metadata.update(metadata or {})
            unit.metadata["last_modified_date"] = now_iso()
            self._save_registry()
            return dict(unit.metadata)

        return await self._writer.submit(f"metadata:{name}", _commit)

    async def rollback(self, name: str, version: str) -> CapabilityUnit:
        def _commit():
            unit = self._require(name)
            snapshot = unit.snapshot_for(version)
            if snapshot is not None:
                unit.source = snapshot.get("source", unit.source)
                unit.schema = dict(snapshot.get("schema") or unit.schema)
            unit.version = version
            unit.active = True
            unit.metadata["last_modified_date"] = now_iso()
            self._record_metric(name, "version", version)
            write_module(self.repo_path, name, unit.source)
            self._save_registry()
            self._save_metrics()
            return unit, snapshot is not None

        unit, restored = await self._writer.submit(f"rollback:{name}", _commit)
        if not restored:
            print(f"[Registry] No snapshot for {name}@{version}; version label moved only.", flush=True)
        self.events.emit("text", f"Tool {name} rolled back to version {version} successfully.")
        return unit

    async def remove(self, name: str) -> bool:
        def _commit() -> bool:
            if name not in self._units:
                return False
            del self._units[name]
            self._metrics.pop(name, None)
            self._modules.pop(name, None)
            for path in (self.repo_path / f"{name}.py", self.harness_dir / f"{name}.py"):
                if path.exists():
                    path.unlink()
            self._save_registry()
            self._save_metrics()
            return True

        removed = await self._writer.submit(f"remove:{name}", _commit)
        if removed:
            print(f"[Registry] Tool '{name}' removed.", flush=True)
        return removed

    async def update_metrics(self, name: str, kind: str, data: Any = None) -> CapabilityMetrics:
        if kind not in METRIC_KINDS:
            raise ValidationError(f"Unknown metric kind: {kind}")

        def _commit() -> CapabilityMetrics:
            self._require(name)
            self._record_metric(name, kind, data)
            self._save_metrics()
            return self._metrics[name]

        return await self._writer.submit(f"metrics:{kind}:{name}", _commit)

    async def _record_call(self, name: str, elapsed_ms: Optional[float], is_error: bool) -> None:
        def _commit() -> None:
            if name not in self._metrics:
                return
            if elapsed_ms is not None:
                self._record_metric(name, "execution", elapsed_ms)
            self._record_metric(name, "error", is_error)
            self._record_metric(name, "usage")
            self._save_metrics()

        await self._writer.submit(f"call:{name}", _commit)

    async def _set_test_result(self, name: str, result: HarnessResult) -> None:
        def _commit() -> None:
            unit = self._require(name)
            unit.last_test_result = result
            self._record_metric(name, "test", result.to_dict())
            self._save_registry()
            self._save_metrics()

        await self._writer.submit(f"test:{name}", _commit)

    async def _set_harness(self, name: str, harness: str) -> None:
        def _commit() -> None:
            unit = self._require(name)
            unit.test_harness = harness
            self._save_registry()

        await self._writer.submit(f"harness:{name}", _commit)

    async def shutdown(self) -> None:
        await self._writer.shutdown()

    # ------------------------------------------------------------------ invocation

    def _load_unit_module(self, unit: CapabilityUnit) -> ModuleType:
        digest = source_digest(unit.source)
        cached = self._modules.get(unit.name)
        if cached is not None and cached[0] == digest:
            return cached[1]
        module = load_source_module(self.repo_path, "toolsmith_unit", unit.name, unit.source)
        self._modules[unit.name] = (digest, module)
        return module

    async def _execute_unit(self, unit: CapabilityUnit, params: Dict[str, Any], api: Any) -> Any:
        module = self._load_unit_module(unit)
        execute = getattr(module, "execute", None)
        if not callable(execute):
            raise ValidationError(f"Tool {unit.name} does not define execute(params, api)")
        return await run_callable(execute, params, api)

    async def call(self, name: str, params: Optional[Dict[str, Any]] = None, api: Any = None) -> Any:
        unit = self._units.get(name)
        if unit is None or not unit.active:
            raise NotFound(f"Tool not found: {name}", context={"name": name})
        params = dict(params or {})
        missing = missing_required(unit.schema, params)
        if missing:
            raise ValidationError(
                f"Missing required parameter(s) for {name}: {', '.join(missing)}",
                context={"name": name, "missing": missing},
            )

        started = time.perf_counter()
        try:
            result = await self._execute_unit(unit, params, api)
        except Exception as exc:
            await self._record_call(name, None, True)
            self.events.emit("error", f"Error executing tool {name}: {exc}")
            raise
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        await self._record_call(name, elapsed_ms, False)
        return result

    # ------------------------------------------------------------------ model-driven

    def _require_model(self) -> ModelGateway:
        if self.model is None:
            raise ToolsmithError("Registry has no model gateway configured", code="NO_MODEL")
        return self.model

    async def standardize(self, name: str, source: str, schema: Dict[str, Any]) -> str:
        model = self._require_model()
        messages = [
            ChatMessage(role="system", content=STANDARDIZE_PROMPT.format(
                name=name, description=schema.get("description", "")
            ).strip()),
            ChatMessage(role="user", content=(
                f"Original Tool Code:\n{source}\n\nSchema:\n{json.dumps(schema, indent=2)}\n\n"
                "Provide the complete standardized module."
            )),
        ]
        code = extract_code(await model.complete(messages, slot="registry"))
        if "def execute" not in code:
            raise ValidationError(f"Standardized source for {name} has no execute()")
        compile(code, f"<standardized:{name}>", "exec")
        return code

    async def generate_test_harness(self, name: str) -> Optional[str]:
        unit = self._require(name)
        try:
            model = self._require_model()
            reply = await model.complete([
                ChatMessage(role="system", content=HARNESS_PROMPT.strip()),
                ChatMessage(role="user", content=(
                    f"Tool Source:\n\n{unit.source}\n\nSchema:\n\n{json.dumps(unit.schema)}\n"
                )),
            ], slot="registry")
        except ToolsmithError as exc:
            print(f"[Registry] Harness generation failed for {name}: {exc}", flush=True)
            self.events.emit("error", f"Error generating test harness for tool {name}: {exc}")
            return None

        harness = extract_code(reply)
        await self._set_harness(name, harness)
        self.events.emit("info", f"Test harness generated for tool {name}")
        return harness

    async def run_tests(self, name: str) -> HarnessResult:
        unit = self._require(name)
        if not unit.test_harness.strip():
            self.events.emit("error", f"No test harness found for tool {name}")
            raise NoHarness(f"No test harness found for tool {name}", context={"name": name})

        def _log(message: str) -> None:
            self.events.emit("info", message)

        async def _execute(params: Dict[str, Any]) -> Any:
            return await self._execute_unit(unit, params, None)

        try:
            harness = load_source_module(self.harness_dir, "toolsmith_harness", name, unit.test_harness)
        except Exception as exc:
            result = HarnessResult(success=False, message=f"Test failed: {exc}")
        else:
            result = await run_harness(harness, HarnessContext(name, _execute, _log))

        await self._set_test_result(name, result)
        if not result.success:
            self.events.emit("error", f"Error running tests for tool {name}: {result.message}")
        print(f"[Registry] Tests for {name}: {result.message}", flush=True)
        return result

    async def improve_tool(self, name: str) -> Optional[CapabilityUnit]:
        unit = self._require(name)
        try:
            model = self._require_model()
            reply = await model.complete([
                ChatMessage(role="system", content=IMPROVE_PROMPT.strip()),
                ChatMessage(role="user", content=(
                    f"Tool Source:\n{unit.source}\nSchema: {json.dumps(unit.schema)}\n"
                    f"Test Results: {json.dumps(unit.last_test_result.to_dict() if unit.last_test_result else None)}"
                )),
            ], slot="registry")
        except ToolsmithError as exc:
            self.events.emit("error", f"Error improving tool {name}: {exc}")
            return None

        code = extract_code(reply)
        if not code:
            return None
        updated = await self.update(name, source=code, schema=unit.schema, tags=unit.tags)
        self.events.emit("text", f"Tool {name} improved based on test results")
        return updated

    async def improve_tools(self) -> List[str]:
        improved = []
        for unit in list(self._units.values()):
            if unit.last_test_result is not None and not unit.last_test_result.success:
                if await self.improve_tool(unit.name) is not None:
                    improved.append(unit.name)
        return improved

    async def test_and_improve_tools(self) -> Dict[str, HarnessResult]:
        results: Dict[str, HarnessResult] = {}
        for unit in list(self._units.values()):
            if unit.last_test_result is not None and unit.last_test_result.success:
                continue
            if not unit.test_harness.strip():
                await self.generate_test_harness(unit.name)
                if not self._units.get(unit.name) or not self._units[unit.name].test_harness.strip():
                    continue
            result = await self.run_tests(unit.name)
            results[unit.name] = result
            if not result.success:
                await self.improve_tool(unit.name)
        return results

    async def predict_likely_capabilities(self, request: str) -> LikelyCapabilities:
        if self.model is None or not self._units:
            return LikelyCapabilities()
        prompt = (
            f"{PREDICT_PROMPT.strip()}\n\nUser Request: {request}\n\n"
            f"Existing Capabilities: {', '.join(self._units.keys())}"
        )
        try:
            reply = await self.model.complete_structured(
                [
                    ChatMessage(role="system", content="You predict and suggest capabilities for a given task."),
                    ChatMessage(role="user", content=prompt),
                ],
                LikelyCapabilities,
                slot="registry",
                events=self.events,
            )
        except ToolsmithError as exc:
            print(f"[Registry] Capability prediction failed: {exc}", flush=True)
            return LikelyCapabilities()
        if isinstance(reply, str):
            return LikelyCapabilities()
        reply.likely = [n for n in reply.likely if n in self._units]
        reply.newly_needed = [n for n in reply.newly_needed if n not in self._units]
        return reply

    def _similar_name(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for existing in self._units:
            other = existing.lower()
            if other in lowered or lowered in other:
                return existing
        return None

    async def create_from_script(self, script: str, task_description: str = "") -> Optional[CapabilityUnit]:
        if self.model is None or not script.strip():
            return None
        prompt = ANALYZE_PROMPT.format(
            existing=", ".join(self._units.keys()) or "(none)",
            script=script,
            task=task_description or "Auto-generated from successful script execution",
        )
        reply = await self.model.complete([
            ChatMessage(role="system", content="You analyze scripts and turn reusable ones into capabilities. You return RAW JSON ONLY."),
            ChatMessage(role="user", content=prompt),
        ], slot="registry")
        data = extract_json(reply)
        if not isinstance(data, dict):
            return None
        try:
            analysis = ScriptAnalysis.model_validate(data)
        except SchemaMismatch as exc:
            print(f"[Registry] Script analysis unusable: {exc.error_count()} error(s)", flush=True)
            return None
        if not analysis.name.isidentifier():
            return None
        similar = self._similar_name(analysis.name)
        if similar:
            print(f"[Registry] Similar tool '{similar}' already exists. Skipping addition.", flush=True)
            return None
        schema = {
            "name": analysis.name,
            "description": analysis.description,
            "signature": analysis.methodSignature,
        }
        added = await self.add(
            analysis.name,
            analysis.modifiedScript,
            schema,
            ["auto-generated"],
            metadata={"original_query": task_description, "author": "auto-capture"},
        )
        return self._units.get(analysis.name) if added else None

    async def review_auto_generated(self) -> Dict[str, str]:
        decisions: Dict[str, str] = {}
        if self.model is None:
            return decisions
        for unit in [u for u in self._units.values() if "auto-generated" in u.tags]:
            prompt = REVIEW_PROMPT.format(
                name=unit.name,
                description=unit.description,
                signature=unit.signature,
                source=unit.source,
            )
            try:
                decision = await self.model.complete_structured(
                    [
                        ChatMessage(role="system", content="You review and maintain the capability registry you operate in."),
                        ChatMessage(role="user", content=prompt.strip()),
                    ],
                    ReviewDecision,
                    slot="registry",
                    events=self.events,
                )
            except ToolsmithError as exc:
                print(f"[Registry] Review of {unit.name} failed: {exc}", flush=True)
                continue
            if isinstance(decision, str):
                continue
            if decision.action == "modify" and decision.modifications.strip():
                await self.update(unit.name, source=extract_code(decision.modifications), schema=unit.schema, tags=unit.tags)
            elif decision.action == "remove":
                await self.remove(unit.name)
            print(f"[Registry] Tool '{unit.name}' {decision.action}. Reason: {decision.reason}", flush=True)
            decisions[unit.name] = decision.action
        return decisions

    async def perform_maintenance(self) -> Dict[str, Any]:
        reviewed = await self.review_auto_generated()
        tested = await self.test_and_improve_tools()
        return {
            "reviewed": reviewed,
            "tested": {name: r.to_dict() for name, r in tested.items()},
        }
