"""Capability registry: lifecycle, versioning, metrics, harnesses and model-driven upkeep."""
import asyncio
import json

import pytest

from conftest import DOUBLE_SCHEMA, DOUBLE_SOURCE
from toolsmith.capability import CapabilityMetrics
from toolsmith.errors import NoHarness, NotFound, ValidationError
from toolsmith.registry import CapabilityRegistry

BOOM_SOURCE = '''def execute(params, api):
    raise ValueError("kaboom")
'''

HARNESS = '''def before_all(context):
    context.log("setup")


async def test_doubles(context):
    result = await context.execute({"value": 4})
    context.check(result == 8, "doubles four")


async def test_doubles_negative(context):
    result = await context.execute({"value": -3})
    context.check(result == -6, "doubles negatives")
'''

FAILING_HARNESS = '''async def test_wrong(context):
    result = await context.execute({"value": 2})
    context.check(result == 5, "two doubled is five")
'''


def add_double(registry):
    return asyncio.run(registry.add("double", DOUBLE_SOURCE, dict(DOUBLE_SCHEMA), ["math"]))


class TestAdd:
    def test_add_persists_unit_and_metrics(self, registry):
        assert add_double(registry) is True
        unit = registry.get("double")
        assert unit.version == "1.0.0"
        assert unit.tags == ["math"]
        assert unit.source == DOUBLE_SOURCE  # standardization reply was empty

        saved = json.loads(registry.registry_file.read_text())
        assert [t["name"] for t in saved["tools"]] == ["double"]
        metrics = json.loads(registry.metrics_file.read_text())
        assert metrics["double"]["versions"] == ["1.0.0"]
        assert (registry.repo_path / "double.py").exists()

    def test_duplicate_add_is_rejected(self, registry):
        add_double(registry)
        assert add_double(registry) is False
        assert len(registry) == 1

    def test_invalid_name(self, registry):
        with pytest.raises(ValidationError):
            asyncio.run(registry.add("not a name", DOUBLE_SOURCE, {}, []))

    def test_standardized_source_is_used(self, registry, provider):
        standardized = "async def execute(params, api):\n    return params['value'] * 2  # standardized\n"
        provider.on("You standardize capability code", f"```python\n{standardized}```")
        add_double(registry)
        assert "# standardized" in registry.get("double").source

    def test_reload_from_disk(self, registry, settings, gateway):
        add_double(registry)
        asyncio.run(registry.call("double", {"value": 2}))
        reloaded = CapabilityRegistry(settings.repo_path, model=gateway)
        assert reloaded.names == ["double"]
        assert reloaded.get_metrics("double").usage_count == 1


class TestUpdateAndRollback:
    def test_patch_bumps_only_on_change(self, registry):
        add_double(registry)
        new_source = DOUBLE_SOURCE.replace("* 2", "* 2 + 0")

        unit = asyncio.run(registry.update("double", source=new_source))
        assert unit.version == "1.0.1"

        unit = asyncio.run(registry.update("double", source=new_source, tags=["math", "arith"]))
        assert unit.version == "1.0.1"
        assert unit.tags == ["arith", "math"]

        schema = dict(DOUBLE_SCHEMA, description="Double a number, twice as well")
        unit = asyncio.run(registry.update("double", schema=schema))
        assert unit.version == "1.0.2"
        assert registry.get_history("double") == ["1.0.0", "1.0.1", "1.0.2"]

    def test_update_missing(self, registry):
        with pytest.raises(NotFound):
            asyncio.run(registry.update("ghost", source="x = 1"))

    def test_update_can_deactivate(self, registry):
        add_double(registry)
        asyncio.run(registry.update("double", active=False))
        with pytest.raises(NotFound):
            asyncio.run(registry.call("double", {"value": 1}))

    def test_rollback_restores_snapshot(self, registry):
        add_double(registry)
        triple = DOUBLE_SOURCE.replace("* 2", "* 3")
        asyncio.run(registry.update("double", source=triple))
        assert asyncio.run(registry.call("double", {"value": 2})) == 6

        unit = asyncio.run(registry.rollback("double", "1.0.0"))
        assert unit.version == "1.0.0"
        assert unit.source == DOUBLE_SOURCE
        assert asyncio.run(registry.call("double", {"value": 2})) == 4
        assert registry.get_history("double")[-1] == "1.0.0"

    def test_update_after_rollback_issues_a_new_version(self, registry):
        add_double(registry)
        first = DOUBLE_SOURCE + "\n# v1\n"
        asyncio.run(registry.update("double", source=first))
        asyncio.run(registry.rollback("double", "1.0.0"))

        unit = asyncio.run(registry.update("double", source=DOUBLE_SOURCE + "\n# v2\n"))

        assert unit.version == "1.0.2"
        assert unit.snapshot_for("1.0.1")["source"] == first
        assert [h["version"] for h in unit.history] == ["1.0.0", "1.0.1", "1.0.2"]

    def test_rollback_missing(self, registry):
        with pytest.raises(NotFound):
            asyncio.run(registry.rollback("ghost", "1.0.0"))


class TestRemove:
    def test_remove_drops_metrics_and_is_idempotent(self, registry):
        add_double(registry)
        assert asyncio.run(registry.remove("double")) is True
        assert asyncio.run(registry.remove("double")) is False
        assert "double" not in json.loads(registry.metrics_file.read_text())
        assert not (registry.repo_path / "double.py").exists()
        with pytest.raises(NotFound):
            registry.get_metrics("double")


class TestCall:
    def test_success_records_execution_and_usage(self, registry):
        add_double(registry)
        assert asyncio.run(registry.call("double", {"value": 21})) == 42
        assert asyncio.run(registry.call("double", {"value": 1})) == 2
        metrics = registry.get_metrics("double")
        assert metrics.usage_count == 2
        assert metrics.error_rate == 0.0
        assert metrics.execution_stats.total_executions == 2
        assert metrics.execution_stats.fastest_execution_time <= metrics.execution_stats.slowest_execution_time

    def test_failure_records_error(self, registry):
        asyncio.run(registry.add("boom", BOOM_SOURCE, {"description": "always fails"}, []))
        with pytest.raises(ValueError, match="kaboom"):
            asyncio.run(registry.call("boom", {}))
        metrics = registry.get_metrics("boom")
        assert metrics.usage_count == 1
        assert metrics.error_rate == 1.0
        assert metrics.execution_stats.total_executions == 0

    def test_missing_required_parameter(self, registry):
        add_double(registry)
        with pytest.raises(ValidationError):
            asyncio.run(registry.call("double", {}))

    def test_unknown_tool(self, registry):
        with pytest.raises(NotFound):
            asyncio.run(registry.call("ghost", {}))

    def test_module_is_loaded_once_per_source(self, registry, monkeypatch):
        import toolsmith.registry as registry_module

        loads = []
        original = registry_module.load_source_module

        def counting(directory, prefix, name, source):
            loads.append(name)
            return original(directory, prefix, name, source)

        monkeypatch.setattr(registry_module, "load_source_module", counting)
        add_double(registry)
        assert asyncio.run(registry.call("double", {"value": 1})) == 2
        assert asyncio.run(registry.call("double", {"value": 2})) == 4
        assert loads == ["double"]

        asyncio.run(registry.update("double", source=DOUBLE_SOURCE.replace("* 2", "* 3")))
        assert asyncio.run(registry.call("double", {"value": 2})) == 6
        assert loads == ["double", "double"]

    def test_find_by_source_ignores_whitespace(self, registry):
        add_double(registry)
        assert registry.find_by_source("\n\n" + DOUBLE_SOURCE + "\n\n").name == "double"
        assert registry.get(DOUBLE_SOURCE).name == "double"
        assert registry.find_by_source("x = 1") is None


class TestMetricsFormulas:
    def test_running_mean_and_extremes(self):
        metrics = CapabilityMetrics()
        for elapsed in (10.0, 20.0, 30.0):
            metrics.record("execution", elapsed)
        stats = metrics.execution_stats
        assert stats.average_execution_time == pytest.approx(20.0)
        assert stats.fastest_execution_time == 10.0
        assert stats.slowest_execution_time == 30.0
        assert stats.last_execution_time == 30.0

    def test_error_rate_uses_usage_before_increment(self):
        metrics = CapabilityMetrics()
        metrics.record("error", True)
        metrics.record("usage")
        metrics.record("error", False)
        metrics.record("usage")
        assert metrics.error_rate == pytest.approx(0.5)
        assert metrics.usage_count == 2

    def test_unknown_kind(self, registry):
        add_double(registry)
        with pytest.raises(ValidationError):
            asyncio.run(registry.update_metrics("double", "latency", 1))

    def test_round_trip_keeps_unset_fastest(self):
        restored = CapabilityMetrics.from_dict(json.loads(json.dumps(CapabilityMetrics().to_dict())))
        assert restored.execution_stats.total_executions == 0


class TestHarness:
    def test_run_tests_without_harness(self, registry):
        add_double(registry)
        with pytest.raises(NoHarness):
            asyncio.run(registry.run_tests("double"))

    def test_generated_harness_runs_before_all_first(self, registry, provider):
        provider.on("You write test harnesses", f"```python\n{HARNESS}```")
        add_double(registry)
        asyncio.run(registry.generate_test_harness("double"))

        result = asyncio.run(registry.run_tests("double"))
        assert result.success is True
        assert result.message == "All tests passed successfully"

        logs = [e.content for e in registry.events.recent(event_type="info") if "[double Test]" in str(e.content)]
        assert logs[0] == "[double Test] setup"
        assert "[double Test] doubles four" in logs
        assert registry.get_metrics("double").test_results.passed == 1

    def test_failing_check_marks_unit_failed(self, registry, provider):
        provider.on("You write test harnesses", FAILING_HARNESS)
        add_double(registry)
        asyncio.run(registry.generate_test_harness("double"))
        result = asyncio.run(registry.run_tests("double"))
        assert result.success is False
        assert result.message == "Test failed: two doubled is five"
        assert registry.get("double").last_test_result.success is False
        assert registry.get_metrics("double").test_results.failed == 1


class TestModelDrivenUpkeep:
    def test_improve_tools_updates_failing_units(self, registry, provider):
        provider.on("You write test harnesses", FAILING_HARNESS)
        provider.on("You improve Python capability modules", "```python\nasync def execute(params, api):\n    return 5\n```")
        add_double(registry)
        asyncio.run(registry.generate_test_harness("double"))
        asyncio.run(registry.run_tests("double"))

        improved = asyncio.run(registry.improve_tools())
        assert improved == ["double"]
        assert registry.get("double").version == "1.0.1"
        assert asyncio.run(registry.call("double", {"value": 2})) == 5

    def test_improvement_keeps_deactivated_unit_inactive(self, registry, provider):
        provider.on("You write test harnesses", FAILING_HARNESS)
        provider.on("You improve Python capability modules", "```python\nasync def execute(params, api):\n    return 5\n```")
        add_double(registry)
        asyncio.run(registry.generate_test_harness("double"))
        asyncio.run(registry.run_tests("double"))
        asyncio.run(registry.update("double", active=False))

        assert asyncio.run(registry.improve_tools()) == ["double"]
        unit = registry.get("double")
        assert unit.version == "1.0.1"
        assert unit.active is False

    def test_test_and_improve_generates_missing_harness(self, registry, provider):
        provider.on("You write test harnesses", HARNESS)
        add_double(registry)
        results = asyncio.run(registry.test_and_improve_tools())
        assert results["double"].success is True

    def test_create_from_script(self, registry, provider):
        analysis = {
            "name": "add_numbers",
            "description": "Add two numbers",
            "methodSignature": "add_numbers(a: int, b: int) -> int",
            "modifiedScript": "async def execute(params, api):\n    return params['a'] + params['b']\n",
        }
        provider.on("You analyze scripts", json.dumps(analysis))
        unit = asyncio.run(registry.create_from_script("1 + 2", "add numbers"))
        assert unit.name == "add_numbers"
        assert "auto-generated" in unit.tags
        assert asyncio.run(registry.call("add_numbers", {"a": 1, "b": 2})) == 3

    def test_create_from_script_declined(self, registry, provider):
        provider.on("You analyze scripts", "null")
        assert asyncio.run(registry.create_from_script("1 + 2")) is None
        assert len(registry) == 0

    def test_create_from_script_skips_similar_name(self, registry, provider):
        add_double(registry)
        analysis = {
            "name": "double_number",
            "description": "Double",
            "methodSignature": "double_number(value: int) -> int",
            "modifiedScript": DOUBLE_SOURCE,
        }
        provider.on("You analyze scripts", json.dumps(analysis))
        assert asyncio.run(registry.create_from_script("x * 2")) is None
        assert registry.names == ["double"]

    def test_review_removes_auto_generated(self, registry, provider):
        provider.on("You review and maintain", '{"action": "remove", "reason": "duplicate"}')
        asyncio.run(registry.add("scratch", DOUBLE_SOURCE, {}, ["auto-generated"]))
        add_double(registry)
        decisions = asyncio.run(registry.review_auto_generated())
        assert decisions == {"scratch": "remove"}
        assert registry.names == ["double"]

    def test_predict_filters_unknown_names(self, registry, provider):
        provider.on("You predict and suggest capabilities", '{"likely": ["double", "ghost"], "newly_needed": ["double", "triple"]}')
        add_double(registry)
        prediction = asyncio.run(registry.predict_likely_capabilities("double 4"))
        assert prediction.likely == ["double"]
        assert prediction.newly_needed == ["triple"]


class TestReport:
    def test_text_and_json(self, registry):
        add_double(registry)
        asyncio.run(registry.call("double", {"value": 1}))
        text = registry.generate_report("text")
        assert "Tool: double" in text
        assert "Usage Count: 1" in text
        assert registry.generate_report("json")["double"]["usage_count"] == 1

    def test_compact_representation(self, registry):
        add_double(registry)
        assert registry.get_compact_representation() == "double(value: int) - Double a number"
