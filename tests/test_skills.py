import asyncio

import pytest

from conftest import DOUBLE_SCHEMA, DOUBLE_SOURCE
from toolsmith.errors import NotFound, ValidationError
from toolsmith.execution_context import CapabilityApi, RunContext
from toolsmith.skill_library import SkillLibrary


@pytest.fixture(scope="module")
def skills():
    return SkillLibrary()


def make_api(registry=None, model=None):
    return CapabilityApi(RunContext(request="skills"), registry=registry, model=model)


class TestDiscovery:
    def test_builtin_skills_are_listed(self, skills):
        for name in ("call_llm", "list_tools", "add_tool", "rollback_tool", "generate_tool_report"):
            assert name in skills
        assert not any(name.startswith("_") for name in skills.names)

    def test_schema_skips_api_argument(self, skills):
        schema = skills.schema("call_llm")
        assert "api" not in schema["parameters"]["properties"]
        assert schema["parameters"]["required"] == ["prompt"]

    def test_missing_required_parameter(self, skills):
        with pytest.raises(ValidationError):
            asyncio.run(skills.call("call_llm", {}, make_api()))

    def test_unknown_skill(self, skills):
        with pytest.raises(NotFound):
            asyncio.run(skills.call("nope", {}, make_api()))


class TestCallLlm:
    def test_json_reply_is_parsed_and_stored(self, skills, gateway, provider):
        provider.on("You are a precise assistant", 'Sure: {"city": "Paris"}')
        api = make_api(model=gateway)
        params = {"prompt": "capital of France?", "response_format": {"city": "string"}, "result_var": "capital"}
        value = asyncio.run(skills.call("call_llm", params, api))
        assert value == {"city": "Paris"}
        assert api.store["capital"] == {"city": "Paris"}
        system = provider.calls[-1][1][0].content
        assert "Response Format" in system

    def test_unparseable_reply_falls_back_to_text(self, skills, gateway, provider):
        provider.on("You are a precise assistant", "no json here")
        api = make_api(model=gateway)
        value = asyncio.run(skills.call("call_llm", {"prompt": "x", "response_format": "[]"}, api))
        assert value == "no json here"
        assert api.run.events.recent(event_type="error")

    def test_custom_system_prompt(self, skills, gateway, provider):
        provider.on("You are a pirate", "arr")
        api = make_api(model=gateway)
        assert asyncio.run(skills.call("call_llm", {"prompt": "hello", "system_prompt": "You are a pirate"}, api)) == "arr"


class TestRegistryOps:
    def test_add_list_and_history(self, skills, registry):
        api = make_api(registry=registry)
        added = asyncio.run(skills.call("add_tool", {"name": "double", "source": DOUBLE_SOURCE, "schema": DOUBLE_SCHEMA}, api))
        assert added == {"success": True, "name": "double"}

        duplicate = asyncio.run(skills.call("add_tool", {"name": "double", "source": DOUBLE_SOURCE}, api))
        assert duplicate["success"] is False

        listed = asyncio.run(skills.call("list_tools", {}, api))
        assert [t["name"] for t in listed] == ["double"]

        history = asyncio.run(skills.call("get_tool_history", {"name": "double"}, api))
        assert history == {"success": True, "versions": ["1.0.0"]}

    def test_failures_come_back_as_payloads(self, skills, registry):
        api = make_api(registry=registry)
        result = asyncio.run(skills.call("rollback_tool", {"name": "ghost", "version": "1.0.0"}, api))
        assert result["success"] is False
        assert result["code"] == "NOT_FOUND"

    def test_update_and_performance(self, skills, registry):
        api = make_api(registry=registry)
        asyncio.run(registry.add("double", DOUBLE_SOURCE, dict(DOUBLE_SCHEMA), []))
        updated = asyncio.run(skills.call("update_tool", {"name": "double", "source": DOUBLE_SOURCE + "\n# v2\n"}, api))
        assert updated["version"] == "1.0.1"
        perf = asyncio.run(skills.call("get_tool_performance", {"name": "double"}, api))
        assert perf["metrics"]["versions"] == ["1.0.0", "1.0.1"]
        metadata = asyncio.run(skills.call("update_tool_metadata", {"name": "double", "metadata": {"author": "me"}}, api))
        assert metadata["metadata"]["author"] == "me"
