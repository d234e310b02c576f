import asyncio
from typing import List

import pytest
from pydantic import BaseModel

from toolsmith.errors import ConfigError, ModelCallFailed
from toolsmith.events import EventBus
from toolsmith.llm_provider import ChatMessage, ChatResponse
from toolsmith.llm_slots import describe_slots, resolve_llm_slot
from toolsmith.model_gateway import ModelGateway


class Verdict(BaseModel):
    ok: bool
    reasons: List[str] = []


def messages():
    return [ChatMessage(role="system", content="Judge things."), ChatMessage(role="user", content="Is it fine?")]


class TestGateway:
    def test_structured_reply(self, gateway, provider):
        provider.on("Judge things", '```json\n{"ok": true, "reasons": ["tidy"]}\n```')
        verdict = asyncio.run(gateway.complete_structured(messages(), Verdict, slot="registry"))
        assert verdict == Verdict(ok=True, reasons=["tidy"])
        system = provider.calls[-1][1][0].content
        assert system.startswith("Judge things.")
        assert "***OUTPUT RAW JSON ONLY***" in system

    def test_mismatch_returns_raw_text_and_emits_error(self, gateway, provider):
        provider.on("Judge things", '{"verdict": "maybe"}')
        bus = EventBus()
        reply = asyncio.run(gateway.complete_structured(messages(), Verdict, events=bus))
        assert reply == '{"verdict": "maybe"}'
        assert len(bus.recent(event_type="error")) == 1

    def test_failed_transport_raises(self, gateway, provider):
        provider.on("Judge things", ChatResponse(content="connection refused: host", model="m", success=False))
        with pytest.raises(ModelCallFailed, match="connection refused"):
            asyncio.run(gateway.complete(messages()))

    def test_slots_share_provider_instances_per_slot(self, config):
        created = []

        def factory(name, cfg):
            created.append(name)
            return object()

        gateway = ModelGateway(config, provider_factory=factory)
        gateway._brain_for_slot("planner")
        gateway._brain_for_slot("planner")
        gateway._brain_for_slot("repair")
        assert created == ["fake", "fake"]


class TestSlots:
    def test_slot_from_config(self, config):
        name, cfg, model = resolve_llm_slot(config, "planner")
        assert (name, model) == ("fake", "fake-model")
        assert cfg["provider_type"] == "openai_compatible"

    def test_unconfigured_slot_falls_back_to_first_provider(self, config):
        del config["llm_slots"]["repair"]
        binding = resolve_llm_slot(config, "repair")
        assert (binding.provider_name, binding.model) == ("fake", "fake-model")

    def test_default_entry_and_overrides(self, config):
        config["llm_slots"] = {"default": {"provider_name": "fake", "provider_overrides": {"timeout_sec": 5}}}
        binding = resolve_llm_slot(config, "planner")
        assert binding.model == "fake-model"
        assert binding.provider_config["timeout_sec"] == 5

    def test_unknown_slot_is_a_config_error(self, config):
        with pytest.raises(ConfigError, match="Unknown LLM slot"):
            resolve_llm_slot(config, "nope")

    def test_describe_slots(self, config):
        assert describe_slots(config) == {slot: "fake/fake-model" for slot in ("planner", "repair", "registry")}
        assert "unresolved" in describe_slots({})["planner"]
