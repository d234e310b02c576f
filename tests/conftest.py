"""
Shared fixtures: a scripted model provider, isolated registry/memory paths, and a
fresh process-wide retry governor for every test.
"""
import json
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from toolsmith.config import Settings
from toolsmith.llm_provider import ChatResponse
from toolsmith.memory_store import MemoryStore
from toolsmith.model_gateway import ModelGateway
from toolsmith.registry import CapabilityRegistry
from toolsmith.resilience import get_retry_governor
from toolsmith.vector_store import SqliteVectorBackend

DOUBLE_SOURCE = '''async def execute(params, api):
    """Double a number."""
    return params["value"] * 2
'''

DOUBLE_SCHEMA = {
    "description": "Double a number",
    "parameters": {
        "type": "object",
        "properties": {"value": {"type": "integer"}},
        "required": ["value"],
    },
}


class ScriptedProvider:
    """Fake chat provider. Replies are routed by a substring of the system message."""

    def __init__(self):
        self.routes = []
        self.calls = []

    def on(self, needle, reply):
        """reply: a string, a list of strings consumed in order, or a callable(messages) -> str."""
        self.routes.append((needle, reply))
        return self

    def calls_for(self, needle):
        return [msgs for _, msgs in self.calls if msgs and needle in msgs[0].content]

    async def chat(self, messages, model, temperature=0.7, max_tokens=None):
        self.calls.append((model, list(messages)))
        system = messages[0].content if messages and messages[0].role == "system" else ""
        for needle, reply in self.routes:
            if needle not in system:
                continue
            if callable(reply):
                text = reply(messages)
            elif isinstance(reply, list):
                text = reply.pop(0) if reply else ""
            else:
                text = reply
            if isinstance(text, ChatResponse):
                return text
            return ChatResponse(content=text, model=model)
        return ChatResponse(content="", model=model)


@pytest.fixture(autouse=True)
def fresh_retry_governor():
    get_retry_governor().reset(100)
    yield
    get_retry_governor().reset(100)


@pytest.fixture
def provider():
    return ScriptedProvider()


@pytest.fixture
def config():
    slot = {"provider_name": "fake", "model": "fake-model"}
    return {
        "providers": {"fake": {"type": "openai_compatible", "model": "fake-model"}},
        "llm_slots": {"planner": dict(slot), "repair": dict(slot), "registry": dict(slot)},
        "embeddings": {"enabled": False, "hash_dimensions": 256},
        "registry": {"auto_capture_scripts": False, "improve_after_run": False},
        "resilience": {
            "max_retries": 3,
            "base_delay_sec": 0.0,
            "repair_attempt_limit": 3,
            "repair_delay_sec": 0.0,
        },
        "execution": {"script_timeout_sec": 5},
    }


@pytest.fixture
def settings(tmp_path, config, monkeypatch):
    monkeypatch.setenv("TOOLSMITH_REPO_PATH", str(tmp_path / "tool_repo"))
    monkeypatch.setenv("TOOLSMITH_DB_PATH", str(tmp_path / "memory.db"))
    monkeypatch.setenv("TOOLSMITH_ERROR_LOG", str(tmp_path / "error_log.jsonl"))
    return Settings.from_config(config)


@pytest.fixture
def gateway(config, provider):
    return ModelGateway(config, provider_factory=lambda name, cfg: provider)


@pytest.fixture
def registry(settings, gateway):
    return CapabilityRegistry(settings.repo_path, model=gateway)


@pytest.fixture
def memory(settings, config):
    return MemoryStore(SqliteVectorBackend(settings.db_path, config))


async def no_sleep(_delay):
    return None


def plan_reply(subtasks, commentary="Here is the plan:"):
    return f"{commentary}\n```json\n{json.dumps(subtasks)}\n```\nLet me know if you need more."
