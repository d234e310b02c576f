"""
execution_context.py - What a running script can see.

A RunContext is created per orchestrator run and threaded through everything the
run touches: the request, the shared result store and the run's EventBus. The
ExecutionContext handed to a script is rebuilt from it before every execution,
because the store grows as subtasks complete.
"""

import asyncio
import threading
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional

from toolsmith.errors import NotFound
from toolsmith.events import EventBus

if TYPE_CHECKING:
    from toolsmith.model_gateway import ModelGateway
    from toolsmith.registry import CapabilityRegistry
    from toolsmith.resilience import RetryPolicy
    from toolsmith.skill_library import SkillLibrary

Invocable = Callable[..., Awaitable[Any]]


@dataclass
class RunContext:
    request: str = ""
    events: EventBus = field(default_factory=EventBus)
    store: Dict[str, Any] = field(default_factory=dict)
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    loop: Optional[asyncio.AbstractEventLoop] = None
    _loop_thread: Optional[int] = field(default=None, repr=False)

    def bind_loop(self) -> None:
        self.loop = asyncio.get_running_loop()
        self._loop_thread = threading.get_ident()

    def emit(self, event_type: str, content: Any = None) -> None:
        # Sync capabilities run in executor threads; hop back onto the loop.
        if self.loop is not None and threading.get_ident() != self._loop_thread and not self.loop.is_closed():
            self.loop.call_soon_threadsafe(self.events.emit, event_type, content)
            return
        self.events.emit(event_type, content)


class CapabilityApi:
    """The `api` argument of execute(params, api)."""

    def __init__(
        self,
        run: RunContext,
        registry: Optional["CapabilityRegistry"] = None,
        model: Optional["ModelGateway"] = None,
        invoke: Optional[Callable[[str, Dict[str, Any]], Awaitable[Any]]] = None,
    ):
        self.run = run
        self.registry = registry
        self.model = model
        self._invoke = invoke

    @property
    def store(self) -> Dict[str, Any]:
        return self.run.store

    def emit(self, event: str, payload: Any = None) -> None:
        self.run.emit(event, payload)

    async def call_tool(self, name: str, params: Optional[Dict[str, Any]] = None) -> Any:
        if self._invoke is None:
            raise NotFound(f"Tool not found: {name}", context={"name": name})
        return await self._invoke(name, dict(params or {}))


class CapabilityTable:
    """Name -> invocable lookup; supports tools.name(...) and tools["name"](...)."""

    def __init__(self, invocables: Dict[str, Invocable]):
        self._invocables = dict(invocables)

    def __getitem__(self, name: str) -> Invocable:
        try:
            return self._invocables[name]
        except KeyError:
            raise NotFound(f"Tool not found: {name}", context={"name": name}) from None

    def __getattr__(self, name: str) -> Invocable:
        if name.startswith("_"):
            raise AttributeError(name)
        return self[name]

    def __contains__(self, name: str) -> bool:
        return name in self._invocables

    def __iter__(self):
        return iter(self._invocables)

    def __len__(self) -> int:
        return len(self._invocables)

    def names(self) -> List[str]:
        return list(self._invocables.keys())


@dataclass
class ExecutionContext:
    tools: CapabilityTable
    results: Dict[str, Any]
    store: Dict[str, Any]
    emit: Callable[[str, Any], None]
    api: CapabilityApi

    def keys(self) -> List[str]:
        return ["tools", "results", "store", "emit", *self.results.keys()]


def build_execution_context(
    run: RunContext,
    registry: Optional["CapabilityRegistry"] = None,
    skills: Optional["SkillLibrary"] = None,
    model: Optional["ModelGateway"] = None,
    policy: Optional["RetryPolicy"] = None,
) -> ExecutionContext:
    async def invoke(name: str, params: Dict[str, Any]) -> Any:
        if registry is not None and name in registry:
            if policy is None:
                return await registry.call(name, params, api)
            return await policy.run(lambda: registry.call(name, params, api), tool_name=name)
        if skills is not None and name in skills:
            return await skills.call(name, params, api)
        raise NotFound(f"Tool not found: {name}", context={"name": name})

    api = CapabilityApi(run, registry=registry, model=model, invoke=invoke)

    def bind(name: str) -> Invocable:
        async def call(params: Optional[Dict[str, Any]] = None, **kwargs: Any) -> Any:
            merged = dict(params or {})
            merged.update(kwargs)
            return await invoke(name, merged)

        call.__name__ = name
        return call

    names: List[str] = list(skills.names) if skills is not None else []
    if registry is not None:
        names.extend(u.name for u in registry.list_units() if u.active)

    return ExecutionContext(
        tools=CapabilityTable({name: bind(name) for name in names}),
        results=dict(run.store),
        store=run.store,
        emit=run.emit,
        api=api,
    )
