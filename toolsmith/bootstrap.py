from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from toolsmith.config import Settings, load_config
from toolsmith.events import EventBus
from toolsmith.llm_slots import describe_slots
from toolsmith.maintenance import MaintenanceLoop
from toolsmith.memory_store import MemoryStore, SimilarityBackend
from toolsmith.model_gateway import ModelGateway
from toolsmith.orchestrator import TaskOrchestrator
from toolsmith.registry import CapabilityRegistry
from toolsmith.skill_library import SkillLibrary
from toolsmith.vector_store import SqliteVectorBackend


@dataclass
class Runtime:
    config: Dict[str, Any]
    settings: Settings
    events: EventBus
    model: ModelGateway
    registry: CapabilityRegistry
    memory: MemoryStore
    skills: SkillLibrary
    orchestrator: TaskOrchestrator
    maintenance: MaintenanceLoop

    async def close(self) -> None:
        await self.maintenance.stop()
        await self.orchestrator.drain()
        await self.registry.shutdown()
        await self.model.close()


def build_runtime(
    config: Optional[Dict[str, Any]] = None,
    provider_factory: Optional[Callable[[str, Dict[str, Any]], Any]] = None,
    backend: Optional[SimilarityBackend] = None,
    settings: Optional[Settings] = None,
) -> Runtime:
    cfg = config if config is not None else load_config()
    settings = settings or Settings.from_config(cfg)
    events = EventBus()
    model = ModelGateway(cfg, events=events, provider_factory=provider_factory)
    registry = CapabilityRegistry(settings.repo_path, model=model, events=events)
    memory = MemoryStore(backend or SqliteVectorBackend(settings.db_path, cfg, scan_limit=settings.memory_scan_limit))
    skills = SkillLibrary()
    orchestrator = TaskOrchestrator(
        registry,
        memory,
        model,
        skills=skills,
        settings=settings,
        config=cfg,
        events=events,
    )
    print(
        f"[Bootstrap] {len(registry)} tools, {len(skills.names)} skills, repo={settings.repo_path}",
        flush=True,
    )
    for slot, binding in describe_slots(cfg).items():
        print(f"[Bootstrap] LLM slot {slot}: {binding}", flush=True)
    return Runtime(
        config=cfg,
        settings=settings,
        events=events,
        model=model,
        registry=registry,
        memory=memory,
        skills=skills,
        orchestrator=orchestrator,
        maintenance=MaintenanceLoop(registry, settings.maintenance_interval_sec),
    )
