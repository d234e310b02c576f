"""
llm_slots.py - Which provider and model serve each part of the engine.

planner   decomposes requests, adapts remembered answers, backs call_llm
repair    patches failing subtask scripts
registry  standardizes, tests, improves and reviews capabilities

A slot missing from config["llm_slots"] borrows llm_slots["default"], then the
"provider" block, then the first configured provider.
"""

from __future__ import annotations

from typing import Any, Dict, NamedTuple, Optional

from toolsmith.errors import ConfigError
from toolsmith.llm_provider import resolve_provider_config

SLOTS = ("planner", "repair", "registry")


class SlotBinding(NamedTuple):
    provider_name: str
    provider_config: Dict[str, Any]
    model: str


def _binding_from_entry(config: Dict[str, Any], slot: str, entry: Dict[str, Any]) -> Optional[SlotBinding]:
    provider_name = entry.get("provider_name")
    if not provider_name:
        return None
    _, provider_cfg = resolve_provider_config(config, provider_name)
    overrides = entry.get("provider_overrides") or {}
    if isinstance(overrides, dict) and overrides:
        provider_cfg = {**provider_cfg, **overrides}
    model = entry.get("model") or provider_cfg.get("model")
    if not model:
        raise ConfigError(
            f"LLM slot '{slot}' names provider '{provider_name}' but no model",
            context={"slot": slot, "provider": provider_name},
        )
    return SlotBinding(provider_name, provider_cfg, model)


def resolve_llm_slot(config: Dict[str, Any], slot: str) -> SlotBinding:
    if slot not in SLOTS:
        raise ConfigError(f"Unknown LLM slot '{slot}'; expected one of {', '.join(SLOTS)}", context={"slot": slot})

    llm_slots = config.get("llm_slots", {}) or {}
    for key in (slot, "default"):
        binding = _binding_from_entry(config, slot, llm_slots.get(key) or {})
        if binding is not None:
            return binding

    base = config.get("provider", {}) or {}
    providers = config.get("providers", {}) or {}
    provider_name = base.get("name") or next(iter(providers), None)
    if not provider_name:
        raise ConfigError(f"No provider configured for LLM slot '{slot}'", context={"slot": slot})
    return _binding_from_entry(config, slot, {"provider_name": provider_name, "model": base.get("model")})


def describe_slots(config: Dict[str, Any]) -> Dict[str, str]:
    """slot -> "provider/model" for every slot, for startup logs and /status."""
    out = {}
    for slot in SLOTS:
        try:
            binding = resolve_llm_slot(config, slot)
            out[slot] = f"{binding.provider_name}/{binding.model}"
        except ConfigError as exc:
            out[slot] = f"unresolved ({exc})"
    return out
