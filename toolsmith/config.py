"""
config.py - Runtime configuration for Toolsmith.

Loads configs/core_config.json once (path overridable via TOOLSMITH_CONFIG) and
turns it into typed settings. Environment variables win over the file for the
handful of paths that tests and deployments need to move around.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

REPO_ROOT = Path(__file__).resolve().parent.parent
_CONFIG_CACHE: Optional[Dict[str, Any]] = None


def _truthy_env(name: str) -> bool:
    return str(os.getenv(name, "")).strip().lower() in ("1", "true", "yes", "on")


def _cfg_get(cfg: Dict[str, Any], path: str, default: Any) -> Any:
    cur: Any = cfg
    for part in path.split("."):
        if not isinstance(cur, dict) or part not in cur:
            return default
        cur = cur.get(part)
    return default if cur is None else cur


def _resolve_path(value: str) -> Path:
    path = Path(value)
    if not path.is_absolute():
        path = REPO_ROOT / path
    return path


def load_config(path: Optional[str] = None, reload: bool = False) -> Dict[str, Any]:
    global _CONFIG_CACHE
    if _CONFIG_CACHE is not None and not reload and path is None:
        return _CONFIG_CACHE
    config_path = path or os.getenv("TOOLSMITH_CONFIG") or str(REPO_ROOT / "configs" / "core_config.json")
    cfg: Dict[str, Any] = {}
    if os.path.exists(config_path):
        try:
            with open(config_path, "r", encoding="utf-8") as fh:
                cfg = json.load(fh) or {}
        except (OSError, json.JSONDecodeError) as exc:
            print(f"[Config] Failed to read {config_path}: {exc}", flush=True)
            cfg = {}
    if path is None:
        _CONFIG_CACHE = cfg
    return cfg


@dataclass
class Settings:
    # Registry
    repo_path: Path = field(default_factory=lambda: REPO_ROOT / "tool_repo")
    maintenance_interval_sec: float = 3600.0
    auto_capture_scripts: bool = True
    improve_after_run: bool = True

    # Memory
    db_path: Path = field(default_factory=lambda: REPO_ROOT / "memory.db")
    similarity_threshold: float = 0.9
    confidence_threshold: float = 0.8
    memory_scan_limit: int = 500

    # Execution
    script_timeout_sec: float = 300.0

    # Resilience
    max_retries: int = 3
    base_delay_sec: float = 1.0
    global_retry_limit: int = 100
    repair_attempt_limit: int = 10
    repair_delay_sec: float = 1.0
    retryable_messages: List[str] = field(
        default_factory=lambda: ["network timeout", "connection refused", "server unavailable"]
    )

    # Logging
    error_log: Path = field(default_factory=lambda: REPO_ROOT / "artifacts" / "error_log.jsonl")

    @staticmethod
    def from_config(config: Optional[Dict[str, Any]] = None) -> "Settings":
        cfg = config or {}
        s = Settings()

        s.repo_path = _resolve_path(str(_cfg_get(cfg, "registry.repo_path", "tool_repo")))
        s.maintenance_interval_sec = float(_cfg_get(cfg, "registry.maintenance_interval_sec", s.maintenance_interval_sec))
        s.auto_capture_scripts = bool(_cfg_get(cfg, "registry.auto_capture_scripts", s.auto_capture_scripts))
        s.improve_after_run = bool(_cfg_get(cfg, "registry.improve_after_run", s.improve_after_run))

        s.db_path = _resolve_path(str(_cfg_get(cfg, "memory.database_path", "memory.db")))
        s.similarity_threshold = float(_cfg_get(cfg, "memory.similarity_threshold", s.similarity_threshold))
        s.confidence_threshold = float(_cfg_get(cfg, "memory.confidence_threshold", s.confidence_threshold))
        s.memory_scan_limit = int(_cfg_get(cfg, "memory.scan_limit", s.memory_scan_limit))

        s.script_timeout_sec = float(_cfg_get(cfg, "execution.script_timeout_sec", s.script_timeout_sec))

        s.max_retries = int(_cfg_get(cfg, "resilience.max_retries", s.max_retries))
        s.base_delay_sec = float(_cfg_get(cfg, "resilience.base_delay_sec", s.base_delay_sec))
        s.global_retry_limit = int(_cfg_get(cfg, "resilience.global_retry_limit", s.global_retry_limit))
        s.repair_attempt_limit = int(_cfg_get(cfg, "resilience.repair_attempt_limit", s.repair_attempt_limit))
        s.repair_delay_sec = float(_cfg_get(cfg, "resilience.repair_delay_sec", s.repair_delay_sec))
        s.retryable_messages = list(_cfg_get(cfg, "resilience.retryable_messages", s.retryable_messages))

        s.error_log = _resolve_path(str(_cfg_get(cfg, "logging.error_log", "artifacts/error_log.jsonl")))

        # Env overrides for isolated runs (tests, containers).
        if os.getenv("TOOLSMITH_REPO_PATH"):
            s.repo_path = Path(os.environ["TOOLSMITH_REPO_PATH"])
        if os.getenv("TOOLSMITH_DB_PATH"):
            s.db_path = Path(os.environ["TOOLSMITH_DB_PATH"])
        if os.getenv("TOOLSMITH_ERROR_LOG"):
            s.error_log = Path(os.environ["TOOLSMITH_ERROR_LOG"])
        if _truthy_env("TOOLSMITH_NO_AUTO_CAPTURE"):
            s.auto_capture_scripts = False
        return s
