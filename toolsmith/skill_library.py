#!/usr/bin/env python3
"""
SkillLibrary - built-in capabilities shipped with Toolsmith.

Every public function in skills/*.py is exposed under its bare name. Skills are
plain functions with typed keyword arguments plus an optional `api` argument; they
run directly, outside the registry's metrics and retry policy.
"""

import inspect
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from toolsmith.config import REPO_ROOT
from toolsmith.errors import NotFound, ValidationError
from toolsmith.module_loader import accepts, load_module_from_path, run_tool
from toolsmith.toolbook_utils import build_tool_schema, missing_required


class SkillLibrary:
    def __init__(self, skills_dir: Optional[Path] = None):
        self.skills_dir = Path(skills_dir or os.getenv("TOOLSMITH_SKILLS_DIR") or REPO_ROOT / "skills")
        self._skills: Dict[str, Tuple[Callable, Dict[str, Any]]] = {}
        self.discover()

    def discover(self) -> int:
        skills: Dict[str, Tuple[Callable, Dict[str, Any]]] = {}
        if not self.skills_dir.exists():
            print(f"[Skills] No skills directory at {self.skills_dir}", flush=True)
            self._skills = skills
            return 0
        for path in sorted(self.skills_dir.glob("*.py")):
            if path.name.startswith("_"):
                continue
            module_name = f"toolsmith_skill_{path.stem}"
            try:
                module = load_module_from_path(module_name, str(path))
            except Exception as exc:
                print(f"[Skills] Failed to load {path.name}: {exc}", flush=True)
                continue
            for name, func in inspect.getmembers(module, inspect.isfunction):
                if name.startswith("_") or func.__module__ != module_name:
                    continue
                skills[name] = (func, build_tool_schema(name, func))
        self._skills = skills
        print(f"[Skills] {len(skills)} built-in skills available", flush=True)
        return len(skills)

    @property
    def names(self) -> List[str]:
        return sorted(self._skills.keys())

    def __contains__(self, name: str) -> bool:
        return name in self._skills

    def schema(self, name: str) -> Dict[str, Any]:
        if name not in self._skills:
            raise NotFound(f"Skill not found: {name}", context={"name": name})
        return self._skills[name][1]

    def get_compact_representation(self) -> str:
        return "\n".join(
            f"{schema['signature']} - {schema['description']}" for _, schema in (self._skills[n] for n in self.names)
        )

    async def call(self, name: str, params: Optional[Dict[str, Any]] = None, api: Any = None) -> Any:
        if name not in self._skills:
            raise NotFound(f"Skill not found: {name}", context={"name": name})
        func, schema = self._skills[name]
        arguments = dict(params or {})
        missing = missing_required(schema, arguments)
        if missing:
            raise ValidationError(
                f"Missing required parameter(s) for {name}: {', '.join(missing)}",
                context={"name": name, "missing": missing},
            )
        if accepts(func, "api"):
            arguments["api"] = api
        return await run_tool(func, arguments)
