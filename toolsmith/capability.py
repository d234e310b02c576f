"""
capability.py - A named, versioned unit of executable behavior.

A capability's source is a Python module exposing execute(params, api), sync or
async. Its test harness is a second module with an optional before_all(context)
step and any number of test_*(context) steps. Metrics are plain counters kept
in a table parallel to the units and persisted on their own.
"""

from __future__ import annotations

import hashlib
import inspect
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from types import ModuleType
from typing import Any, Awaitable, Callable, Dict, List, Optional

from toolsmith.module_loader import load_module_from_path

DEFAULT_VERSION = "1.0.0"
METRIC_KINDS = ("version", "test", "execution", "error", "usage")


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def bump_patch(version: str) -> str:
    try:
        major, minor, patch = (int(part) for part in version.split("."))
    except ValueError:
        return DEFAULT_VERSION
    return f"{major}.{minor}.{patch + 1}"


def version_key(version: str) -> tuple:
    try:
        return tuple(int(part) for part in version.split("."))
    except (AttributeError, ValueError):
        return (0, 0, 0)


def source_digest(source: str) -> str:
    return hashlib.sha1((source or "").encode("utf-8")).hexdigest()[:12]


@dataclass
class HarnessStats:
    total_runs: int = 0
    passed: int = 0
    failed: int = 0
    last_run: Optional[str] = None


@dataclass
class ExecutionStats:
    total_executions: int = 0
    average_execution_time: float = 0.0
    last_execution_time: Optional[float] = None
    fastest_execution_time: float = float("inf")
    slowest_execution_time: float = 0.0


@dataclass
class CapabilityMetrics:
    versions: List[str] = field(default_factory=list)
    total_updates: int = 0
    last_updated: Optional[str] = None
    test_results: HarnessStats = field(default_factory=HarnessStats)
    execution_stats: ExecutionStats = field(default_factory=ExecutionStats)
    error_rate: float = 0.0
    usage_count: int = 0

    def record(self, kind: str, data: Any = None) -> None:
        if kind == "version":
            self.versions.append(str(data))
            self.total_updates += 1
            self.last_updated = now_iso()
        elif kind == "test":
            self.test_results.total_runs += 1
            if data and data.get("success"):
                self.test_results.passed += 1
            else:
                self.test_results.failed += 1
            self.test_results.last_run = now_iso()
        elif kind == "execution":
            elapsed = float(data)
            stats = self.execution_stats
            stats.total_executions += 1
            n = stats.total_executions
            stats.average_execution_time = (stats.average_execution_time * (n - 1) + elapsed) / n
            stats.last_execution_time = elapsed
            stats.fastest_execution_time = min(stats.fastest_execution_time, elapsed)
            stats.slowest_execution_time = max(stats.slowest_execution_time, elapsed)
        elif kind == "error":
            # Evaluated against the usage count before this call is counted.
            is_error = 1.0 if data else 0.0
            self.error_rate = (self.error_rate * self.usage_count + is_error) / (self.usage_count + 1)
        elif kind == "usage":
            self.usage_count += 1
        else:
            raise ValueError(f"Unknown metric kind: {kind}")

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if data["execution_stats"]["fastest_execution_time"] == float("inf"):
            data["execution_stats"]["fastest_execution_time"] = None
        return data

    @staticmethod
    def from_dict(data: Optional[Dict[str, Any]]) -> "CapabilityMetrics":
        data = dict(data or {})
        exec_raw = dict(data.get("execution_stats") or {})
        if exec_raw.get("fastest_execution_time") is None:
            exec_raw["fastest_execution_time"] = float("inf")
        return CapabilityMetrics(
            versions=list(data.get("versions") or []),
            total_updates=int(data.get("total_updates", 0)),
            last_updated=data.get("last_updated"),
            test_results=HarnessStats(**(data.get("test_results") or {})),
            execution_stats=ExecutionStats(**exec_raw),
            error_rate=float(data.get("error_rate", 0.0)),
            usage_count=int(data.get("usage_count", 0)),
        )


@dataclass
class HarnessResult:
    success: bool
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "message": self.message}


@dataclass
class CapabilityUnit:
    name: str
    source: str
    schema: Dict[str, Any] = field(default_factory=dict)
    version: str = DEFAULT_VERSION
    tags: List[str] = field(default_factory=list)
    active: bool = True
    test_harness: str = ""
    last_test_result: Optional[HarnessResult] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    history: List[Dict[str, Any]] = field(default_factory=list)
    metrics: CapabilityMetrics = field(default_factory=CapabilityMetrics, repr=False)

    @property
    def description(self) -> str:
        return str(self.schema.get("description") or self.metadata.get("description") or "")

    @property
    def signature(self) -> str:
        return str(self.schema.get("signature") or self.schema.get("methodSignature") or f"{self.name}(params)")

    def compact(self) -> str:
        return f"{self.signature} - {self.description}"

    def latest_version(self) -> str:
        """Highest version ever issued, which can be above the current one after a rollback."""
        labels = [self.version] + [h.get("version") for h in self.history if h.get("version")]
        return max(labels, key=version_key)

    def record_snapshot(self) -> None:
        if self.snapshot_for(self.version) is not None:
            return
        self.history.append({
            "version": self.version,
            "source": self.source,
            "schema": dict(self.schema),
            "ts": time.time(),
        })

    def snapshot_for(self, version: str) -> Optional[Dict[str, Any]]:
        for entry in reversed(self.history):
            if entry.get("version") == version:
                return entry
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "version": self.version,
            "source": self.source,
            "schema": self.schema,
            "tags": sorted(set(self.tags)),
            "active": self.active,
            "test_harness": self.test_harness,
            "last_test_result": self.last_test_result.to_dict() if self.last_test_result else None,
            "metadata": self.metadata,
            "history": self.history,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "CapabilityUnit":
        last = data.get("last_test_result")
        return CapabilityUnit(
            name=data["name"],
            source=data.get("source", ""),
            schema=dict(data.get("schema") or {}),
            version=data.get("version") or DEFAULT_VERSION,
            tags=sorted(set(data.get("tags") or [])),
            active=bool(data.get("active", True)),
            test_harness=data.get("test_harness") or "",
            last_test_result=HarnessResult(**last) if isinstance(last, dict) else None,
            metadata=dict(data.get("metadata") or {}),
            history=list(data.get("history") or []),
        )


class HarnessAssertion(AssertionError):
    pass


class HarnessContext:
    """What a harness step can touch: log, check, and the unit under test."""

    def __init__(
        self,
        unit_name: str,
        execute: Callable[[Dict[str, Any]], Awaitable[Any]],
        log: Callable[[str], None],
    ):
        self.unit_name = unit_name
        self._execute = execute
        self._log = log

    def log(self, message: str) -> None:
        self._log(f"[{self.unit_name} Test] {message}")

    def check(self, condition: Any, message: str = "") -> None:
        self._log(f"[{self.unit_name} Test] {message}")
        if not condition:
            raise HarnessAssertion(message or "check failed")

    async def execute(self, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self._execute(params or {})


def write_module(directory: Path, name: str, source: str) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / f"{name}.py"
    path.write_text(source, encoding="utf-8")
    return path


def load_source_module(directory: Path, prefix: str, name: str, source: str) -> ModuleType:
    """Write source to <directory>/<name>.py and import it under a digest-qualified name."""
    path = write_module(directory, name, source)
    return load_module_from_path(f"{prefix}_{name}_{source_digest(source)}", str(path))


async def run_harness(harness: ModuleType, context: HarnessContext) -> HarnessResult:
    steps = [
        (name, obj)
        for name, obj in vars(harness).items()
        if name.startswith("test") and inspect.isfunction(obj) and obj.__module__ == harness.__name__
    ]
    try:
        before_all = getattr(harness, "before_all", None)
        if callable(before_all):
            outcome = before_all(context)
            if inspect.isawaitable(outcome):
                await outcome
        for _, step in steps:
            outcome = step(context)
            if inspect.isawaitable(outcome):
                await outcome
    except Exception as exc:
        return HarnessResult(success=False, message=f"Test failed: {exc}")
    return HarnessResult(success=True, message="All tests passed successfully")
