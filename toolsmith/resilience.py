#!/usr/bin/env python3
"""
Resilience for capability calls and agent scripts.

RetryPolicy retries transient failures of a single capability call with
exponential backoff. ScriptRepairer re-runs a failing script after asking the
model for a patched version. Both share one process-wide RetryGovernor for
capability attempts: once its ceiling is crossed every further attempt fails
with GlobalRetryExceeded.
"""

import asyncio
import json
import time
import traceback
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, List, Optional

from pydantic import BaseModel

from toolsmith.config import Settings
from toolsmith.errors import GlobalRetryExceeded, ScriptExecutionFailed, ToolsmithError, TransientError
from toolsmith.execution_context import ExecutionContext, RunContext
from toolsmith.llm_provider import ChatMessage
from toolsmith.script_executor import ScriptExecutor, extract_error_line

DEFAULT_RETRYABLE = ("network timeout", "connection refused", "server unavailable")
HALFWAY_NOTE = "\n\n*** Halfway through the retry limit. Try something else. ***"

REPAIR_PROMPT = (
    "Analyze the provided script, script error, and context, generate a fixed version "
    "of the script, and explain your work. The script is the body of "
    "`async def __subtask__(tools, results, store, emit)`; call capabilities with "
    "`await tools.<name>({...})` and read earlier results from `results`. "
    "The value of the last expression (or an explicit return) is the result."
)

Sleep = Callable[[float], Awaitable[Any]]


class RetryGovernor:
    """Process-wide attempt counter with a hard ceiling."""

    def __init__(self, limit: int = 100):
        self.limit = int(limit)
        self.count = 0

    def tick(self) -> int:
        self.count += 1
        if self.count > self.limit:
            raise GlobalRetryExceeded(
                "Global retry limit exceeded.",
                context={"count": self.count, "limit": self.limit},
            )
        return self.count

    def reset(self, limit: Optional[int] = None) -> None:
        self.count = 0
        if limit is not None:
            self.limit = int(limit)


_GOVERNOR: Optional[RetryGovernor] = None


def get_retry_governor(limit: Optional[int] = None) -> RetryGovernor:
    global _GOVERNOR
    if _GOVERNOR is None:
        _GOVERNOR = RetryGovernor(limit if limit is not None else 100)
    return _GOVERNOR


def is_retryable(exc: BaseException, messages: Iterable[str] = DEFAULT_RETRYABLE) -> bool:
    if isinstance(exc, GlobalRetryExceeded):
        return False
    if isinstance(exc, TransientError):
        return True
    text = str(exc).lower()
    return any(m.lower() in text for m in messages)


class RetryPolicy:
    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 1.0,
        retryable_messages: Iterable[str] = DEFAULT_RETRYABLE,
        governor: Optional[RetryGovernor] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.max_retries = int(max_retries)
        self.base_delay = float(base_delay)
        self.retryable_messages = tuple(retryable_messages)
        self.governor = governor or get_retry_governor()
        self.sleep = sleep

    @classmethod
    def from_settings(cls, settings: Settings, sleep: Sleep = asyncio.sleep) -> "RetryPolicy":
        return cls(
            max_retries=settings.max_retries,
            base_delay=settings.base_delay_sec,
            retryable_messages=settings.retryable_messages,
            governor=get_retry_governor(settings.global_retry_limit),
            sleep=sleep,
        )

    async def run(self, operation: Callable[[], Awaitable[Any]], tool_name: Optional[str] = None) -> Any:
        retries = 0
        while True:
            self.governor.tick()
            try:
                return await operation()
            except Exception as exc:
                if retries >= self.max_retries or not is_retryable(exc, self.retryable_messages):
                    raise
                retries += 1
                delay = self.base_delay * (2 ** retries)
                label = f"Error calling tool '{tool_name}'" if tool_name else "Error"
                print(f"[Retry] {label}: {exc}. Retrying in {delay:.2f}s...", flush=True)
                await self.sleep(delay)


class ScriptPatch(BaseModel):
    modifiedScript: str
    explanation: str = ""


def append_error_log(path: Optional[Path], entry: dict) -> None:
    if path is None:
        return
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a", encoding="utf-8") as fh:
            fh.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
    except OSError as exc:
        print(f"[Repair] Failed to write error log {path}: {exc}", flush=True)


class ScriptRepairer:
    """Runs a script, repairing it through the model until it succeeds or the budget runs out."""

    def __init__(
        self,
        executor: ScriptExecutor,
        build_context: Callable[[RunContext], ExecutionContext],
        registry: Any = None,
        model: Any = None,
        limit: int = 10,
        delay: float = 1.0,
        error_log: Optional[Path] = None,
        auto_capture: bool = False,
        sleep: Sleep = asyncio.sleep,
    ):
        self.executor = executor
        self.build_context = build_context
        self.registry = registry
        self.model = model
        self.limit = int(limit)
        self.delay = float(delay)
        self.error_log = error_log
        self.auto_capture = auto_capture
        self.sleep = sleep

    def describe_failure(self, exc: BaseException, script: str, attempt: int, limit: int, context: ExecutionContext) -> str:
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        error_line = extract_error_line(exc, script)
        line_text = f"{error_line[0]}: {error_line[1]}" if error_line else "unknown"
        available: List[str] = context.tools.names()
        description = (
            f"Error calling script (attempt {attempt}/{limit}): {exc}\n"
            f"Script: {script}\n"
            f"Error Line: {line_text}\n"
            f"Stack Trace: {stack}\n\n"
            f"Available Tools: {', '.join(available)}\n\n"
            f"In context: {', '.join(context.keys())}"
        )
        if attempt == limit // 2:
            description += HALFWAY_NOTE
        return description

    async def _request_patch(self, description: str, run: RunContext) -> Optional[ScriptPatch]:
        if self.model is None:
            return None
        try:
            reply = await self.model.complete_structured(
                [
                    ChatMessage(role="system", content=REPAIR_PROMPT),
                    ChatMessage(role="user", content=description),
                ],
                ScriptPatch,
                slot="repair",
                events=run.events,
            )
        except ToolsmithError as exc:
            print(f"[Repair] Error attempting to fix the script: {exc}", flush=True)
            return None
        if isinstance(reply, str):
            return None
        return reply

    async def _capture(self, script: str, run: RunContext) -> None:
        if not self.auto_capture or self.registry is None:
            return
        try:
            await self.registry.create_from_script(script, run.request)
        except ToolsmithError as exc:
            print(f"[Repair] Script capture skipped: {exc}", flush=True)

    async def run(self, script: str, run: RunContext, limit: Optional[int] = None) -> Any:
        limit = int(limit or self.limit)
        attempt = 0
        while attempt < limit:
            context = self.build_context(run)
            try:
                existing = self.registry.find_by_source(script) if self.registry is not None else None
                if existing is not None:
                    return await context.api.call_tool(existing.name, {})
                result = await self.executor.execute(script, context)
            except GlobalRetryExceeded:
                raise
            except Exception as exc:
                attempt += 1
                print(f"[Repair] Script failed (attempt {attempt}/{limit}): {exc}", flush=True)
                run.emit("error", f"Error calling script: {exc}")
                if attempt >= limit:
                    append_error_log(self.error_log, {
                        "ts": time.time(),
                        "run_id": run.run_id,
                        "error": str(exc),
                        "stack": traceback.format_exc(),
                        "script": script,
                        "retry_attempts": attempt,
                    })
                    raise ScriptExecutionFailed(
                        f"Script execution failed after {limit} attempts.",
                        context={"attempts": attempt, "error": str(exc)},
                    ) from exc

                description = self.describe_failure(exc, script, attempt, limit, context)
                append_error_log(self.error_log, {
                    "ts": time.time(),
                    "run_id": run.run_id,
                    "attempt": attempt,
                    "description": description,
                })
                patch = await self._request_patch(description, run)
                if patch is not None and patch.modifiedScript.strip():
                    if patch.explanation:
                        run.emit("info", patch.explanation)
                    script = patch.modifiedScript
                await self.sleep(self.delay * attempt)
                continue

            await self._capture(script, run)
            return result
        raise ScriptExecutionFailed(f"Script execution failed after {limit} attempts.", context={"attempts": attempt})
