#!/usr/bin/env python3
"""
Script executor for agent-authored subtask scripts.

A script is the body of an async function that receives its capability table and
result store as explicit arguments:

    async def __subtask__(tools, results, store, emit):
        <script>

A trailing expression statement becomes the return value, so
`await tools.call_llm(prompt="hi")` on the last line returns the reply.
"""

import ast
import asyncio
import builtins
import linecache
import traceback
from typing import Any, Callable, Optional, Tuple

from toolsmith.errors import ScriptTimeout
from toolsmith.execution_context import ExecutionContext

SCRIPT_FILENAME = "<subtask-script>"
ENTRY_POINT = "__subtask__"
SCRIPT_ARGS = ("tools", "results", "store", "emit")

_TEMPLATE = f"async def {ENTRY_POINT}({', '.join(SCRIPT_ARGS)}):\n    pass\n"


def compile_script(script: str) -> Callable[..., Any]:
    """Compile a script body into an async function. Raises SyntaxError on bad input."""
    body = compile(script, SCRIPT_FILENAME, "exec", ast.PyCF_ONLY_AST | ast.PyCF_ALLOW_TOP_LEVEL_AWAIT).body
    if body and isinstance(body[-1], ast.Expr):
        last = body[-1]
        body[-1] = ast.copy_location(ast.Return(value=last.value), last)
    if not body:
        body = [ast.Pass()]

    module = ast.parse(_TEMPLATE, filename=SCRIPT_FILENAME)
    module.body[0].body = body
    ast.fix_missing_locations(module)

    # Script statements keep their own line numbers, so tracebacks point into the script.
    lines = script.splitlines(keepends=True)
    linecache.cache[SCRIPT_FILENAME] = (len(script), None, lines, SCRIPT_FILENAME)

    namespace = {"__builtins__": builtins, "__name__": ENTRY_POINT}
    exec(compile(module, SCRIPT_FILENAME, "exec"), namespace)
    return namespace[ENTRY_POINT]


def extract_error_line(exc: BaseException, script: Optional[str] = None) -> Optional[Tuple[int, str]]:
    """(line number, line text) of the innermost failing script line, if any."""
    lineno: Optional[int] = None
    if isinstance(exc, SyntaxError) and exc.filename == SCRIPT_FILENAME:
        lineno = exc.lineno
    else:
        for frame in traceback.extract_tb(exc.__traceback__):
            if frame.filename == SCRIPT_FILENAME:
                lineno = frame.lineno
    if lineno is None:
        return None
    text = ""
    if script is not None:
        script_lines = script.splitlines()
        if 0 < lineno <= len(script_lines):
            text = script_lines[lineno - 1].strip()
    return lineno, text


class ScriptExecutor:
    def __init__(self, timeout_sec: float = 300.0):
        self.timeout_sec = float(timeout_sec or 0)

    async def execute(self, script: str, context: ExecutionContext) -> Any:
        entry = compile_script(script)
        coro = entry(context.tools, context.results, context.store, context.emit)
        if self.timeout_sec <= 0:
            return await coro
        try:
            return await asyncio.wait_for(coro, self.timeout_sec)
        except asyncio.TimeoutError:
            print(f"[Executor] Script exceeded {self.timeout_sec:.0f}s; cancelled.", flush=True)
            raise ScriptTimeout(
                f"Script exceeded the {self.timeout_sec:g}s time limit",
                context={"timeout_sec": self.timeout_sec},
            ) from None
