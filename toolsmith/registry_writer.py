#!/usr/bin/env python3
"""
registry_writer.py - Single owner of registry state.

Every mutation of the capability table, the metrics table and their files is a
small synchronous closure submitted here and applied by one worker task, in
submission order. Model calls never run inside a closure, so a slow
maintenance pass cannot hold up foreground commits.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Optional


@dataclass
class WriteRequest:
    label: str
    apply: Callable[[], Any]
    future: asyncio.Future


class RegistryWriter:
    def __init__(self):
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.applied = 0

    def _ensure_started(self) -> asyncio.AbstractEventLoop:
        loop = asyncio.get_running_loop()
        if self._worker is None or self._worker.done() or self._loop is not loop:
            self._loop = loop
            self._queue = asyncio.Queue()
            self._worker = loop.create_task(self._run())
        return loop

    async def submit(self, label: str, apply: Callable[[], Any]) -> Any:
        loop = self._ensure_started()
        future = loop.create_future()
        await self._queue.put(WriteRequest(label=label, apply=apply, future=future))
        return await future

    async def shutdown(self) -> None:
        if self._worker is None or self._worker.done():
            return
        await self._queue.put(None)
        await self._worker
        self._worker = None

    async def _run(self) -> None:
        while True:
            request = await self._queue.get()
            if request is None:
                break
            try:
                result = request.apply()
            except Exception as exc:
                if not request.future.cancelled():
                    request.future.set_exception(exc)
                continue
            self.applied += 1
            if not request.future.cancelled():
                request.future.set_result(result)
