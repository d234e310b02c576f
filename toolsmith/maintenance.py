import asyncio
from typing import Any, Dict, Optional

from toolsmith.errors import ToolsmithError


class MaintenanceLoop:
    """Periodic registry upkeep: review auto-generated tools, then test and improve the rest."""

    def __init__(self, registry, interval_sec: float = 3600.0):
        self.registry = registry
        self.interval_sec = float(interval_sec)
        self.passes = 0
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> Dict[str, Any]:
        print("[Maintenance] Starting registry maintenance pass...", flush=True)
        try:
            summary = await self.registry.perform_maintenance()
        except ToolsmithError as exc:
            print(f"[Maintenance] Pass failed: {exc}", flush=True)
            return {"error": str(exc)}
        self.passes += 1
        print(
            f"[Maintenance] Pass {self.passes} done: "
            f"{len(summary.get('reviewed', {}))} reviewed, {len(summary.get('tested', {}))} tested",
            flush=True,
        )
        return summary

    def start(self) -> asyncio.Task:
        if self.running:
            return self._task
        self._stopping = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self._loop())
        return self._task

    async def stop(self) -> None:
        if not self.running:
            return
        self._stopping.set()
        await self._task
        self._task = None

    async def _loop(self) -> None:
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_sec)
                break
            except asyncio.TimeoutError:
                pass
            await self.run_once()
