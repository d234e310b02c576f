import asyncio
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from toolsmith.errors import NotFound
from toolsmith.events import Event, EventBus


class RunRequest(BaseModel):
    request: str
    result_var: Optional[str] = None
    store: Optional[Dict[str, Any]] = None


# WebSocket Connection Manager
class ConnectionManager:
    def __init__(self):
        self.active_connections: List[WebSocket] = []

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.append(websocket)

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)

    async def broadcast(self, message: str):
        for connection in list(self.active_connections):
            try:
                await connection.send_text(message)
            except (RuntimeError, WebSocketDisconnect):
                self.disconnect(connection)


def create_app(orchestrator, registry, events: Optional[EventBus] = None) -> FastAPI:
    app = FastAPI(title="Toolsmith API")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    bus = events or orchestrator.events
    manager = ConnectionManager()
    app.state.manager = manager

    def _forward(event: Event) -> None:
        if not manager.active_connections:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        loop.create_task(manager.broadcast(event.to_json()))

    bus.add_listener(_forward)

    @app.get("/status")
    def get_status():
        return {
            "status": "online",
            "tools": len(registry),
            "connections": len(manager.active_connections),
            "recent_events": [e.to_dict() for e in bus.recent(limit=20)],
        }

    @app.get("/tools")
    def get_tools(tag: Optional[str] = None):
        units = registry.list_units([tag] if tag else None)
        return [
            {
                "name": u.name,
                "version": u.version,
                "active": u.active,
                "tags": list(u.tags),
                "signature": u.signature,
                "description": u.description,
                "last_test_result": u.last_test_result.to_dict() if u.last_test_result else None,
            }
            for u in units
        ]

    @app.get("/tools/{name}/history")
    def get_tool_history(name: str):
        try:
            return {"name": name, "versions": registry.get_history(name)}
        except NotFound as exc:
            raise HTTPException(status_code=404, detail=str(exc))

    @app.get("/report")
    def get_report(fmt: str = "json"):
        if fmt not in ("json", "text"):
            raise HTTPException(status_code=400, detail="fmt must be 'json' or 'text'")
        return {"format": fmt, "report": registry.generate_report(fmt)}

    @app.post("/run")
    async def run_request(req: RunRequest):
        result = await orchestrator.run(req.request, result_var=req.result_var, store=req.store)
        return result.to_dict()

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        await manager.connect(websocket)
        try:
            while True:
                # Inbound messages are ignored; the stream is outbound only.
                await websocket.receive_text()
        except WebSocketDisconnect:
            manager.disconnect(websocket)

    return app


def start_api_server(app: FastAPI, host: str = "0.0.0.0", port: int = 8000):
    import uvicorn

    print(f"[API] Serving on {host}:{port}", flush=True)
    uvicorn.run(app, host=host, port=port, log_level="error")
