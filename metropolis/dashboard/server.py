"""
metropolis/dashboard/server.py — Sky Metropolis render/HUD backend

The renderer and HUD are separate clients. This is all they get:
  - read-only state (grid, stats, goal, news, settings)
  - the tile click callback
  - agent positions from the latest frame
  - a websocket that pushes state after every store change

Every endpoint is `async def` so it runs on the event loop thread, same as the
tick and frame drivers. That keeps the store single-writer without locks.

Run:
    python main.py --serve
"""

import asyncio
import json
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from metropolis.city.traffic import CityMovement
from metropolis.memory.persistence import CityPersistence
from metropolis.os.loop import GameLoop
from metropolis.os.store import CityState, CityStore
from metropolis.world.buildings import BuildingType
from metropolis.world.grid import can_preview


class TileClick(BaseModel):
    x: int
    y: int


class ToolChoice(BaseModel):
    tool: BuildingType


class StartRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ai_enabled: bool = Field(default=True, alias="aiEnabled")


class VolumeRequest(BaseModel):
    volume: float


def describe(store: CityStore) -> dict:
    """The persisted snapshot plus the live-only session flags."""
    state = store.state
    data = store.to_snapshot()
    data.update({
        "isPaused": state.is_paused,
        "selectedTool": state.selected_tool.value,
        "isGeneratingGoal": state.is_generating_goal,
    })
    return data


def create_app(
    store: CityStore,
    game_loop: Optional[GameLoop] = None,
    movement: Optional[CityMovement] = None,
    persistence: Optional[CityPersistence] = None,
) -> FastAPI:
    app = FastAPI(title="Sky Metropolis")
    connected_clients: set[WebSocket] = set()
    pending_pushes: set[asyncio.Task] = set()
    app.state.pending_pushes = pending_pushes

    async def broadcast(event: dict):
        nonlocal connected_clients
        msg = json.dumps(event)
        dead = set()
        for ws in connected_clients:
            try:
                await ws.send_text(msg)
            except Exception:
                dead.add(ws)
        connected_clients -= dead

    def _push_state(_state: CityState):
        if not connected_clients:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # no event loop means no websocket to push to
        task = loop.create_task(broadcast({"type": "state", "data": describe(store)}))
        pending_pushes.add(task)
        task.add_done_callback(_push_done)

    def _push_done(task: asyncio.Task):
        pending_pushes.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.opt(exception=task.exception()).error("❌ Dashboard state push failed")

    store.subscribe(_push_state)

    @app.on_event("startup")
    async def start_loop():
        if game_loop is not None:
            await game_loop.start()

    @app.on_event("shutdown")
    async def stop_loop():
        if game_loop is not None:
            await game_loop.stop()

    # ── Read ──────────────────────────────────────────────────────────────────

    @app.get("/api/state")
    async def get_state():
        return describe(store)

    @app.get("/api/world")
    async def get_world():
        return store.state.grid.to_rows()

    @app.get("/api/agents")
    async def get_agents():
        if movement is None:
            return {"vehicles": [], "pedestrians": []}
        return movement.snapshot()

    @app.get("/api/preview")
    async def get_preview(x: int, y: int):
        state = store.state
        return {"show": can_preview(state.grid, x, y, state.selected_tool)}

    # ── Commands ──────────────────────────────────────────────────────────────

    @app.post("/api/tile")
    async def click_tile(click: TileClick):
        outcome = store.on_tile_click(click.x, click.y)
        return {"outcome": outcome.value, "money": store.state.stats.money}

    @app.post("/api/tool")
    async def select_tool(choice: ToolChoice):
        store.set_tool(choice.tool)
        return {"selectedTool": store.state.selected_tool.value}

    @app.post("/api/start")
    async def start_game(request: StartRequest):
        store.start_game(request.ai_enabled)
        return {"ok": True}

    @app.post("/api/pause")
    async def toggle_pause():
        return {"isPaused": store.toggle_pause()}

    @app.post("/api/claim")
    async def claim_reward():
        return {"claimed": store.claim_reward(), "money": store.state.stats.money}

    @app.post("/api/volume")
    async def set_volume(request: VolumeRequest):
        store.set_volume(request.volume)
        return {"volume": store.state.volume}

    @app.post("/api/reset")
    async def reset(clear_save: bool = False):
        # clear_save is the error-recovery "full reset": forget the saved city too.
        store.reset()
        if clear_save and persistence is not None:
            persistence.clear()
        return {"ok": True}

    # ── Live feed ─────────────────────────────────────────────────────────────

    @app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket):
        await ws.accept()
        connected_clients.add(ws)
        try:
            await ws.send_text(json.dumps({"type": "state", "data": describe(store)}))
            while True:
                await ws.receive_text()
        except WebSocketDisconnect:
            connected_clients.discard(ws)
            logger.debug("🔌 Dashboard client disconnected")

    return app
