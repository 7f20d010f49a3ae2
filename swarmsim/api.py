"""FastAPI control surface for the particle swarm simulation."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import numpy as np
from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from starlette.websockets import WebSocketState

from . import messages
from .config import (
    DEFAULT_CONFIG,
    MAX_CLASSES,
    MAX_FORCE,
    MAX_PARTICLE_COUNT,
    MAX_RADIUS,
    MAX_WORLD_RADIUS,
    MIN_CLASSES,
    MIN_FORCE,
    MIN_PARTICLE_COUNT,
    MIN_RADIUS,
    MIN_WORLD_RADIUS,
)
from .loop import SimulationLoop
from .messages import Channel, SimResults
from .presets import get_preset, list_presets, random_word_seed
from .seed import SeedHistory, apply_seed, export_seed
from .simulation import kernel_profile
from .state import Param, Settings, SimulationState

logger = logging.getLogger(__name__)

# ============================================================================
# Pydantic Models
# ============================================================================

class SeedRequest(BaseModel):
    """Apply a seed (plain text, ``@`` save string, or empty for random)."""
    seed: str = ""


class WorldRadiusRequest(BaseModel):
    world_radius: float = Field(ge=MIN_WORLD_RADIUS, le=MAX_WORLD_RADIUS)


class ClassCountRequest(BaseModel):
    class_count: int = Field(ge=MIN_CLASSES, le=MAX_CLASSES)


class ParticleCountsRequest(BaseModel):
    """Per-class particle counts; missing classes keep their count."""
    particle_counts: List[int] = Field(max_length=MAX_CLASSES)


class ParamRequest(BaseModel):
    force: Optional[float] = Field(default=None, ge=MIN_FORCE, le=MAX_FORCE)
    radius: Optional[float] = Field(default=None, ge=MIN_RADIUS, le=MAX_RADIUS)


class MatrixRequest(BaseModel):
    """Full parameter matrix; values are clamped to their legal ranges."""
    force: List[List[float]]
    radius: List[List[float]]


# ============================================================================
# Global state (presentation side only, never shared with the simulation)
# ============================================================================

_config = DEFAULT_CONFIG
_settings = Settings.default()
_state = SimulationState.STOPPED
_seed = ""
_history = SeedHistory()
_commands = Channel("commands")
_results = Channel("results")
_loop: Optional[SimulationLoop] = None
_latest: Optional[SimResults] = None
_calculation_time: Optional[float] = None
_state_lock = asyncio.Lock()
_websocket_clients: set = set()
_broadcast_task = None


# ============================================================================
# FastAPI App with Lifespan
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the simulation thread and the frame broadcaster; join them on shutdown."""
    global _loop, _commands, _results, _broadcast_task, _state_lock
    _reset_mirror()
    _state_lock = asyncio.Lock()
    _commands = Channel("commands")
    _results = Channel("results")
    _loop = SimulationLoop(_commands, _results, config=_config).start()
    _broadcast_task = asyncio.create_task(_broadcast_loop())

    yield

    logger.info("Shutting down simulation thread")
    _commands.send(messages.Quit())
    _results.close()
    await asyncio.to_thread(_loop.join)
    _broadcast_task.cancel()
    try:
        await _broadcast_task
    except asyncio.CancelledError:
        pass


app = FastAPI(title="Particle Swarm Sandbox", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Frame Broadcast
# ============================================================================

def _next_frame() -> Optional[Dict[str, Any]]:
    """Frame message for the newest unseen result, or None when nothing new arrived."""
    global _latest, _calculation_time
    result = _results.latest()
    if result is None:
        return None
    _latest = result
    if result.elapsed is not None:
        _calculation_time = result.elapsed
    return {"type": "frame", "payload": _frame_payload(result)}


async def _broadcast_loop():
    """Send each newly published frame to all clients, dropping stale ones."""
    while True:
        message = _next_frame()
        if message is not None and _websocket_clients:
            dead_clients = set()
            for client in _websocket_clients:
                try:
                    if client.client_state == WebSocketState.CONNECTED:
                        await client.send_json(message)
                    else:
                        dead_clients.add(client)
                except Exception as e:
                    logger.warning("Dropping client after send error: %s: %s", type(e).__name__, e)
                    dead_clients.add(client)
            _websocket_clients.difference_update(dead_clients)

        await asyncio.sleep(_config.update_interval)


def _frame_payload(result: SimResults) -> Dict[str, Any]:
    return {
        "state": _state.value,
        "calculation_time_ms": None if _calculation_time is None else _calculation_time * 1000.0,
        "class_count": result.class_count,
        "particles": [positions.tolist() for positions in result.active_positions()],
    }


# ============================================================================
# Helper Functions
# ============================================================================

def _reset_mirror() -> None:
    global _settings, _state, _seed, _latest, _calculation_time
    _settings = Settings.default()
    _state = SimulationState.STOPPED
    _seed = export_seed(_settings)
    _latest = None
    _calculation_time = None


def _send(command: messages.Command) -> None:
    _commands.send(command)


def _push_settings() -> None:
    _send(messages.ParamsUpdate(_settings.params.copy()))
    _send(messages.ClassCountUpdate(_settings.class_count))
    _send(messages.ParticleCountsUpdate(tuple(int(n) for n in _settings.particle_counts)))
    _send(messages.WorldRadiusUpdate(_settings.world_radius))


def _apply_seed(seed: str) -> None:
    global _seed
    _seed = seed
    _history.push(seed)
    apply_seed(seed, _settings)
    _push_settings()
    _send(messages.Spawn())
    logger.info("Applied seed %r", seed)


def _reexport() -> None:
    global _seed
    _seed = export_seed(_settings)


def _check_class(index: int) -> None:
    if not 0 <= index < _settings.class_count:
        raise HTTPException(status_code=404, detail=f"Class {index} is not active")


def _set_state(state: SimulationState, command: messages.Command) -> Dict[str, str]:
    global _state
    _state = state
    _send(command)
    return {"state": _state.value}


def _config_payload() -> Dict[str, Any]:
    return {
        "seed": _seed,
        "state": _state.value,
        "settings": _settings.to_dict(),
        "total_particle_count": int(_settings.particle_counts[:_settings.class_count].sum()),
        "calculation_time_ms": None if _calculation_time is None else _calculation_time * 1000.0,
        "limits": {
            "classes": [MIN_CLASSES, MAX_CLASSES],
            "particle_count": [MIN_PARTICLE_COUNT, MAX_PARTICLE_COUNT],
            "force": [MIN_FORCE, MAX_FORCE],
            "radius": [MIN_RADIUS, MAX_RADIUS],
            "world_radius": [MIN_WORLD_RADIUS, MAX_WORLD_RADIUS],
        },
    }


# ============================================================================
# REST Endpoints
# ============================================================================

@app.get("/health")
async def health() -> Dict[str, str]:
    """Health check."""
    alive = _loop is not None and _loop.is_alive()
    return {"status": "ok" if alive else "stopped"}


@app.get("/config")
async def get_config() -> Dict[str, Any]:
    """Current settings, seed and simulation state."""
    async with _state_lock:
        return _config_payload()


@app.post("/seed")
async def post_seed(request: SeedRequest) -> Dict[str, Any]:
    """Apply a seed and respawn."""
    async with _state_lock:
        _apply_seed(request.seed)
        return _config_payload()


@app.post("/randomize")
async def randomize() -> Dict[str, Any]:
    """Pick a random word seed, apply it and respawn."""
    async with _state_lock:
        _apply_seed(random_word_seed())
        return _config_payload()


@app.get("/history")
async def get_history() -> List[str]:
    return _history.entries()


@app.post("/world_radius")
async def update_world_radius(request: WorldRadiusRequest) -> Dict[str, Any]:
    async with _state_lock:
        _settings.world_radius = request.world_radius
        _reexport()
        _send(messages.WorldRadiusUpdate(_settings.world_radius))
        _send(messages.Spawn())
        return _config_payload()


@app.post("/class_count")
async def update_class_count(request: ClassCountRequest) -> Dict[str, Any]:
    async with _state_lock:
        _settings.class_count = request.class_count
        _reexport()
        _send(messages.ClassCountUpdate(_settings.class_count))
        _send(messages.Spawn())
        return _config_payload()


@app.post("/particle_counts")
async def update_particle_counts(request: ParticleCountsRequest) -> Dict[str, Any]:
    async with _state_lock:
        counts = np.clip(request.particle_counts, MIN_PARTICLE_COUNT, MAX_PARTICLE_COUNT)
        _settings.particle_counts[:len(counts)] = counts
        _reexport()
        _send(messages.ParticleCountsUpdate(tuple(int(n) for n in _settings.particle_counts)))
        _send(messages.Spawn())
        return _config_payload()


@app.post("/params/{row}/{col}")
async def update_param(row: int, col: int, request: ParamRequest) -> Dict[str, Any]:
    """Update the influence of class ``row`` on class ``col``."""
    async with _state_lock:
        _check_class(row)
        _check_class(col)
        current = _settings.params[row, col]
        _settings.params[row, col] = Param(
            force=current.force if request.force is None else request.force,
            radius=current.radius if request.radius is None else request.radius,
        )
        _reexport()
        _send(messages.ParamsUpdate(_settings.params.copy()))
        return _config_payload()


@app.post("/matrix")
async def update_matrix(request: MatrixRequest) -> Dict[str, Any]:
    """Replace the full parameter matrix."""
    async with _state_lock:
        try:
            force = np.array(request.force, dtype=float)
            radius = np.array(request.radius, dtype=float)
            shape = (MAX_CLASSES, MAX_CLASSES)
            if force.shape != shape or radius.shape != shape:
                raise ValueError(
                    f"Matrix shapes {force.shape}/{radius.shape} don't match {shape}"
                )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        _settings.params.force[:] = np.clip(force, MIN_FORCE, MAX_FORCE)
        _settings.params.radius[:] = np.clip(radius, MIN_RADIUS, MAX_RADIUS)
        _reexport()
        _send(messages.ParamsUpdate(_settings.params.copy()))
        return _config_payload()


@app.get("/kernel/{row}/{col}")
async def get_kernel(row: int, col: int) -> Dict[str, Any]:
    """Velocity contribution against distance for one class pair."""
    async with _state_lock:
        _check_class(row)
        _check_class(col)
        param = _settings.params[row, col]
    return {
        "force": param.force,
        "radius": param.radius,
        "points": kernel_profile(param.radius, param.force, _config),
    }


@app.post("/play")
async def play() -> Dict[str, str]:
    async with _state_lock:
        return _set_state(SimulationState.RUNNING, messages.Play())


@app.post("/pause")
async def pause() -> Dict[str, str]:
    async with _state_lock:
        return _set_state(SimulationState.PAUSED, messages.Pause())


@app.post("/spawn")
async def spawn() -> Dict[str, str]:
    async with _state_lock:
        _send(messages.Spawn())
        return {"state": _state.value}


@app.post("/reset")
async def reset_simulation() -> Dict[str, Any]:
    """Reset everything to defaults and stop."""
    async with _state_lock:
        _reset_mirror()
        _send(messages.Reset())
        return _config_payload()


@app.get("/presets")
async def get_presets() -> List[Dict[str, Any]]:
    """List available presets."""
    return [
        {"name": p.name, "description": p.description, "seed": p.seed}
        for p in list_presets()
    ]


@app.post("/presets/{name}")
async def apply_preset(name: str) -> Dict[str, Any]:
    """Apply a preset seed."""
    async with _state_lock:
        try:
            preset = get_preset(name)
        except ValueError as e:
            raise HTTPException(status_code=404, detail=str(e))
        _apply_seed(preset.seed)
        return {"preset": preset.name, **_config_payload()}


# ============================================================================
# WebSocket
# ============================================================================

async def _listener(websocket: WebSocket, queue: asyncio.Queue) -> None:
    """Listen for client messages."""
    try:
        while True:
            message = await websocket.receive_json()
            await queue.put(message)
    except WebSocketDisconnect:
        pass


async def _handle_message(message: Dict[str, Any]) -> None:
    """Handle client commands."""
    if not isinstance(message, dict):
        raise ValueError("Message must be a JSON object")
    msg_type = message.get("type")

    if msg_type == "play":
        _set_state(SimulationState.RUNNING, messages.Play())
    elif msg_type == "pause":
        _set_state(SimulationState.PAUSED, messages.Pause())
    elif msg_type == "spawn":
        _send(messages.Spawn())
    elif msg_type == "reset":
        _reset_mirror()
        _send(messages.Reset())
    elif msg_type == "seed":
        seed = message.get("seed")
        if not isinstance(seed, str):
            raise ValueError("Message missing 'seed'")
        _apply_seed(seed)
    elif msg_type == "randomize":
        _apply_seed(random_word_seed())
    else:
        raise ValueError(f"Unknown message type {msg_type!r}")


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket) -> None:
    """Stream frames to the client and accept control messages."""
    await websocket.accept()
    _websocket_clients.add(websocket)
    logger.info("WebSocket client connected, %d total", len(_websocket_clients))

    queue: asyncio.Queue = asyncio.Queue()
    listener = asyncio.create_task(_listener(websocket, queue))

    try:
        async with _state_lock:
            await websocket.send_json({"type": "config", "payload": _config_payload()})
            if _latest is not None:
                await websocket.send_json({"type": "frame", "payload": _frame_payload(_latest)})

        while not listener.done():
            while not queue.empty():
                message = await queue.get()
                try:
                    async with _state_lock:
                        await _handle_message(message)
                except ValueError as exc:
                    await websocket.send_json({"type": "error", "detail": str(exc)})

            await asyncio.sleep(0.05)

    except WebSocketDisconnect as e:
        logger.info("WebSocket disconnected: %s", e)
    except Exception as e:
        logger.warning("Unexpected WebSocket error: %s: %s", type(e).__name__, e)
    finally:
        _websocket_clients.discard(websocket)
        listener.cancel()
        logger.info("WebSocket client removed, %d remaining", len(_websocket_clients))
