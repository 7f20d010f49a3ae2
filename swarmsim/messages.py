"""Messages exchanged between the presentation side and the simulation thread."""
from __future__ import annotations

import queue
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

import numpy as np

from .state import ParameterMatrix


# ============================================================================
# Commands (presentation -> simulation)
# ============================================================================

@dataclass(frozen=True)
class Play:
    pass


@dataclass(frozen=True)
class Pause:
    pass


@dataclass(frozen=True)
class Reset:
    pass


@dataclass(frozen=True)
class Spawn:
    pass


@dataclass(frozen=True)
class Quit:
    pass


@dataclass(frozen=True)
class ParamsUpdate:
    """Replace the whole parameter matrix."""
    params: ParameterMatrix


@dataclass(frozen=True)
class ClassCountUpdate:
    class_count: int


@dataclass(frozen=True)
class ParticleCountsUpdate:
    particle_counts: Tuple[int, ...]


@dataclass(frozen=True)
class WorldRadiusUpdate:
    world_radius: float


Command = Union[
    Play, Pause, Reset, Spawn, Quit,
    ParamsUpdate, ClassCountUpdate, ParticleCountsUpdate, WorldRadiusUpdate,
]


# ============================================================================
# Results (simulation -> presentation)
# ============================================================================

@dataclass(frozen=True)
class SimResults:
    """
    One published frame.

    ``elapsed`` is the measured step duration in seconds, or None when the
    frame was published by a spawn rather than a step. ``positions`` is a
    private copy of the full position table.
    """
    elapsed: Optional[float]
    positions: np.ndarray
    class_count: int = 0
    particle_counts: Tuple[int, ...] = field(default_factory=tuple)

    def active_positions(self) -> List[np.ndarray]:
        """Positions of the active slots of each active class."""
        return [
            self.positions[c, :self.particle_counts[c]]
            for c in range(min(self.class_count, len(self.particle_counts)))
        ]


# ============================================================================
# Channel
# ============================================================================

class ChannelClosed(Exception):
    """Raised when sending on a channel whose receiver has gone away."""


class Channel:
    """
    Unbounded, unidirectional queue with a close flag.

    Any number of threads may send; one consumer drains it without blocking.
    """

    def __init__(self, name: str = "channel"):
        self.name = name
        self._queue: queue.SimpleQueue = queue.SimpleQueue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    def send(self, message) -> None:
        if self._closed:
            raise ChannelClosed(f"{self.name} is closed")
        self._queue.put(message)

    def drain(self) -> list:
        """Return every queued message, oldest first, without blocking."""
        messages = []
        while True:
            try:
                messages.append(self._queue.get_nowait())
            except queue.Empty:
                return messages

    def latest(self):
        """Return only the newest queued message (discarding older ones), or None."""
        messages = self.drain()
        return messages[-1] if messages else None
