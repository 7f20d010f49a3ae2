"""Fixed-capacity data model shared by the engine, the seed codec and the API."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import NamedTuple, Tuple

import numpy as np

from .config import (
    DEFAULT_CLASS_COUNT,
    DEFAULT_FORCE,
    DEFAULT_RADIUS,
    DEFAULT_WORLD_RADIUS,
    MAX_CLASSES,
    MAX_PARTICLE_COUNT,
)


class SimulationState(Enum):
    STOPPED = "stopped"
    PAUSED = "paused"
    RUNNING = "running"


class Param(NamedTuple):
    """Influence of one class (row) on another class (column)."""
    force: float
    radius: float


class ParameterMatrix:
    """
    Dense MAX_CLASSES x MAX_CLASSES table of class pair parameters.

    Row = acting class, column = affected class. Self pairs are meaningful.
    """

    def __init__(self, force: np.ndarray = None, radius: np.ndarray = None):
        shape = (MAX_CLASSES, MAX_CLASSES)
        self.force = np.full(shape, DEFAULT_FORCE) if force is None else np.array(force, dtype=float)
        self.radius = np.full(shape, DEFAULT_RADIUS) if radius is None else np.array(radius, dtype=float)

        if self.force.shape != shape or self.radius.shape != shape:
            raise ValueError(
                f"Matrix shapes {self.force.shape}/{self.radius.shape} "
                f"don't match class capacity {shape}"
            )

    @classmethod
    def default(cls) -> "ParameterMatrix":
        return cls()

    def __getitem__(self, key: Tuple[int, int]) -> Param:
        return Param(float(self.force[key]), float(self.radius[key]))

    def __setitem__(self, key: Tuple[int, int], param: Param) -> None:
        self.force[key] = param.force
        self.radius[key] = param.radius

    def __eq__(self, other) -> bool:
        if not isinstance(other, ParameterMatrix):
            return NotImplemented
        return np.array_equal(self.force, other.force) and np.array_equal(self.radius, other.radius)

    def copy(self) -> "ParameterMatrix":
        return ParameterMatrix(self.force.copy(), self.radius.copy())


def fit_counts(counts) -> np.ndarray:
    """Truncate or zero-pad per-class counts to MAX_CLASSES entries within capacity."""
    values = np.clip(np.asarray(counts, dtype=int).ravel()[:MAX_CLASSES], 0, MAX_PARTICLE_COUNT)
    fitted = np.zeros(MAX_CLASSES, dtype=int)
    fitted[:len(values)] = values
    return fitted


class ParticlePopulation:
    """
    Per-class particle positions and velocities, allocated once at capacity.

    Only slots below ``counts[class]`` are active. Every other slot reads as
    zero and is never stepped or published as active.
    """

    def __init__(self):
        shape = (MAX_CLASSES, MAX_PARTICLE_COUNT, 2)
        self.positions = np.zeros(shape)
        self.velocities = np.zeros(shape)
        self.counts = np.zeros(MAX_CLASSES, dtype=int)

    def set_counts(self, counts) -> None:
        """Resize the active windows, zeroing every slot that becomes inactive."""
        counts = fit_counts(counts)
        for c in range(MAX_CLASSES):
            self.positions[c, counts[c]:] = 0.0
            self.velocities[c, counts[c]:] = 0.0
        self.counts = counts

    def clear(self) -> None:
        self.positions.fill(0.0)
        self.velocities.fill(0.0)

    def snapshot(self) -> np.ndarray:
        return self.positions.copy()


def _default_counts() -> np.ndarray:
    return np.zeros(MAX_CLASSES, dtype=int)


@dataclass(eq=False)
class Settings:
    """User-visible configuration: what a seed string saves and restores."""

    world_radius: float = DEFAULT_WORLD_RADIUS
    class_count: int = DEFAULT_CLASS_COUNT
    particle_counts: np.ndarray = field(default_factory=_default_counts)
    params: ParameterMatrix = field(default_factory=ParameterMatrix.default)

    @classmethod
    def default(cls) -> "Settings":
        return cls()

    def copy(self) -> "Settings":
        return Settings(
            world_radius=self.world_radius,
            class_count=self.class_count,
            particle_counts=np.array(self.particle_counts, dtype=int),
            params=self.params.copy(),
        )

    def to_dict(self) -> dict:
        return {
            "world_radius": float(self.world_radius),
            "class_count": int(self.class_count),
            "particle_counts": [int(n) for n in self.particle_counts],
            "force": self.params.force.tolist(),
            "radius": self.params.radius.tolist(),
        }
