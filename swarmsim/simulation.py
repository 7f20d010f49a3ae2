"""Particle swarm simulation engine with a ramped pairwise force kernel."""
from __future__ import annotations

import logging
from typing import List, Optional, Tuple

import numpy as np

from .config import DEFAULT_CONFIG, MAX_CLASSES, SimConfig
from .messages import (
    ClassCountUpdate,
    Command,
    ParamsUpdate,
    ParticleCountsUpdate,
    Pause,
    Play,
    Quit,
    Reset,
    Spawn,
    WorldRadiusUpdate,
)
from .seed import apply_seed, export_seed
from .state import ParticlePopulation, Settings, SimulationState, fit_counts

logger = logging.getLogger(__name__)


# ============================================================================
# Force kernel
# ============================================================================
#
#   dv ^
#      |                                     ______________________  force * plateau
#      |                                   /
#      |                                 /
#    0 +------------------------------ /------------------------------> r
#      |                 ______-------  ^          ^              ^
#      |     ______------        ramp_start  ramp_start      action_radius
#      | ----                                + ramp_length
#  -close_force
#
# Positive values push away from the other particle.

def ramp_then_const(r, ramp_start: float, ramp_length: float):
    """
    Zero at ``ramp_start``, linear up to ``ramp_start + ramp_length``, then flat.

    The plateau value is ``2 * ramp_length / (ramp_start + ramp_length)``.
    """
    return 2.0 * np.clip(r - ramp_start, 0.0, ramp_length) / (ramp_start + ramp_length)


def force_contribution(
    distance,
    action_radius: float,
    scaled_force: float,
    ramp_start: float = DEFAULT_CONFIG.ramp_start,
    ramp_length: float = DEFAULT_CONFIG.ramp_length,
    close_force: float = DEFAULT_CONFIG.close_force,
) -> np.ndarray:
    """
    Velocity contribution of one particle on another.

    Args:
        distance: Vector(s) from the affected particle to the acting one,
            shape (2,) or (..., 2)
        action_radius: Distance from which the pair no longer interacts
        scaled_force: Configured force times the force factor; positive repels,
            negative attracts
        ramp_start: Below this distance particles always repel
        ramp_length: Length of the ramp between the close force and the plateau
        close_force: Repulsion magnitude at zero distance

    Returns:
        Contribution vector(s) with the same shape as ``distance``
    """
    distance = np.asarray(distance, dtype=float)
    r = np.linalg.norm(distance, axis=-1)

    safe_r = np.where(r > 0.0, r, 1.0)
    away = -distance / safe_r[..., np.newaxis]

    close = close_force * (1.0 - r / ramp_start)
    mid = scaled_force * ramp_then_const(r, ramp_start, ramp_length)

    magnitude = np.where(
        (r > 0.0) & (r <= ramp_start),
        close,
        np.where((r > ramp_start) & (r < action_radius), mid, 0.0),
    )
    return away * magnitude[..., np.newaxis]


def kernel_profile(
    action_radius: float,
    force: float,
    config: SimConfig = DEFAULT_CONFIG,
    samples: int = 1000,
    step: float = 0.1,
) -> List[Tuple[float, float]]:
    """Sample the kernel along the x axis, returning (r, dv_x) pairs."""
    r = np.arange(samples) * step
    distance = np.stack([r, np.zeros_like(r)], axis=-1)
    dv = force_contribution(
        distance,
        action_radius,
        force * config.force_factor,
        config.ramp_start,
        config.ramp_length,
        config.close_force,
    )
    return [(float(x), float(y)) for x, y in zip(r, dv[:, 0])]


# ============================================================================
# Engine
# ============================================================================

class Simulation:
    """
    Particle swarm simulation over a fixed-capacity population.

    Owned by a single thread; other threads talk to it through command
    messages (see ``handle``).
    """

    def __init__(self, config: Optional[SimConfig] = None, settings: Optional[Settings] = None):
        self.config = config or SimConfig()
        self.settings = settings.copy() if settings is not None else Settings.default()
        self.population = ParticlePopulation()
        self.population.set_counts(self._active_counts())
        self.state = SimulationState.STOPPED
        self.ticks = 0

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def handle(self, command: Command) -> bool:
        """Apply one command. Returns False when the command asks to quit."""
        if isinstance(command, Quit):
            return False
        if isinstance(command, Play):
            self.play()
        elif isinstance(command, Pause):
            self.pause()
        elif isinstance(command, Reset):
            self.reset()
        elif isinstance(command, Spawn):
            self.spawn()
        elif isinstance(command, ParamsUpdate):
            self.settings.params = command.params.copy()
        elif isinstance(command, ClassCountUpdate):
            self.settings.class_count = command.class_count
            self.population.set_counts(self._active_counts())
        elif isinstance(command, ParticleCountsUpdate):
            self.settings.particle_counts = fit_counts(command.particle_counts)
            self.population.set_counts(self._active_counts())
        elif isinstance(command, WorldRadiusUpdate):
            self.settings.world_radius = command.world_radius
        else:
            raise TypeError(f"Unknown command {command!r}")
        return True

    def play(self) -> None:
        self.state = SimulationState.RUNNING

    def pause(self) -> None:
        self.state = SimulationState.PAUSED

    def reset(self) -> None:
        """Stop and restore the default configuration with no particles."""
        self.state = SimulationState.STOPPED
        self.settings = Settings.default()
        self.population.clear()
        self.population.set_counts(self._active_counts())
        self.ticks = 0
        logger.info("Simulation reset")

    def spawn(self, rng: Optional[np.random.Generator] = None) -> None:
        """Scatter every active particle in a disk around the origin, at rest."""
        if rng is None:
            rng = np.random.default_rng()
        self.population.clear()

        radius = self.config.spawn_area_radius
        for c in range(self.class_count):
            n = self.population.counts[c]
            if n == 0:
                continue
            angle = 2.0 * np.pi * rng.random(n)
            distance = radius * rng.random(n)
            self.population.positions[c, :n, 0] = distance * np.cos(angle)
            self.population.positions[c, :n, 1] = distance * np.sin(angle)

        logger.debug("Spawned %d particles", int(self.population.counts[:self.class_count].sum()))

    def apply_seed(self, seed: str) -> None:
        apply_seed(seed, self.settings)
        self.population.set_counts(self._active_counts())

    def export_seed(self) -> str:
        return export_seed(self.settings)

    # ------------------------------------------------------------------
    # Stepping
    # ------------------------------------------------------------------

    @property
    def class_count(self) -> int:
        return int(np.clip(self.settings.class_count, 0, MAX_CLASSES))

    def _active_counts(self) -> np.ndarray:
        counts = fit_counts(self.settings.particle_counts)
        counts[self.class_count:] = 0
        return counts

    def advance(self, dt: Optional[float] = None) -> bool:
        """Step once if running. Returns whether a step happened."""
        if self.state != SimulationState.RUNNING:
            return False
        self.step(self.config.update_interval if dt is None else dt)
        return True

    def step(self, dt: float) -> None:
        """
        Advance every active particle by one tick.

        All pair contributions are read from last tick's positions and summed
        before a single velocity/position update per particle, so the result
        does not depend on class evaluation order.
        """
        cfg = self.config
        params = self.settings.params
        counts = self.population.counts

        positions = self.population.snapshot()
        new_positions = positions.copy()
        new_velocities = self.population.velocities.copy()

        for c1 in range(self.class_count):
            n1 = counts[c1]
            if n1 == 0:
                continue
            pos1 = positions[c1, :n1]
            dv = np.zeros((n1, 2))

            for c2 in range(self.class_count):
                n2 = counts[c2]
                if n2 == 0:
                    continue
                # (n1, n2, 2): vector from each p1 to each p2
                distance = positions[c2, np.newaxis, :n2] - pos1[:, np.newaxis, :]
                dv += force_contribution(
                    distance,
                    params.radius[c1, c2],
                    params.force[c1, c2] * cfg.force_factor,
                    cfg.ramp_start,
                    cfg.ramp_length,
                    cfg.close_force,
                ).sum(axis=1)

            dv += self._border_correction(pos1)

            vel = (new_velocities[c1, :n1] + dv) * cfg.damping
            new_velocities[c1, :n1] = vel
            new_positions[c1, :n1] = pos1 + vel * cfg.position_factor * dt

        self.population.positions = new_positions
        self.population.velocities = new_velocities
        self.ticks += 1

    def _border_correction(self, pos: np.ndarray) -> np.ndarray:
        """Soft spring pulling particles outside the arena back toward the center."""
        r = np.linalg.norm(pos, axis=1)
        excess = r - self.settings.world_radius
        outside = (excess >= 0.0) & (r > 0.0)

        correction = np.zeros_like(pos)
        correction[outside] = (
            -pos[outside] / r[outside, np.newaxis]
            * self.config.border_force
            * excess[outside, np.newaxis]
        )
        return correction

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def positions_snapshot(self) -> np.ndarray:
        return self.population.snapshot()

