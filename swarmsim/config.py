"""Configuration and value ranges for the particle swarm simulation."""
from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass

logger = logging.getLogger(__name__)

# Classes
MIN_CLASSES = 1
MAX_CLASSES = 8
DEFAULT_CLASS_COUNT = MAX_CLASSES

# Particles per class
MIN_PARTICLE_COUNT = 0
MAX_PARTICLE_COUNT = 1000
RANDOM_MIN_PARTICLE_COUNT = 50
RANDOM_MAX_PARTICLE_COUNT = 400

# Class pair parameters (must fit a signed byte, see seed.py)
MIN_FORCE = -100.0
MAX_FORCE = 100.0
DEFAULT_FORCE = 0.0
MIN_RADIUS = 30.0
MAX_RADIUS = 100.0
DEFAULT_RADIUS = MIN_RADIUS

# Arena
MIN_WORLD_RADIUS = 100.0
MAX_WORLD_RADIUS = 1000.0
DEFAULT_WORLD_RADIUS = 300.0


@dataclass
class SimConfig:
    """Tuning constants for the integrator and the simulation loop."""

    # Loop
    update_interval: float = 0.03  # Tick period and dt (seconds)
    paused_update_interval: float = 0.1
    log_throttle_ticks: int = 100

    # Dynamics
    damping: float = 0.4  # Must stay below 1
    position_factor: float = 40.0
    force_factor: float = 1.0 / 200.0

    # Kernel
    ramp_start: float = MIN_RADIUS
    ramp_length: float = 10.0
    close_force_scale: float = 20.0  # In units of force_factor
    border_force_scale: float = 10.0

    # Spawning
    spawn_area_radius: float = 40.0

    @property
    def close_force(self) -> float:
        """Repulsion at zero distance, as a velocity change per tick."""
        return self.close_force_scale * self.force_factor

    @property
    def border_force(self) -> float:
        return self.border_force_scale * self.force_factor

    def to_dict(self):
        return asdict(self)

    @classmethod
    def from_dict(cls, data):
        """Create a config from a dictionary, ignoring unknown keys."""
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        unknown = sorted(set(data) - set(known))
        if unknown:
            logger.warning("Ignoring unknown config keys: %s", ", ".join(unknown))
        return cls(**known)

    def save(self, filepath):
        """Save configuration to a JSON file."""
        os.makedirs(os.path.dirname(filepath) if os.path.dirname(filepath) else '.', exist_ok=True)
        with open(filepath, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)
        logger.info("Configuration saved to %s", filepath)

    @classmethod
    def load(cls, filepath):
        """Load configuration from a JSON file."""
        logger.info("Loading configuration from %s", filepath)
        try:
            with open(filepath, 'r') as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.error("Configuration file not found at %s", filepath)
            raise
        except json.JSONDecodeError:
            logger.error("Error decoding JSON from %s", filepath)
            raise
        return cls.from_dict(data)


DEFAULT_CONFIG = SimConfig()
