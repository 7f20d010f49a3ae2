"""Preset seeds and random word seeds."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

import numpy as np

from .seed import export_seed
from .state import Settings


@dataclass
class Preset:
    """A named seed, either plain text or an ``@`` save string."""
    name: str
    description: str
    seed: str


# ============================================================================
# Preset Definitions
# ============================================================================

def _guards_settings() -> Settings:
    """Class 0 repels itself into a ring; classes 1 and 2 cluster inside it."""
    settings = Settings(world_radius=200.0, class_count=3)
    settings.particle_counts[:3] = [120, 300, 300]
    settings.params.force[:3, :3] = [
        [+60.0, +20.0, +20.0],
        [-40.0, -50.0, -10.0],
        [-40.0, -10.0, -50.0],
    ]
    settings.params.radius[:3, :3] = [
        [90.0, 40.0, 40.0],
        [80.0, 50.0, 50.0],
        [80.0, 50.0, 50.0],
    ]
    return settings


GUARDS = Preset(
    name="guards",
    description="3 classes: a repelling outer ring around two clustering classes",
    seed=export_seed(_guards_settings()),
)

CELLS = Preset(
    name="cells",
    description="Membrane-like clusters that split and merge",
    seed="cell_wall_drift",
)

SNAKES = Preset(
    name="snakes",
    description="Chasing chains of alternating classes",
    seed="snake_tail_chase",
)

CHAOS = Preset(
    name="chaos",
    description="High-energy mixing with no stable structure",
    seed="storm_over_glass",
)


# ============================================================================
# Preset Registry
# ============================================================================

PRESETS: Dict[str, Preset] = {
    "guards": GUARDS,
    "cells": CELLS,
    "snakes": SNAKES,
    "chaos": CHAOS,
}


def list_presets() -> List[Preset]:
    """Return list of all available presets."""
    return list(PRESETS.values())


def get_preset(name: str) -> Preset:
    """Get preset by name."""
    if name not in PRESETS:
        raise ValueError(f"Unknown preset '{name}'. Available: {list(PRESETS.keys())}")
    return PRESETS[name]


# ============================================================================
# Random word seeds
# ============================================================================

WORDS = (
    "amber", "ant", "arc", "ash", "bay", "bee", "bloom", "bolt", "brook", "cave",
    "cedar", "cloud", "coral", "crane", "dawn", "dew", "drift", "dune", "dust", "echo",
    "ember", "fern", "finch", "flare", "foam", "frost", "gale", "glow", "grove", "hail",
    "haze", "heron", "ivy", "jade", "kelp", "lark", "lava", "leaf", "lily", "lynx",
    "maple", "marsh", "mist", "moss", "moth", "oak", "orbit", "otter", "pearl", "pine",
    "plume", "pond", "quartz", "rain", "reed", "ridge", "river", "sage", "sand", "shell",
    "silt", "slate", "smoke", "spark", "spore", "storm", "stone", "swift", "thorn", "tide",
    "vale", "vine", "wasp", "wave", "willow", "wind", "wren", "yarrow", "zephyr", "zinc",
)


def random_word_seed(rng: Optional[np.random.Generator] = None, words: int = 3) -> str:
    """Pick a memorable seed like ``moss_tide_spark``."""
    if rng is None:
        rng = np.random.default_rng()
    return "_".join(WORDS[i] for i in rng.integers(0, len(WORDS), size=words))
