"""
Seed strings: reproducible random configurations and compact save strings.

A seed is one of:

- ``""``: a fresh random configuration from system entropy;
- ``"@" + base64``: an exact configuration saved by ``export_seed``;
- any other text: hashed into a PRNG seed, so the same text always yields the
  same configuration.

Binary layout of a save string (little endian)::

    world_radius      u16
    class_count       u8
    particle_count    u16  x MAX_CLASSES
    force, radius     i8   x MAX_CLASSES * MAX_CLASSES (row-major)
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import struct
from collections import deque
from typing import List, Optional

import numpy as np

from .config import (
    DEFAULT_FORCE,
    DEFAULT_RADIUS,
    DEFAULT_WORLD_RADIUS,
    MAX_CLASSES,
    MAX_FORCE,
    MAX_RADIUS,
    MIN_CLASSES,
    MIN_RADIUS,
    RANDOM_MAX_PARTICLE_COUNT,
    RANDOM_MIN_PARTICLE_COUNT,
)
from .state import Settings, fit_counts

logger = logging.getLogger(__name__)

EXPORT_PREFIX = "@"

# Shaping exponents: values are raised to 1/x, pushing draws toward the extremes
FORCE_SHAPE = 1.25
RADIUS_SHAPE = 1.1

MAX_HISTORY_LEN = 10

_FIELD_LIMITS = {
    "<H": (0, 0xFFFF),
    "<B": (0, 0xFF),
    "<b": (-0x80, 0x7F),
}


# ============================================================================
# Binary codec
# ============================================================================

def _pack(fmt: str, value: float) -> bytes:
    """Pack a value truncated toward zero and saturated to the field range."""
    lo, hi = _FIELD_LIMITS[fmt]
    return struct.pack(fmt, min(max(int(value), lo), hi))


class _Reader:
    """Sequential reader that yields a default for every field past the end."""

    def __init__(self, blob: bytes):
        self.blob = blob
        self.offset = 0

    def read(self, fmt: str, default):
        size = struct.calcsize(fmt)
        if self.offset + size > len(self.blob):
            self.offset = len(self.blob)
            return default
        (value,) = struct.unpack_from(fmt, self.blob, self.offset)
        self.offset += size
        return value


def encode_settings(settings: Settings) -> bytes:
    parts = [
        _pack("<H", settings.world_radius),
        _pack("<B", settings.class_count),
    ]
    parts.extend(_pack("<H", count) for count in fit_counts(settings.particle_counts))
    for i in range(MAX_CLASSES):
        for j in range(MAX_CLASSES):
            parts.append(_pack("<b", settings.params.force[i, j]))
            parts.append(_pack("<b", settings.params.radius[i, j]))
    return b"".join(parts)


def decode_settings(blob: bytes, settings: Settings) -> Settings:
    """
    Restore settings from a binary blob.

    Short input never fails: every missing field falls back to its default.
    Counts are clamped to the allocated capacity.
    """
    reader = _Reader(blob)

    settings.world_radius = float(reader.read("<H", int(DEFAULT_WORLD_RADIUS)))
    settings.class_count = min(max(reader.read("<B", MAX_CLASSES), MIN_CLASSES), MAX_CLASSES)

    counts = [reader.read("<H", 0) for _ in range(MAX_CLASSES)]
    settings.particle_counts = fit_counts(counts)

    for i in range(MAX_CLASSES):
        for j in range(MAX_CLASSES):
            settings.params.force[i, j] = reader.read("<b", int(DEFAULT_FORCE))
            settings.params.radius[i, j] = reader.read("<b", int(DEFAULT_RADIUS))

    if reader.offset < len(blob):
        logger.warning("Ignoring %d trailing bytes in seed", len(blob) - reader.offset)
    return settings


def export_seed(settings: Settings) -> str:
    """Serialize settings into an ``@``-prefixed save string."""
    return EXPORT_PREFIX + base64.b64encode(encode_settings(settings)).decode("ascii")


# ============================================================================
# Seeded randomization
# ============================================================================

def seed_to_int(text: str) -> int:
    """Stable 64-bit hash of a seed text (identical across processes)."""
    digest = hashlib.blake2b(text.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "little")


def randomize_settings(settings: Settings, rng: np.random.Generator) -> Settings:
    """
    Draw particle counts and the full parameter matrix from ``rng``.

    Every class slot is drawn in a fixed order, so the result does not
    depend on the current class count. The class count itself is kept.
    """
    counts = np.zeros(MAX_CLASSES, dtype=int)
    for i in range(MAX_CLASSES):
        counts[i] = int(rng.uniform(RANDOM_MIN_PARTICLE_COUNT, RANDOM_MAX_PARTICLE_COUNT))
        for j in range(MAX_CLASSES):
            x = rng.uniform(-1.0, 1.0)
            settings.params.force[i, j] = np.sign(x) * abs(x) ** (1.0 / FORCE_SHAPE) * MAX_FORCE
            u = rng.uniform(0.0, 1.0)
            settings.params.radius[i, j] = MIN_RADIUS + (MAX_RADIUS - MIN_RADIUS) * u ** (1.0 / RADIUS_SHAPE)
    settings.particle_counts = counts
    return settings


def apply_seed(seed: str, settings: Settings) -> Settings:
    """Apply a seed string to ``settings`` in place and return them."""
    if not seed:
        return randomize_settings(settings, np.random.default_rng())

    if seed.startswith(EXPORT_PREFIX):
        try:
            blob = base64.b64decode(seed[len(EXPORT_PREFIX):], validate=True)
        except (binascii.Error, ValueError):
            logger.info("Seed %r is not a valid save string, hashing it as text", seed)
        else:
            return decode_settings(blob, settings)

    return randomize_settings(settings, np.random.default_rng(seed_to_int(seed)))


class SeedHistory:
    """Most recently applied seeds, oldest first, bounded in length."""

    def __init__(self, maxlen: int = MAX_HISTORY_LEN):
        self._entries: deque = deque(maxlen=maxlen)

    def push(self, seed: str) -> None:
        self._entries.append(seed)

    def entries(self) -> List[str]:
        return list(self._entries)

    def latest(self) -> Optional[str]:
        return self._entries[-1] if self._entries else None

    def __len__(self) -> int:
        return len(self._entries)
