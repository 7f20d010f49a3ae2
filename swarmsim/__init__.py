"""Particle swarm ("particle life") simulation engine."""

__version__ = "0.1.0"
