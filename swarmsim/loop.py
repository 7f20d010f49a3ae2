"""Runs the simulation on its own thread at a fixed tick rate."""
from __future__ import annotations

import logging
import threading
import time
from typing import Optional

from .config import SimConfig
from .messages import Channel, ChannelClosed, SimResults, Spawn
from .simulation import Simulation

logger = logging.getLogger(__name__)


class SimulationLoop:
    """
    Owns a ``Simulation`` and drives it from a dedicated thread.

    The presentation side sends commands on ``commands`` and reads frames from
    ``results``. Neither side ever blocks on the other.
    """

    def __init__(
        self,
        commands: Channel,
        results: Channel,
        config: Optional[SimConfig] = None,
        simulation: Optional[Simulation] = None,
    ):
        self.commands = commands
        self.results = results
        self.simulation = simulation or Simulation(config)
        self.config = self.simulation.config
        self._thread: Optional[threading.Thread] = None
        self._durations = []

    # ------------------------------------------------------------------
    # Thread management
    # ------------------------------------------------------------------

    def start(self) -> "SimulationLoop":
        self._thread = threading.Thread(target=self.run, name="simulation", daemon=True)
        self._thread.start()
        logger.info("Simulation thread started")
        return self

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run(self) -> None:
        try:
            while self.tick():
                pass
        except ChannelClosed:
            logger.info("Result channel closed, stopping simulation thread")
        except Exception:
            logger.exception("Simulation thread crashed after %d ticks", self.simulation.ticks)
            raise
        logger.info("Simulation thread stopped after %d ticks", self.simulation.ticks)

    # ------------------------------------------------------------------
    # Ticking
    # ------------------------------------------------------------------

    def process_commands(self) -> bool:
        """Apply every queued command, oldest first. Returns False on quit."""
        commands = self.commands.drain()
        if commands:
            logger.debug("Received commands %s", commands)
        for command in commands:
            if not self.simulation.handle(command):
                return False
            if isinstance(command, Spawn):
                self.publish(None)
        return True

    def tick(self, sleep: bool = True) -> bool:
        """
        Run one loop iteration.

        Returns False once a quit command has been processed.
        """
        if not self.process_commands():
            return False

        interval = self.config.update_interval
        start = time.perf_counter()
        if self.simulation.advance(interval):
            elapsed = time.perf_counter() - start
            self.publish(elapsed)
            self._record(elapsed)
            if sleep and elapsed < interval:
                time.sleep(interval - elapsed)
        elif sleep:
            time.sleep(self.config.paused_update_interval)
        return True

    def publish(self, elapsed: Optional[float]) -> None:
        sim = self.simulation
        self.results.send(SimResults(
            elapsed=elapsed,
            positions=sim.positions_snapshot(),
            class_count=sim.class_count,
            particle_counts=tuple(int(n) for n in sim.population.counts),
        ))

    def _record(self, elapsed: float) -> None:
        logger.debug("Step took %.2f ms", elapsed * 1000.0)
        self._durations.append(elapsed)
        if len(self._durations) >= self.config.log_throttle_ticks:
            mean = sum(self._durations) / len(self._durations)
            logger.info(
                "Tick %d, mean step %.2f ms over %d ticks, %d particles",
                self.simulation.ticks,
                mean * 1000.0,
                len(self._durations),
                int(self.simulation.population.counts.sum()),
            )
            self._durations.clear()
