"""Command line entry point: ``python -m swarmsim run|serve``."""
from __future__ import annotations

import argparse
import logging
import time

from .config import SimConfig
from .loop import SimulationLoop
from .messages import Channel, Play, Quit, Spawn
from .simulation import Simulation
from .utils import setup_logging

logger = logging.getLogger("swarmsim")


def run_headless(seed: str, ticks: int, config: SimConfig) -> float:
    """Run ``ticks`` steps on the simulation thread and return the mean step time (s)."""
    simulation = Simulation(config)
    simulation.apply_seed(seed)
    logger.info("Seed %r -> %s", seed, simulation.export_seed())

    commands = Channel("commands")
    results = Channel("results")
    loop = SimulationLoop(commands, results, simulation=simulation)

    commands.send(Spawn())
    commands.send(Play())
    loop.start()

    durations = []
    while len(durations) < ticks and loop.is_alive():
        for result in results.drain():
            if result.elapsed is not None:
                durations.append(result.elapsed)
        time.sleep(config.update_interval)

    commands.send(Quit())
    loop.join()
    return sum(durations) / len(durations) if durations else 0.0


def main():
    parser = argparse.ArgumentParser(description='Particle swarm simulation')
    parser.add_argument('--config', type=str, help='Path to a JSON SimConfig file')
    parser.add_argument('--log-level', type=str, default='INFO')
    parser.add_argument('--log-file', type=str, default=None)
    sub = parser.add_subparsers(dest='command', required=True)

    run = sub.add_parser('run', help='Run headless and report step timings')
    run.add_argument('--seed', type=str, default='', help='Seed text or @ save string')
    run.add_argument('--ticks', type=int, default=100)

    serve = sub.add_parser('serve', help='Serve the HTTP/WebSocket control API')
    serve.add_argument('--host', type=str, default='127.0.0.1')
    serve.add_argument('--port', type=int, default=8000)

    args = parser.parse_args()
    setup_logging(args.log_level, args.log_file)

    config = SimConfig.load(args.config) if args.config else SimConfig()

    if args.command == 'run':
        mean = run_headless(args.seed, args.ticks, config)
        print(f"mean step time: {mean * 1000.0:.2f} ms")
    else:
        import uvicorn

        from . import api

        api._config = config
        uvicorn.run(api.app, host=args.host, port=args.port, log_level=args.log_level.lower())


if __name__ == "__main__":
    main()
