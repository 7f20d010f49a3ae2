"""Tests for the simulation thread and its channels."""
import time

import numpy as np
import pytest

from swarmsim.config import MAX_CLASSES, SimConfig
from swarmsim.loop import SimulationLoop
from swarmsim.messages import (
    Channel,
    ChannelClosed,
    ClassCountUpdate,
    ParticleCountsUpdate,
    Pause,
    Play,
    Quit,
    SimResults,
    Spawn,
)


def make_loop(**config_overrides):
    commands = Channel("commands")
    results = Channel("results")
    config = SimConfig(update_interval=0.005, paused_update_interval=0.005, **config_overrides)
    return SimulationLoop(commands, results, config=config), commands, results


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return False


def counts(*values):
    return tuple(values) + (0,) * (MAX_CLASSES - len(values))


def test_channel_drains_oldest_first():
    channel = Channel()
    for i in range(3):
        channel.send(i)
    assert channel.drain() == [0, 1, 2]
    assert channel.drain() == []


def test_channel_latest_discards_stale_messages():
    channel = Channel()
    assert channel.latest() is None
    for i in range(5):
        channel.send(i)
    assert channel.latest() == 4
    assert channel.latest() is None


def test_closed_channel_rejects_sends():
    channel = Channel("results")
    channel.close()
    assert channel.closed
    with pytest.raises(ChannelClosed):
        channel.send(1)


def test_spawn_publishes_frame_without_duration():
    loop, commands, results = make_loop()
    commands.send(ClassCountUpdate(2))
    commands.send(ParticleCountsUpdate(counts(4, 3)))
    commands.send(Spawn())

    assert loop.tick(sleep=False)

    result = results.latest()
    assert isinstance(result, SimResults)
    assert result.elapsed is None
    assert result.class_count == 2
    assert result.particle_counts[:2] == (4, 3)
    active = result.active_positions()
    assert [len(p) for p in active] == [4, 3]


def test_running_tick_publishes_duration_and_snapshot():
    loop, commands, results = make_loop()
    commands.send(ClassCountUpdate(1))
    commands.send(ParticleCountsUpdate(counts(5)))
    commands.send(Spawn())
    commands.send(Play())

    assert loop.tick(sleep=False)

    frames = results.drain()
    assert [f.elapsed is None for f in frames] == [True, False]
    stepped = frames[-1]
    assert stepped.elapsed >= 0.0
    assert loop.simulation.ticks == 1

    # Published positions are a copy
    stepped.positions[0, 0] = [1e6, 1e6]
    assert not np.allclose(loop.simulation.population.positions[0, 0], [1e6, 1e6])


def test_paused_tick_does_not_step_or_publish():
    loop, commands, results = make_loop()
    commands.send(Play())
    commands.send(Pause())

    assert loop.tick(sleep=False)
    assert loop.simulation.ticks == 0
    assert results.latest() is None


def test_commands_apply_in_order():
    loop, commands, _ = make_loop()
    commands.send(ClassCountUpdate(2))
    commands.send(ClassCountUpdate(3))
    loop.tick(sleep=False)
    assert loop.simulation.settings.class_count == 3


def test_quit_stops_tick():
    loop, commands, _ = make_loop()
    commands.send(Quit())
    assert loop.tick(sleep=False) is False


def test_thread_runs_and_joins_on_quit():
    loop, commands, results = make_loop()
    commands.send(ClassCountUpdate(2))
    commands.send(ParticleCountsUpdate(counts(10, 10)))
    commands.send(Spawn())
    commands.send(Play())
    loop.start()

    frames = []

    def stepped():
        frames.extend(results.drain())
        return any(f.elapsed is not None for f in frames)

    assert wait_for(stepped)

    commands.send(Quit())
    loop.join(timeout=2.0)
    assert not loop.is_alive()


def test_thread_exits_quietly_when_results_closed():
    loop, commands, results = make_loop()
    results.close()
    commands.send(Play())
    loop.start()

    loop.join(timeout=2.0)
    assert not loop.is_alive()


def test_running_tick_sleeps_rest_of_interval(monkeypatch):
    sleeps = []
    monkeypatch.setattr("swarmsim.loop.time.sleep", sleeps.append)
    loop, commands, _ = make_loop()
    loop.config.update_interval = 1.0
    commands.send(Play())

    loop.tick()

    assert len(sleeps) == 1
    assert 0.0 < sleeps[0] <= 1.0


def test_idle_tick_sleeps_paused_interval(monkeypatch):
    sleeps = []
    monkeypatch.setattr("swarmsim.loop.time.sleep", sleeps.append)
    loop, _, _ = make_loop()
    loop.config.paused_update_interval = 0.25

    loop.tick()

    assert sleeps == [0.25]


def test_unexpected_error_is_logged(caplog):
    loop, commands, _ = make_loop()
    commands.send(object())

    with pytest.raises(TypeError):
        loop.run()
    assert "Simulation thread crashed" in caplog.text
