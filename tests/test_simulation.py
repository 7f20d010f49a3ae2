import numpy as np
import pytest

from swarmsim.config import (
    DEFAULT_CLASS_COUNT,
    DEFAULT_FORCE,
    DEFAULT_RADIUS,
    DEFAULT_WORLD_RADIUS,
    MAX_CLASSES,
    MAX_PARTICLE_COUNT,
    SimConfig,
)
from swarmsim.messages import (
    ClassCountUpdate,
    ParamsUpdate,
    ParticleCountsUpdate,
    Pause,
    Play,
    Quit,
    Reset,
    Spawn,
    WorldRadiusUpdate,
)
from swarmsim.seed import export_seed
from swarmsim.simulation import Simulation
from swarmsim.state import Param, ParameterMatrix, Settings, SimulationState

DT = 0.03


def make_simulation(counts, world_radius=300.0, **config_overrides):
    particle_counts = np.zeros(MAX_CLASSES, dtype=int)
    particle_counts[:len(counts)] = counts
    settings = Settings(
        world_radius=world_radius,
        class_count=len(counts),
        particle_counts=particle_counts,
    )
    return Simulation(SimConfig(**config_overrides), settings)


def test_lone_particle_velocity_decays_by_damping():
    simulation = make_simulation([1])
    simulation.population.velocities[0, 0] = [1.0, 0.0]

    simulation.step(DT)
    first = simulation.population.velocities[0, 0].copy()
    simulation.step(DT)
    second = simulation.population.velocities[0, 0].copy()

    damping = simulation.config.damping
    assert first == pytest.approx(np.array([damping, 0.0]))
    assert second == pytest.approx(np.array([damping ** 2, 0.0]))
    expected_x = (damping + damping ** 2) * simulation.config.position_factor * DT
    assert simulation.population.positions[0, 0, 0] == pytest.approx(expected_x)


def test_spawned_population_with_zero_forces_stays_bounded():
    simulation = make_simulation([20])
    simulation.spawn(np.random.default_rng(7))

    for _ in range(50):
        simulation.step(DT)

    positions = simulation.population.positions[0, :20]
    velocities = simulation.population.velocities[0, :20]
    assert np.all(np.isfinite(positions))
    assert np.linalg.norm(positions, axis=1).max() < simulation.settings.world_radius
    assert np.linalg.norm(velocities, axis=1).max() < 1.3


def test_attraction_is_asymmetric():
    simulation = make_simulation([1, 1])
    simulation.settings.params[0, 1] = Param(force=-100.0, radius=80.0)
    simulation.settings.params[1, 0] = Param(force=0.0, radius=80.0)
    simulation.population.positions[0, 0] = [0.0, 0.0]
    simulation.population.positions[1, 0] = [45.0, 0.0]

    simulation.step(DT)

    assert simulation.population.positions[0, 0, 0] > 0.0
    assert simulation.population.positions[0, 0, 1] == pytest.approx(0.0)
    assert simulation.population.positions[1, 0] == pytest.approx(np.array([45.0, 0.0]))


def test_step_reads_positions_from_previous_tick():
    """Both classes see each other where they were before the step."""
    simulation = make_simulation([1, 1])
    simulation.settings.params[0, 1] = Param(force=-100.0, radius=80.0)
    simulation.settings.params[1, 0] = Param(force=100.0, radius=80.0)
    simulation.population.positions[0, 0] = [0.0, 0.0]
    simulation.population.positions[1, 0] = [35.0, 0.0]

    simulation.step(DT)

    # r = 35 sits halfway up the ramp: 2 * 5 / 40 = 0.25, force factor 1/200
    dv = 100.0 / 200.0 * 0.25
    dx = dv * simulation.config.damping * simulation.config.position_factor * DT
    assert simulation.population.positions[0, 0, 0] == pytest.approx(dx, abs=1e-12)
    assert simulation.population.positions[1, 0, 0] == pytest.approx(35.0 + dx, abs=1e-12)


def test_inactive_class_exerts_no_force():
    simulation = make_simulation([1, 0])
    simulation.settings.params[0, 1] = Param(force=-100.0, radius=100.0)
    simulation.population.positions[0, 0] = [40.0, 0.0]

    for _ in range(5):
        simulation.step(DT)

    assert simulation.population.positions[0, 0] == pytest.approx(np.array([40.0, 0.0]))
    assert not simulation.population.positions[1].any()


def test_classes_beyond_class_count_are_never_stepped():
    simulation = make_simulation([1, 3])
    simulation.spawn(np.random.default_rng(1))
    simulation.handle(ClassCountUpdate(1))

    assert simulation.population.counts[1] == 0
    assert not simulation.population.positions[1].any()

    simulation.step(DT)
    assert not simulation.population.positions[1].any()
    assert not simulation.population.velocities[1].any()


def test_border_pulls_escaped_particle_back():
    simulation = make_simulation([1], world_radius=200.0)
    simulation.population.positions[0, 0] = [250.0, 0.0]

    simulation.step(DT)

    x, y = simulation.population.positions[0, 0]
    assert 0.0 < x < 250.0
    assert y == pytest.approx(0.0)
    assert simulation.population.velocities[0, 0, 0] < 0.0


def test_particle_inside_arena_feels_no_border():
    simulation = make_simulation([1], world_radius=200.0)
    simulation.population.positions[0, 0] = [0.0, 150.0]

    simulation.step(DT)

    assert simulation.population.positions[0, 0] == pytest.approx(np.array([0.0, 150.0]))


def test_spawn_places_active_particles_in_spawn_disk():
    simulation = make_simulation([10, 5])
    simulation.population.velocities[0, :10] = 3.0

    simulation.spawn(np.random.default_rng(0))

    radius = simulation.config.spawn_area_radius
    for c, n in enumerate([10, 5]):
        distances = np.linalg.norm(simulation.population.positions[c, :n], axis=1)
        assert np.all(distances <= radius)
        assert not simulation.population.velocities[c].any()
        assert not simulation.population.positions[c, n:].any()
    assert not simulation.population.positions[2:].any()


def test_spawn_keeps_parameters():
    simulation = make_simulation([4])
    simulation.settings.params[0, 0] = Param(force=12.0, radius=44.0)
    simulation.spawn()
    assert simulation.settings.params[0, 0] == Param(force=12.0, radius=44.0)


def test_reset_restores_defaults():
    simulation = make_simulation([5, 5], world_radius=500.0)
    simulation.settings.params[1, 0] = Param(force=50.0, radius=70.0)
    simulation.spawn()
    simulation.play()

    simulation.reset()

    assert simulation.state == SimulationState.STOPPED
    assert simulation.settings.world_radius == DEFAULT_WORLD_RADIUS
    assert simulation.settings.class_count == DEFAULT_CLASS_COUNT
    assert not simulation.population.counts.any()
    assert not simulation.population.positions.any()
    assert np.all(simulation.settings.params.force == DEFAULT_FORCE)
    assert np.all(simulation.settings.params.radius == DEFAULT_RADIUS)
    assert simulation.export_seed() == export_seed(Settings.default())


def test_only_running_state_advances():
    simulation = make_simulation([1])
    simulation.population.velocities[0, 0] = [1.0, 0.0]

    assert not simulation.advance(DT)
    simulation.handle(Play())
    assert simulation.state == SimulationState.RUNNING
    assert simulation.advance(DT)
    simulation.handle(Pause())
    assert simulation.state == SimulationState.PAUSED
    assert not simulation.advance(DT)
    assert simulation.ticks == 1

    simulation.handle(Play())
    simulation.handle(Reset())
    assert simulation.state == SimulationState.STOPPED


def test_paused_simulation_accepts_configuration():
    simulation = make_simulation([1])
    simulation.pause()

    params = ParameterMatrix()
    params[0, 0] = Param(force=-20.0, radius=60.0)
    assert simulation.handle(ParamsUpdate(params))
    assert simulation.handle(WorldRadiusUpdate(450.0))
    assert simulation.handle(ParticleCountsUpdate((7,) + (0,) * (MAX_CLASSES - 1)))
    assert simulation.handle(Spawn())

    assert simulation.settings.params[0, 0] == Param(force=-20.0, radius=60.0)
    assert simulation.settings.world_radius == 450.0
    assert simulation.population.counts[0] == 7
    assert np.linalg.norm(simulation.population.positions[0, :7], axis=1).max() > 0.0

    # The engine keeps its own copy of the matrix
    params[0, 0] = Param(force=99.0, radius=99.0)
    assert simulation.settings.params[0, 0].force == -20.0


def test_quit_command_returns_false():
    simulation = make_simulation([1])
    assert simulation.handle(Quit()) is False


def test_counts_are_clamped_to_capacity():
    simulation = make_simulation([1])
    simulation.handle(ClassCountUpdate(MAX_CLASSES + 5))
    simulation.handle(ParticleCountsUpdate((MAX_PARTICLE_COUNT + 50,) * MAX_CLASSES))

    assert simulation.class_count == MAX_CLASSES
    assert simulation.population.counts.max() == MAX_PARTICLE_COUNT


def test_unknown_command_raises():
    simulation = make_simulation([1])
    with pytest.raises(TypeError):
        simulation.handle("play")


def test_apply_seed_resizes_population():
    simulation = make_simulation([1])
    simulation.apply_seed("resize_me")
    np.testing.assert_array_equal(
        simulation.population.counts[:simulation.class_count],
        simulation.settings.particle_counts[:simulation.class_count],
    )


def test_short_particle_counts_are_zero_padded():
    sim = Simulation()
    assert sim.handle(ParticleCountsUpdate((5,)))

    assert len(sim.settings.particle_counts) == MAX_CLASSES
    assert sim.population.counts.tolist() == [5] + [0] * (MAX_CLASSES - 1)
    assert export_seed(sim.settings).startswith("@")


def test_long_particle_counts_are_truncated():
    sim = Simulation()
    sim.handle(ParticleCountsUpdate(tuple(range(1, MAX_CLASSES + 3))))

    assert sim.population.counts.tolist() == list(range(1, MAX_CLASSES + 1))
