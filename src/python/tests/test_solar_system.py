"""
===============================================================================
ORBIT SIM - Solar System Orchestrator Test Suite
===============================================================================
Tests for SolarSystem.update and the ship command surface:

    - lazy initialization and the default J2000 scenario
    - sphere-of-influence capture, escape and nearest-body selection
    - rocket-equation thrust, throttle, staging and propellant exhaustion
    - attitude integration and stability-assist damping
    - planet rotation
    - determinism, failure isolation and reset

Most tests use a small normalized system (sun mu = 1, earth at 1 length
unit) with a length unit of 1000 km so that burns stay small.
===============================================================================
"""

import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import numpy as np
import pytest
from numpy.testing import assert_allclose

from core.config import SimulationSettings, build_body_table, load_config
from core.constants import (
    J2000_EPOCH_MS,
    MS_PER_DAY,
    PI,
    STANDARD_GRAVITY,
    TWO_PI,
)
from core.exceptions import (
    ConfigurationError,
    SimulationStepError,
    UnsupportedEccentricityError,
)
from core.quaternion import Quaternion
from dynamics.bodies import BodyGraph
from dynamics.orbits import EllipticalOrbit, HyperbolicOrbit
from guidance.maneuver import Maneuver, mass_flow_rate
from simulation.solar_system import SolarSystem, _dampen

T0 = J2000_EPOCH_MS
SETTINGS = SimulationSettings(length_unit_m=1.0e6, epoch_ms=T0, dt_ms=1000.0)


def _elements(a, e=0.0):
    return {'a': [a, 0.0], 'e': [e, 0.0], 'I': [0.0, 0.0],
            'L': [0.0, 0.0], 'w': [0.0, 0.0], 'omega': [0.0, 0.0]}


def _ship(primary, a, stages=None, **motion):
    return {
        'type': 'ship',
        'primary': primary,
        'kepler_elements': _elements(a),
        'stages': stages if stages is not None else [
            {'mass': 1000.0, 'isp': 300.0, 'thrust': 10000.0, 'propellant': 500.0},
        ],
        'motion': motion,
    }


def toy_table(**ships):
    table = {
        'sun': {'constants': {'u': 1.0, 'rotation_period': 2.0}},
        'earth': {'primary': 'sun', 'constants': {'u': 1e-3, 'rotation_period': 1.0},
                  'kepler_elements': _elements(1.0)},
        'moon': {'primary': 'earth', 'constants': {'u': 1e-5, 'rotation_period': -1.0},
                 'kepler_elements': _elements(0.03)},
    }
    table.update(ships)
    return table


def make_system(**ships):
    return SolarSystem(BodyGraph.from_table(toy_table(**ships)), SETTINGS)


def run(system, ticks, dt_ms=1000.0, start=T0):
    system.run(start, dt_ms, ticks)


# =============================================================================
# Test: Initialization
# =============================================================================

class TestInitialization:

    def test_lazy(self):
        system = make_system()
        assert not system.initialized
        assert system.snapshot() == []
        assert all(b.orbit is None for b in system.graph)

        system.update(T0, 1000.0)
        assert system.initialized
        assert system.time_ms == T0 + 1000.0
        assert all(b.orbit is not None for b in system.graph)

    def test_soi_radius_for_non_root_planets(self):
        system = make_system(probe=_ship('sun', 3.0))
        system.update(T0, 0.0)
        graph = system.graph
        assert graph['sun'].soi_radius is None
        assert graph['probe'].soi_radius is None
        assert_allclose(graph['earth'].soi_radius, np.cbrt(1e-3 / 3.0), rtol=1e-12)
        assert_allclose(graph['moon'].soi_radius, 0.03 * np.cbrt(1e-5 / 3e-3), rtol=1e-12)

    def test_bad_table_eccentricity(self):
        table = toy_table()
        table['earth']['kepler_elements'] = _elements(1.0, e=-0.5)
        system = SolarSystem(BodyGraph.from_table(table), SETTINGS)
        with pytest.raises(UnsupportedEccentricityError) as info:
            system.update(T0, 1000.0)
        assert info.value.body == 'earth'

    @pytest.mark.parametrize("stage", [
        {'mass': 1000.0, 'isp': 0.0, 'thrust': 1e4, 'propellant': 500.0},
        {'mass': 0.0, 'isp': 300.0, 'thrust': 1e4, 'propellant': 1.0},
    ])
    def test_unburnable_stage_rejected_before_first_tick(self, stage):
        with pytest.raises(ConfigurationError):
            make_system(probe=_ship('earth', 0.01, stages=[stage], throttle=1.0))

    def test_repr(self):
        assert 'initialized=False' in repr(make_system())


@pytest.fixture(scope='module')
def default_system():
    config = load_config()
    settings = SimulationSettings.from_config(config)
    system = SolarSystem(BodyGraph.from_table(build_body_table(config)), settings)
    system.run(settings.epoch_ms, settings.dt_ms, 10)
    return system


class TestDefaultScenario:

    def test_earth_orbit(self, default_system):
        earth = {row['name']: row for row in default_system.snapshot()}['earth']
        assert earth['regime'] == 'elliptical'
        assert_allclose(earth['e'], 0.0167, atol=1e-4)
        assert_allclose(earth['a'], 1.0, rtol=1e-6)
        assert_allclose(earth['orbital_period'] * 1000.0 / MS_PER_DAY, 365.25, rtol=1e-3)

    def test_ship_stays_with_earth(self, default_system):
        assert default_system.graph.primary_of('firefly').name == 'earth'
        assert default_system.graph['firefly'].orbit.regime.value == 'elliptical'

    def test_moon_orbits_earth(self, default_system):
        distance = np.linalg.norm(default_system.graph.relative_position('moon'))
        assert 0.0024 < distance < 0.0028

    def test_every_body_reported(self, default_system):
        names = [row['name'] for row in default_system.snapshot()]
        assert names[0] == 'sun'
        assert len(names) == len(default_system.graph)


# =============================================================================
# Test: Sphere of influence
# =============================================================================

class TestSphereOfInfluence:

    def test_capture(self):
        system = make_system(probe=_ship('sun', 1.01))
        system.update(T0, 1.0)
        graph = system.graph
        assert graph.primary_of('probe').name == 'earth'
        assert graph['probe'].handle in graph['earth'].secondaries
        assert graph['probe'].handle not in graph['sun'].secondaries
        assert_allclose(np.linalg.norm(graph.relative_position('probe')), 0.01, rtol=1e-3)

    def test_capture_preserves_world_state(self):
        captured = make_system(probe=_ship('sun', 1.01))
        captured.update(T0, 1.0)
        # Same ship far from every planet as a reference trajectory
        reference = EllipticalOrbit(mu=1.0, a=1.01)
        reference.advance(1.0)
        assert_allclose(captured.graph.world_position('probe'),
                        reference.stats().position, atol=1e-12)
        assert_allclose(captured.graph.world_velocity('probe'),
                        reference.stats().velocity, atol=1e-12)

    def test_escape(self):
        system = make_system(probe=_ship('earth', 0.2))
        system.update(T0, 1.0)
        assert system.graph.primary_of('probe').name == 'sun'

    def test_nearest_body_wins(self):
        """Inside both the earth's and the moon's SOI, the moon is nearer."""
        system = make_system(probe=_ship('sun', 1.032))
        system.update(T0, 1.0)
        assert system.graph.primary_of('probe').name == 'moon'

    def test_no_change_inside_soi(self):
        system = make_system(probe=_ship('earth', 0.01))
        run(system, 5)
        assert system.graph.primary_of('probe').name == 'earth'

    def test_traversal_follows_reparent(self):
        system = make_system(probe=_ship('sun', 1.01))
        system.update(T0, 1.0)
        order = [system.graph[h].name for h in system.graph.traversal_order()]
        assert order.index('probe') > order.index('earth')


# =============================================================================
# Test: Thrust
# =============================================================================

class TestThrust:

    def test_delta_v_follows_rocket_equation(self):
        system = make_system(probe=_ship('sun', 3.0, throttle=1.0))
        ship = system.graph['probe']
        m0 = ship.mass
        run(system, 10)

        burned = 10 * mass_flow_rate(10000.0, 300.0) * 1.0
        assert_allclose(ship.stages[0].propellant, 500.0 - burned, rtol=1e-12)
        assert_allclose(ship.mass, m0 - burned, rtol=1e-12)
        assert_allclose(ship.delta_v_expended,
                        300.0 * STANDARD_GRAVITY * np.log(m0 / ship.mass), rtol=1e-10)

    def test_throttle_scales_flow(self):
        system = make_system(probe=_ship('sun', 3.0, throttle=0.25))
        run(system, 4)
        burned = 4 * mass_flow_rate(10000.0 * 0.25, 300.0)
        assert_allclose(system.graph['probe'].propellant, 500.0 - burned, rtol=1e-12)

    def test_zero_throttle_burns_nothing(self):
        system = make_system(probe=_ship('sun', 3.0))
        run(system, 4)
        assert system.graph['probe'].propellant == 500.0
        assert system.graph['probe'].delta_v_expended == 0.0

    def test_burn_along_heading(self):
        coast = make_system(probe=_ship('sun', 3.0))
        burn = make_system(probe=_ship('sun', 3.0, throttle=1.0))
        coast.update(T0, 1000.0)
        burn.update(T0, 1000.0)

        dv = burn.graph['probe'].delta_v_expended / SETTINGS.length_unit_m
        v_coast = coast.graph['probe'].orbit.stats().velocity
        v_burn = burn.graph['probe'].orbit.stats().velocity
        assert_allclose(v_burn - v_coast, [dv, 0.0, 0.0], atol=1e-12)
        assert_allclose(burn.graph['probe'].orbit.stats().position,
                        coast.graph['probe'].orbit.stats().position, atol=1e-12)

    def test_propellant_exhaustion(self):
        stages = [{'mass': 100.0, 'isp': 300.0, 'thrust': 10000.0, 'propellant': 2.0}]
        system = make_system(probe=_ship('sun', 3.0, stages=stages, throttle=1.0))
        run(system, 1)
        ship = system.graph['probe']
        assert ship.propellant == 0.0
        assert ship.active_stage is None
        expended = ship.delta_v_expended
        assert_allclose(expended, 300.0 * STANDARD_GRAVITY * np.log(102.0 / 100.0), rtol=1e-12)

        run(system, 3, start=T0 + 1000.0)
        assert ship.delta_v_expended == expended

    def test_staging(self):
        stages = [
            {'mass': 200.0, 'isp': 300.0, 'thrust': 10000.0, 'propellant': 1.0},
            {'mass': 100.0, 'isp': 450.0, 'thrust': 2000.0, 'propellant': 50.0},
        ]
        system = make_system(probe=_ship('sun', 3.0, stages=stages, throttle=1.0))
        ship = system.graph['probe']
        run(system, 2)
        assert ship.stages[0].propellant == 0.0
        assert_allclose(ship.stages[1].propellant, 50.0 - mass_flow_rate(2000.0, 450.0), rtol=1e-12)

    def test_regime_change_on_escape(self):
        """A long burn pushes the ship onto an escape trajectory."""
        settings = SimulationSettings(length_unit_m=1.0)
        stages = [{'mass': 100.0, 'isp': 300.0, 'thrust': 1000.0, 'propellant': 100.0}]
        table = toy_table(probe=_ship('sun', 3.0, stages=stages, throttle=1.0))
        # Point the thrust along the orbital velocity (+Y at periapsis)
        table['probe']['motion']['heading'] = [0.0, 1.0, 0.0]
        system = SolarSystem(BodyGraph.from_table(table), settings)
        system.update(T0, 1000.0)
        assert isinstance(system.graph['probe'].orbit, HyperbolicOrbit)
        assert system.snapshot()[-1]['regime'] == 'hyperbolic'


# =============================================================================
# Test: Attitude
# =============================================================================

class TestAttitude:

    def test_rates_integrate_into_orientation(self):
        system = make_system(probe=_ship('sun', 3.0, pitch=0.5))
        system.update(T0, 1000.0)
        expected = Quaternion.from_axis_angle(np.array([1.0, 0.0, 0.0]), 0.5)
        assert system.graph['probe'].motion.orientation == expected
        assert system.graph['probe'].motion.pitch == 0.5

    def test_snapshot_reports_euler_attitude(self):
        system = make_system(probe=_ship('sun', 3.0, pitch=0.5))
        system.update(T0, 1000.0)
        row = {r['name']: r for r in system.snapshot()}['probe']
        assert_allclose((row['attitude_x'], row['attitude_y'], row['attitude_z']),
                        (0.5, 0.0, 0.0), atol=1e-12)

    def test_stability_assist_damps_to_zero(self):
        system = make_system(probe=_ship('sun', 3.0, pitch=1.0, yaw=-0.2,
                                         roll=0.5, stability_assist=True))
        motion = lambda: system.graph['probe'].motion
        system.update(T0, 1000.0)
        assert_allclose(motion().pitch, 1.0 - PI / 8, rtol=1e-14)
        assert motion().yaw == 0.0
        assert_allclose(motion().roll, 0.5 - PI / 8, rtol=1e-14)

        run(system, 3, start=T0 + 1000.0)
        assert (motion().pitch, motion().yaw, motion().roll) == (0.0, 0.0, 0.0)

    def test_damping_never_overshoots(self):
        assert _dampen(0.1, 0.5) == 0.0
        assert _dampen(-0.1, 0.5) == 0.0
        assert_allclose(_dampen(-1.0, 0.25), -0.75)
        assert _dampen(0.0, 0.25) == 0.0

    def test_orientation_stays_unit(self):
        system = make_system(probe=_ship('sun', 3.0, pitch=0.3, yaw=0.7, roll=-1.1))
        run(system, 50)
        assert system.graph['probe'].motion.orientation.is_unit()


# =============================================================================
# Test: Planet rotation
# =============================================================================

class TestRotation:

    def test_quarter_day(self):
        system = make_system()
        system.update(T0, MS_PER_DAY / 4.0)
        graph = system.graph
        assert_allclose(graph['earth'].rotation, PI / 2, rtol=1e-12)
        assert_allclose(graph['moon'].rotation, 3 * PI / 2, rtol=1e-12)
        assert_allclose(graph['sun'].rotation, PI / 4, rtol=1e-12)

    def test_rotation_wraps(self):
        system = make_system()
        run(system, 5, dt_ms=MS_PER_DAY / 2.0)
        rotation = system.graph['earth'].rotation
        assert 0.0 <= rotation < TWO_PI
        assert_allclose(rotation, PI, rtol=1e-12)


# =============================================================================
# Test: Determinism and failures
# =============================================================================

def _command_sequence(system):
    system.set_throttle('probe', 0.6)
    system.set_angular_rates('probe', pitch=0.01, yaw=-0.02)
    run(system, 20)
    system.set_throttle('probe', 0.0)
    run(system, 20, start=T0 + 20_000.0)


class TestDeterminism:

    def test_identical_runs(self):
        a = make_system(probe=_ship('sun', 1.05))
        b = make_system(probe=_ship('sun', 1.05))
        _command_sequence(a)
        _command_sequence(b)

        for row_a, row_b in zip(a.snapshot(), b.snapshot()):
            assert row_a['name'] == row_b['name']
            assert np.array_equal(row_a['position'], row_b['position'])
            assert np.array_equal(row_a['velocity'], row_b['velocity'])
            assert row_a['M'] == row_b['M']

    def test_reset_replays_identically(self):
        system = make_system(probe=_ship('sun', 1.01))
        _command_sequence(system)
        first = system.snapshot()

        system.reset()
        assert not system.initialized
        assert system.graph.primary_of('probe').name == 'sun'
        assert system.graph['probe'].propellant == 500.0
        assert system.graph['probe'].delta_v_expended == 0.0

        _command_sequence(system)
        for row_a, row_b in zip(first, system.snapshot()):
            assert np.array_equal(row_a['position'], row_b['position'])


class TestFailureIsolation:

    def test_unsupported_eccentricity_is_isolated(self):
        system = make_system(probe=_ship('earth', 0.01), other=_ship('sun', 3.0))
        system.update(T0, 1000.0)
        graph = system.graph
        graph['probe'].orbit.e = float('nan')
        earth_M = graph['earth'].orbit.M
        other_M = graph['other'].orbit.M

        with pytest.raises(SimulationStepError) as info:
            system.update(T0 + 1000.0, 1000.0)

        failures = info.value.failures
        assert [f.body for f in failures] == ['probe']
        assert failures[0].code == "UNSUPPORTED_ECCENTRICITY"
        assert graph['earth'].orbit.M != earth_M
        assert graph['other'].orbit.M != other_M
        assert graph.primary_of('probe').name == 'earth'
        assert system.time_ms == T0 + 2000.0


# =============================================================================
# Test: Commands
# =============================================================================

class TestCommands:

    @pytest.fixture
    def system(self):
        return make_system(probe=_ship('earth', 0.01))

    @pytest.mark.parametrize("value,expected", [(0.5, 0.5), (1.5, 1.0), (-0.2, 0.0)])
    def test_throttle_clamped(self, system, value, expected):
        assert system.set_throttle('probe', value) == expected
        assert system.graph['probe'].motion.throttle == expected

    def test_throttle_must_be_finite(self, system):
        with pytest.raises(ValueError):
            system.set_throttle('probe', float('nan'))

    def test_commands_reject_planets(self, system):
        with pytest.raises(ValueError):
            system.set_throttle('earth', 1.0)

    def test_angular_rates(self, system):
        system.set_angular_rates('probe', pitch=0.1, roll=0.2)
        system.adjust_angular_rates('probe', pitch=0.05, yaw=-0.1)
        motion = system.graph['probe'].motion
        assert_allclose((motion.pitch, motion.yaw, motion.roll), (0.15, -0.1, 0.2))

    @pytest.mark.parametrize("rates", [
        {'pitch': float('nan')},
        {'yaw': float('inf')},
        {'roll': -float('inf')},
    ])
    def test_angular_rates_must_be_finite(self, system, rates):
        with pytest.raises(ValueError):
            system.set_angular_rates('probe', **rates)
        with pytest.raises(ValueError):
            system.adjust_angular_rates('probe', **rates)
        motion = system.graph['probe'].motion
        assert (motion.pitch, motion.yaw, motion.roll) == (0.0, 0.0, 0.0)

        system.update(T0, 1000.0)
        assert np.all(np.isfinite(system.graph['probe'].motion.orientation.components))

    def test_stability_assist(self, system):
        assert system.toggle_stability_assist('probe') is True
        system.set_stability_assist('probe', False)
        assert system.graph['probe'].motion.stability_assist is False

    def test_maneuver_before_first_update(self, system):
        with pytest.raises(RuntimeError):
            system.plan_maneuver('probe', np.ones(3), np.zeros(3))

    def test_plan_and_remove_maneuver(self, system):
        system.update(T0, 1000.0)
        target = system.graph.world_position('earth') + np.array([0.0, 0.01, 0.0])
        m1 = system.plan_maneuver('probe', target, np.array([0.0, 1e-4, 0.0]))
        m2 = system.plan_maneuver('probe', target, np.array([0.0, 0.0, 1e-4]))

        assert isinstance(m1, Maneuver)
        assert m2.id > m1.id
        assert system.graph['probe'].maneuvers == [m1, m2]

        assert system.remove_maneuver('probe', m1.id) is m1
        assert system.graph['probe'].maneuvers == [m2]
        with pytest.raises(KeyError):
            system.remove_maneuver('probe', m1.id)

    def test_snapshot_ship_fields(self, system):
        system.update(T0, 1000.0)
        row = {r['name']: r for r in system.snapshot()}['probe']
        assert row['kind'] == 'ship'
        assert row['primary'] == 'earth'
        assert row['mass'] == 1500.0
        assert row['throttle'] == 0.0
