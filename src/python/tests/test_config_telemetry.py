"""
===============================================================================
ORBIT SIM - Configuration and Telemetry Test Suite
===============================================================================
Tests for YAML scenario loading, unit scaling of the body table, epoch
parsing, and the pandas telemetry recorder.
===============================================================================
"""

import sys
import os
from datetime import datetime, timezone

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import numpy as np
import pandas as pd
import pytest
from numpy.testing import assert_allclose

from core.config import (
    SimulationSettings,
    build_body_table,
    load_config,
    parse_epoch,
)
from core.constants import AU, J2000_EPOCH_MS
from core.exceptions import ConfigurationError
from dynamics.bodies import BodyGraph
from simulation.solar_system import SolarSystem
from simulation.telemetry import TelemetryRecorder

SCENARIO = """
simulation:
  length_unit_m: 1000.0
  epoch: "2000-01-01T12:00:00Z"
  dt_ms: 500
  steps: 3
bodies:
  star:
    constants: {u: 1.0e+9, radius: 2000.0}
  rock:
    primary: star
    constants: {u: 1.0e+3, radius: 10.0, rotation_period: 1.0}
    kepler_elements:
      a: [1.0, 0.0]
      e: [0.1, 0.0]
      I: [0.0, 0.0]
      L: [0.0, 0.0]
      w: [0.0, 0.0]
      omega: [0.0, 0.0]
  dart:
    type: ship
    primary: star
    constants: {u: 0.0}
    kepler_elements:
      a: [5.0, 0.0]
      e: [0.0, 0.0]
      I: [0.0, 0.0]
      L: [0.0, 0.0]
      w: [0.0, 0.0]
      omega: [0.0, 0.0]
    stages:
      - {mass: 10.0, isp: 200.0, thrust: 10.0, propellant: 5.0}
"""


@pytest.fixture
def scenario_path(tmp_path):
    path = tmp_path / 'scenario.yaml'
    path.write_text(SCENARIO)
    return path


@pytest.fixture
def config(scenario_path):
    return load_config(scenario_path)


# =============================================================================
# Test: Loading
# =============================================================================

class TestLoadConfig:

    def test_default_file(self):
        config = load_config()
        assert 'earth' in config['bodies']
        assert config['bodies']['earth']['primary'] == 'sun'

    def test_custom_file(self, config):
        assert set(config['bodies']) == {'star', 'rock', 'dart'}

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(tmp_path / 'nope.yaml')

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / 'bad.yaml'
        path.write_text("bodies: [unclosed\n")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / 'list.yaml'
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigurationError):
            load_config(path)


class TestSimulationSettings:

    def test_from_config(self, config):
        settings = SimulationSettings.from_config(config)
        assert settings.length_unit_m == 1000.0
        assert settings.epoch_ms == J2000_EPOCH_MS
        assert settings.dt_ms == 500.0
        assert settings.steps == 3

    def test_defaults(self):
        settings = SimulationSettings.from_config({})
        assert settings.length_unit_m == AU
        assert settings.heading == (1.0, 0.0, 0.0)

    @pytest.mark.parametrize("sim", [
        {'length_unit_m': -1.0},
        {'dt_ms': 'soon'},
        {'heading': [1.0, 0.0]},
        {'epoch': 'yesterday'},
    ])
    def test_invalid(self, sim):
        with pytest.raises(ConfigurationError):
            SimulationSettings.from_config({'simulation': sim})


class TestParseEpoch:

    def test_j2000_string(self):
        assert parse_epoch("2000-01-01T12:00:00Z") == J2000_EPOCH_MS

    def test_offset_string(self):
        assert parse_epoch("2000-01-01T13:00:00+01:00") == J2000_EPOCH_MS

    def test_naive_datetime_is_utc(self):
        assert parse_epoch(datetime(2000, 1, 1, 12)) == J2000_EPOCH_MS

    def test_aware_datetime(self):
        assert parse_epoch(datetime(1970, 1, 1, tzinfo=timezone.utc)) == 0.0

    def test_number_passes_through(self):
        assert parse_epoch(1234) == 1234.0


class TestBodyTable:

    def test_constants_scaled(self, config):
        table = build_body_table(config)
        assert_allclose(table['star']['constants']['u'], 1.0)
        assert_allclose(table['star']['constants']['radius'], 2.0)
        assert_allclose(table['rock']['constants']['u'], 1e-6)
        assert table['rock']['constants']['rotation_period'] == 1.0

    def test_input_not_modified(self, config):
        build_body_table(config)
        assert config['bodies']['star']['constants']['u'] == 1.0e9

    def test_ship_gets_default_heading(self, config):
        table = build_body_table(config)
        assert table['dart']['motion']['heading'] == [1.0, 0.0, 0.0]

    def test_no_bodies(self):
        with pytest.raises(ConfigurationError):
            build_body_table({'simulation': {}})

    def test_default_scenario_builds(self):
        graph = BodyGraph.from_table(build_body_table(load_config()))
        assert graph.root.name == 'sun'
        assert [s.name for s in graph.ships()] == ['firefly']


# =============================================================================
# Test: Telemetry
# =============================================================================

@pytest.fixture
def system(config):
    settings = SimulationSettings.from_config(config)
    return SolarSystem(BodyGraph.from_table(build_body_table(config)), settings)


class TestTelemetryRecorder:

    def test_empty_frame(self, system):
        recorder = TelemetryRecorder(system)
        assert recorder.record() == 0
        assert recorder.to_frame().empty

    def test_rows_per_tick(self, system):
        recorder = TelemetryRecorder(system)
        system.run(J2000_EPOCH_MS, 500.0, 3, recorder=recorder)
        assert len(recorder) == 9

        df = recorder.to_frame()
        assert df.index.names == ['time_ms', 'name']
        assert set(df.index.get_level_values('name')) == {'star', 'rock', 'dart'}
        assert sorted(set(df.index.get_level_values('time_ms'))) == [
            J2000_EPOCH_MS + 500.0, J2000_EPOCH_MS + 1000.0, J2000_EPOCH_MS + 1500.0]

    def test_columns(self, system):
        recorder = TelemetryRecorder(system)
        system.run(J2000_EPOCH_MS, 500.0, 1, recorder=recorder)
        df = recorder.to_frame()
        for column in ('position_x', 'velocity_z', 'apoapsis_y', 'regime', 'e', 'mass',
                       'attitude_x', 'attitude_z'):
            assert column in df.columns

        rock = df.xs('rock', level='name').iloc[0]
        assert rock['regime'] == 'elliptical'
        assert_allclose(rock['e'], 0.1)
        assert np.isnan(rock['mass'])

        dart = df.xs('dart', level='name').iloc[0]
        assert dart['kind'] == 'ship'
        assert dart['mass'] == 15.0
        assert dart['attitude_x'] == 0.0

    def test_body_filter(self, system):
        recorder = TelemetryRecorder(system, bodies=['dart'])
        system.run(J2000_EPOCH_MS, 500.0, 2, recorder=recorder)
        assert len(recorder) == 2

    def test_csv_round_trip(self, system, tmp_path):
        recorder = TelemetryRecorder(system)
        system.run(J2000_EPOCH_MS, 500.0, 2, recorder=recorder)
        path = tmp_path / 'telemetry.csv'
        recorder.to_csv(path)

        df = pd.read_csv(path, index_col=['time_ms', 'name'])
        assert len(df) == 6
        assert_allclose(df['position_x'].values,
                        recorder.to_frame()['position_x'].values, rtol=1e-12)

    def test_clear(self, system):
        recorder = TelemetryRecorder(system)
        system.run(J2000_EPOCH_MS, 500.0, 1, recorder=recorder)
        recorder.clear()
        assert len(recorder) == 0
