"""Shared fixtures for the autotune test suite."""

import pytest

from services.channel_service import SimulatedChannel
from services.sampling_service import SamplingService
from services.simulation_service import SimulationService


class FakeDevice:
    """
    Stand-in for an external controller client. Records every command and
    can be told to fail a given velocity read.
    """

    def __init__(self, velocity=0.0, fail_on_read=None, fail_on_command=None):
        self.velocity = velocity
        self.fail_on_read = fail_on_read
        self.fail_on_command = fail_on_command
        self.commands = []
        self.reads = 0
        self.pid = {1: {"p": 65536, "i": 32768, "d": 16384, "qpps": 44000},
                    2: {"p": 65536, "i": 32768, "d": 16384, "qpps": 44000}}

    def set_command(self, motor_index, value):
        if self.fail_on_command is not None and len(self.commands) + 1 >= self.fail_on_command:
            raise OSError("write timeout")
        self.commands.append((motor_index, value))

    def set_pwm(self, motor_index, value):
        self.set_command(motor_index, value)

    def read_velocity(self, motor_index):
        self.reads += 1
        if self.fail_on_read is not None and self.reads >= self.fail_on_read:
            raise OSError("No data received (timeout)")
        return self.velocity

    def read_all_status(self):
        return (10, 20), (100, -100)

    def read_velocity_pid(self, motor_index):
        return dict(self.pid[motor_index])

    def set_velocity_pid(self, motor_index, p, i, d, qpps):
        self.pid[motor_index] = {"p": p, "i": i, "d": d, "qpps": qpps}


@pytest.fixture
def make_device():
    return FakeDevice


@pytest.fixture
def simulation():
    sim = SimulationService()
    sim.set_plant_params(1, 100.0, 0.1)
    sim.set_plant_params(2, 100.0, 0.1)
    return sim


@pytest.fixture
def sampling_service():
    return SamplingService(log_message=lambda message: None)


@pytest.fixture
def sim_channel(simulation):
    def factory(motor_index=1, command_mode=None, realtime_factor=0.0):
        if command_mode is None:
            return SimulatedChannel(simulation, motor_index, realtime_factor=realtime_factor)
        return SimulatedChannel(simulation, motor_index, command_mode, realtime_factor=realtime_factor)
    return factory
