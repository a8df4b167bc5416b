# services/channel_service.py
"""
One contract for driving a motor channel during a test: set a command, read
the velocity, wait for the next tick. The test logic in SamplingService does
not know whether a simulated plant or a real controller sits behind it.
"""
import time
from abc import ABC, abstractmethod

from config import SIM_REALTIME_FACTOR, SIM_SETTLE_TAU_MULTIPLE
from errors import TransportError
from models.plant import CommandMode


class MotorChannel(ABC):
    def __init__(self, motor_index, command_mode=CommandMode.SPEED):
        self.motor_index = motor_index
        self.command_mode = command_mode

    @abstractmethod
    def begin(self):
        """Marks the start of sampling; elapsed_ms() counts from here."""

    @abstractmethod
    def set_command(self, value):
        pass

    @abstractmethod
    def read_velocity(self):
        pass

    @abstractmethod
    def wait(self, seconds):
        """Suspends until the next tick, seconds after the previous one."""

    @abstractmethod
    def elapsed_ms(self):
        pass

    def end(self):
        pass

    def neutral(self):
        self.set_command(self.command_mode.neutral)


class SimulatedChannel(MotorChannel):
    """
    Drives one simulated plant on a virtual clock. Timestamps are exact
    multiples of the tick interval and the plant is advanced by exactly the
    waited time. realtime_factor scales the wall-clock sleep per tick; at 0
    the loop still yields to other threads at every tick.
    """

    def __init__(self, simulation, motor_index, command_mode=CommandMode.SPEED,
                 realtime_factor=SIM_REALTIME_FACTOR):
        super().__init__(motor_index, command_mode)
        self._simulation = simulation
        self._plant = simulation.get_plant(motor_index)
        self._realtime_factor = realtime_factor
        self._origin_ms = 0.0
        self._tick_ms = None
        self._ticks = 0
        self._command = command_mode.neutral
        self._held = False

    def begin(self):
        self._simulation.hold(self.motor_index)
        self._held = True
        self._origin_ms, self._tick_ms, self._ticks = 0.0, None, 0

    def end(self):
        if self._held:
            # Let the motor coast down at neutral before handing it back
            if self._plant.command == self.command_mode.neutral:
                self._plant.advance(SIM_SETTLE_TAU_MULTIPLE * self._plant.params.tau)
            self._simulation.release(self.motor_index)
            self._held = False

    def set_command(self, value):
        self._command = self.command_mode.clamp(float(value))
        self._plant.set_command(self._command, self.command_mode)

    def read_velocity(self):
        return float(self._plant.velocity)

    def wait(self, seconds):
        self._plant.advance(seconds)
        tick_ms = round(seconds * 1000.0, 9)
        if tick_ms != self._tick_ms:
            # New tick length: restart counting from the current time
            self._origin_ms, self._tick_ms, self._ticks = self.elapsed_ms(), tick_ms, 0
        self._ticks += 1
        time.sleep(seconds * self._realtime_factor)

    def elapsed_ms(self):
        if self._tick_ms is None:
            return self._origin_ms
        return self._origin_ms + self._ticks * self._tick_ms


class HardwareChannel(MotorChannel):
    """
    Adapter over an external controller client exposing
    set_command(motor, value) / set_pwm(motor, value) and read_velocity(motor).
    Any failure of the client is reported as TransportError.
    """

    def __init__(self, device, motor_index, command_mode=CommandMode.SPEED):
        super().__init__(motor_index, command_mode)
        self._device = device
        self._start = None
        self._next_tick = None

    def begin(self):
        self._start = time.perf_counter()
        self._next_tick = self._start

    def set_command(self, value):
        command = int(round(self.command_mode.clamp(float(value))))
        try:
            if self.command_mode is CommandMode.PWM:
                self._device.set_pwm(self.motor_index, command)
            else:
                self._device.set_command(self.motor_index, command)
        except Exception as e:
            raise TransportError(f"Failed to command motor {self.motor_index}: {e}") from e

    def read_velocity(self):
        try:
            return float(self._device.read_velocity(self.motor_index))
        except Exception as e:
            raise TransportError(f"Failed to read velocity of motor {self.motor_index}: {e}") from e

    def wait(self, seconds):
        self._next_tick += seconds
        remaining = self._next_tick - time.perf_counter()
        # Late ticks are not caught up; the next deadline restarts from now
        if remaining > 0:
            time.sleep(remaining)
        else:
            self._next_tick = time.perf_counter()

    def elapsed_ms(self):
        return (time.perf_counter() - self._start) * 1000.0
