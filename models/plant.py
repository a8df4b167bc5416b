import math
import threading
from dataclasses import dataclass
from enum import Enum

from config import (SPEED_MIN, SPEED_MAX, SPEED_NEUTRAL, SPEED_FULL_SCALE,
                    PWM_MIN, PWM_MAX, PWM_NEUTRAL, PWM_FULL_SCALE,
                    DEFAULT_PLANT_GAIN, DEFAULT_PLANT_TAU)
from errors import InvalidParameterError
from utils import clamp_value, is_finite_number


class CommandMode(Enum):
    """Command domain of a motor channel."""
    SPEED = "speed"  # logical 0..127, 64 = stop
    PWM = "pwm"      # signed duty -32767..32767

    @property
    def neutral(self):
        return SPEED_NEUTRAL if self is CommandMode.SPEED else PWM_NEUTRAL

    @property
    def full_scale(self):
        return SPEED_FULL_SCALE if self is CommandMode.SPEED else PWM_FULL_SCALE

    @property
    def limits(self):
        if self is CommandMode.SPEED:
            return SPEED_MIN, SPEED_MAX
        return PWM_MIN, PWM_MAX

    def clamp(self, command):
        lower, upper = self.limits
        return clamp_value(command, lower, upper)

    def to_unit(self, command):
        """Maps a command to the normalized drive level in [-1, 1]."""
        return clamp_value((self.clamp(command) - self.neutral) / self.full_scale, -1.0, 1.0)


@dataclass(frozen=True)
class PlantParameters:
    gain: float = DEFAULT_PLANT_GAIN  # pps per full-scale command
    tau: float = DEFAULT_PLANT_TAU    # s

    def validate(self):
        if not is_finite_number(self.gain):
            raise InvalidParameterError(f"Plant gain must be finite, got {self.gain}")
        if not is_finite_number(self.tau) or self.tau <= 0:
            raise InvalidParameterError(f"Plant time constant must be > 0, got {self.tau}")
        return self


class PlantModel:
    """
    First-order velocity response of one motor channel.

    tau * dv/dt + v = K * u, where u is the command mapped to [-1, 1].
    Each advance uses the exact solution for a command held over dt, so the
    trajectory does not depend on how finely it is sampled.

    New parameters are staged by configure() and only picked up at the start
    of the next advance(), never in the middle of one.
    """

    def __init__(self, params=None):
        self._params = (params or PlantParameters()).validate()
        self._pending = None
        self._lock = threading.Lock()
        self.velocity = 0.0
        self.command = SPEED_NEUTRAL
        self.mode = CommandMode.SPEED

    @property
    def params(self):
        with self._lock:
            return self._pending or self._params

    def configure(self, gain, tau):
        params = PlantParameters(float(gain), float(tau)).validate()
        with self._lock:
            self._pending = params
        return params

    def set_command(self, command, mode=CommandMode.SPEED):
        with self._lock:
            self.mode = mode
            self.command = mode.clamp(command)

    def steady_state(self, command, mode=CommandMode.SPEED):
        return self._params.gain * mode.to_unit(command)

    def advance(self, dt, command=None, mode=None):
        """Holds the command for dt seconds and returns the new velocity."""
        if dt < 0:
            raise InvalidParameterError(f"Time step must be >= 0, got {dt}")
        with self._lock:
            if self._pending is not None:
                self._params = self._pending
                self._pending = None
            if mode is not None:
                self.mode = mode
            if command is not None:
                self.command = self.mode.clamp(command)
            if dt == 0:
                return self.velocity

            v_inf = self._params.gain * self.mode.to_unit(self.command)
            decay = math.exp(-dt / self._params.tau)
            self.velocity = v_inf + (self.velocity - v_inf) * decay
            return self.velocity

    def reset(self):
        with self._lock:
            self.velocity = 0.0
            self.command = self.mode.neutral
