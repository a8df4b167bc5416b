import math
from dataclasses import dataclass

import numpy as np

from config import (MOTOR_INDICES, SPEED_NEUTRAL, SPEED_FULL_SCALE,
                    DEFAULT_SAMPLE_INTERVAL_MS, DEFAULT_APPLY_DELAY_MS,
                    DEFAULT_LAMBDA_SCALE, DEFAULT_TAU_MIN, DEFAULT_TAU_MAX,
                    DEFAULT_TAU_POINTS, SUSPICIOUS_GAIN_THRESHOLD)
from errors import InvalidParameterError
from models.plant import CommandMode
from utils import is_finite_number


def validate_motor_index(motor_index):
    if motor_index not in MOTOR_INDICES:
        raise InvalidParameterError(f"Invalid motor index: {motor_index} (expected 1 or 2)")


@dataclass
class StepTestSpec:
    """
    Open-loop step: hold neutral for apply_delay_ms, then step_value until
    duration_ms. All times are measured from the start of sampling.
    """
    motor_index: int = 1
    step_value: float = 127
    duration_ms: float = 2000.0
    sample_interval_ms: float = DEFAULT_SAMPLE_INTERVAL_MS
    apply_delay_ms: float = DEFAULT_APPLY_DELAY_MS
    command_mode: CommandMode = CommandMode.SPEED

    def validate(self):
        validate_motor_index(self.motor_index)
        lower, upper = self.command_mode.limits
        if not is_finite_number(self.step_value) or not lower <= self.step_value <= upper:
            raise InvalidParameterError(
                f"Step value {self.step_value} outside {lower}..{upper} for {self.command_mode.value} mode")
        if not is_finite_number(self.sample_interval_ms) or self.sample_interval_ms <= 0:
            raise InvalidParameterError("Sample interval must be > 0 ms")
        if not is_finite_number(self.duration_ms) or self.duration_ms <= 0:
            raise InvalidParameterError("Duration must be > 0 ms")
        if not is_finite_number(self.apply_delay_ms) or not 0 <= self.apply_delay_ms < self.duration_ms:
            raise InvalidParameterError("Apply delay must be >= 0 and shorter than the test duration")
        last_tick_ms = (self.sample_count - 1) * self.sample_interval_ms
        if self.apply_delay_ms > last_tick_ms + 1e-9:
            raise InvalidParameterError(
                f"Apply delay {self.apply_delay_ms} ms falls after the last sample at {last_tick_ms} ms")
        return self

    @property
    def sample_count(self):
        """Number of ticks k with k * sample_interval_ms < duration_ms."""
        return int(math.ceil(self.duration_ms / self.sample_interval_ms - 1e-9))

    def command_at(self, t_ms):
        if t_ms < self.apply_delay_ms:
            return self.command_mode.neutral
        return self.step_value


@dataclass
class FrfTestSpec:
    """Stepped-sine sweep about the neutral speed command."""
    motor_index: int = 1
    start_hz: float = 0.5
    end_hz: float = 20.0
    points: int = 12
    amplitude_cmd: float = 20.0
    cycles: int = 6
    sample_interval_ms: float = 2.0

    def validate(self):
        validate_motor_index(self.motor_index)
        if not (is_finite_number(self.start_hz) and is_finite_number(self.end_hz)) \
                or not 0 < self.start_hz < self.end_hz:
            raise InvalidParameterError("Frequencies must satisfy 0 < start_hz < end_hz")
        if int(self.points) != self.points or self.points < 2:
            raise InvalidParameterError("An FRF sweep needs at least 2 points")
        if not is_finite_number(self.amplitude_cmd) or not 0 < self.amplitude_cmd <= SPEED_FULL_SCALE:
            raise InvalidParameterError(
                f"Amplitude must be in (0, {SPEED_FULL_SCALE}] to keep the command inside 0..127")
        if int(self.cycles) != self.cycles or self.cycles < 2:
            raise InvalidParameterError("At least 2 cycles per frequency are needed (the first is discarded)")
        if not is_finite_number(self.sample_interval_ms) or self.sample_interval_ms <= 0:
            raise InvalidParameterError("Sample interval must be > 0 ms")
        sample_rate_hz = 1000.0 / self.sample_interval_ms
        if sample_rate_hz <= 2.0 * self.end_hz:
            raise InvalidParameterError(
                f"Sampling at {sample_rate_hz:.1f} Hz cannot resolve {self.end_hz} Hz (Nyquist)")
        return self

    def get_frequency_vector(self):
        """Logarithmically-spaced excitation frequencies [Hz]."""
        return np.geomspace(self.start_hz, self.end_hz, int(self.points))

    def samples_per_frequency(self, freq_hz):
        period_ms = 1000.0 / freq_hz
        return int(round(self.cycles * period_ms / self.sample_interval_ms))

    def command_at(self, t_ms, freq_hz):
        return SPEED_NEUTRAL + self.amplitude_cmd * np.sin(2.0 * np.pi * freq_hz * t_ms / 1000.0)


@dataclass
class TuningConfig:
    lambda_scale: float = DEFAULT_LAMBDA_SCALE
    tau_min: float = DEFAULT_TAU_MIN
    tau_max: float = DEFAULT_TAU_MAX
    tau_points: int = DEFAULT_TAU_POINTS
    suspicious_gain: float = SUSPICIOUS_GAIN_THRESHOLD

    def validate(self):
        if not is_finite_number(self.lambda_scale) or self.lambda_scale <= 0:
            raise InvalidParameterError("Lambda scale must be > 0")
        if not (is_finite_number(self.tau_min) and is_finite_number(self.tau_max)) \
                or not 0 < self.tau_min < self.tau_max:
            raise InvalidParameterError("Tau bounds must satisfy 0 < tau_min < tau_max")
        if int(self.tau_points) != self.tau_points or self.tau_points < 2:
            raise InvalidParameterError("At least 2 tau candidates are needed")
        if not is_finite_number(self.suspicious_gain) or self.suspicious_gain <= 0:
            raise InvalidParameterError("Suspicious gain threshold must be > 0")
        return self
