# services/frequency_service.py
import math

import numpy as np

from errors import InsufficientDataError, InvalidParameterError
from models.results import FrfPoint
from utils import wrap_phase_deg


class FrequencyService:
    """
    Synchronous demodulation of one excitation frequency.

    The first cycle of every segment is dropped so the start-up transient
    does not bias the estimate. The velocity over the following whole cycles
    is projected onto sin(2*pi*f*t), cos(2*pi*f*t) and a constant:

        v(t) ~ I*sin(wt) + Q*cos(wt) + c

    For an input A*sin(wt) and output B*sin(wt + phi), I = B*cos(phi) and
    Q = B*sin(phi), so gain = hypot(I, Q)/A and phase = atan2(Q, I). On an
    exact whole-cycle window this is the usual 2/N correlation sum; the
    least-squares form also stays unbiased when the cycle length is not a
    multiple of the sample interval.
    """

    def analyze(self, samples, freq_hz, amplitude_cmd, t0_ms=0.0):
        if freq_hz <= 0:
            raise InvalidParameterError(f"Frequency must be > 0, got {freq_hz}")
        if amplitude_cmd <= 0:
            raise InvalidParameterError(f"Amplitude must be > 0, got {amplitude_cmd}")
        if len(samples) < 2:
            raise InsufficientDataError(f"Need at least 2 samples at {freq_hz:.3f} Hz, got {len(samples)}")

        t = (np.array([s.t_ms for s in samples], dtype=float) - t0_ms) / 1000.0
        y = np.array([s.velocity for s in samples], dtype=float)

        window = self.full_cycle_window(t, freq_hz)
        if window is None or np.count_nonzero(window) < 3:
            raise InsufficientDataError(
                f"No full cycle left at {freq_hz:.3f} Hz after discarding the first one")

        in_phase, quadrature = self.demodulate(t[window], y[window], freq_hz)
        gain = math.hypot(in_phase, quadrature) / amplitude_cmd
        phase_deg = wrap_phase_deg(math.degrees(math.atan2(quadrature, in_phase)))
        return FrfPoint(freq_hz=float(freq_hz), gain=gain, phase_deg=phase_deg)

    def full_cycle_window(self, t, freq_hz):
        """Mask of the samples inside the whole cycles after the first one."""
        period = 1.0 / freq_hz
        dt = float(np.median(np.diff(t))) if len(t) > 1 else 0.0
        span = t[-1] + dt - period
        n_cycles = int(math.floor((span + dt / 2.0) / period))
        if n_cycles < 1:
            return None
        eps = dt * 1e-6
        return (t >= period - eps) & (t < period * (n_cycles + 1) - eps)

    def demodulate(self, t, y, freq_hz):
        omega = 2.0 * np.pi * freq_hz
        basis = np.column_stack([np.sin(omega * t), np.cos(omega * t), np.ones_like(t)])
        coeffs, _, _, _ = np.linalg.lstsq(basis, y, rcond=None)
        return float(coeffs[0]), float(coeffs[1])
