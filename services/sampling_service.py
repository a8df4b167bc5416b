# services/sampling_service.py
import threading
from contextlib import contextmanager

from errors import BusyError, TransportError
from models.excitation import validate_motor_index
from models.results import Sample
from services.frequency_service import FrequencyService


class SamplingService:
    """
    Sequences test commands on a motor channel and captures timestamped
    samples at a fixed cadence.

    Only one test may own a motor channel at a time. A second request for the
    same channel fails with BusyError and leaves the running capture alone.
    """

    def __init__(self, frequency_service=None, log_message=print):
        self._frequency_service = frequency_service or FrequencyService()
        self._log = log_message
        self._lock = threading.Lock()
        self._cancel_events = {}

    # --- Channel reservation ---

    def is_busy(self, motor_index):
        with self._lock:
            return motor_index in self._cancel_events

    @contextmanager
    def reserve(self, motor_index):
        """Claims a motor channel for one run and yields its cancel event."""
        validate_motor_index(motor_index)
        with self._lock:
            if motor_index in self._cancel_events:
                raise BusyError(f"A test is already running on motor {motor_index}")
            cancel_event = threading.Event()
            self._cancel_events[motor_index] = cancel_event
        try:
            yield cancel_event
        finally:
            with self._lock:
                self._cancel_events.pop(motor_index, None)

    def cancel(self, motor_index):
        with self._lock:
            cancel_event = self._cancel_events.get(motor_index)
        if cancel_event is None:
            return False
        cancel_event.set()
        return True

    # --- Public test runs ---

    def run_step_test(self, channel, spec):
        """Runs a step test and returns its samples (partial if cancelled)."""
        spec.validate()
        with self.reserve(spec.motor_index) as cancel_event:
            samples, _ = self.capture_step(channel, spec, cancel_event)
        return samples

    def run_frf_test(self, channel, spec):
        """Runs a stepped-sine sweep and returns one FrfPoint per finished frequency."""
        spec.validate()
        with self.reserve(spec.motor_index) as cancel_event:
            _, points, _ = self.capture_frf(channel, spec, cancel_event)
        return points

    # --- Capture loops (the caller holds the reservation) ---

    def capture_step(self, channel, spec, cancel_event=None):
        """Returns (samples, cancelled)."""
        self._log(f"Step test: motor {spec.motor_index}, neutral -> {spec.step_value} "
                  f"after {spec.apply_delay_ms:.0f} ms, {spec.duration_ms:.0f} ms total")
        samples = []
        channel.begin()
        try:
            cancelled = self._capture(channel, spec.command_at, spec.sample_count,
                                      spec.sample_interval_ms, samples, cancel_event)
            channel.neutral()
        except TransportError as e:
            self._abort(channel, e, samples)
            raise
        finally:
            channel.end()
        if cancelled:
            self._log(f"Step test on motor {spec.motor_index} cancelled after {len(samples)} samples.")
        return samples, cancelled

    def capture_frf(self, channel, spec, cancel_event=None):
        """Returns (samples, points, cancelled) for the whole sweep."""
        freqs = spec.get_frequency_vector()
        self._log(f"FRF test: motor {spec.motor_index}, {len(freqs)} points "
                  f"{spec.start_hz}-{spec.end_hz} Hz, amplitude {spec.amplitude_cmd}")
        samples, points = [], []
        cancelled = False
        channel.begin()
        try:
            for freq_hz in freqs:
                segment = []
                segment_start_ms = channel.elapsed_ms()
                command_fn = lambda t_ms, f=freq_hz: spec.command_at(t_ms, f)
                cancelled = self._capture(channel, command_fn, spec.samples_per_frequency(freq_hz),
                                          spec.sample_interval_ms, segment, cancel_event)
                samples.extend(segment)
                if cancelled:
                    break
                point = self._frequency_service.analyze(segment, freq_hz, spec.amplitude_cmd,
                                                        t0_ms=segment_start_ms)
                points.append(point)
            channel.neutral()
        except TransportError as e:
            e.frf = points
            self._abort(channel, e, samples)
            raise
        finally:
            channel.end()
        if cancelled:
            self._log(f"FRF test on motor {spec.motor_index} cancelled after {len(points)} frequencies.")
        return samples, points, cancelled

    def _capture(self, channel, command_fn, n_samples, interval_ms, samples,
                 cancel_event=None):
        """
        Appends up to n_samples samples. Each tick sets the command for the
        tick time, reads the velocity, records it, then waits one interval.
        Returns True when stopped early by the cancel event.
        """
        interval_s = interval_ms / 1000.0
        for k in range(n_samples):
            if cancel_event is not None and cancel_event.is_set():
                channel.neutral()
                return True
            command = float(command_fn(k * interval_ms))
            channel.set_command(command)
            t_ms = channel.elapsed_ms()
            velocity = channel.read_velocity()
            samples.append(Sample(t_ms=t_ms, velocity=velocity, command=command))
            channel.wait(interval_s)
        return False

    def _abort(self, channel, error, samples):
        error.samples = list(samples)
        self._log(f"Transport error on motor {channel.motor_index} after {len(samples)} samples: {error}")
        try:
            channel.neutral()
        except TransportError as e:
            self._log(f"Could not return motor {channel.motor_index} to neutral: {e}")
