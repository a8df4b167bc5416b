# services/telemetry_service.py
import time
import threading

from config import MOTOR_INDICES, TELEMETRY_INTERVAL_S
from errors import TransportError


class TelemetryService:
    """
    Polls the controller's status on a background thread and feeds the
    readings into DataService streams. The loop sleeps between polls and
    checks for a stop request only at those tick boundaries.
    """

    def __init__(self, data_service, log_message=print):
        self._data_service = data_service
        self._log = log_message
        self._thread = None
        self._stop_event = threading.Event()
        self._device = None
        self.is_active = False
        self.last_error = None

    def start(self, device, interval_s=TELEMETRY_INTERVAL_S):
        if self._thread and self._thread.is_alive():
            self._log("Telemetry is already running.")
            return False

        self._device = device
        self._stop_event.clear()
        self.last_error = None
        self.is_active = True
        self._thread = threading.Thread(target=self._poll_thread_func, args=(interval_s,), daemon=True)
        self._thread.start()
        return True

    def stop(self, timeout=1.0):
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
        self.is_active = False

    def poll_once(self, device=None, timestamp=None):
        """Reads status (and velocities when available) once and records it."""
        device = device or self._device
        ts = time.time() if timestamp is None else timestamp
        try:
            currents, pwms = device.read_all_status()
            velocities = [device.read_velocity(i) for i in MOTOR_INDICES]
        except Exception as e:
            raise TransportError(f"Telemetry read failed: {e}") from e

        for i, current, pwm, velocity in zip(MOTOR_INDICES, currents, pwms, velocities):
            self._data_service.add_data_point(f"motor_{i}_current", ts, current)
            self._data_service.add_data_point(f"motor_{i}_pwm", ts, pwm)
            self._data_service.add_data_point(f"motor_{i}_velocity", ts, velocity)
        return currents, pwms, velocities

    def _poll_thread_func(self, interval_s):
        next_tick = time.perf_counter()
        try:
            while not self._stop_event.is_set():
                self.poll_once()
                next_tick += interval_s
                self._stop_event.wait(max(0.0, next_tick - time.perf_counter()))
        except TransportError as e:
            self.last_error = e
            self._log(f"Telemetry ERROR: {e}")
        finally:
            self.is_active = False
