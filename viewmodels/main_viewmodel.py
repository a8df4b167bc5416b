# viewmodels/main_viewmodel.py
import collections
import time

from config import LOG_HISTORY_LENGTH, MOTOR_INDICES, SIM_REALTIME_FACTOR, TELEMETRY_INTERVAL_S
from errors import AutotuneError, BusyError, TransportError
from models.excitation import validate_motor_index
from models.plant import CommandMode
from models.results import SuggestedPid
from serialization import (parse_frf_spec, parse_plant_params, parse_step_spec,
                           parse_tuning, to_dict, samples_to_csv, frf_to_csv)
from services.autotune_service import AutotuneService
from services.channel_service import HardwareChannel, SimulatedChannel
from services.data_service import DataService
from services.frequency_service import FrequencyService
from services.pid_service import PidService
from services.sampling_service import SamplingService
from services.simulation_service import SimulationService
from services.telemetry_service import TelemetryService


class MainViewModel:
    """
    Entry point for a front end. Requests come in as dictionaries with either
    camelCase or snake_case keys; results go out as snake_case dictionaries.
    Without a device every test runs against the simulated plants.
    """

    def __init__(self, device=None, realtime_factor=SIM_REALTIME_FACTOR):
        # Event Log
        self.log_messages = collections.deque(maxlen=LOG_HISTORY_LENGTH)

        # Services
        self._simulation_service = SimulationService()
        self._data_service = DataService()
        self._frequency_service = FrequencyService()
        self._pid_service = PidService()
        self._sampling_service = SamplingService(self._frequency_service, log_message=self.log_message)
        self._telemetry_service = TelemetryService(self._data_service, log_message=self.log_message)
        self._autotune_service = AutotuneService(self._sampling_service, self._create_channel,
                                                 pid_service=self._pid_service,
                                                 log_message=self.log_message)

        # State
        self.device = device
        self.realtime_factor = realtime_factor
        self.last_samples = []
        self.last_frf = []

        self.log_message("Simulation mode." if device is None else "Using hardware device.")

    @property
    def is_simulation(self):
        return self.device is None

    @property
    def active_device(self):
        return self._simulation_service if self.device is None else self.device

    def log_message(self, message):
        log_time = time.strftime("%H:%M:%S", time.localtime())
        self.log_messages.appendleft(f"[{log_time}] {message}")

    def use_device(self, device):
        self._ensure_idle()
        self.device = device
        self.log_message("Switched to hardware device.")

    def use_simulation(self):
        self._ensure_idle()
        self.device = None
        self.log_message("Switched to simulation.")

    def _ensure_idle(self):
        if any(self._sampling_service.is_busy(i) for i in MOTOR_INDICES):
            raise BusyError("Cannot switch devices while a test is running")

    def _create_channel(self, motor_index, command_mode):
        if self.device is None:
            return SimulatedChannel(self._simulation_service, motor_index, command_mode,
                                    realtime_factor=self.realtime_factor)
        return HardwareChannel(self.device, motor_index, command_mode)

    # --- Simulated plant ---

    def set_plant_params(self, params):
        motor_index, gain, tau = parse_plant_params(params)
        plant = self._simulation_service.set_plant_params(motor_index, gain, tau)
        self.log_message(f"Simulated motor {motor_index}: K = {plant.gain}, tau = {plant.tau} s")
        return {"motor_index": motor_index, "gain": plant.gain, "tau": plant.tau}

    def reset_simulation(self, motor_index=None):
        self._simulation_service.reset(motor_index)

    # --- Tests ---

    def run_step_test(self, params):
        spec = parse_step_spec(params)
        channel = self._create_channel(spec.motor_index, spec.command_mode)
        try:
            self.last_samples = self._sampling_service.run_step_test(channel, spec)
        except AutotuneError as e:
            self.last_samples = e.samples
            self.log_message(f"Step test ERROR: {e}")
            raise
        return to_dict(self.last_samples)

    def run_frf_test(self, params):
        spec = parse_frf_spec(params)
        channel = self._create_channel(spec.motor_index, CommandMode.SPEED)
        try:
            self.last_frf = self._sampling_service.run_frf_test(channel, spec)
        except AutotuneError as e:
            self.last_frf = e.frf or []
            self.log_message(f"FRF test ERROR: {e}")
            raise
        return to_dict(self.last_frf)

    def _parse_autotune(self, method, params, tuning):
        spec = parse_frf_spec(params) if method == "frf" else parse_step_spec(params)
        return spec, parse_tuning(tuning or params)

    def autotune(self, method, params, tuning=None, probe=False):
        spec, tuning_config = self._parse_autotune(method, params, tuning)
        result = self._autotune_service.autotune(method, spec, tuning_config, probe=probe)
        self.last_samples = result.samples
        self.last_frf = result.frf or []
        return to_dict(result)

    def start_autotune(self, method, params, tuning=None, probe=False):
        spec, tuning_config = self._parse_autotune(method, params, tuning)
        self._autotune_service.start(method, spec, tuning_config, probe=probe)

    def cancel(self, motor_index):
        if self._sampling_service.cancel(motor_index):
            self.log_message(f"Cancelling test on motor {motor_index}...")
            return True
        return False

    def wait_for_autotune(self, motor_index, timeout=None):
        self._autotune_service.wait(motor_index, timeout)
        return self.get_autotune_status(motor_index)

    def get_autotune_status(self, motor_index):
        run = self._autotune_service.get_run(motor_index)
        status = {
            "motor_index": run.motor_index,
            "state": run.state.value,
            "method": run.method,
            "status": run.status,
            "result": to_dict(run.result) if run.result else None,
            "error": str(run.error) if run.error else None,
        }
        if run.error is not None:
            status["error_type"] = type(run.error).__name__
            status["samples"] = to_dict(getattr(run.error, "samples", []))
        return status

    def acknowledge_autotune(self, motor_index):
        run = self._autotune_service.acknowledge(motor_index)
        return {"motor_index": run.motor_index, "state": run.state.value}

    # --- Device PID registers ---

    def probe_device(self, motor_index):
        validate_motor_index(motor_index)
        try:
            self.active_device.read_velocity(motor_index)
            return True
        except Exception as e:
            self.log_message(f"Device probe failed on motor {motor_index}: {e}")
            return False

    def read_velocity_pid(self, motor_index):
        validate_motor_index(motor_index)
        try:
            return dict(self.active_device.read_velocity_pid(motor_index))
        except Exception as e:
            raise TransportError(f"Failed to read PID of motor {motor_index}: {e}") from e

    def describe_pid_change(self, motor_index, suggested):
        suggested = _as_suggested_pid(suggested)
        return self._pid_service.describe_change(self.read_velocity_pid(motor_index), suggested)

    def apply_suggested_pid(self, motor_index, suggested, confirmed=False):
        """Writes suggested gains to the controller. Requires confirmed=True."""
        validate_motor_index(motor_index)
        if not confirmed:
            self.log_message(f"Not applying PID to motor {motor_index}: confirmation required.")
            return False
        if self._sampling_service.is_busy(motor_index):
            raise BusyError(f"A test is running on motor {motor_index}")

        suggested = _as_suggested_pid(suggested)
        try:
            self.active_device.set_velocity_pid(motor_index, suggested.p, suggested.i,
                                                suggested.d, suggested.qpps)
        except Exception as e:
            raise TransportError(f"Failed to write PID to motor {motor_index}: {e}") from e
        self.log_message(f"Applied velocity PID to motor {motor_index}: P={suggested.p}, "
                         f"I={suggested.i}, D={suggested.d}, QPPS={suggested.qpps}")
        return True

    # --- Telemetry ---

    def start_telemetry(self, interval_s=TELEMETRY_INTERVAL_S):
        return self._telemetry_service.start(self.active_device, interval_s)

    def stop_telemetry(self):
        self._telemetry_service.stop()

    def get_stream_data(self, key):
        stream = self._data_service.get_stream_data(key)
        return {"timestamps": list(stream["timestamps"]), "values": list(stream["values"])}

    # --- Export ---

    def export_samples_csv(self):
        return samples_to_csv(self.last_samples)

    def export_frf_csv(self):
        return frf_to_csv(self.last_frf)


def _as_suggested_pid(suggested):
    if isinstance(suggested, SuggestedPid):
        return suggested
    return SuggestedPid(p=int(suggested["p"]), i=int(suggested["i"]),
                        d=int(suggested["d"]), qpps=int(suggested["qpps"]))
