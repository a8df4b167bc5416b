# services/autotune_service.py
import threading
from contextlib import ExitStack
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from config import MOTOR_INDICES, SPEED_FULL_SCALE
from errors import AutotuneError, InvalidParameterError, RunCancelledError
from models.excitation import FrfTestSpec, StepTestSpec, TuningConfig, validate_motor_index
from models.plant import CommandMode
from models.results import AutotuneResult
from services.analysis_service import AnalysisService
from services.fitting_service import FittingService
from services.pid_service import PidService

STEP_METHODS = ("step", "step_regression")
METHODS = STEP_METHODS + ("frf",)


class AutotuneState(Enum):
    IDLE = "idle"
    PROBING = "probing"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class AutotuneRun:
    motor_index: int
    state: AutotuneState = AutotuneState.IDLE
    method: Optional[str] = None
    status: str = "Idle"
    result: Optional[AutotuneResult] = None
    error: Optional[Exception] = None


class AutotuneService:
    """
    Runs test -> fit -> PID synthesis on one motor channel.

    Per channel: IDLE -> PROBING (optional) -> RUNNING -> SUCCEEDED | FAILED,
    and back to IDLE on acknowledge(). A request for a channel that is
    already running fails with BusyError. Suggested gains are only
    returned, never written to the controller.
    """

    def __init__(self, sampling_service, channel_factory, fitting_service=None,
                 pid_service=None, analysis_service=None, log_message=print):
        self._sampling_service = sampling_service
        self._channel_factory = channel_factory
        self._fitting_service = fitting_service or FittingService()
        self._pid_service = pid_service or PidService()
        self._analysis_service = analysis_service or AnalysisService()
        self._log = log_message
        self._runs = {i: AutotuneRun(motor_index=i) for i in MOTOR_INDICES}
        self._threads = {}
        self._lock = threading.Lock()

    def get_run(self, motor_index):
        validate_motor_index(motor_index)
        return self._runs[motor_index]

    def autotune(self, method, spec, tuning=None, probe=False):
        """Blocks until the run finishes; returns AutotuneResult or raises."""
        tuning = self._validate(method, spec, tuning)
        with self._sampling_service.reserve(spec.motor_index) as cancel_event:
            run = self._begin_run(spec.motor_index, method, probe)
            self._execute(run, spec, tuning, probe, cancel_event)
        if run.error is not None:
            raise run.error
        return run.result

    def start(self, method, spec, tuning=None, probe=False):
        """
        Same as autotune() on a background thread. Validation and the busy
        check happen here, in the caller's thread.
        """
        tuning = self._validate(method, spec, tuning)
        stack = ExitStack()
        cancel_event = stack.enter_context(self._sampling_service.reserve(spec.motor_index))
        run = self._begin_run(spec.motor_index, method, probe)
        thread = threading.Thread(
            target=self._autotune_thread_func,
            args=(stack, run, spec, tuning, probe, cancel_event),
            daemon=True
        )
        with self._lock:
            self._threads[spec.motor_index] = thread
        thread.start()
        return thread

    def cancel(self, motor_index):
        return self._sampling_service.cancel(motor_index)

    def wait(self, motor_index, timeout=None):
        with self._lock:
            thread = self._threads.get(motor_index)
        if thread:
            thread.join(timeout)
        return self.get_run(motor_index)

    def acknowledge(self, motor_index):
        """Returns the finished run and puts the channel back to IDLE."""
        run = self.get_run(motor_index)
        if run.state in (AutotuneState.PROBING, AutotuneState.RUNNING):
            return run
        self._runs[motor_index] = AutotuneRun(motor_index=motor_index)
        return run

    def _autotune_thread_func(self, stack, run, spec, tuning, probe, cancel_event):
        with stack:
            self._execute(run, spec, tuning, probe, cancel_event)

    def _validate(self, method, spec, tuning):
        if method not in METHODS:
            raise InvalidParameterError(f"Unknown autotune method '{method}' (expected one of {', '.join(METHODS)})")
        expected = StepTestSpec if method in STEP_METHODS else FrfTestSpec
        if not isinstance(spec, expected):
            raise InvalidParameterError(f"Method '{method}' needs a {expected.__name__}")
        spec.validate()
        return (tuning or TuningConfig()).validate()

    def _begin_run(self, motor_index, method, probe):
        state = AutotuneState.PROBING if probe else AutotuneState.RUNNING
        run = AutotuneRun(motor_index=motor_index, state=state, method=method, status="Starting...")
        self._runs[motor_index] = run
        return run

    def _execute(self, run, spec, tuning, probe, cancel_event):
        """Runs the sequence and records the outcome on the channel's AutotuneRun."""
        motor_index, method = spec.motor_index, run.method
        try:
            command_mode = spec.command_mode if method in STEP_METHODS else CommandMode.SPEED
            channel = self._channel_factory(motor_index, command_mode)

            if probe:
                run.state = AutotuneState.PROBING
                run.status = "Probing device..."
                channel.read_velocity()

            run.state = AutotuneState.RUNNING
            self._log(f"Autotune: Starting {method} test for motor {motor_index}...")
            if method in STEP_METHODS:
                result = self._run_step(run, channel, spec, tuning, cancel_event)
            else:
                result = self._run_frf(run, channel, spec, tuning, cancel_event)

            run.result = result
            run.state = AutotuneState.SUCCEEDED
            run.status = "Done! Gains ready to apply."
            pid = result.suggested_pid
            self._log(f"Autotune: Model identified -> K = {result.fit.K:.4f}, tau = {result.fit.tau:.4f}")
            self._log(f"Autotune: Calculated Gains -> P = {pid.kp:.4f}, I = {pid.ki:.4f} (QPPS {pid.qpps})")
            if pid.suspicious:
                self._log("Autotune WARNING: suggested gains are unusually large.")
        except Exception as e:
            run.error = e
            run.state = AutotuneState.FAILED
            run.status = f"Error: {e}"
            self._log(f"Autotune ERROR: {e}")
        return run

    def _run_step(self, run, channel, spec, tuning, cancel_event):
        run.status = "1/3: Running step test..."
        samples, cancelled = self._sampling_service.capture_step(channel, spec, cancel_event)
        if cancelled:
            raise RunCancelledError("Autotune cancelled.", samples=samples)

        run.status = "2/3: Fitting model..."
        fit_func = (self._fitting_service.fit_step if run.method == "step"
                    else self._fitting_service.fit_step_regression)
        try:
            neutral = spec.command_mode.neutral
            fit = fit_func(samples, spec.command_mode, tuning.tau_min, tuning.tau_max,
                           reference_command=neutral)
            fit.diagnostics["metrics"] = self._analysis_service.analyze_step_response(
                samples, reference_command=neutral)
            run.status = "3/3: Calculating gains..."
            pid = self._pid_service.synthesize(fit.K, fit.tau, tuning.lambda_scale, tuning.suspicious_gain)
        except AutotuneError as e:
            e.samples = samples
            raise
        return AutotuneResult(motor_index=spec.motor_index, method=run.method,
                              samples=samples, suggested_pid=pid, fit=fit)

    def _run_frf(self, run, channel, spec, tuning, cancel_event):
        run.status = "1/3: Running frequency sweep..."
        samples, points, cancelled = self._sampling_service.capture_frf(channel, spec, cancel_event)
        if cancelled:
            raise RunCancelledError("Autotune cancelled.", samples=samples, frf=points)

        run.status = "2/3: Fitting model..."
        try:
            fit = self._fitting_service.fit_frf(points, tuning.tau_min, tuning.tau_max,
                                                tuning.tau_points, full_scale=SPEED_FULL_SCALE)
            run.status = "3/3: Calculating gains..."
            pid = self._pid_service.synthesize(fit.K, fit.tau, tuning.lambda_scale, tuning.suspicious_gain)
        except AutotuneError as e:
            e.samples = samples
            e.frf = points
            raise
        return AutotuneResult(motor_index=spec.motor_index, method=run.method,
                              samples=samples, suggested_pid=pid, fit=fit, frf=points)
