# serialization.py
"""
Translation between loosely keyed request dictionaries (camelCase or
snake_case, as sent by front ends) and the typed models used internally.
Everything returned from here uses snake_case keys.
"""
import csv
import io
from dataclasses import asdict, fields

from errors import InvalidParameterError
from models.excitation import FrfTestSpec, StepTestSpec, TuningConfig
from models.plant import CommandMode

ALIASES = {
    "motor_index": ("motor_index", "motorIndex", "motor"),
    "step_value": ("step_value", "stepValue", "pwm_step", "pwmStep"),
    "duration_ms": ("duration_ms", "durationMs"),
    "sample_interval_ms": ("sample_interval_ms", "sampleIntervalMs"),
    "apply_delay_ms": ("apply_delay_ms", "applyDelayMs"),
    "command_mode": ("command_mode", "commandMode", "mode"),
    "start_hz": ("start_hz", "startHz"),
    "end_hz": ("end_hz", "endHz"),
    "points": ("points",),
    "amplitude_cmd": ("amplitude_cmd", "amplitudeCmd"),
    "cycles": ("cycles",),
    "lambda_scale": ("lambda_scale", "lambdaScale"),
    "tau_min": ("tau_min", "tauMin"),
    "tau_max": ("tau_max", "tauMax"),
    "tau_points": ("tau_points", "tauPoints"),
    "suspicious_gain": ("suspicious_gain", "suspiciousGain"),
    "tau": ("tau", "tau_s"),
    "gain": ("gain", "max_vel", "maxVel"),
}

INT_FIELDS = {"motor_index", "points", "cycles", "tau_points"}


def get_param(params, name, required=False):
    for key in ALIASES.get(name, (name,)):
        if key in params and params[key] is not None:
            return params[key]
    if required:
        raise InvalidParameterError(f"Missing {name}: provide {'/'.join(ALIASES.get(name, (name,)))}")
    return None


def _coerce(name, value):
    try:
        if name == "command_mode":
            return value if isinstance(value, CommandMode) else CommandMode(str(value).lower())
        if name in INT_FIELDS:
            if float(value) != int(float(value)):
                raise ValueError(f"{value} is not an integer")
            return int(float(value))
        return float(value)
    except (TypeError, ValueError) as e:
        raise InvalidParameterError(f"Invalid value for {name}: {value!r}") from e


def _build(cls, params, required=()):
    kwargs = {}
    for f in fields(cls):
        value = get_param(params, f.name, required=f.name in required)
        if value is not None:
            kwargs[f.name] = _coerce(f.name, value)
    return cls(**kwargs)


def parse_step_spec(params):
    return _build(StepTestSpec, params, required=("motor_index", "step_value"))


def parse_frf_spec(params):
    return _build(FrfTestSpec, params, required=("motor_index",))


def parse_tuning(params):
    return _build(TuningConfig, params or {})


def parse_plant_params(params):
    """Returns (motor_index, gain, tau)."""
    motor_index = _coerce("motor_index", get_param(params, "motor_index", required=True))
    gain = _coerce("gain", get_param(params, "gain", required=True))
    tau = _coerce("tau", get_param(params, "tau", required=True))
    return motor_index, gain, tau


def to_dict(obj):
    """snake_case dictionary of a result dataclass (or list of them)."""
    if isinstance(obj, list):
        return [to_dict(item) for item in obj]
    return asdict(obj)


def samples_to_csv(samples):
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(["t_ms", "velocity", "command"])
    for s in samples:
        writer.writerow([s.t_ms, s.velocity, s.command])
    return buffer.getvalue()


def frf_to_csv(points):
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(["freq_hz", "gain", "phase_deg"])
    for p in points:
        writer.writerow([p.freq_hz, p.gain, p.phase_deg])
    return buffer.getvalue()
