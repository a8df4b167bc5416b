from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class Sample:
    t_ms: float      # relative to the start of sampling
    velocity: float  # pps
    command: float


@dataclass
class FrfPoint:
    freq_hz: float
    gain: float       # |Y| / amplitude_cmd
    phase_deg: float  # (-180, 180]


@dataclass
class FitResult:
    K: float     # pps per full-scale command
    tau: float   # s
    method: str
    diagnostics: Dict = field(default_factory=dict)


@dataclass
class SuggestedPid:
    """Gains in the device's register format plus their float values."""
    p: int
    i: int
    d: int
    qpps: int
    kp: float = 0.0
    ki: float = 0.0
    kd: float = 0.0
    suspicious: bool = False


@dataclass
class AutotuneResult:
    motor_index: int
    method: str
    samples: List[Sample]
    suggested_pid: SuggestedPid
    fit: FitResult
    frf: Optional[List[FrfPoint]] = None
