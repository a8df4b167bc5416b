# services/pid_service.py
from config import (DEFAULT_LAMBDA_SCALE, Q16_SCALE, INT32_MIN, INT32_MAX,
                    SUSPICIOUS_GAIN_THRESHOLD)
from errors import InvalidParameterError, OutOfRangeError
from models.results import SuggestedPid
from utils import is_finite_number


def to_q16_16(value):
    """Encodes a float as a Q16.16 integer, rejecting anything outside int32."""
    if not is_finite_number(value):
        raise OutOfRangeError(f"Cannot encode non-finite gain {value} as Q16.16")
    raw = int(round(value * Q16_SCALE))
    if not INT32_MIN <= raw <= INT32_MAX:
        raise OutOfRangeError(f"Gain {value:.6g} overflows the Q16.16 register")
    return raw


def from_q16_16(raw):
    return raw / Q16_SCALE


class PidService:
    """
    IMC-lambda tuning for a first-order velocity plant K / (tau*s + 1).

    With the closed-loop time constant lambda = lambda_scale * tau the rule
    gives a PI controller with integral time tau:

        Kp = tau / (K * lambda),  Ki = Kp / tau,  Kd = 0
    """

    def __init__(self, suspicious_gain=SUSPICIOUS_GAIN_THRESHOLD):
        self.suspicious_gain = suspicious_gain

    def compute_gains(self, K, tau, lambda_scale=DEFAULT_LAMBDA_SCALE):
        if not is_finite_number(K) or K == 0:
            raise InvalidParameterError(f"Plant gain must be finite and non-zero, got {K}")
        if not is_finite_number(tau) or tau <= 0:
            raise InvalidParameterError(f"Time constant must be > 0, got {tau}")
        if not is_finite_number(lambda_scale) or lambda_scale <= 0:
            raise InvalidParameterError(f"Lambda scale must be > 0, got {lambda_scale}")

        lmbda = lambda_scale * tau
        kp = tau / (K * lmbda)
        ki = kp / tau
        return kp, ki, 0.0

    def synthesize(self, K, tau, lambda_scale=DEFAULT_LAMBDA_SCALE, suspicious_gain=None):
        kp, ki, kd = self.compute_gains(K, tau, lambda_scale)
        threshold = self.suspicious_gain if suspicious_gain is None else suspicious_gain
        suspicious = abs(kp) > threshold or abs(ki) > threshold or K < 0

        return SuggestedPid(
            p=to_q16_16(kp),
            i=to_q16_16(ki),
            d=to_q16_16(kd),
            qpps=int(round(abs(K))),
            kp=kp,
            ki=ki,
            kd=kd,
            suspicious=suspicious,
        )

    def describe_change(self, current, suggested):
        """Side-by-side text of the device's registers and the suggestion."""
        def line(regs):
            return (f"P={from_q16_16(regs['p']):.4f} (raw {regs['p']}), "
                    f"I={from_q16_16(regs['i']):.4f} (raw {regs['i']}), "
                    f"D={from_q16_16(regs['d']):.4f} (raw {regs['d']}), QPPS={regs['qpps']}")
        proposed = {"p": suggested.p, "i": suggested.i, "d": suggested.d, "qpps": suggested.qpps}
        text = f"Current PID:\n  {line(current)}\n\nSuggested PID:\n  {line(proposed)}"
        if suggested.suspicious:
            text += "\n\nWARNING: suggested gains are unusually large; check the identified plant."
        return text
