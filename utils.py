# utils.py
import math


def clamp_value(value, lower, upper):
    return max(lower, min(upper, value))


def wrap_phase_deg(phase_deg):
    """
    Wraps a phase angle in degrees into the half-open interval (-180, 180].
    """
    wrapped = 180.0 - math.fmod(180.0 - phase_deg, 360.0)
    if wrapped <= -180.0:
        wrapped += 360.0
    elif wrapped > 180.0:
        wrapped -= 360.0
    return wrapped


def is_finite_number(value):
    try:
        return math.isfinite(value)
    except TypeError:
        return False
