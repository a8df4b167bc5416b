# services/fitting_service.py
import math

import numpy as np
from scipy import stats

from config import (DEFAULT_TAU_MIN, DEFAULT_TAU_MAX, DEFAULT_TAU_POINTS,
                    SPEED_FULL_SCALE, STEP_DETECT_THRESHOLD,
                    STEADY_STATE_TAIL_FRACTION, TIME_CONSTANT_FRACTION)
from errors import DivergentFitError, InsufficientDataError, InvalidParameterError
from models.plant import CommandMode
from models.results import FitResult

# Residuals below this share of the transition are left out of the log regression
REGRESSION_FLOOR = 0.05


class FittingService:
    """Identifies a first-order plant K / (tau*s + 1) from test data."""

    def fit_step(self, samples, command_mode=CommandMode.SPEED,
                 tau_min=DEFAULT_TAU_MIN, tau_max=DEFAULT_TAU_MAX, reference_command=None):
        """
        K from the settled response per full-scale command; tau as the time
        from the step to 63.2% of the transition, clamped to [tau_min, tau_max].
        """
        _check_tau_bounds(tau_min, tau_max)
        step = self._locate_step(samples, command_mode, reference_command)
        t, v = step["t"], step["v"]
        y0, y_inf = step["y0"], step["y_inf"]
        transition = y_inf - y0

        target = y0 + TIME_CONSTANT_FRACTION * transition
        direction = math.copysign(1.0, transition)
        reached = np.nonzero((v - target) * direction >= 0)[0]
        if len(reached) == 0:
            raise DivergentFitError("Response never reached 63.2% of its final value")

        j = reached[0]
        if j == 0:
            t_cross = t[0]
        else:
            # Linear interpolation between the two samples bracketing the crossing
            frac = (target - v[j - 1]) / (v[j] - v[j - 1])
            t_cross = t[j - 1] + frac * (t[j] - t[j - 1])
        tau_raw = t_cross - t[0]
        tau = min(max(tau_raw, tau_min), tau_max)

        return FitResult(K=step["K"], tau=tau, method="step", diagnostics={
            "y0": y0,
            "y_inf": y_inf,
            "step_time_s": t[0],
            "tau_unclamped": tau_raw,
        })

    def fit_step_regression(self, samples, command_mode=CommandMode.SPEED,
                            tau_min=DEFAULT_TAU_MIN, tau_max=DEFAULT_TAU_MAX, reference_command=None):
        """
        Least-squares line through ln|y_inf - v(t)| over the transient:
        the slope is -1/tau. Uses every transient sample instead of a single
        crossing, and reports r^2 as a goodness of fit.
        """
        _check_tau_bounds(tau_min, tau_max)
        step = self._locate_step(samples, command_mode, reference_command)
        t, v = step["t"], step["v"]
        transition = step["y_inf"] - step["y0"]

        residual = (step["y_inf"] - v) / transition
        usable = residual > REGRESSION_FLOOR
        if np.count_nonzero(usable) < 3:
            raise InsufficientDataError("Not enough transient samples for a regression fit")

        fit = stats.linregress(t[usable] - t[0], np.log(residual[usable]))
        if not np.isfinite(fit.slope) or fit.slope >= 0:
            raise DivergentFitError(f"Regression slope {fit.slope:.4g} does not describe a decaying response")

        tau_raw = -1.0 / fit.slope
        tau = min(max(tau_raw, tau_min), tau_max)
        return FitResult(K=step["K"], tau=tau, method="step_regression", diagnostics={
            "y0": step["y0"],
            "y_inf": step["y_inf"],
            "step_time_s": t[0],
            "tau_unclamped": tau_raw,
            "r2": fit.rvalue ** 2,
        })

    def fit_frf(self, points, tau_min=DEFAULT_TAU_MIN, tau_max=DEFAULT_TAU_MAX,
                tau_points=DEFAULT_TAU_POINTS, full_scale=SPEED_FULL_SCALE):
        """
        Grid search of tau over tau_points uniform candidates. Each candidate's
        magnitude 1/sqrt(1 + (2*pi*f*tau)^2), taken relative to its value at
        the lowest frequency, is compared with the measured gain relative to
        the lowest-frequency gain. The smallest sum of squared errors wins.
        K comes from the lowest-frequency gain and the winning magnitude there.
        """
        _check_tau_bounds(tau_min, tau_max)
        if int(tau_points) != tau_points or tau_points < 2:
            raise InvalidParameterError("At least 2 tau candidates are needed")

        usable = sorted((p for p in points
                         if np.isfinite(p.freq_hz) and p.freq_hz > 0
                         and np.isfinite(p.gain) and p.gain > 0),
                        key=lambda p: p.freq_hz)
        if len(usable) < 2:
            raise InsufficientDataError(f"Need at least 2 usable FRF points, got {len(usable)}")

        freqs = np.array([p.freq_hz for p in usable])
        gains = np.array([p.gain for p in usable])
        measured = gains / gains[0]

        taus = np.linspace(tau_min, tau_max, int(tau_points))
        with np.errstate(all="ignore"):
            mags = 1.0 / np.sqrt(1.0 + (2.0 * np.pi * np.outer(taus, freqs)) ** 2)
            predicted = mags / mags[:, :1]
            errors = np.sum((predicted - measured) ** 2, axis=1)

        finite = np.isfinite(errors)
        if not np.any(finite):
            raise DivergentFitError("No tau candidate produced a finite error")
        best = int(np.argmin(np.where(finite, errors, np.inf)))
        tau = float(taus[best])
        K = float(gains[0] * full_scale / mags[best, 0])

        return FitResult(K=K, tau=tau, method="frf", diagnostics={
            "residual_rms": float(np.sqrt(errors[best] / len(freqs))),
            "tau_step": float(taus[1] - taus[0]),
            "freqs_hz": freqs.tolist(),
            "fitted_mag": (K / full_scale * mags[best]).tolist(),
            "fitted_phase": (-np.degrees(np.arctan(2.0 * np.pi * freqs * tau))).tolist(),
        })

    def _locate_step(self, samples, command_mode, reference_command=None):
        """
        The step is the first command that differs from the pre-step command
        (reference_command, or the first recorded command) by more than the
        detection threshold. A step on the very first tick uses that tick's
        velocity, read before the plant saw the new command, as the baseline.
        """
        if len(samples) < 2:
            raise InsufficientDataError(f"Need at least 2 samples, got {len(samples)}")

        t = np.array([s.t_ms for s in samples], dtype=float) / 1000.0
        v = np.array([s.velocity for s in samples], dtype=float)
        cmd = np.array([s.command for s in samples], dtype=float)

        before = cmd[0] if reference_command is None else float(reference_command)
        changed = np.nonzero(np.abs(cmd - before) > STEP_DETECT_THRESHOLD)[0]
        if len(changed) == 0:
            raise InsufficientDataError("Could not locate a step in the samples")
        step_idx = changed[0]
        if len(samples) - step_idx < 2:
            raise InsufficientDataError("Need at least 2 samples after the step")

        y0 = float(np.mean(v[:max(step_idx, 1)]))
        post_t, post_v, post_cmd = t[step_idx:], v[step_idx:], cmd[step_idx:]
        tail = max(1, int(math.ceil(len(post_v) * STEADY_STATE_TAIL_FRACTION)))
        y_inf = float(np.mean(post_v[-tail:]))
        cmd_final = float(np.mean(post_cmd[-tail:]))

        delta_u = command_mode.to_unit(cmd_final) - command_mode.to_unit(before)
        if abs(delta_u) < 1e-9:
            raise DivergentFitError("Command change too small to estimate a gain")
        transition = y_inf - y0
        if not np.isfinite(transition) or abs(transition) < 1e-9:
            raise DivergentFitError("No measurable response to the step")

        return {
            "t": post_t,
            "v": post_v,
            "y0": y0,
            "y_inf": y_inf,
            "K": transition / delta_u,
        }


def _check_tau_bounds(tau_min, tau_max):
    if not 0 < tau_min < tau_max:
        raise InvalidParameterError("Tau bounds must satisfy 0 < tau_min < tau_max")
