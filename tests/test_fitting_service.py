"""
Tests for first-order plant identification from step and FRF data.
"""

import math

import numpy as np
import pytest

from errors import DivergentFitError, InsufficientDataError, InvalidParameterError
from models.excitation import StepTestSpec
from models.plant import CommandMode, PlantModel, PlantParameters
from models.results import FrfPoint, Sample
from services.fitting_service import FittingService


def simulate_step(K, tau, interval_ms, duration_ms, delay_ms, step_value=127,
                  mode=CommandMode.SPEED):
    """Step samples captured in the same tick order as the sampling service."""
    spec = StepTestSpec(motor_index=1, step_value=step_value, duration_ms=duration_ms,
                        sample_interval_ms=interval_ms, apply_delay_ms=delay_ms, command_mode=mode)
    plant = PlantModel(PlantParameters(K, tau))
    plant.set_command(mode.neutral, mode)
    samples = []
    for k in range(spec.sample_count):
        command = spec.command_at(k * interval_ms)
        plant.set_command(command, mode)
        samples.append(Sample(t_ms=k * interval_ms, velocity=plant.velocity, command=command))
        plant.advance(interval_ms / 1000.0)
    return samples


def frf_points(K, tau, freqs, full_scale=63.0):
    points = []
    for f in freqs:
        w = 2 * math.pi * f
        gain = K / full_scale / math.sqrt(1.0 + (w * tau) ** 2)
        points.append(FrfPoint(freq_hz=f, gain=gain, phase_deg=-math.degrees(math.atan(w * tau))))
    return points


@pytest.fixture
def fitter():
    return FittingService()


class TestStepFit:

    @pytest.mark.parametrize("K", [10.0, 50.0, 200.0])
    @pytest.mark.parametrize("tau", [0.01, 0.1, 0.5, 2.0])
    def test_recovers_plant(self, fitter, K, tau):
        interval_ms = tau * 1000.0 / 20.0
        delay_ms = 5 * interval_ms
        samples = simulate_step(K, tau, interval_ms, 10 * tau * 1000.0 + delay_ms, delay_ms)

        fit = fitter.fit_step(samples, tau_min=0.001, tau_max=5.0)

        assert fit.method == "step"
        assert fit.K == pytest.approx(K, rel=0.05)
        assert fit.tau == pytest.approx(tau, rel=0.05)
        assert fit.diagnostics["y0"] == pytest.approx(0.0)
        assert fit.diagnostics["step_time_s"] == pytest.approx(delay_ms / 1000.0)

    def test_reference_scenario(self, fitter):
        samples = simulate_step(100.0, 0.1, 10.0, 2000.0, 50.0)
        fit = fitter.fit_step(samples)

        assert fit.K == pytest.approx(100.0, rel=0.01)
        assert fit.tau == pytest.approx(0.1, rel=0.02)

    def test_step_on_first_sample_needs_reference(self, fitter):
        samples = simulate_step(100.0, 0.1, 5.0, 1000.0, 0.0)
        assert samples[0].command == 127

        with pytest.raises(InsufficientDataError):
            fitter.fit_step(samples)

        fit = fitter.fit_step(samples, reference_command=64)
        assert fit.diagnostics["y0"] == 0.0
        assert fit.diagnostics["step_time_s"] == 0.0
        assert fit.K == pytest.approx(100.0, rel=0.01)
        assert fit.tau == pytest.approx(0.1, rel=0.02)

        regression = fitter.fit_step_regression(samples, reference_command=64)
        assert regression.tau == pytest.approx(0.1, rel=0.02)

    def test_partial_step_scales_gain(self, fitter):
        samples = simulate_step(80.0, 0.2, 10.0, 3000.0, 100.0, step_value=96)
        fit = fitter.fit_step(samples)

        assert fit.diagnostics["y_inf"] == pytest.approx(80.0 * 32 / 63, rel=1e-3)
        assert fit.K == pytest.approx(80.0, rel=0.01)

    def test_reverse_step(self, fitter):
        samples = simulate_step(120.0, 0.05, 5.0, 1000.0, 50.0, step_value=32)
        fit = fitter.fit_step(samples)

        assert fit.diagnostics["y_inf"] < 0
        assert fit.K == pytest.approx(120.0, rel=0.01)
        assert fit.tau == pytest.approx(0.05, rel=0.05)

    def test_pwm_step(self, fitter):
        samples = simulate_step(100.0, 0.1, 10.0, 2000.0, 50.0, step_value=16384, mode=CommandMode.PWM)
        fit = fitter.fit_step(samples, command_mode=CommandMode.PWM)

        assert fit.K == pytest.approx(100.0, rel=0.01)
        assert fit.tau == pytest.approx(0.1, rel=0.02)

    def test_tau_clamped_to_bounds(self, fitter):
        samples = simulate_step(100.0, 0.1, 10.0, 2000.0, 50.0)
        fit = fitter.fit_step(samples, tau_min=0.001, tau_max=0.05)

        assert fit.tau == 0.05
        assert fit.diagnostics["tau_unclamped"] == pytest.approx(0.1, rel=0.02)

    def test_no_step_in_commands(self, fitter):
        samples = [Sample(t_ms=k * 10.0, velocity=0.0, command=64.0) for k in range(50)]
        with pytest.raises(InsufficientDataError):
            fitter.fit_step(samples)

    def test_flat_response(self, fitter):
        samples = simulate_step(0.0, 0.1, 10.0, 1000.0, 50.0)
        with pytest.raises(DivergentFitError):
            fitter.fit_step(samples)

    @pytest.mark.parametrize("n_samples", [0, 1])
    def test_too_few_samples(self, fitter, n_samples):
        samples = [Sample(t_ms=0.0, velocity=0.0, command=127.0)][:n_samples]
        with pytest.raises(InsufficientDataError):
            fitter.fit_step(samples)

    def test_invalid_tau_bounds(self, fitter):
        samples = simulate_step(100.0, 0.1, 10.0, 1000.0, 50.0)
        with pytest.raises(InvalidParameterError):
            fitter.fit_step(samples, tau_min=0.5, tau_max=0.1)


class TestStepRegressionFit:

    @pytest.mark.parametrize("K,tau", [(100.0, 0.1), (30.0, 0.5), (250.0, 0.02)])
    def test_recovers_plant(self, fitter, K, tau):
        interval_ms = tau * 1000.0 / 20.0
        delay_ms = 5 * interval_ms
        samples = simulate_step(K, tau, interval_ms, 10 * tau * 1000.0 + delay_ms, delay_ms)

        fit = fitter.fit_step_regression(samples)

        assert fit.method == "step_regression"
        assert fit.K == pytest.approx(K, rel=0.01)
        assert fit.tau == pytest.approx(tau, rel=0.02)
        assert fit.diagnostics["r2"] > 0.99

    def test_agrees_with_crossing_fit(self, fitter):
        samples = simulate_step(60.0, 0.3, 10.0, 4000.0, 100.0)
        crossing = fitter.fit_step(samples)
        regression = fitter.fit_step_regression(samples)

        assert regression.tau == pytest.approx(crossing.tau, rel=0.03)
        assert regression.K == crossing.K

    def test_too_short_transient(self, fitter):
        # The plant settles within one sample of the step
        samples = simulate_step(100.0, 0.001, 50.0, 1000.0, 100.0)
        with pytest.raises(InsufficientDataError):
            fitter.fit_step_regression(samples)


class TestFrfFit:

    FREQS = list(np.geomspace(0.5, 20.0, 12))

    def test_exact_recovery_on_grid(self, fitter):
        points = frf_points(100.0, 0.1, self.FREQS)
        fit = fitter.fit_frf(points, tau_min=0.02, tau_max=0.5, tau_points=25)

        assert fit.method == "frf"
        assert fit.tau == pytest.approx(0.1)
        assert fit.K == pytest.approx(100.0, rel=1e-6)
        assert fit.diagnostics["residual_rms"] == pytest.approx(0.0, abs=1e-9)
        assert fit.diagnostics["tau_step"] == pytest.approx(0.02)

    def test_default_grid_within_one_step(self, fitter):
        points = frf_points(100.0, 0.1, self.FREQS)
        fit = fitter.fit_frf(points)

        assert abs(fit.tau - 0.1) <= fit.diagnostics["tau_step"]
        assert fit.K == pytest.approx(100.0, rel=0.05)

    def test_unsorted_points(self, fitter):
        points = frf_points(40.0, 0.2, self.FREQS)[::-1]
        fit = fitter.fit_frf(points, tau_min=0.05, tau_max=0.5, tau_points=10)
        assert fit.tau == pytest.approx(0.2)
        assert fit.K == pytest.approx(40.0, rel=1e-6)

    def test_fitted_curves(self, fitter):
        points = frf_points(100.0, 0.1, self.FREQS)
        fit = fitter.fit_frf(points, tau_min=0.02, tau_max=0.5, tau_points=25)

        np.testing.assert_allclose(fit.diagnostics["freqs_hz"], self.FREQS)
        np.testing.assert_allclose(fit.diagnostics["fitted_mag"], [p.gain for p in points], rtol=1e-6)
        np.testing.assert_allclose(fit.diagnostics["fitted_phase"], [p.phase_deg for p in points], atol=1e-6)

    def test_unusable_points_are_skipped(self, fitter):
        points = frf_points(100.0, 0.1, self.FREQS)
        points.append(FrfPoint(freq_hz=25.0, gain=float("nan"), phase_deg=0.0))
        points.append(FrfPoint(freq_hz=30.0, gain=0.0, phase_deg=0.0))
        fit = fitter.fit_frf(points, tau_min=0.02, tau_max=0.5, tau_points=25)
        assert fit.tau == pytest.approx(0.1)
        assert len(fit.diagnostics["freqs_hz"]) == 12

    def test_single_point(self, fitter):
        with pytest.raises(InsufficientDataError):
            fitter.fit_frf(frf_points(100.0, 0.1, [1.0]))

    def test_non_finite_errors(self, fitter):
        points = [FrfPoint(freq_hz=1.0, gain=1e-300, phase_deg=0.0),
                  FrfPoint(freq_hz=2.0, gain=1.0, phase_deg=0.0)]
        with pytest.raises(DivergentFitError):
            fitter.fit_frf(points)

    @pytest.mark.parametrize("kwargs", [
        {"tau_min": 0.0},
        {"tau_min": 1.0, "tau_max": 0.5},
        {"tau_points": 1},
    ])
    def test_invalid_grid(self, fitter, kwargs):
        with pytest.raises(InvalidParameterError):
            fitter.fit_frf(frf_points(100.0, 0.1, self.FREQS), **kwargs)
