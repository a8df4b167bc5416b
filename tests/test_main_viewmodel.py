"""
Tests for the dictionary-based front-end surface.
"""

import time

import pytest

from errors import BusyError, InvalidParameterError, TransportError
from viewmodels.main_viewmodel import MainViewModel

STEP_PARAMS = {"motorIndex": 1, "stepValue": 127, "durationMs": 1000, "sampleIntervalMs": 5, "applyDelayMs": 50}


@pytest.fixture
def viewmodel():
    return MainViewModel()


class TestRequests:

    def test_step_test_accepts_camel_case(self, viewmodel):
        samples = viewmodel.run_step_test(STEP_PARAMS)

        assert len(samples) == 200
        assert set(samples[0]) == {"t_ms", "velocity", "command"}
        assert samples[0]["command"] == 64
        assert samples[-1]["command"] == 127

    def test_step_test_accepts_snake_case(self, viewmodel):
        samples = viewmodel.run_step_test({"motor_index": 2, "pwm_step": 100, "duration_ms": 200,
                                           "sample_interval_ms": 10})
        assert len(samples) == 20

    def test_missing_step_value(self, viewmodel):
        with pytest.raises(InvalidParameterError):
            viewmodel.run_step_test({"motorIndex": 1})

    def test_frf_test(self, viewmodel):
        points = viewmodel.run_frf_test({"motorIndex": 1, "startHz": 2.0, "endHz": 8.0, "points": 3,
                                         "amplitudeCmd": 20, "cycles": 3, "sampleIntervalMs": 2})
        assert [set(p) for p in points] == [{"freq_hz", "gain", "phase_deg"}] * 3
        assert points[0]["freq_hz"] == pytest.approx(2.0)

    def test_set_plant_params(self, viewmodel):
        plant = viewmodel.set_plant_params({"motorIndex": 2, "maxVel": 250, "tau_s": 0.2})
        assert plant == {"motor_index": 2, "gain": 250.0, "tau": 0.2}

        result = viewmodel.autotune("step", dict(STEP_PARAMS, motorIndex=2, durationMs=2500))
        assert result["fit"]["K"] == pytest.approx(250.0, rel=0.02)
        assert result["fit"]["tau"] == pytest.approx(0.2, rel=0.02)

    def test_reset_simulation(self, viewmodel):
        viewmodel.run_step_test(dict(STEP_PARAMS, durationMs=100))
        viewmodel.reset_simulation(1)
        samples = viewmodel.run_step_test(dict(STEP_PARAMS, durationMs=100))
        assert all(s["velocity"] == 0.0 for s in samples[:11])

    def test_invalid_plant_params(self, viewmodel):
        with pytest.raises(InvalidParameterError):
            viewmodel.set_plant_params({"motorIndex": 1, "gain": 100, "tau": 0})


class TestAutotune:

    def test_result_dictionary(self, viewmodel):
        result = viewmodel.autotune("step", STEP_PARAMS, tuning={"lambdaScale": 0.5})

        assert result["motor_index"] == 1
        assert result["method"] == "step"
        assert set(result["suggested_pid"]) == {"p", "i", "d", "qpps", "kp", "ki", "kd", "suspicious"}
        assert result["suggested_pid"]["p"] == pytest.approx(1311, rel=0.05)
        assert result["fit"]["tau"] == pytest.approx(0.1, rel=0.02)
        assert len(result["samples"]) == 200

        status = viewmodel.get_autotune_status(1)
        assert status["state"] == "succeeded"
        assert status["result"]["suggested_pid"] == result["suggested_pid"]
        assert viewmodel.acknowledge_autotune(1) == {"motor_index": 1, "state": "succeeded"}
        assert viewmodel.get_autotune_status(1)["state"] == "idle"

    def test_failed_run_status(self, viewmodel):
        viewmodel.set_plant_params({"motor": 1, "gain": 0, "tau": 0.1})
        with pytest.raises(Exception):
            viewmodel.autotune("step", STEP_PARAMS)

        status = viewmodel.get_autotune_status(1)
        assert status["state"] == "failed"
        assert status["error_type"] == "DivergentFitError"
        assert len(status["samples"]) == 200

    def test_busy_channel(self):
        viewmodel = MainViewModel(realtime_factor=1.0)
        viewmodel.start_autotune("step", dict(STEP_PARAMS, durationMs=3000))

        with pytest.raises(BusyError):
            viewmodel.run_step_test(STEP_PARAMS)
        with pytest.raises(BusyError):
            viewmodel.apply_suggested_pid(1, {"p": 1, "i": 1, "d": 0, "qpps": 1}, confirmed=True)
        with pytest.raises(BusyError):
            viewmodel.use_simulation()

        assert viewmodel.cancel(1)
        status = viewmodel.wait_for_autotune(1, timeout=10.0)
        assert status["state"] == "failed"
        assert status["error_type"] == "RunCancelledError"
        assert not viewmodel.cancel(1)


class TestDevicePid:

    def test_apply_needs_confirmation(self, make_device):
        device = make_device()
        viewmodel = MainViewModel(device=device)
        suggested = {"p": 1311, "i": 13107, "d": 0, "qpps": 100}

        assert viewmodel.apply_suggested_pid(1, suggested) is False
        assert device.pid[1]["p"] == 65536

        assert viewmodel.apply_suggested_pid(1, suggested, confirmed=True) is True
        assert device.pid[1] == suggested
        assert viewmodel.read_velocity_pid(1) == suggested

    def test_simulated_registers(self, viewmodel):
        result = viewmodel.autotune("step", STEP_PARAMS)
        assert viewmodel.apply_suggested_pid(1, result["suggested_pid"], confirmed=True)

        registers = viewmodel.read_velocity_pid(1)
        assert registers["p"] == result["suggested_pid"]["p"]
        assert registers["qpps"] == result["suggested_pid"]["qpps"]

    def test_describe_change(self, make_device):
        viewmodel = MainViewModel(device=make_device())
        text = viewmodel.describe_pid_change(2, {"p": 1311, "i": 13107, "d": 0, "qpps": 100})
        assert "Current PID" in text and "raw 65536" in text
        assert "raw 13107" in text

    def test_write_failure(self, make_device):
        class BrokenDevice(make_device):
            def set_velocity_pid(self, motor_index, p, i, d, qpps):
                raise OSError("bus off")

        viewmodel = MainViewModel(device=BrokenDevice())
        with pytest.raises(TransportError):
            viewmodel.apply_suggested_pid(1, {"p": 1, "i": 1, "d": 0, "qpps": 1}, confirmed=True)

    def test_probe(self, make_device):
        assert MainViewModel(device=make_device()).probe_device(1)
        assert not MainViewModel(device=make_device(fail_on_read=1)).probe_device(1)
        with pytest.raises(InvalidParameterError):
            MainViewModel().probe_device(5)


class TestDeviceSelection:

    def test_hardware_channel_is_used(self, make_device):
        device = make_device(velocity=3.0)
        viewmodel = MainViewModel()
        viewmodel.use_device(device)

        assert not viewmodel.is_simulation
        samples = viewmodel.run_step_test({"motor": 2, "stepValue": 90, "durationMs": 20,
                                           "sampleIntervalMs": 1, "applyDelayMs": 5})
        assert len(samples) == 20
        assert all(s["velocity"] == 3.0 for s in samples)
        assert device.commands[-1] == (2, 64)

        viewmodel.use_simulation()
        assert viewmodel.is_simulation

    def test_transport_error_keeps_partial_samples(self, make_device):
        viewmodel = MainViewModel(device=make_device(fail_on_read=6))
        with pytest.raises(TransportError):
            viewmodel.run_step_test({"motor": 1, "stepValue": 90, "durationMs": 20,
                                     "sampleIntervalMs": 1, "applyDelayMs": 5})
        assert len(viewmodel.last_samples) == 5
        assert "Step test ERROR" in viewmodel.log_messages[0]


class TestTelemetryAndExport:

    def test_telemetry_streams(self, make_device):
        viewmodel = MainViewModel(device=make_device(velocity=42.0))
        assert viewmodel.start_telemetry(interval_s=0.01)
        assert not viewmodel.start_telemetry(interval_s=0.01)
        time.sleep(0.1)
        viewmodel.stop_telemetry()

        current = viewmodel.get_stream_data("motor_1_current")
        assert len(current["values"]) >= 1
        assert set(current["values"]) == {10}
        assert set(viewmodel.get_stream_data("motor_2_pwm")["values"]) == {-100}
        assert set(viewmodel.get_stream_data("motor_1_velocity")["values"]) == {42.0}

    def test_csv_export(self, viewmodel):
        viewmodel.run_step_test(STEP_PARAMS)
        lines = viewmodel.export_samples_csv().splitlines()
        assert lines[0] == "t_ms,velocity,command"
        assert len(lines) == 201

        viewmodel.run_frf_test({"motorIndex": 1, "startHz": 2.0, "endHz": 8.0, "points": 2,
                                "amplitudeCmd": 10, "cycles": 3})
        lines = viewmodel.export_frf_csv().splitlines()
        assert lines[0] == "freq_hz,gain,phase_deg"
        assert len(lines) == 3

    def test_log_is_newest_first(self, viewmodel):
        viewmodel.log_message("first")
        viewmodel.log_message("second")
        assert viewmodel.log_messages[0].endswith("second")
        assert viewmodel.log_messages[0].startswith("[")
