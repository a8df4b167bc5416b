from errors import AutotuneError
from viewmodels.main_viewmodel import MainViewModel

STEP_TEST = {"motor_index": 1, "step_value": 127, "duration_ms": 1500, "sample_interval_ms": 5, "apply_delay_ms": 50}
FRF_TEST = {"motor_index": 1, "start_hz": 0.2, "end_hz": 20.0, "points": 12, "amplitude_cmd": 20, "cycles": 6,
            "sample_interval_ms": 2}


def main():
    main_viewmodel = MainViewModel()
    main_viewmodel.set_plant_params({"motor_index": 1, "gain": 100.0, "tau": 0.1})

    for method, params in (("step", STEP_TEST), ("frf", FRF_TEST)):
        try:
            result = main_viewmodel.autotune(method, params)
        except AutotuneError as e:
            print(f"{method}: failed: {e}")
            continue
        fit, pid = result["fit"], result["suggested_pid"]
        print(f"{method}: K={fit['K']:.2f} pps, tau={fit['tau'] * 1000:.1f} ms -> "
              f"P={pid['p']} I={pid['i']} D={pid['d']} QPPS={pid['qpps']}"
              + (" (suspicious)" if pid["suspicious"] else ""))

    for line in reversed(main_viewmodel.log_messages):
        print(line)


if __name__ == "__main__":
    main()
