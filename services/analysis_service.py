# services/analysis_service.py
import numpy as np

from config import STEP_DETECT_THRESHOLD, STEADY_STATE_TAIL_FRACTION


class AnalysisService:
    def analyze_step_response(self, samples, reference_command=None):
        """Rise time (10-90%), overshoot and 2% settling time of a step test."""
        if len(samples) < 2:
            return {"error": "Not enough data"}

        times = np.array([s.t_ms for s in samples], dtype=float)
        values = np.array([s.velocity for s in samples], dtype=float)
        commands = np.array([s.command for s in samples], dtype=float)

        before = commands[0] if reference_command is None else reference_command
        changed = np.where(np.abs(commands - before) > STEP_DETECT_THRESHOLD)[0]
        if len(changed) == 0:
            return {"error": "No step found"}
        step_idx = changed[0]

        start_value = np.mean(values[:max(step_idx, 1)])
        times, values = times[step_idx:] - times[step_idx], values[step_idx:]
        tail = max(1, int(np.ceil(len(values) * STEADY_STATE_TAIL_FRACTION)))
        final_value = np.mean(values[-tail:])
        span = final_value - start_value
        if span == 0:
            return {"error": "No response to the step"}

        # Work on the response normalized to rise from 0 to 1
        normalized = (values - start_value) / span
        overshoot = max(0.0, (np.max(normalized) - 1.0) * 100)

        try:
            time_at_10 = times[np.where(normalized >= 0.1)[0][0]]
            time_at_90 = times[np.where(normalized >= 0.9)[0][0]]
            rise_time = time_at_90 - time_at_10
        except IndexError:
            rise_time = -1

        unsettled = np.where(np.abs(normalized - 1.0) > 0.02)[0]
        settling_time = times[unsettled[-1]] if len(unsettled) > 0 else 0.0

        return {
            "rise_time_ms": float(rise_time),
            "overshoot_pct": float(overshoot),
            "settling_time_ms": float(settling_time),
        }
