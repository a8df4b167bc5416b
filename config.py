# config.py
"""
Constants shared by the simulation, sampling and tuning services.
"""

MOTOR_INDICES = (1, 2)

# --- Command domains ---
SPEED_MIN = 0
SPEED_MAX = 127
SPEED_NEUTRAL = 64
SPEED_FULL_SCALE = 63

PWM_MIN = -32767
PWM_MAX = 32767
PWM_NEUTRAL = 0
PWM_FULL_SCALE = 32767

# A command change larger than this marks the step in a captured sequence
STEP_DETECT_THRESHOLD = 0.5

# --- Device register format ---
Q16_SCALE = 65536
INT32_MIN = -2**31
INT32_MAX = 2**31 - 1

# --- Default simulated plant ---
DEFAULT_PLANT_GAIN = 100.0  # pps per full-scale command
DEFAULT_PLANT_TAU = 0.10    # s

# Status telemetry of the simulated device
SIM_CURRENT_PER_PPS = 15.0
SIM_PWM_REFERENCE_VELOCITY = 120.0

# --- Tuning defaults ---
DEFAULT_LAMBDA_SCALE = 0.5
DEFAULT_TAU_MIN = 0.001
DEFAULT_TAU_MAX = 2.0
DEFAULT_TAU_POINTS = 50
SUSPICIOUS_GAIN_THRESHOLD = 100.0

# Fraction of the post-step window averaged for the steady state
STEADY_STATE_TAIL_FRACTION = 0.10
TIME_CONSTANT_FRACTION = 0.632

# --- Sampling ---
DEFAULT_SAMPLE_INTERVAL_MS = 10.0
DEFAULT_APPLY_DELAY_MS = 50.0
SIM_REALTIME_FACTOR = 0.0  # 1.0 paces the simulation at wall-clock speed
SIM_SETTLE_TAU_MULTIPLE = 10.0

# --- Telemetry / event log ---
TELEMETRY_INTERVAL_S = 0.1
HISTORY_LENGTH = 500
LOG_HISTORY_LENGTH = 100
