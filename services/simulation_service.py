# services/simulation_service.py
import time
import threading

from config import (MOTOR_INDICES, PWM_MIN, PWM_MAX,
                    SIM_CURRENT_PER_PPS, SIM_PWM_REFERENCE_VELOCITY)
from errors import InvalidParameterError
from models.excitation import validate_motor_index
from models.motor import Motor
from models.plant import CommandMode, PlantModel
from utils import clamp_value

MAX_FREE_RUN_DT = 0.2


class SimulationService:
    """
    Owns the simulated plant of every motor channel.

    It also answers the same calls as a real controller (set_command,
    read_velocity, read_all_status, PID registers) so telemetry and manual
    driving work without hardware. In that free-running use the plants follow
    wall-clock time. A test channel that holds a motor drives its plant on a
    virtual clock instead and free-running updates leave it alone.
    """

    def __init__(self):
        self.plants = {i: PlantModel() for i in MOTOR_INDICES}
        self.motors = {i: Motor(id=i) for i in MOTOR_INDICES}
        self._held = set()
        self._lock = threading.Lock()
        self._last_update = None

    def set_plant_params(self, motor_index, gain, tau):
        validate_motor_index(motor_index)
        params = self.plants[motor_index].configure(gain, tau)
        self.motors[motor_index].plant = params
        print(f"[SIM] set_plant_params: motor={motor_index} tau={params.tau} s, gain={params.gain} pps per full scale")
        return params

    def get_plant(self, motor_index):
        validate_motor_index(motor_index)
        return self.plants[motor_index]

    def reset(self, motor_index=None):
        indices = MOTOR_INDICES if motor_index is None else (motor_index,)
        for i in indices:
            validate_motor_index(i)
            self.plants[i].reset()

    # --- Test channel ownership ---

    def hold(self, motor_index):
        self.sync()
        with self._lock:
            if motor_index in self._held:
                raise InvalidParameterError(f"Simulated motor {motor_index} is already held by a test")
            self._held.add(motor_index)

    def release(self, motor_index):
        with self._lock:
            self._held.discard(motor_index)

    def sync(self):
        """Advances free-running plants by the wall-clock time since the last call."""
        now = time.perf_counter()
        with self._lock:
            last, self._last_update = self._last_update, now
            held = set(self._held)
        if last is None:
            return
        dt = clamp_value(now - last, 0.0, MAX_FREE_RUN_DT)
        if dt <= 1e-6:
            return
        for i, plant in self.plants.items():
            if i not in held:
                plant.advance(dt)

    # --- Device interface ---

    def set_command(self, motor_index, value):
        validate_motor_index(motor_index)
        self.sync()
        self.plants[motor_index].set_command(value, CommandMode.SPEED)

    def set_pwm(self, motor_index, value):
        validate_motor_index(motor_index)
        self.sync()
        self.plants[motor_index].set_command(value, CommandMode.PWM)

    def read_velocity(self, motor_index):
        validate_motor_index(motor_index)
        self.sync()
        velocity = self.plants[motor_index].velocity
        self.motors[motor_index].velocity = velocity
        return float(round(velocity))

    def read_all_status(self):
        self.sync()
        currents, pwms = [], []
        for i in MOTOR_INDICES:
            plant = self.plants[i]
            currents.append(int(abs(plant.velocity) * SIM_CURRENT_PER_PPS))
            if plant.mode is CommandMode.PWM:
                pwms.append(int(plant.command))
            else:
                pwm = plant.velocity / SIM_PWM_REFERENCE_VELOCITY * PWM_MAX
                pwms.append(int(clamp_value(pwm, PWM_MIN, PWM_MAX)))
            self.motors[i].current, self.motors[i].pwm = currents[-1], pwms[-1]
        return tuple(currents), tuple(pwms)

    def read_velocity_pid(self, motor_index):
        validate_motor_index(motor_index)
        return self.motors[motor_index].registers()

    def set_velocity_pid(self, motor_index, p, i, d, qpps):
        validate_motor_index(motor_index)
        self.motors[motor_index].update_registers(p, i, d, qpps)
