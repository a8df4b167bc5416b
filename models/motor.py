from models.plant import PlantParameters


class Motor:
    def __init__(self, id):
        self.id = id
        self.velocity = 0.0
        self.current = 0.0
        self.pwm = 0

        # Simulated plant (ignored when talking to hardware)
        self.plant = PlantParameters()

        # Velocity PID registers as last read from / written to the device
        self.pid_p = 0
        self.pid_i = 0
        self.pid_d = 0
        self.qpps = 0

    def update_registers(self, p, i, d, qpps):
        self.pid_p, self.pid_i, self.pid_d, self.qpps = int(p), int(i), int(d), int(qpps)

    def registers(self):
        return {"p": self.pid_p, "i": self.pid_i, "d": self.pid_d, "qpps": self.qpps}
