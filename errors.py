# errors.py
"""
Exception types raised by the autotune engine.

Errors raised after sampling has started carry the data captured so far in
``samples`` (and ``frf`` for sweeps) so the caller can still inspect it.
"""


class AutotuneError(Exception):
    def __init__(self, message, samples=None, frf=None):
        super().__init__(message)
        self.samples = samples if samples is not None else []
        self.frf = frf


class InvalidParameterError(AutotuneError, ValueError):
    """A test spec, plant parameter or tuning input is out of bounds."""


class BusyError(AutotuneError):
    """A test is already running on the requested motor channel."""


class TransportError(AutotuneError, IOError):
    """The device failed a command or a read. Never retried mid-test."""


class InsufficientDataError(AutotuneError):
    pass


class DivergentFitError(AutotuneError):
    pass


class OutOfRangeError(AutotuneError, OverflowError):
    """A gain does not fit the device's Q16.16 register."""


class RunCancelledError(AutotuneError):
    pass
