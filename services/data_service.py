# services/data_service.py
import collections

from config import HISTORY_LENGTH


class DataService:
    """Ring buffers of timestamped telemetry, one per stream key."""

    def __init__(self, history_length=HISTORY_LENGTH):
        self._streams = {}
        self.history_length = history_length

    def register_stream(self, key):
        if key not in self._streams:
            print(f"[TELEMETRY] New stream {key!r} (keeps {self.history_length} points)")
            self._streams[key] = {
                "timestamps": collections.deque(maxlen=self.history_length),
                "values": collections.deque(maxlen=self.history_length)
            }

    def add_data_point(self, key, timestamp, value):
        if key not in self._streams:
            self.register_stream(key)

        self._streams[key]["timestamps"].append(timestamp)
        self._streams[key]["values"].append(value)

    def change_history_length(self, length):
        """Resizes every stream, keeping the most recent points."""
        new_length = max(10, int(length))
        if self.history_length == new_length:
            return

        self.history_length = new_length
        for stream in self._streams.values():
            stream["timestamps"] = collections.deque(stream["timestamps"], maxlen=new_length)
            stream["values"] = collections.deque(stream["values"], maxlen=new_length)

    def get_stream_data(self, key):
        if key not in self._streams:
            self.register_stream(key)
        return self._streams[key]

    def clear_stream(self, key):
        stream = self.get_stream_data(key)
        stream["timestamps"].clear()
        stream["values"].clear()

    def get_all_stream_keys(self):
        return sorted(self._streams.keys())
