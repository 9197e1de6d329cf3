import csv
import threading
import time
from pathlib import Path

HEADER = ["timestamp", "type", "count", "detail"]


class ViolationLog:
    """Append-only CSV audit trail of accepted warnings."""

    def __init__(self, path):
        self.path = Path(path)
        self._lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            with open(self.path, "w", newline="") as f:
                csv.writer(f).writerow(HEADER)

    def append(self, violation_type: str, count: int, detail: str = "", ts: str = None):
        ts = ts or time.strftime("%Y-%m-%d %H:%M:%S")
        with self._lock, open(self.path, "a", newline="") as f:
            csv.writer(f).writerow([ts, violation_type, count, detail])

    def recent(self, n: int = 8):
        lines = self.path.read_text().splitlines()
        return lines[1:][-n:][::-1] if len(lines) > 1 else []
