"""
Per-event diagnostics sink.

One structured record per class-load event:
    {"name": ..., "outcome": "replaced"|"declined"|"dumped", "modified": bool, "reason": ...}

Records go to a JSONL file, or to the ``classreplay.diagnostics`` logger when
no path is configured. Emission is best-effort: failures are counted and
never propagate into the pipeline.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

REPLACED = "replaced"
DECLINED = "declined"
# Capture: written to the store; ``reason`` holds the artifact name
DUMPED = "dumped"


class DiagnosticsSink:
    """Append-only, best-effort event record sink."""

    def __init__(self, path: Path | str | None = None):
        self.path = Path(path) if path else None
        self._lock = threading.Lock()
        self.records_written = 0
        self.emission_errors = 0

    def record(self, name: str, outcome: str, modified: bool = False, reason: str = "") -> None:
        """Emit one event record. Never raises."""
        event = {"name": name, "outcome": outcome, "modified": modified, "reason": reason}
        try:
            if self.path is None:
                logger.info("class_event", extra={"class_event": event})
            else:
                line = json.dumps(event, sort_keys=True)
                with self._lock, open(self.path, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
            with self._lock:
                self.records_written += 1
        except Exception:
            with self._lock:
                self.emission_errors += 1

    def stats(self) -> dict[str, Any]:
        """Emission counters."""
        with self._lock:
            return {
                "records_written": self.records_written,
                "emission_errors": self.emission_errors,
            }


class NullSink(DiagnosticsSink):
    """Discards every record."""

    def __init__(self) -> None:
        super().__init__(None)

    def record(self, name: str, outcome: str, modified: bool = False, reason: str = "") -> None:
        pass
