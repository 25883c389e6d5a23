"""Persistent model priorities and benchmark history."""

import json
import logging
import os
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from ..models import BenchmarkRun

logger = logging.getLogger(__name__)


class ModelPriorityStore:
    """
    JSON-file store of model priorities (1 = preferred).

    Consumed by the classifier to order model attempts and written by the
    benchmark harness.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._entries: Dict[str, Dict[str, Any]] = self._read()

    def _read(self) -> Dict[str, Dict[str, Any]]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable priority store {self.path}: {e}")
            return {}
        models = data.get("models", {}) if isinstance(data, dict) else {}
        return {name: entry for name, entry in models.items() if isinstance(entry, dict)}

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"models": self._entries, "updated_at": datetime.utcnow().isoformat()}
        fd, tmp_path = tempfile.mkstemp(dir=str(self.path.parent), suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def priority(self, model: str) -> Optional[int]:
        with self._lock:
            entry = self._entries.get(model)
        return entry.get("priority") if entry else None

    def set_priority(self, model: str, priority: int) -> None:
        with self._lock:
            self._entries.setdefault(model, {})["priority"] = int(priority)
            self._write()

    def apply_benchmark(self, runs: Iterable[BenchmarkRun]) -> bool:
        """Store the priorities from a benchmark; returns True if anything changed."""
        updated = False
        with self._lock:
            for run in runs:
                if run.priority <= 0:
                    continue
                entry = self._entries.setdefault(run.model, {})
                old_priority = entry.get("priority")
                entry.update({
                    "priority": run.priority,
                    "speed": run.speed,
                    "success_rate": run.success_rate,
                    "status": run.status,
                    "updated_at": run.timestamp.isoformat(),
                })
                if old_priority != run.priority:
                    logger.info(f"Updated model {run.model} priority from {old_priority} to {run.priority}")
                updated = True
            if updated:
                self._write()
        return updated

    def ordered(self, models: Iterable[str]) -> List[str]:
        """Models by ascending priority; unranked models keep their order at the end."""
        models = list(models)
        with self._lock:
            ranks = {m: self._entries[m]["priority"] for m in models if "priority" in self._entries.get(m, {})}
        ranked = sorted((m for m in models if m in ranks), key=lambda m: ranks[m])
        return ranked + [m for m in models if m not in ranks]

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {name: dict(entry) for name, entry in self._entries.items()}


class BenchmarkHistory:
    """Append-only JSON Lines history of benchmark runs."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = threading.Lock()

    def append(self, runs: Iterable[BenchmarkRun], sample_count: int) -> int:
        """Append one line per run; returns the number of lines written."""
        lines = []
        for run in runs:
            record = run.to_dict(include_samples=False)
            record["test_count"] = sample_count
            lines.append(json.dumps(record, ensure_ascii=False))

        if not lines:
            return 0

        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write("\n".join(lines) + "\n")
        return len(lines)

    def recent(self, limit: int = 100, model: Optional[str] = None) -> List[Dict[str, Any]]:
        """Most recent entries first, optionally for a single model."""
        if not self.path.exists():
            return []

        entries = []
        with self._lock:
            with open(self.path, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entry = json.loads(line)
                    except json.JSONDecodeError:
                        logger.warning(f"Skipping corrupt history line in {self.path}")
                        continue
                    if model and entry.get("model") != model:
                        continue
                    entries.append(entry)

        entries.reverse()
        return entries[:limit] if limit > 0 else entries
