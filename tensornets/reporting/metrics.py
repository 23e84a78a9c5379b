"""Epoch callbacks that persist or collect training metrics.

Each sink implements ``on_epoch(epoch, metrics)`` and is passed to
:class:`~tensornets.training.network.Network` through ``callbacks``.
"""

from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Tuple

from .artifacts import git_sha


def _numeric(metrics: Mapping[str, object]) -> Dict[str, float]:
    return {
        key: float(value)
        for key, value in metrics.items()
        if isinstance(value, (int, float)) and not isinstance(value, bool)
    }


class _FileSink:
    """A sink owning one output file, truncated when the sink is created."""

    def __init__(self, path: str | Path, *, split: str = "train") -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text("")
        self.split = split

    def _row(self, epoch: int, metrics: Mapping[str, object]) -> Dict[str, object]:
        row: Dict[str, object] = {"epoch": int(epoch), "split": self.split}
        row.update(_numeric(metrics))
        return row

    def on_epoch(self, epoch: int, metrics: Mapping[str, float]) -> None:  # pragma: no cover - abstract
        raise NotImplementedError

    def __call__(self, epoch: int, metrics: Mapping[str, float]) -> None:
        self.on_epoch(epoch, metrics)


class JsonlSink(_FileSink):
    """One JSON object per epoch, tagged with the run seed and source revision."""

    def __init__(
        self,
        path: str | Path,
        *,
        split: str = "train",
        seed: Optional[int] = None,
        revision: Optional[str] = None,
    ) -> None:
        super().__init__(path, split=split)
        self.seed = seed
        self.revision = revision or git_sha()

    def on_epoch(self, epoch: int, metrics: Mapping[str, float]) -> None:
        record = self._row(epoch, metrics)
        record["seed"] = self.seed
        record["sha"] = self.revision
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(record, sort_keys=True) + "\n")


class CsvSink(_FileSink):
    """CSV whose columns are fixed by the first epoch written."""

    def __init__(self, path: str | Path, *, split: str = "train") -> None:
        super().__init__(path, split=split)
        self._columns: Optional[List[str]] = None

    def on_epoch(self, epoch: int, metrics: Mapping[str, float]) -> None:
        row = self._row(epoch, metrics)
        if self._columns is None:
            self._columns = sorted(row)
        with self.path.open("a", encoding="utf-8", newline="") as handle:
            writer = csv.DictWriter(handle, fieldnames=self._columns, extrasaction="ignore")
            if handle.tell() == 0:
                writer.writeheader()
            writer.writerow(row)


class MetricsCapture:
    """Keep epoch metrics in memory."""

    def __init__(self) -> None:
        self.history: List[Tuple[int, Dict[str, float]]] = []

    @property
    def last(self) -> Dict[str, float]:
        return self.history[-1][1] if self.history else {}

    def losses(self) -> List[float]:
        return [metrics["loss"] for _, metrics in self.history if "loss" in metrics]

    def on_epoch(self, epoch: int, metrics: Mapping[str, float]) -> None:
        self.history.append((int(epoch), _numeric(metrics)))


__all__ = ["CsvSink", "JsonlSink", "MetricsCapture"]
