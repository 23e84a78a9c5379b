"""Run manifest written next to the metrics of every pipeline run."""

from __future__ import annotations

import json
import os
import platform
import subprocess
import time
from pathlib import Path
from typing import Dict, Mapping

import numpy as np


def git_sha() -> str:
    """Return the checked-out commit, or ``"unknown"`` outside a git work tree."""

    try:
        result = subprocess.run(
            ["git", "rev-parse", "HEAD"], capture_output=True, text=True, check=True
        )
    except (OSError, subprocess.CalledProcessError):
        return "unknown"
    return result.stdout.strip() or "unknown"


def environment_info() -> Dict[str, str]:
    return {
        "python": platform.python_version(),
        "numpy": np.__version__,
        "platform": platform.platform(),
        "cache_dir": os.environ.get("TENSORNETS_CACHE_DIR", ""),
    }


def write_manifest(
    path: str | Path,
    *,
    config: Mapping[str, object],
    dataset_provenance: Mapping[str, object],
    model_path: str | Path | None = None,
) -> str:
    """Record the resolved config, dataset provenance and saved model of a run."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    manifest = {
        "created_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        "git_sha": git_sha(),
        "config": dict(config),
        "dataset": dict(dataset_provenance),
        "model_path": str(model_path) if model_path is not None else None,
        "environment": environment_info(),
    }
    path.write_text(json.dumps(manifest, indent=2, sort_keys=True) + "\n")
    return str(path)


__all__ = ["environment_info", "git_sha", "write_manifest"]
