"""JSON model documents: layers, tensors, optimiser, loss and regulariser."""

from __future__ import annotations

import json
import logging
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import numpy as np

from ..core.errors import DeserialisationError
from ..core.types import TensorData
from ..layers import layer_from_record
from .losses import loss_from_config
from .network import Network
from .optimisers import optimiser_from_config
from .regularisers import regulariser_from_config

logger = logging.getLogger(__name__)


def model_document(
    network: Network, *, name: str = "model", dataset_name: str = "", total_loss: float = 0.0
) -> Dict[str, Any]:
    """Return the JSON-serialisable document describing ``network``."""

    layers: List[Dict[str, Any]] = []
    for layer in network.layers:
        config, tensors = layer.save()
        layers.append(
            {
                "layerName": layer.name(),
                "config": config,
                "tensors": [record.to_dict() for record in tensors],
            }
        )
    return {
        "metadata": {
            "name": name,
            "creation_date": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
            "id": str(uuid.uuid4()),
            "total_loss": float(total_loss),
            "dataset_name": dataset_name,
        },
        "layers": layers,
        "optimiser": network.optimiser.save() if network.optimiser is not None else None,
        "lossFunction": network.loss.save() if network.loss is not None else None,
        "regularisation": network.regulariser.save() if network.regulariser is not None else None,
    }


def save_model(
    network: Network,
    path: str | Path,
    *,
    name: str = "model",
    dataset_name: str = "",
    total_loss: float = 0.0,
) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    document = model_document(network, name=name, dataset_name=dataset_name, total_loss=total_loss)
    path.write_text(json.dumps(document, indent=2), encoding="utf-8")
    logger.info("Saved model %r (%d layers) to %s", name, len(document["layers"]), path)
    return path


def network_from_document(
    document: Mapping[str, Any], rng: Optional[np.random.Generator] = None
) -> Network:
    """Rebuild a :class:`Network` from a parsed model document.

    ``rng`` is handed to restored layers that sample at run time (dropout).
    """

    if not isinstance(document, Mapping):
        raise DeserialisationError("Model document must be a JSON object")
    records = document.get("layers")
    if not isinstance(records, list):
        raise DeserialisationError("Model document is missing its 'layers' list")

    layers = []
    for position, record in enumerate(records):
        if not isinstance(record, Mapping) or not isinstance(record.get("layerName"), str):
            raise DeserialisationError(f"Malformed layer record at position {position}")
        tensors = record.get("tensors") or []
        if not isinstance(tensors, list):
            raise DeserialisationError(f"Layer {record['layerName']!r} tensors must be a list")
        layers.append(
            layer_from_record(
                record["layerName"],
                record.get("config"),
                [TensorData.from_dict(item) for item in tensors],
                rng,
            )
        )

    return Network(
        layers,
        optimiser=optimiser_from_config(document.get("optimiser")),
        loss=loss_from_config(document.get("lossFunction")),
        regulariser=regulariser_from_config(document.get("regularisation")),
    )


def load_model(path: str | Path, rng: Optional[np.random.Generator] = None) -> Network:
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    try:
        document = json.loads(text)
    except json.JSONDecodeError as exc:
        raise DeserialisationError(f"{path} is not valid JSON: {exc}") from exc
    network = network_from_document(document, rng)
    logger.info("Loaded model from %s (%d layers)", path, len(network.layers))
    return network


def read_metadata(path: str | Path) -> Dict[str, Any]:
    """Return only the ``metadata`` block of a saved model."""

    try:
        document = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise DeserialisationError(f"{path} is not valid JSON: {exc}") from exc
    metadata = document.get("metadata") if isinstance(document, Mapping) else None
    if not isinstance(metadata, Mapping):
        raise DeserialisationError(f"{path} has no metadata block")
    return dict(metadata)


__all__ = ["load_model", "model_document", "network_from_document", "read_metadata", "save_model"]
