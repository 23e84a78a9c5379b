"""Training components: losses, regularisers, optimisers and the network."""

from .losses import REGISTRY as LOSS_REGISTRY
from .losses import (
    BinaryCrossEntropy,
    CategoricalCrossEntropy,
    CosineProximityLoss,
    Loss,
    MeanSquaredError,
)
from .network import Network
from .optimisers import SGD, Adam, Optimiser, RMSProp, SGDWithMomentum
from .persistence import load_model, save_model
from .pipelines import load_preset, presets, run_pipeline
from .regularisers import L1, L2, ElasticNet, Regulariser

__all__ = [
    "Adam",
    "BinaryCrossEntropy",
    "CategoricalCrossEntropy",
    "CosineProximityLoss",
    "ElasticNet",
    "L1",
    "L2",
    "LOSS_REGISTRY",
    "Loss",
    "MeanSquaredError",
    "Network",
    "Optimiser",
    "RMSProp",
    "Regulariser",
    "SGD",
    "SGDWithMomentum",
    "load_model",
    "load_preset",
    "presets",
    "run_pipeline",
    "save_model",
]
