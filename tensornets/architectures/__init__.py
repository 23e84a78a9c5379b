"""Composite architectures built from networks."""

from .gan import GAN

__all__ = ["GAN"]
