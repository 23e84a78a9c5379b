"""Generative adversarial training on top of two :class:`Network` instances."""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from ..core.tensor import Tensor
from ..training.losses import Loss
from ..training.network import Network

logger = logging.getLogger(__name__)


class GAN:
    """Alternate discriminator and generator updates.

    The discriminator learns to output 1 for ``real_data`` and 0 for generated
    samples.  The generator is updated through the discriminator's input
    gradient with "real" labels; the discriminator's own parameters are left
    untouched by that step.
    """

    def __init__(self, generator: Network, discriminator: Network, loss: Optional[Loss] = None) -> None:
        self.generator = generator
        self.discriminator = discriminator
        self.loss = loss if loss is not None else discriminator.loss
        if self.loss is None:
            raise ValueError("GAN needs a loss function")

    def train(self, epochs: int, real_data: Tensor, noise: Tensor) -> List[Tuple[float, float]]:
        """Run ``epochs`` rounds and return ``(discriminator_loss, generator_loss)`` per round."""

        history: List[Tuple[float, float]] = []
        for epoch in range(epochs):
            fake_data = self.generator.predict(noise)
            real_labels = Tensor.ones((real_data.shape[0], 1))
            fake_labels = Tensor.zeros((fake_data.shape[0], 1))

            d_loss = self.train_discriminator(real_data, real_labels, fake_data, fake_labels)
            g_loss = self.train_generator(noise)
            logger.info("Epoch %d, Discriminator Loss: %f, Generator Loss: %f", epoch, d_loss, g_loss)
            history.append((d_loss, g_loss))
        return history

    def train_discriminator(
        self, real_data: Tensor, real_labels: Tensor, fake_data: Tensor, fake_labels: Tensor
    ) -> float:
        real_loss = self.discriminator.train_step(real_data, real_labels)
        fake_loss = self.discriminator.train_step(fake_data, fake_labels)
        return 0.5 * (real_loss + fake_loss)

    def train_generator(self, noise: Tensor) -> float:
        fake_data = self.generator.forward(noise)
        verdict = self.discriminator.forward(fake_data)
        loss, grad = self.loss.compute(verdict, Tensor.ones(verdict.shape))
        fake_grad = self.discriminator.backward(grad)
        self.discriminator.zero_gradients()

        self.generator.backward(fake_grad)
        self.generator.regularise()
        self.generator.optimise()
        self.generator.zero_gradients()
        return loss.mean()

    def generate(self, noise: Tensor) -> Tensor:
        return self.generator.predict(noise)


__all__ = ["GAN"]
