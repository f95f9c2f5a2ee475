"""Three-layer feed-forward network: weights, forward/backward passes, snapshot format.

Shapes
------
W1 (input x hidden1)    b1 (hidden1,)
W2 (hidden1 x hidden2)  b2 (hidden2,)
W3 (hidden2 x output)   b3 (output,)

Hidden layers use Leaky-ReLU; the output layer produces logits for softmax.
Everything here is a pure function of its arguments; locking and the
learning-rate schedule belong to ``LearnedClassifier``.
"""
from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, model_validator

WEIGHT_NAMES: tuple[str, ...] = ("W1", "b1", "W2", "b2", "W3", "b3")


# ---------------------------------------------------------------------------
# Weights
# ---------------------------------------------------------------------------

def _uniform(rng: np.random.Generator, shape: tuple[int, int], scale: float) -> np.ndarray:
    return (rng.random(shape) - 0.5) * 2.0 * scale


@dataclass
class NetworkWeights:
    W1: np.ndarray
    b1: np.ndarray
    W2: np.ndarray
    b2: np.ndarray
    W3: np.ndarray
    b3: np.ndarray
    total_samples: int = 0

    @classmethod
    def initialize(
        cls,
        input_size: int,
        hidden1: int,
        hidden2: int,
        output_size: int,
        rng: np.random.Generator,
    ) -> NetworkWeights:
        """He-uniform hidden layers, Xavier-uniform output layer, zero biases."""
        return cls(
            W1=_uniform(rng, (input_size, hidden1), np.sqrt(2.0 / input_size)),
            b1=np.zeros(hidden1),
            W2=_uniform(rng, (hidden1, hidden2), np.sqrt(2.0 / hidden1)),
            b2=np.zeros(hidden2),
            W3=_uniform(rng, (hidden2, output_size), np.sqrt(1.0 / hidden2)),
            b3=np.zeros(output_size),
        )

    @property
    def input_size(self) -> int:
        return self.W1.shape[0]

    @property
    def output_size(self) -> int:
        return self.W3.shape[1]

    def shapes(self) -> dict[str, tuple[int, ...]]:
        return {name: getattr(self, name).shape for name in WEIGHT_NAMES}

    def copy(self) -> NetworkWeights:
        return NetworkWeights(
            *(getattr(self, name).copy() for name in WEIGHT_NAMES),
            total_samples=self.total_samples,
        )

    def freeze(self) -> NetworkWeights:
        """Mark every array read-only (used for inference snapshots)."""
        for name in WEIGHT_NAMES:
            getattr(self, name).setflags(write=False)
        return self


def expected_shapes(input_size: int, hidden1: int, hidden2: int, output_size: int) -> dict[str, tuple[int, ...]]:
    return {
        "W1": (input_size, hidden1),
        "b1": (hidden1,),
        "W2": (hidden1, hidden2),
        "b2": (hidden2,),
        "W3": (hidden2, output_size),
        "b3": (output_size,),
    }


# ---------------------------------------------------------------------------
# Forward / backward
# ---------------------------------------------------------------------------

def leaky_relu(z: np.ndarray, slope: float) -> np.ndarray:
    return np.where(z > 0.0, z, slope * z)


def leaky_relu_grad(z: np.ndarray, slope: float) -> np.ndarray:
    return np.where(z > 0.0, 1.0, slope)


def softmax(logits: np.ndarray) -> np.ndarray:
    shifted = np.exp(logits - np.max(logits))
    return shifted / shifted.sum()


@dataclass
class ForwardCache:
    """Activations kept from a forward pass for backpropagation."""

    x: np.ndarray
    z1: np.ndarray
    a1: np.ndarray
    z2: np.ndarray
    a2: np.ndarray
    logits: np.ndarray
    mask1: np.ndarray | None = None
    mask2: np.ndarray | None = None


def _dropout_mask(rng: np.random.Generator, size: int, rate: float) -> np.ndarray:
    # Inverted dropout: survivors are scaled so the expected activation is unchanged.
    return (rng.random(size) >= rate) / (1.0 - rate)


def forward(
    weights: NetworkWeights,
    x: np.ndarray,
    *,
    slope: float,
    dropout_rate: float = 0.0,
    rng: np.random.Generator | None = None,
) -> ForwardCache:
    """Run one sample through the network.

    Dropout is applied to both hidden layers only when ``dropout_rate > 0``
    and an ``rng`` is supplied; inference passes neither.
    """
    training = dropout_rate > 0.0 and rng is not None

    z1 = x @ weights.W1 + weights.b1
    a1 = leaky_relu(z1, slope)
    mask1 = None
    if training:
        mask1 = _dropout_mask(rng, a1.shape[0], dropout_rate)
        a1 = a1 * mask1

    z2 = a1 @ weights.W2 + weights.b2
    a2 = leaky_relu(z2, slope)
    mask2 = None
    if training:
        mask2 = _dropout_mask(rng, a2.shape[0], dropout_rate)
        a2 = a2 * mask2

    logits = a2 @ weights.W3 + weights.b3
    return ForwardCache(x=x, z1=z1, a1=a1, z2=z2, a2=a2, logits=logits, mask1=mask1, mask2=mask2)


@dataclass
class Gradients:
    W1: np.ndarray
    b1: np.ndarray
    W2: np.ndarray
    b2: np.ndarray
    W3: np.ndarray
    b3: np.ndarray


def backward(
    weights: NetworkWeights,
    cache: ForwardCache,
    probs: np.ndarray,
    target: int,
    *,
    slope: float,
    l2_lambda: float,
) -> Gradients:
    """Softmax cross-entropy gradients for every tensor, with L2 on the weights.

    All gradients are computed from the pre-update weights; nothing is
    modified here.
    """
    delta3 = probs.copy()
    delta3[target] -= 1.0

    grad_W3 = np.outer(cache.a2, delta3) + l2_lambda * weights.W3
    da2 = weights.W3 @ delta3
    if cache.mask2 is not None:
        da2 = da2 * cache.mask2
    delta2 = da2 * leaky_relu_grad(cache.z2, slope)

    grad_W2 = np.outer(cache.a1, delta2) + l2_lambda * weights.W2
    da1 = weights.W2 @ delta2
    if cache.mask1 is not None:
        da1 = da1 * cache.mask1
    delta1 = da1 * leaky_relu_grad(cache.z1, slope)

    grad_W1 = np.outer(cache.x, delta1) + l2_lambda * weights.W1
    return Gradients(W1=grad_W1, b1=delta1, W2=grad_W2, b2=delta2, W3=grad_W3, b3=delta3)


def apply_gradients(weights: NetworkWeights, grads: Gradients, learning_rate: float) -> None:
    """In-place SGD step."""
    for name in WEIGHT_NAMES:
        getattr(weights, name)[...] -= learning_rate * getattr(grads, name)


def cross_entropy(probs: np.ndarray, target: int) -> float:
    return float(-np.log(max(probs[target], 1e-12)))


# ---------------------------------------------------------------------------
# Snapshot wire format
# ---------------------------------------------------------------------------

class ModelSnapshot(BaseModel):
    """Persisted weights: ``{version, W1, b1, W2, b2, W3, b3, totalSamples}``.

    ``taxonomy`` (class-list fingerprint) and ``inputSize`` are optional so
    snapshots written without them still load. NaN and infinite weights are
    rejected.
    """

    model_config = ConfigDict(populate_by_name=True, allow_inf_nan=False)

    version: int
    W1: list[list[float]]
    b1: list[float]
    W2: list[list[float]]
    b2: list[float]
    W3: list[list[float]]
    b3: list[float]
    total_samples: int = Field(default=0, ge=0, alias="totalSamples")
    taxonomy: str | None = None
    input_size: int | None = Field(default=None, alias="inputSize")

    @model_validator(mode="after")
    def consistent_layers(self):
        for w_name, b_name in (("W1", "b1"), ("W2", "b2"), ("W3", "b3")):
            rows = getattr(self, w_name)
            if not rows:
                raise ValueError(f"{w_name} is empty")
            width = len(rows[0])
            if any(len(row) != width for row in rows):
                raise ValueError(f"{w_name} is not rectangular")
            if len(getattr(self, b_name)) != width:
                raise ValueError(f"{b_name} length {len(getattr(self, b_name))} does not match {w_name} width {width}")
        if len(self.W2) != len(self.W1[0]) or len(self.W3) != len(self.W2[0]):
            raise ValueError("layer sizes do not chain")
        return self

    @classmethod
    def from_weights(
        cls,
        weights: NetworkWeights,
        version: int,
        taxonomy: str | None = None,
    ) -> ModelSnapshot:
        return cls(
            version=version,
            **{name: getattr(weights, name).tolist() for name in WEIGHT_NAMES},
            total_samples=weights.total_samples,
            taxonomy=taxonomy,
            input_size=weights.input_size,
        )

    def to_weights(self) -> NetworkWeights:
        return NetworkWeights(
            *(np.asarray(getattr(self, name), dtype=np.float64) for name in WEIGHT_NAMES),
            total_samples=self.total_samples,
        )

    def shapes(self) -> dict[str, tuple[int, ...]]:
        return {name: np.shape(getattr(self, name)) for name in WEIGHT_NAMES}
