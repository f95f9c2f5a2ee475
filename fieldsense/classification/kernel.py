"""Optional inference-path optimisations for the learned classifier.

* ``flatten``: contiguous 1-D storage per layer, reshaped as a view.
* ``prune_weights``: zero every weight with ``|w| < threshold``.
* ``quantize_weights``: symmetric 8-bit quantisation, ``scale = max|w| / 127``.

None of these is applied automatically: ``LearnedClassifier.optimize``
builds an ``OptimizedNetwork`` and only switches to it after checking that
top-1 predictions are unchanged on a sample set.
"""
from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from fieldsense.classification.network import NetworkWeights, leaky_relu

QUANT_SCALE = 127
PRUNE_THRESHOLD = 0.01


def flatten(weights: np.ndarray) -> np.ndarray:
    return np.ascontiguousarray(weights, dtype=np.float64).ravel()


def prune_weights(weights: np.ndarray, threshold: float = PRUNE_THRESHOLD) -> tuple[np.ndarray, float]:
    """Return ``(pruned copy, fraction of zero entries)``."""
    pruned = np.where(np.abs(weights) < threshold, 0.0, weights)
    sparsity = float(np.count_nonzero(pruned == 0.0)) / pruned.size if pruned.size else 0.0
    return pruned, sparsity


@dataclass(frozen=True)
class QuantizedMatrix:
    values: np.ndarray
    scale: float

    @property
    def shape(self) -> tuple[int, ...]:
        return self.values.shape

    @property
    def nbytes(self) -> int:
        return self.values.nbytes + 8


def quantize_weights(weights: np.ndarray) -> QuantizedMatrix:
    peak = float(np.max(np.abs(weights))) if weights.size else 0.0
    scale = peak / QUANT_SCALE if peak > 0.0 else 1.0
    values = np.clip(np.round(weights / scale), -QUANT_SCALE, QUANT_SCALE).astype(np.int8)
    return QuantizedMatrix(values=values, scale=scale)


def dequantize(matrix: QuantizedMatrix) -> np.ndarray:
    return matrix.values.astype(np.float64) * matrix.scale


@dataclass(frozen=True)
class _Layer:
    flat: np.ndarray | None
    quantized: QuantizedMatrix | None
    shape: tuple[int, int]
    bias: np.ndarray

    def apply(self, x: np.ndarray) -> np.ndarray:
        if self.quantized is not None:
            return (x @ self.quantized.values) * self.quantized.scale + self.bias
        return x @ self.flat.reshape(self.shape) + self.bias

    @property
    def nbytes(self) -> int:
        weights = self.quantized.nbytes if self.quantized is not None else self.flat.nbytes
        return weights + self.bias.nbytes


class OptimizedNetwork:
    """Read-only inference copy of a ``NetworkWeights`` with pruning/quantisation applied."""

    def __init__(self, layers: list[_Layer], slope: float, sparsity: float, original_bytes: int) -> None:
        self._layers = layers
        self._slope = slope
        self.sparsity = sparsity
        self.original_bytes = original_bytes

    @classmethod
    def from_weights(
        cls,
        weights: NetworkWeights,
        *,
        slope: float,
        prune_threshold: float = PRUNE_THRESHOLD,
        quantize: bool = False,
    ) -> OptimizedNetwork:
        layers: list[_Layer] = []
        zeros = 0
        total = 0
        original_bytes = 0
        for w, b in ((weights.W1, weights.b1), (weights.W2, weights.b2), (weights.W3, weights.b3)):
            original_bytes += w.nbytes + b.nbytes
            pruned, sparsity = prune_weights(w, prune_threshold)
            zeros += round(sparsity * pruned.size)
            total += pruned.size
            layers.append(
                _Layer(
                    flat=None if quantize else flatten(pruned),
                    quantized=quantize_weights(pruned) if quantize else None,
                    shape=pruned.shape,
                    bias=b.copy(),
                )
            )
        return cls(layers, slope, zeros / total if total else 0.0, original_bytes)

    @property
    def nbytes(self) -> int:
        return sum(layer.nbytes for layer in self._layers)

    @property
    def memory_reduction(self) -> float:
        if not self.original_bytes:
            return 0.0
        return 1.0 - self.nbytes / self.original_bytes

    def forward(self, x: np.ndarray) -> np.ndarray:
        """Return logits for one sample."""
        hidden1, hidden2, output = self._layers
        a1 = leaky_relu(hidden1.apply(x), self._slope)
        a2 = leaky_relu(hidden2.apply(a1), self._slope)
        return output.apply(a2)
