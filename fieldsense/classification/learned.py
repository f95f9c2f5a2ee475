"""Learned classifier: a small MLP over ``FeatureEncoder`` vectors with online SGD.

Concurrency model
-----------------
Training is single-writer. ``train`` and ``load_snapshot`` take ``_lock``,
mutate the live weights, then publish a fresh read-only copy as the
inference snapshot. ``predict`` never locks: it reads whichever snapshot
reference is current, so concurrent inference always sees a consistent set
of tensors.

Persistence
-----------
``export_snapshot`` / ``load_snapshot`` speak the ``ModelSnapshot`` wire
format. A snapshot that fails validation, carries another version, or does
not match the current encoder/taxonomy sizes is never padded or truncated:
it is rejected, the network is re-initialised and ``load_snapshot`` returns
``False``.
"""
from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import numpy as np
from pydantic import ValidationError

from fieldsense.classification.encoder import FeatureEncoder
from fieldsense.classification.kernel import OptimizedNetwork
from fieldsense.classification.models import ClassificationResult, FieldDescriptor, Tier
from fieldsense.classification.network import (
    ModelSnapshot,
    NetworkWeights,
    apply_gradients,
    backward,
    cross_entropy,
    expected_shapes,
    forward,
    softmax,
)
from fieldsense.classification.taxonomy import AliasTable, Taxonomy
from fieldsense.core.constants import GENERIC_QUESTION_CLASS, UNKNOWN_CLASS
from fieldsense.core.settings import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NetworkConfig:
    hidden1: int = 32
    hidden2: int = 16
    dropout_rate: float = 0.25
    slope: float = 0.01
    l2_lambda: float = 0.01
    base_learning_rate: float = 0.05
    learning_rate_decay: float = 0.0001
    confidence_floor: float = 0.25
    prune_threshold: float = 0.01
    snapshot_version: int = 3

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> NetworkConfig:
        settings = settings or get_settings()
        return cls(
            hidden1=settings.hidden1_size,
            hidden2=settings.hidden2_size,
            dropout_rate=settings.dropout_rate,
            slope=settings.leaky_relu_slope,
            l2_lambda=settings.l2_lambda,
            base_learning_rate=settings.base_learning_rate,
            learning_rate_decay=settings.learning_rate_decay,
            confidence_floor=settings.confidence_floor,
            prune_threshold=settings.prune_threshold,
            snapshot_version=settings.snapshot_version,
        )

    def learning_rate(self, samples_seen: int) -> float:
        return self.base_learning_rate * float(np.exp(-self.learning_rate_decay * samples_seen))


@dataclass(frozen=True)
class OptimizationReport:
    sparsity: float
    memory_reduction: float
    preserved: bool
    mismatches: int
    samples: int


class LearnedClassifier:
    """Feed-forward classifier with one-sample-at-a-time training.

    Parameters
    ----------
    taxonomy:
        Sizes the output layer; index ``i`` of the output is ``taxonomy.name_at(i)``.
    encoder:
        Produces input vectors; its ``dimension`` sizes the input layer.
    config:
        Hyper-parameters (default: ``NetworkConfig()``).
    weights:
        Pre-built weights; must match the expected shapes exactly.
    seed:
        Seeds both initialisation and dropout, for reproducible runs.
    aliases:
        Optional alias table so ``train`` accepts legacy label names.
    """

    def __init__(
        self,
        taxonomy: Taxonomy,
        encoder: FeatureEncoder,
        config: NetworkConfig | None = None,
        weights: NetworkWeights | None = None,
        seed: int | None = None,
        aliases: AliasTable | None = None,
    ) -> None:
        self._taxonomy = taxonomy
        self._encoder = encoder
        self._config = config or NetworkConfig()
        self._aliases = aliases
        self._rng = np.random.default_rng(seed)
        self._lock = threading.Lock()
        self._floor_label = GENERIC_QUESTION_CLASS if GENERIC_QUESTION_CLASS in taxonomy else UNKNOWN_CLASS
        self._optimized: OptimizedNetwork | None = None

        if weights is None:
            weights = self._fresh_weights()
        elif weights.shapes() != self._expected_shapes():
            raise ValueError(
                f"weight shapes {weights.shapes()} do not match expected {self._expected_shapes()}"
            )
        self._weights = weights
        self._snapshot = weights.copy().freeze()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def taxonomy(self) -> Taxonomy:
        return self._taxonomy

    @property
    def config(self) -> NetworkConfig:
        return self._config

    @property
    def classes(self) -> tuple[str, ...]:
        return self._taxonomy.classes

    @property
    def input_size(self) -> int:
        return self._encoder.dimension

    @property
    def total_samples(self) -> int:
        return self._snapshot.total_samples

    @property
    def optimized(self) -> bool:
        return self._optimized is not None

    # ------------------------------------------------------------------
    # Inference
    # ------------------------------------------------------------------

    def predict_vector(self, x: np.ndarray) -> tuple[str, float, np.ndarray]:
        """Return ``(label, confidence, probabilities)`` for one feature vector.

        Raises
        ------
        ValueError
            If *x* does not have the encoder's dimension.
        """
        x = np.asarray(x, dtype=np.float64)
        if x.shape != (self.input_size,):
            raise ValueError(f"expected a vector of length {self.input_size}, got shape {x.shape}")

        optimized = self._optimized
        if optimized is not None:
            logits = optimized.forward(x)
        else:
            logits = forward(self._snapshot, x, slope=self._config.slope).logits
        probs = softmax(logits)

        index = int(np.argmax(probs))
        confidence = float(probs[index])
        label = self._taxonomy.name_at(index)
        if confidence < self._config.confidence_floor:
            label = self._floor_label
        return label, confidence, probs

    def predict(self, descriptor: FieldDescriptor | None) -> ClassificationResult:
        return self.classify_vector(self._encoder.encode(descriptor))

    def classify_vector(self, x: np.ndarray) -> ClassificationResult:
        """``predict`` for a vector the caller already encoded."""
        label, confidence, probs = self.predict_vector(x)
        top_two = np.sort(probs)[-2:]
        margin = float(top_two[-1] - top_two[0]) if probs.size > 1 else float(top_two[-1])
        return ClassificationResult(
            label=label,
            confidence=min(max(confidence, 0.0), 1.0),
            tier=Tier.LEARNED,
            category=self._taxonomy.category_of(label),
            source="learned",
            details={
                "argmax": self._taxonomy.name_at(int(np.argmax(probs))),
                "margin": margin,
                "floored": confidence < self._config.confidence_floor,
            },
        )

    def probability_of(self, descriptor: FieldDescriptor | None, label: str) -> float:
        """Probability mass on *label* (0.0 for names outside the taxonomy)."""
        index = self._taxonomy.index_of(self._resolve(label))
        if index < 0:
            return 0.0
        _, _, probs = self.predict_vector(self._encoder.encode(descriptor))
        return float(probs[index])

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def train(self, descriptor: FieldDescriptor | None, label: str) -> bool:
        """One SGD step towards *label*; ``False`` (no step) if the label is unknown."""
        target = self._taxonomy.index_of(self._resolve(label))
        if target < 0:
            logger.debug("Train: rejected unknown label %s", label)
            return False

        x = self._encoder.encode(descriptor)
        config = self._config
        with self._lock:
            weights = self._weights
            cache = forward(weights, x, slope=config.slope, dropout_rate=config.dropout_rate, rng=self._rng)
            probs = softmax(cache.logits)
            grads = backward(weights, cache, probs, target, slope=config.slope, l2_lambda=config.l2_lambda)
            learning_rate = config.learning_rate(weights.total_samples)
            apply_gradients(weights, grads, learning_rate)
            weights.total_samples += 1
            self._snapshot = weights.copy().freeze()
            if self._optimized is not None:
                self._optimized = None
                logger.info("Learned: optimized inference disabled after weight update")
            samples = weights.total_samples

        logger.debug(
            "Train: label=%s loss=%.4f lr=%.5f samples=%d",
            self._taxonomy.name_at(target), cross_entropy(probs, target), learning_rate, samples,
        )
        return True

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def export_snapshot(self) -> dict:
        snapshot = ModelSnapshot.from_weights(
            self._snapshot,
            version=self._config.snapshot_version,
            taxonomy=self._taxonomy.fingerprint(),
        )
        return snapshot.model_dump(by_alias=True)

    def load_snapshot(self, data: dict | None) -> bool:
        """Replace the weights with *data*; on any mismatch re-initialise and return ``False``."""
        try:
            snapshot = ModelSnapshot.model_validate(data)
        except ValidationError as exc:
            logger.warning("Learned: snapshot rejected (%d validation errors), re-initialising", exc.error_count())
            self.reset()
            return False

        problem = self._snapshot_problem(snapshot)
        if problem is not None:
            logger.warning("Learned: snapshot rejected (%s), re-initialising", problem)
            self.reset()
            return False

        weights = snapshot.to_weights()
        with self._lock:
            self._weights = weights
            self._snapshot = weights.copy().freeze()
            self._optimized = None
        logger.info("Learned: snapshot loaded, samples=%d", weights.total_samples)
        return True

    def save(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(self.export_snapshot(), fh)

    def load(self, path: str | Path) -> bool:
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Learned: cannot read snapshot %s (%s), re-initialising", path, exc)
            self.reset()
            return False
        return self.load_snapshot(data)

    def reset(self) -> None:
        """Discard all learning and start from fresh random weights."""
        with self._lock:
            weights = self._fresh_weights()
            self._weights = weights
            self._snapshot = weights.copy().freeze()
            self._optimized = None

    # ------------------------------------------------------------------
    # Optimised inference
    # ------------------------------------------------------------------

    def optimize(
        self,
        sample_vectors: Sequence[np.ndarray],
        prune_threshold: float | None = None,
        quantize: bool = False,
    ) -> OptimizationReport:
        """Build a pruned (and optionally quantised) network and enable it if top-1 labels survive.

        With no sample vectors nothing can be verified, so nothing is enabled.
        """
        threshold = self._config.prune_threshold if prune_threshold is None else prune_threshold
        snapshot = self._snapshot
        candidate = OptimizedNetwork.from_weights(
            snapshot, slope=self._config.slope, prune_threshold=threshold, quantize=quantize
        )

        mismatches = 0
        for x in sample_vectors:
            x = np.asarray(x, dtype=np.float64)
            reference = forward(snapshot, x, slope=self._config.slope).logits
            if int(np.argmax(reference)) != int(np.argmax(candidate.forward(x))):
                mismatches += 1

        samples = len(sample_vectors)
        preserved = samples > 0 and mismatches == 0
        if preserved and snapshot is self._snapshot:
            self._optimized = candidate
            logger.info(
                "Learned: optimized inference enabled (sparsity=%.3f, memory_reduction=%.3f, quantize=%s)",
                candidate.sparsity, candidate.memory_reduction, quantize,
            )
        else:
            logger.warning("Learned: optimization not enabled (%d/%d top-1 mismatches)", mismatches, samples)

        return OptimizationReport(
            sparsity=candidate.sparsity,
            memory_reduction=candidate.memory_reduction,
            preserved=preserved,
            mismatches=mismatches,
            samples=samples,
        )

    def disable_optimizations(self) -> None:
        self._optimized = None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve(self, label: str) -> str:
        return self._aliases.resolve(label) if self._aliases is not None else label

    def _expected_shapes(self) -> dict[str, tuple[int, ...]]:
        return expected_shapes(self.input_size, self._config.hidden1, self._config.hidden2, self._taxonomy.size)

    def _fresh_weights(self) -> NetworkWeights:
        return NetworkWeights.initialize(
            self.input_size, self._config.hidden1, self._config.hidden2, self._taxonomy.size, self._rng
        )

    def _snapshot_problem(self, snapshot: ModelSnapshot) -> str | None:
        if snapshot.version != self._config.snapshot_version:
            return f"version {snapshot.version} != {self._config.snapshot_version}"
        if snapshot.taxonomy is not None and snapshot.taxonomy != self._taxonomy.fingerprint():
            return "taxonomy fingerprint mismatch"
        expected = self._expected_shapes()
        actual = snapshot.shapes()
        if actual["W3"][1] != self._taxonomy.size:
            return f"output width {actual['W3'][1]} != taxonomy size {self._taxonomy.size}"
        if actual != expected:
            return f"layer shapes {actual} != {expected}"
        return None
