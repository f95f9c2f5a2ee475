"""Ensemble engine: encoder + pattern classifier + learned classifier + arbitration.

Every collaborator is passed in; ``build_engine`` wires the default ones
from settings and the packaged rule tables.
"""
from __future__ import annotations

import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Sequence

from fieldsense.classification.arbitration import ArbitrationConfig, ArbitrationMetrics, ArbitrationPolicy
from fieldsense.classification.encoder import FeatureEncoder
from fieldsense.classification.learned import LearnedClassifier, NetworkConfig
from fieldsense.classification.loader import (
    ALIASES_FILE,
    KEYWORDS_FILE,
    PATTERNS_FILE,
    load_alias_table,
    load_keyword_table,
    load_rule_set,
)
from fieldsense.classification.models import ClassificationResult, FieldDescriptor
from fieldsense.classification.patterns import PatternClassifier
from fieldsense.classification.taxonomy import Taxonomy
from fieldsense.core.settings import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass
class EngineMetrics:
    """Per-call (or per-caller) counters. Merge instead of sharing across threads."""

    classifications: int = 0
    trainings_accepted: int = 0
    trainings_rejected: int = 0
    category_counts: Counter = field(default_factory=Counter)
    confidence_sum: float = 0.0
    arbitration: ArbitrationMetrics = field(default_factory=ArbitrationMetrics)

    @property
    def mean_confidence(self) -> float:
        if not self.classifications:
            return 0.0
        return self.confidence_sum / self.classifications

    @property
    def tier_counts(self) -> Counter:
        return self.arbitration.tier_counts

    def record_classification(self, result: ClassificationResult) -> None:
        self.classifications += 1
        self.category_counts[result.category] += 1
        self.confidence_sum += result.confidence

    def record_training(self, accepted: bool) -> None:
        if accepted:
            self.trainings_accepted += 1
        else:
            self.trainings_rejected += 1

    def merge(self, other: EngineMetrics) -> None:
        self.classifications += other.classifications
        self.trainings_accepted += other.trainings_accepted
        self.trainings_rejected += other.trainings_rejected
        self.category_counts.update(other.category_counts)
        self.confidence_sum += other.confidence_sum
        self.arbitration.merge(other.arbitration)

    def as_dict(self) -> dict[str, Any]:
        return {
            "classifications": self.classifications,
            "trainings_accepted": self.trainings_accepted,
            "trainings_rejected": self.trainings_rejected,
            "category_counts": dict(self.category_counts),
            "mean_confidence": round(self.mean_confidence, 4),
            "arbitration": self.arbitration.as_dict(),
        }


class ClassificationEngine:
    """Classifies form fields by arbitrating between pattern and learned opinions."""

    def __init__(
        self,
        encoder: FeatureEncoder,
        pattern_classifier: PatternClassifier,
        learned_classifier: LearnedClassifier,
        policy: ArbitrationPolicy,
        max_workers: int = 4,
    ) -> None:
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        if encoder.dimension != learned_classifier.input_size:
            raise ValueError(
                f"encoder dimension {encoder.dimension} != learned input size {learned_classifier.input_size}"
            )
        self.encoder = encoder
        self.pattern_classifier = pattern_classifier
        self.learned_classifier = learned_classifier
        self.policy = policy
        self.max_workers = max_workers

    def classify(
        self,
        descriptor: FieldDescriptor | Mapping[str, Any] | None,
        metrics: EngineMetrics | None = None,
    ) -> ClassificationResult:
        if not isinstance(descriptor, FieldDescriptor):
            descriptor = FieldDescriptor.from_dict(descriptor)

        pattern = self.pattern_classifier.classify(descriptor)
        learned = self.learned_classifier.classify_vector(self.encoder.encode(descriptor))
        result = self.policy.arbitrate(
            pattern,
            learned,
            metrics.arbitration if metrics is not None else None,
            input_type=descriptor.input_type,
        )
        if metrics is not None:
            metrics.record_classification(result)
        return result

    def classify_batch(
        self,
        descriptors: Sequence[FieldDescriptor | Mapping[str, Any] | None],
        metrics: EngineMetrics | None = None,
    ) -> list[ClassificationResult]:
        """Classify many fields in parallel; results keep the input order."""
        if not descriptors:
            return []

        def run(descriptor):
            local = EngineMetrics()
            return self.classify(descriptor, local), local

        workers = min(self.max_workers, len(descriptors))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="classify_") as pool:
            outcomes = list(pool.map(run, descriptors))

        if metrics is not None:
            for _, local in outcomes:
                metrics.merge(local)
        logger.debug("Engine: classified batch of %d with %d workers", len(outcomes), workers)
        return [result for result, _ in outcomes]

    def train(
        self,
        descriptor: FieldDescriptor | Mapping[str, Any] | None,
        label: str,
        metrics: EngineMetrics | None = None,
    ) -> bool:
        if not isinstance(descriptor, FieldDescriptor):
            descriptor = FieldDescriptor.from_dict(descriptor)
        accepted = self.learned_classifier.train(descriptor, label)
        if metrics is not None:
            metrics.record_training(accepted)
        return accepted


def build_engine(settings: Settings | None = None) -> ClassificationEngine:
    """Wire the default engine from settings and the rule tables in ``settings.data_dir``.

    Raises
    ------
    ValueError
        If any rule table is missing required fields or names unknown classes.
    """
    settings = settings or get_settings()
    data_dir = Path(settings.data_dir)

    taxonomy = Taxonomy.default()
    aliases = load_alias_table(data_dir / ALIASES_FILE, taxonomy)
    keywords = load_keyword_table(data_dir / KEYWORDS_FILE, taxonomy)
    rules = load_rule_set(data_dir / PATTERNS_FILE, taxonomy, aliases)

    encoder = FeatureEncoder(taxonomy, keywords)
    pattern_classifier = PatternClassifier(rules, aliases, taxonomy, min_score=settings.pattern_min_score)
    learned_classifier = LearnedClassifier(
        taxonomy,
        encoder,
        NetworkConfig.from_settings(settings),
        seed=settings.random_seed,
        aliases=aliases,
    )
    policy = ArbitrationPolicy(taxonomy, ArbitrationConfig.from_settings(settings))

    logger.info(
        "Engine: %d classes, %d aliases, %d pattern rules (v%d), input dim %d",
        taxonomy.size, len(aliases), len(rules), rules.version, encoder.dimension,
    )
    return ClassificationEngine(
        encoder,
        pattern_classifier,
        learned_classifier,
        policy,
        max_workers=settings.batch_workers,
    )
