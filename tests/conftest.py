from __future__ import annotations

from pathlib import Path

import pytest

from fieldsense.classification.arbitration import ArbitrationPolicy
from fieldsense.classification.encoder import FeatureEncoder
from fieldsense.classification.engine import ClassificationEngine
from fieldsense.classification.learned import LearnedClassifier, NetworkConfig
from fieldsense.classification.loader import (
    ALIASES_FILE,
    KEYWORDS_FILE,
    PATTERNS_FILE,
    load_alias_table,
    load_keyword_table,
    load_rule_set,
)
from fieldsense.classification.patterns import PatternClassifier
from fieldsense.classification.taxonomy import Taxonomy
from fieldsense.core.settings import get_settings

DATA_DIR = Path(__file__).resolve().parent.parent / "fieldsense" / "data"


@pytest.fixture(scope="session")
def taxonomy() -> Taxonomy:
    return Taxonomy.default()


@pytest.fixture(scope="session")
def aliases(taxonomy):
    return load_alias_table(DATA_DIR / ALIASES_FILE, taxonomy)


@pytest.fixture(scope="session")
def keywords(taxonomy):
    return load_keyword_table(DATA_DIR / KEYWORDS_FILE, taxonomy)


@pytest.fixture(scope="session")
def rule_set(taxonomy, aliases):
    return load_rule_set(DATA_DIR / PATTERNS_FILE, taxonomy, aliases)


@pytest.fixture(scope="session")
def encoder(taxonomy, keywords) -> FeatureEncoder:
    return FeatureEncoder(taxonomy, keywords)


@pytest.fixture(scope="session")
def pattern_classifier(rule_set, aliases, taxonomy) -> PatternClassifier:
    return PatternClassifier(rule_set, aliases, taxonomy)


@pytest.fixture
def learned(taxonomy, encoder, aliases) -> LearnedClassifier:
    """Fresh, seeded network per test: training mutates it."""
    return LearnedClassifier(taxonomy, encoder, NetworkConfig(), seed=1234, aliases=aliases)


@pytest.fixture
def policy(taxonomy) -> ArbitrationPolicy:
    return ArbitrationPolicy(taxonomy)


@pytest.fixture
def engine(encoder, pattern_classifier, learned, policy) -> ClassificationEngine:
    return ClassificationEngine(encoder, pattern_classifier, learned, policy, max_workers=4)


@pytest.fixture
def clean_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
