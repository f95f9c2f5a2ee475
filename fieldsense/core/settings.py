from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_PACKAGED_DATA_DIR = Path(__file__).resolve().parent.parent / "data"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = Field(default="fieldsense", alias="APP_NAME")
    app_env: str = Field(default="local", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    data_dir: Path = Field(default=_PACKAGED_DATA_DIR, alias="FIELDSENSE_DATA_DIR")

    # Learned classifier
    hidden1_size: int = Field(default=32, alias="NN_HIDDEN1_SIZE")
    hidden2_size: int = Field(default=16, alias="NN_HIDDEN2_SIZE")
    dropout_rate: float = Field(default=0.25, alias="NN_DROPOUT_RATE")
    leaky_relu_slope: float = Field(default=0.01, alias="NN_LEAKY_RELU_SLOPE")
    l2_lambda: float = Field(default=0.01, alias="NN_L2_LAMBDA")
    base_learning_rate: float = Field(default=0.05, alias="NN_BASE_LEARNING_RATE")
    learning_rate_decay: float = Field(default=0.0001, alias="NN_LEARNING_RATE_DECAY")
    confidence_floor: float = Field(default=0.25, alias="NN_CONFIDENCE_FLOOR")
    prune_threshold: float = Field(default=0.01, alias="NN_PRUNE_THRESHOLD")
    snapshot_version: int = Field(default=3, alias="NN_SNAPSHOT_VERSION")
    random_seed: int | None = Field(default=None, alias="NN_RANDOM_SEED")

    # Arbitration
    unanimous_confidence: float = Field(default=0.99, alias="ARB_UNANIMOUS_CONFIDENCE")
    default_pattern_strong: float = Field(default=0.95, alias="ARB_DEFAULT_PATTERN_STRONG")
    default_learned_strong: float = Field(default=0.85, alias="ARB_DEFAULT_LEARNED_STRONG")
    default_weak_ceiling: float = Field(default=0.80, alias="ARB_DEFAULT_WEAK_CEILING")
    default_pattern_weight: float = Field(default=0.5, alias="ARB_DEFAULT_PATTERN_WEIGHT")
    default_learned_weight: float = Field(default=0.5, alias="ARB_DEFAULT_LEARNED_WEIGHT")
    pattern_favored_pattern_strong: float = Field(default=0.90, alias="ARB_PATTERN_FAVORED_PATTERN_STRONG")
    pattern_favored_learned_strong: float = Field(default=0.92, alias="ARB_PATTERN_FAVORED_LEARNED_STRONG")
    pattern_favored_weak_ceiling: float = Field(default=0.80, alias="ARB_PATTERN_FAVORED_WEAK_CEILING")
    pattern_favored_pattern_weight: float = Field(default=0.7, alias="ARB_PATTERN_FAVORED_PATTERN_WEIGHT")
    pattern_favored_learned_weight: float = Field(default=0.3, alias="ARB_PATTERN_FAVORED_LEARNED_WEIGHT")
    context_favored_pattern_strong: float = Field(default=0.97, alias="ARB_CONTEXT_FAVORED_PATTERN_STRONG")
    context_favored_learned_strong: float = Field(default=0.75, alias="ARB_CONTEXT_FAVORED_LEARNED_STRONG")
    context_favored_weak_ceiling: float = Field(default=0.85, alias="ARB_CONTEXT_FAVORED_WEAK_CEILING")
    context_favored_pattern_weight: float = Field(default=0.4, alias="ARB_CONTEXT_FAVORED_PATTERN_WEIGHT")
    context_favored_learned_weight: float = Field(default=0.6, alias="ARB_CONTEXT_FAVORED_LEARNED_WEIGHT")
    learned_margin: float = Field(default=0.0, alias="ARB_LEARNED_MARGIN")
    conflict_group_boost: float = Field(default=0.0, alias="ARB_CONFLICT_GROUP_BOOST")
    input_type_check: bool = Field(default=True, alias="ARB_INPUT_TYPE_CHECK")
    input_type_penalty: float = Field(default=0.1, alias="ARB_INPUT_TYPE_PENALTY")

    # Pattern classifier
    pattern_min_score: float = Field(default=0.6, alias="PATTERN_MIN_SCORE")

    # Engine
    batch_workers: int = Field(default=4, alias="BATCH_WORKERS")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
