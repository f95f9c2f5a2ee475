"""YAML loaders for the static rule, keyword and alias tables.

Each table is validated against the taxonomy as it is loaded. Any problem
(missing keys, unknown classes, bad regexes, alias chains) raises
``ValueError`` naming the file: this runs once at startup and must fail
loudly rather than let a typo silently disable a class.
"""
from __future__ import annotations

import re
from pathlib import Path
from typing import Any

import yaml

from fieldsense.classification.rules import (
    CompensationCues,
    ContextFilter,
    DateCues,
    PatternRule,
    RuleSet,
)
from fieldsense.classification.taxonomy import AliasTable, Taxonomy

PATTERNS_FILE = "patterns.yaml"
KEYWORDS_FILE = "keywords.yaml"
ALIASES_FILE = "aliases.yaml"

_REQUIRED_RULESET_FIELDS: frozenset[str] = frozenset({
    "version",
    "autofill_hints",
    "compensation",
    "dates",
    "rules",
})
_REQUIRED_RULE_FIELDS: frozenset[str] = frozenset({"confidence", "patterns"})
_KNOWN_RULE_FIELDS: frozenset[str] = _REQUIRED_RULE_FIELDS | {"exclusion", "category", "context_filter"}


class _UniqueKeyLoader(yaml.SafeLoader):
    """SafeLoader that rejects duplicate mapping keys instead of keeping the last one."""

    def construct_mapping(self, node, deep=False):
        seen: set = set()
        for key_node, _ in node.value:
            key = self.construct_object(key_node, deep=deep)
            if key in seen:
                raise ValueError(f"duplicate key {key!r} at line {key_node.start_mark.line + 1}")
            seen.add(key)
        return super().construct_mapping(node, deep=deep)


def _read_mapping(path: Path) -> dict[str, Any]:
    with open(path, "r", encoding="utf-8") as fh:
        try:
            data = yaml.load(fh, Loader=_UniqueKeyLoader)
        except ValueError as exc:
            raise ValueError(f"{path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a YAML mapping, got {type(data).__name__}")
    return data


def _compile(path: Path, where: str, pattern: Any) -> re.Pattern[str]:
    if not isinstance(pattern, str) or not pattern:
        raise ValueError(f"{path}: {where}: pattern must be a non-empty string")
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as exc:
        raise ValueError(f"{path}: {where}: invalid regex {pattern!r}: {exc}") from exc


def _is_known_class(name: str, taxonomy: Taxonomy, aliases: AliasTable) -> bool:
    return name in taxonomy or (aliases.is_alias(name) and aliases.resolve(name) in taxonomy)


# ---------------------------------------------------------------------------
# Aliases
# ---------------------------------------------------------------------------

def load_alias_table(path: str | Path, taxonomy: Taxonomy) -> AliasTable:
    """Load ``aliases.yaml`` (``aliases: {alias: canonical}``)."""
    path = Path(path)
    data = _read_mapping(path)
    aliases = data.get("aliases")
    if not isinstance(aliases, dict):
        raise ValueError(f"{path}: missing required mapping 'aliases'")
    try:
        return AliasTable({str(k): str(v) for k, v in aliases.items()}, taxonomy)
    except ValueError as exc:
        raise ValueError(f"{path}: {exc}") from exc


# ---------------------------------------------------------------------------
# Keywords
# ---------------------------------------------------------------------------

def load_keyword_table(path: str | Path, taxonomy: Taxonomy) -> dict[str, list[str]]:
    """Load ``keywords.yaml`` (``keywords: {class: [keyword, ...]}``)."""
    path = Path(path)
    data = _read_mapping(path)
    keywords = data.get("keywords")
    if not isinstance(keywords, dict):
        raise ValueError(f"{path}: missing required mapping 'keywords'")

    unknown = sorted(k for k in keywords if k not in taxonomy)
    if unknown:
        raise ValueError(f"{path}: keywords for classes outside the taxonomy: {unknown}")

    table: dict[str, list[str]] = {}
    for name, words in keywords.items():
        if words is None:
            words = []
        if not isinstance(words, list) or not all(isinstance(w, str) for w in words):
            raise ValueError(f"{path}: keywords for {name!r} must be a list of strings")
        table[name] = words
    return table


# ---------------------------------------------------------------------------
# Pattern rules
# ---------------------------------------------------------------------------

def _parse_rule(path: Path, label: str, entry: Any) -> PatternRule:
    if not isinstance(entry, dict):
        raise ValueError(f"{path}: rule {label!r} must be a mapping")
    missing = _REQUIRED_RULE_FIELDS - entry.keys()
    if missing:
        raise ValueError(f"{path}: rule {label!r} missing required fields: {sorted(missing)}")
    extra = entry.keys() - _KNOWN_RULE_FIELDS
    if extra:
        raise ValueError(f"{path}: rule {label!r} has unknown fields: {sorted(extra)}")

    confidence = float(entry["confidence"])
    if not 0.0 < confidence <= 1.0:
        raise ValueError(f"{path}: rule {label!r} confidence out of range: {confidence}")

    raw_patterns = entry["patterns"]
    if not isinstance(raw_patterns, list) or not raw_patterns:
        raise ValueError(f"{path}: rule {label!r} needs at least one pattern")
    patterns = tuple(
        _compile(path, f"rule {label!r} pattern {i}", p) for i, p in enumerate(raw_patterns)
    )

    exclusion = None
    if entry.get("exclusion"):
        exclusion = _compile(path, f"rule {label!r} exclusion", entry["exclusion"])

    context_filter = None
    raw_filter = entry.get("context_filter")
    if raw_filter:
        if not isinstance(raw_filter, dict) or not raw_filter.keys() <= {"require", "forbid"}:
            raise ValueError(f"{path}: rule {label!r} context_filter takes only 'require'/'forbid'")
        context_filter = ContextFilter(
            require=_compile(path, f"rule {label!r} require", raw_filter["require"])
            if raw_filter.get("require") else None,
            forbid=_compile(path, f"rule {label!r} forbid", raw_filter["forbid"])
            if raw_filter.get("forbid") else None,
        )

    return PatternRule(
        label=label,
        patterns=patterns,
        confidence=confidence,
        exclusion=exclusion,
        category=entry.get("category"),
        context_filter=context_filter,
    )


def load_rule_set(path: str | Path, taxonomy: Taxonomy, aliases: AliasTable) -> RuleSet:
    """Load and validate ``patterns.yaml``.

    Rule labels and autofill-hint targets may be canonical classes or
    aliases whose target is canonical; anything else is rejected.

    Raises
    ------
    ValueError
        If any required field is missing or any reference is unknown.
    """
    path = Path(path)
    data = _read_mapping(path)

    missing = _REQUIRED_RULESET_FIELDS - data.keys()
    if missing:
        raise ValueError(f"{path}: missing required fields: {sorted(missing)}")

    raw_rules = data["rules"]
    if not isinstance(raw_rules, dict) or not raw_rules:
        raise ValueError(f"{path}: 'rules' must be a non-empty mapping")

    rules: dict[str, PatternRule] = {}
    for label, entry in raw_rules.items():
        label = str(label)
        if not _is_known_class(label, taxonomy, aliases):
            raise ValueError(f"{path}: rule for unknown class {label!r}")
        rules[label] = _parse_rule(path, label, entry)

    hints = data["autofill_hints"]
    if not isinstance(hints, dict):
        raise ValueError(f"{path}: 'autofill_hints' must be a mapping")
    for hint, target in hints.items():
        if not _is_known_class(str(target), taxonomy, aliases):
            raise ValueError(f"{path}: autofill hint {hint!r} targets unknown class {target!r}")

    priorities = data.get("priorities") or {}
    for label in priorities:
        if not _is_known_class(str(label), taxonomy, aliases):
            raise ValueError(f"{path}: priority for unknown class {label!r}")

    comp = data["compensation"]
    dates = data["dates"]
    try:
        compensation = CompensationCues(
            cue=_compile(path, "compensation cue", comp["cue"]),
            expected=_compile(path, "compensation expected", comp["expected"]),
            current=_compile(path, "compensation current", comp["current"]),
        )
        date_cues = DateCues(
            cue=_compile(path, "dates cue", dates["cue"]),
            start=_compile(path, "dates start", dates["start"]),
            end=_compile(path, "dates end", dates["end"]),
            education_context=_compile(path, "dates education_context", dates["education_context"]),
            work_context=_compile(path, "dates work_context", dates["work_context"]),
        )
    except (KeyError, TypeError) as exc:
        raise ValueError(f"{path}: incomplete compensation/dates cue table: {exc}") from exc

    return RuleSet(
        version=int(data["version"]),
        rules=rules,
        autofill_hints={str(k).lower(): str(v) for k, v in hints.items()},
        compensation=compensation,
        dates=date_cues,
        priorities={str(k): int(v) for k, v in priorities.items()},
    )
