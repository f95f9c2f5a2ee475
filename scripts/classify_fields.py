#!/usr/bin/env python3
"""Classify form fields described in a JSON file.

Usage:
    python scripts/classify_fields.py fields.json
    python scripts/classify_fields.py - < fields.json
    NN_RANDOM_SEED=7 python scripts/classify_fields.py fields.json --metrics

The input is a JSON list of field descriptors (snake_case or the camelCase
keys emitted by the page scripts). One JSON result per field is printed,
in input order.
"""
from __future__ import annotations

import argparse
import json
import sys

from fieldsense.classification.engine import EngineMetrics, build_engine
from fieldsense.core.logging import setup_logging


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("path", help="JSON file with a list of field descriptors, or - for stdin")
    parser.add_argument("--snapshot", help="model snapshot JSON to load before classifying")
    parser.add_argument("--metrics", action="store_true", help="print aggregate metrics after the results")
    args = parser.parse_args(argv)

    setup_logging()

    if args.path == "-":
        fields = json.load(sys.stdin)
    else:
        with open(args.path, "r", encoding="utf-8") as fh:
            fields = json.load(fh)
    if not isinstance(fields, list):
        print("expected a JSON list of field descriptors", file=sys.stderr)
        return 2

    engine = build_engine()
    if args.snapshot:
        engine.learned_classifier.load(args.snapshot)

    metrics = EngineMetrics()
    for result in engine.classify_batch(fields, metrics):
        print(json.dumps(result.as_dict(), default=str))
    if args.metrics:
        print(json.dumps(metrics.as_dict()), file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
