"""Shared infrastructure: settings, logging and the built-in taxonomy tables."""
