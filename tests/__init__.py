"""Tests are importable as `tests.*` so shared fixtures and constants live in conftest."""
