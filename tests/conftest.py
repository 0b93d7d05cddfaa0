"""Shared fixtures for classreplay tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from classfile_builder import HELPER_PATTERN
from classreplay.classifier import DEFAULT_GENERATED_PATTERNS, NameClassifier
from classreplay.config import ReplayConfig

TEST_PATTERNS = DEFAULT_GENERATED_PATTERNS + (HELPER_PATTERN,)


@pytest.fixture
def classifier() -> NameClassifier:
    """Default patterns plus the test-only ``$Helper<n>`` shape."""
    return NameClassifier(TEST_PATTERNS)


@pytest.fixture
def corpus_dir(tmp_path: Path) -> Path:
    path = tmp_path / "captured"
    path.mkdir()
    return path


@pytest.fixture
def config(corpus_dir: Path) -> ReplayConfig:
    """Config writing to and reading from one corpus directory."""
    return ReplayConfig(
        corpus=(str(corpus_dir),),
        out_dir=str(corpus_dir),
        generated_patterns=TEST_PATTERNS,
    )
