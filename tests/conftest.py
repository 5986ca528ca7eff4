from __future__ import annotations

import random

import pytest

from qlog.shape import ShapeNormalizer


@pytest.fixture
def normalizer() -> ShapeNormalizer:
    return ShapeNormalizer(lex_error_policy="raw")


@pytest.fixture
def rng() -> random.Random:
    return random.Random(20240101)
