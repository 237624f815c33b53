from __future__ import annotations

import random

import pytest
from hypothesis import settings

from batch_runner.utils.settings import load_settings

# ---- Pytest configuration --------------------------------------


def pytest_configure(config: pytest.Config) -> None:
    config.option.xfail_strict = False
    config.addinivalue_line("markers", "hypothesis: property-based tests")
    config.addinivalue_line("markers", "timing: tests asserting wall-clock bounds")


# ---- Deterministic Testing Configuration ---------------------

DETERMINISTIC_SEED = 42


@pytest.fixture(autouse=True)
def set_deterministic_seed():
    """Set deterministic seed for all tests"""
    random.seed(DETERMINISTIC_SEED)
    yield
    random.seed()


@pytest.fixture(autouse=True)
def fresh_settings():
    """Drop cached settings so tests never see each other's config files."""
    load_settings.cache_clear()
    yield
    load_settings.cache_clear()


# Hypothesis settings for all property-based tests
settings.register_profile(
    "deterministic",
    deadline=None,
    max_examples=200,
    derandomize=False,
    database=None,
)
settings.load_profile("deterministic")
