"""
Pytest configuration and fixtures for trimmer tests.
"""
from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import pytest

# Add scripts to path for imports
scripts_dir = Path(__file__).parent.parent / "scripts"
sys.path.insert(0, str(scripts_dir))

from trim_lib import RemovalStrategy, TrimConfig, Trimmer, index_token


# =============================================================================
# Helper Strategies
# =============================================================================

class FixedIndexStrategy(RemovalStrategy):
    """Always targets one array index while it exists."""

    def __init__(self, index: int):
        self.index = index

    def select_next_to_remove(self, container):
        if isinstance(container, list) and len(container) > self.index:
            return index_token(self.index)
        return None


# =============================================================================
# Data Fixtures
# =============================================================================

@pytest.fixture
def users_payload() -> dict[str, Any]:
    """Users with passwords plus an unrelated meta.pass."""
    return {
        "users": [
            {"id": 1, "pass": "abc", "info": "keep"},
            {"id": 2, "pass": "xyz", "info": "keep"},
        ],
        "meta": {"pass": "no-match"},
    }


@pytest.fixture
def deep_payload() -> dict[str, Any]:
    """Object nested 15 levels deep under "nest"."""
    root: dict[str, Any] = {}
    current = root
    for _ in range(15):
        nxt: dict[str, Any] = {}
        current["nest"] = nxt
        current = nxt
    current["leaf"] = "data"
    return root


# =============================================================================
# Helper Fixtures
# =============================================================================

@pytest.fixture
def run_trim():
    """Factory fixture: trim a Python value through the text pipeline."""

    def _trim(data: Any, **config: Any) -> Any:
        trimmer = Trimmer(TrimConfig(**config))
        out = trimmer.trim(json.dumps(data))
        return json.loads(out)

    return _trim


def count_nests(value: Any) -> int:
    """Number of nested "nest" objects below value."""
    depth = 0
    while isinstance(value, dict) and isinstance(value.get("nest"), dict):
        depth += 1
        value = value["nest"]
    return depth
