"""
Tests for removal strategies and total-size enforcement.

Run: pytest tests/test_strategies.py -v
"""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

# Add scripts to path
scripts_dir = Path(__file__).parent.parent / "scripts"
sys.path.insert(0, str(scripts_dir))

from trim_lib import (
    FIFO,
    MARKER,
    PrioritizeKeys,
    RemovalStrategy,
    RemoveLargest,
    StrategyName,
    TrimConfig,
    Trimmer,
    build_strategy,
    index_token,
    parse_index_token,
    serialized_size,
)

from conftest import FixedIndexStrategy


# =============================================================================
# UNIT TESTS: Tokens
# =============================================================================

class TestTokens:

    def test_round_trip(self):
        assert index_token(3) == "idx:3"
        assert parse_index_token("idx:3") == 3

    def test_not_an_index(self):
        assert parse_index_token("name") is None
        assert parse_index_token("idx:x") is None


# =============================================================================
# UNIT TESTS: Built-in Strategies
# =============================================================================

class TestRemoveLargest:

    def test_object(self):
        assert RemoveLargest().select_next_to_remove({"a": "x", "b": "xxxx", "c": 1}) == "b"

    def test_array(self):
        assert RemoveLargest().select_next_to_remove(["a", "bbbbbbbbbb", "c"]) == "idx:1"

    def test_tie_goes_to_first(self):
        assert RemoveLargest().select_next_to_remove({"z": "aa", "a": "bb"}) == "z"

    def test_one_level_only(self):
        # names the immediate child holding the bulk, never a grandchild
        data = {"wrap": {"huge": "x" * 100}, "mid": "y" * 50}
        assert RemoveLargest().select_next_to_remove(data) == "wrap"

    def test_picks_null_children(self):
        assert RemoveLargest().select_next_to_remove([None, None]) == "idx:0"

    @pytest.mark.parametrize("value", [{}, [], "s", 1, None, True])
    def test_no_candidate(self, value):
        assert RemoveLargest().select_next_to_remove(value) is None


class TestFIFO:

    def test_first_key_in_document_order(self):
        assert FIFO().select_next_to_remove({"b": 1, "a": 2}) == "b"

    def test_first_index(self):
        assert FIFO().select_next_to_remove([5, 6]) == "idx:0"

    @pytest.mark.parametrize("value", [{}, [], "s", 1.5])
    def test_no_candidate(self, value):
        assert FIFO().select_next_to_remove(value) is None


class TestPrioritizeKeys:

    def test_skips_keep_keys(self):
        strategy = PrioritizeKeys(["id", "name"])
        assert strategy.select_next_to_remove({"id": 1, "name": "n", "extra": 2}) == "extra"

    def test_falls_back_to_keep_keys(self):
        strategy = PrioritizeKeys(["id"])
        assert strategy.select_next_to_remove({"id": 1}) == "id"

    def test_custom_fallback(self):
        strategy = PrioritizeKeys(["big"], fallback=RemoveLargest())
        data = {"big": "x" * 100, "small": "y", "medium": "z" * 10}
        assert strategy.select_next_to_remove(data) == "medium"

    def test_empty_keep_keys_is_fallback(self):
        assert PrioritizeKeys().select_next_to_remove({"a": 1, "b": 2}) == "a"

    def test_array_uses_fallback(self):
        assert PrioritizeKeys(["id"]).select_next_to_remove([1, 2]) == "idx:0"


class TestBuildStrategy:

    def test_by_name(self):
        assert isinstance(build_strategy("fifo"), FIFO)
        assert isinstance(build_strategy(StrategyName.REMOVE_LARGEST), RemoveLargest)
        strategy = build_strategy("prioritize_keys", ["id"])
        assert isinstance(strategy, PrioritizeKeys)
        assert strategy.keep_keys == frozenset({"id"})

    def test_unknown_name(self):
        with pytest.raises(ValueError):
            build_strategy("random")


# =============================================================================
# UNIT TESTS: Total Enforcement
# =============================================================================

class TestEnforceTotal:

    def test_under_budget_unchanged(self):
        trimmer = Trimmer(TrimConfig(total_limit=100))
        data = {"a": 1}

        assert trimmer.enforce_total(data) == data

    def test_deletes_until_fits(self):
        trimmer = Trimmer(TrimConfig(total_limit=20, strategy=FIFO()))

        result = trimmer.enforce_total({"a": "x" * 10, "b": "y" * 10, "c": 1})

        assert result == {"c": 1}

    def test_marker_then_delete(self):
        trimmer = Trimmer(TrimConfig(total_limit=4, strategy=FIFO(), replace_with_marker=True))

        # a marker is swapped in first, then the marked entry itself goes
        assert trimmer.enforce_total(["x" * 20]) == []

    def test_marker_stays_when_enough(self):
        trimmer = Trimmer(TrimConfig(total_limit=30, replace_with_marker=True))

        assert trimmer.enforce_total(["x" * 40, "ok"]) == [MARKER, "ok"]

    def test_shift_preserves_order(self):
        trimmer = Trimmer(TrimConfig(total_limit=13, strategy=FixedIndexStrategy(1)))

        assert trimmer.enforce_total(["a", "bbbbbb", "c", "d"]) == ["a", "c", "d"]

    def test_scalar_root_stops(self):
        trimmer = Trimmer(TrimConfig(total_limit=3))

        assert trimmer.enforce_total("too long") == "too long"

    def test_does_not_mutate_input(self):
        trimmer = Trimmer(TrimConfig(total_limit=10))
        data = {"a": "x" * 20, "b": 1}

        trimmer.enforce_total(data)

        assert data == {"a": "x" * 20, "b": 1}

    def test_bogus_token_stops_loop(self):
        class Bogus(RemovalStrategy):
            def select_next_to_remove(self, container):
                return "missing"

        trimmer = Trimmer(TrimConfig(total_limit=5, strategy=Bogus()))

        assert trimmer.enforce_total({"a": "xxxxxxxx"}) == {"a": "xxxxxxxx"}

    def test_key_that_looks_like_index(self):
        trimmer = Trimmer(TrimConfig(total_limit=10, strategy=FIFO()))

        assert trimmer.enforce_total({"idx:0": "x" * 20, "b": 1}) == {"b": 1}

    def test_result_within_budget(self):
        trimmer = Trimmer(TrimConfig(total_limit=50))
        data = {"k%d" % i: "v" * i for i in range(20)}

        assert serialized_size(trimmer.enforce_total(data)) <= 50
