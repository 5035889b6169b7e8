#!/usr/bin/env python3
"""
Trimming library for JSON payloads.

Bounds the serialized size of a JSON value under two budgets while keeping
the result valid JSON:
- Path-based redaction with single-segment wildcards
- Depth-bounded per-field trimming with a cheap size prefilter
- Total-size enforcement driven by a pluggable removal strategy
- Per-call trim reporting
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Union

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_FIELD_LIMIT = 500
DEFAULT_TOTAL_LIMIT = 1024
DEFAULT_MAX_DEPTH = 10

MARKER = "[TRIMMED]"
WILDCARD = "*"
ELLIPSIS = "..."
TRUNCATE_RESERVE = 6  # room for the ellipsis and the quotes
INDEX_PREFIX = "idx:"

# Size estimator constants
NUMBER_ESTIMATE = 8
NULL_ESTIMATE = 4

JsonValue = Union[None, bool, int, float, str, dict, list]


class _Absent:
    """Sentinel for a value removed from the tree (distinct from JSON null)."""

    def __repr__(self) -> str:
        return "<absent>"

    def __bool__(self) -> bool:
        return False


ABSENT = _Absent()


# =============================================================================
# Errors
# =============================================================================

class TrimError(Exception):
    """Base class for trimming failures."""


class MalformedInputError(TrimError, ValueError):
    """Input text is not valid JSON."""


class CannotTrimError(TrimError):
    """The serialized output still exceeds the total limit."""

    def __init__(self, size: int, limit: int):
        super().__init__(f"cannot trim JSON below limits ({size} > {limit} bytes)")
        self.size = size
        self.limit = limit


# =============================================================================
# Serialization & Size Estimation
# =============================================================================

def _type_error(value: Any) -> TypeError:
    return TypeError(f"unsupported JSON value type: {type(value).__name__}")


def serialize(value: JsonValue) -> bytes:
    """Compact UTF-8 serialization used for every exact size measurement."""
    return json.dumps(
        value, separators=(",", ":"), ensure_ascii=False, allow_nan=False
    ).encode("utf-8")


def serialized_size(value: JsonValue) -> int:
    """Exact serialized byte length."""
    return len(serialize(value))


def estimate_size(value: JsonValue) -> int:
    """
    Approximate serialized byte length without serializing.

    Numbers cost a fixed constant and string escapes are ignored, so this is
    only ever used to decide whether an exact measurement is worth doing.
    """
    if value is None:
        return NULL_ESTIMATE
    if isinstance(value, bool):
        return 4 if value else 5
    if isinstance(value, (int, float)):
        return NUMBER_ESTIMATE
    if isinstance(value, str):
        return len(value.encode("utf-8")) + 2
    if isinstance(value, dict):
        size = 2  # {}
        for key, child in value.items():
            size += len(key.encode("utf-8")) + 3  # "key":
            size += estimate_size(child)
            size += 1  # comma
        return size
    if isinstance(value, list):
        size = 2  # []
        for child in value:
            size += estimate_size(child) + 1
        return size
    raise _type_error(value)


# =============================================================================
# Path Matching
# =============================================================================

def split_rule(pattern: str) -> tuple[str, ...]:
    """Split a dot-separated blacklist pattern into segments."""
    return tuple(pattern.split("."))


def matches(path: Iterable[str], rule: tuple[str, ...]) -> bool:
    """
    Exact-depth match: lengths must be equal and every rule segment must be
    the wildcard or equal to the path segment at the same position.
    """
    path = tuple(path)
    if len(path) != len(rule):
        return False
    return all(part == WILDCARD or part == seg for part, seg in zip(rule, path))


# =============================================================================
# Removal Strategies
# =============================================================================

def index_token(index: int) -> str:
    """Token naming an array element."""
    return f"{INDEX_PREFIX}{index}"


def parse_index_token(token: str) -> Optional[int]:
    """Return the index named by an ``idx:N`` token, or None."""
    if not token.startswith(INDEX_PREFIX):
        return None
    try:
        return int(token[len(INDEX_PREFIX):])
    except ValueError:
        return None


class RemovalStrategy:
    """
    Picks the next single child of a container to remove.

    ``select_next_to_remove`` returns an object key, ``"idx:N"`` for an array
    element, or None when the container has no further candidate. Scalars
    never produce a token.
    """

    def select_next_to_remove(self, container: JsonValue) -> Optional[str]:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class RemoveLargest(RemovalStrategy):
    """Largest immediate child by size estimate; earliest child wins ties."""

    def select_next_to_remove(self, container: JsonValue) -> Optional[str]:
        if isinstance(container, dict):
            best_key, best_size = None, -1
            for key, child in container.items():
                size = estimate_size(child)
                if size > best_size:
                    best_key, best_size = key, size
            return best_key
        if isinstance(container, list):
            best_idx, best_size = -1, -1
            for i, child in enumerate(container):
                size = estimate_size(child)
                if size > best_size:
                    best_idx, best_size = i, size
            if best_idx >= 0:
                return index_token(best_idx)
        return None


class FIFO(RemovalStrategy):
    """First key in document order, or array index 0."""

    def select_next_to_remove(self, container: JsonValue) -> Optional[str]:
        if isinstance(container, dict):
            return next(iter(container), None)
        if isinstance(container, list) and container:
            return index_token(0)
        return None


class PrioritizeKeys(RemovalStrategy):
    """
    Remove everything outside ``keep_keys`` first, using ``fallback`` to
    order the candidates. Keep-keys are a soft preference: once only they
    remain, the fallback picks among them too.
    """

    def __init__(
        self,
        keep_keys: Iterable[str] = (),
        fallback: Optional[RemovalStrategy] = None,
    ):
        self.keep_keys = frozenset(keep_keys)
        self.fallback = fallback if fallback is not None else FIFO()

    def select_next_to_remove(self, container: JsonValue) -> Optional[str]:
        if not self.keep_keys or not isinstance(container, dict):
            return self.fallback.select_next_to_remove(container)

        candidates = {k: v for k, v in container.items() if k not in self.keep_keys}
        if candidates:
            return self.fallback.select_next_to_remove(candidates)
        return self.fallback.select_next_to_remove(container)

    def __repr__(self) -> str:
        return f"PrioritizeKeys(keep_keys={sorted(self.keep_keys)!r}, fallback={self.fallback!r})"


class StrategyName(Enum):
    """Built-in strategies selectable by name."""
    REMOVE_LARGEST = "remove_largest"
    FIFO = "fifo"
    PRIORITIZE_KEYS = "prioritize_keys"


def build_strategy(
    name: Union[str, StrategyName],
    keep_keys: Iterable[str] = (),
) -> RemovalStrategy:
    """Construct a built-in strategy from its name."""
    name = StrategyName(name)
    if name is StrategyName.FIFO:
        return FIFO()
    if name is StrategyName.PRIORITIZE_KEYS:
        return PrioritizeKeys(keep_keys)
    return RemoveLargest()


# =============================================================================
# Configuration
# =============================================================================

def _identity_pre(value: JsonValue) -> JsonValue:
    return value


def _identity_post(value: JsonValue, error: Optional[TrimError]) -> JsonValue:
    return value


@dataclass(frozen=True)
class Hooks:
    """
    Single-shot transforms around the size stages.

    ``pre_trim`` runs after blacklist stripping, before field trimming.
    ``post_trim`` runs after total enforcement and receives the current
    over-budget error (or None); the final size check runs after it.
    """
    pre_trim: Callable[[JsonValue], JsonValue] = _identity_pre
    post_trim: Callable[[JsonValue, Optional[TrimError]], JsonValue] = _identity_post


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes")


def _parse_list(value: str) -> tuple[str, ...]:
    return tuple(s.strip() for s in value.split(",") if s.strip())


@dataclass(frozen=True)
class TrimConfig:
    """Configuration for trimming behavior."""

    field_limit: int = DEFAULT_FIELD_LIMIT
    total_limit: int = DEFAULT_TOTAL_LIMIT
    blacklist: tuple[str, ...] = ()
    strategy: RemovalStrategy = field(default_factory=RemoveLargest)
    max_depth: int = DEFAULT_MAX_DEPTH
    truncate_strings: bool = False
    replace_with_marker: bool = False
    hooks: Hooks = field(default_factory=Hooks)
    repair_input: bool = False

    def __post_init__(self) -> None:
        if self.field_limit <= 0:
            raise ValueError(f"field_limit must be positive, got {self.field_limit}")
        if self.total_limit <= 0:
            raise ValueError(f"total_limit must be positive, got {self.total_limit}")
        if self.max_depth < 0:
            raise ValueError(f"max_depth must be non-negative, got {self.max_depth}")
        if isinstance(self.blacklist, str):
            raise ValueError("blacklist must be a sequence of patterns, not a string")
        # Freeze whatever sequence the caller passed.
        object.__setattr__(self, "blacklist", tuple(self.blacklist))

    @classmethod
    def from_env(cls, env: Optional[dict[str, str]] = None) -> "TrimConfig":
        """Create config from JSONTRIM_* environment variables."""
        env = env if env is not None else os.environ

        strategy_name = env.get("JSONTRIM_STRATEGY", StrategyName.REMOVE_LARGEST.value)
        keep_keys = _parse_list(env.get("JSONTRIM_KEEP_KEYS", ""))
        try:
            strategy = build_strategy(strategy_name.strip().lower(), keep_keys)
        except ValueError:
            logger.warning("unknown strategy %r, using remove_largest", strategy_name)
            strategy = RemoveLargest()

        return cls(
            field_limit=int(env.get("JSONTRIM_FIELD_LIMIT", DEFAULT_FIELD_LIMIT)),
            total_limit=int(env.get("JSONTRIM_TOTAL_LIMIT", DEFAULT_TOTAL_LIMIT)),
            blacklist=_parse_list(env.get("JSONTRIM_BLACKLIST", "")),
            strategy=strategy,
            max_depth=int(env.get("JSONTRIM_MAX_DEPTH", DEFAULT_MAX_DEPTH)),
            truncate_strings=_parse_bool(env.get("JSONTRIM_TRUNCATE_STRINGS", "0")),
            replace_with_marker=_parse_bool(env.get("JSONTRIM_REPLACE_WITH_MARKER", "0")),
            repair_input=_parse_bool(env.get("JSONTRIM_REPAIR", "0")),
        )


# =============================================================================
# Reporting
# =============================================================================

def _new_counters() -> dict[str, int]:
    return {
        "paths_redacted": 0,
        "strings_truncated": 0,
        "fields_dropped": 0,
        "fields_marked": 0,
        "depth_collapsed": 0,
        "items_removed": 0,
    }


@dataclass
class TrimReport:
    """Summary of what a single trim call changed."""
    timestamp: datetime
    original_bytes: int
    trimmed_bytes: int
    total_limit: int
    counters: dict[str, int]

    @property
    def within_budget(self) -> bool:
        return self.trimmed_bytes <= self.total_limit

    @property
    def reduction_percent(self) -> float:
        if self.original_bytes == 0:
            return 0.0
        return (self.original_bytes - self.trimmed_bytes) / self.original_bytes * 100

    def to_summary_line(self) -> str:
        changes = ", ".join(f"{k}={v}" for k, v in self.counters.items() if v)
        return (
            f"{self.original_bytes} -> {self.trimmed_bytes} bytes "
            f"(-{self.reduction_percent:.0f}%, limit {self.total_limit})"
            + (f"; {changes}" if changes else "")
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "bytes": {
                "original": self.original_bytes,
                "trimmed": self.trimmed_bytes,
                "limit": self.total_limit,
                "reduction_percent": round(self.reduction_percent, 2),
                "within_budget": self.within_budget,
            },
            "counters": dict(self.counters),
        }


# =============================================================================
# Parsing
# =============================================================================

def _reject_constant(name: str) -> Any:
    raise ValueError(f"non-standard JSON constant: {name}")


def parse_json(raw: Union[bytes, str], repair: bool = False) -> JsonValue:
    """
    Decode JSON text.

    With ``repair`` set, malformed text gets one pass through json_repair
    before the call gives up.
    """
    try:
        text = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw
    except UnicodeDecodeError as e:
        raise MalformedInputError(f"input is not UTF-8: {e}") from e

    try:
        return json.loads(text, parse_constant=_reject_constant)
    except RecursionError as e:
        raise MalformedInputError("JSON input is nested too deeply to decode") from e
    except ValueError as e:
        if not repair:
            raise MalformedInputError(f"malformed JSON input: {e}") from e
        error = e

    from json_repair import repair_json

    logger.debug("strict parse failed (%s), attempting repair", error)
    try:
        repaired = repair_json(text, return_objects=True)
    except RecursionError as e:
        raise MalformedInputError("JSON input is nested too deeply to decode") from e
    # json_repair answers unrecoverable text with an empty string
    if repaired == "":
        raise MalformedInputError(f"malformed JSON input: {error}") from error
    return repaired


# =============================================================================
# Trimmer
# =============================================================================

class Trimmer:
    """
    Applies blacklist stripping, field trimming and total enforcement.

    The config and pre-split rules are never mutated after construction, so
    one Trimmer can be shared by concurrent callers as long as its hooks can.
    """

    def __init__(self, config: Optional[TrimConfig] = None):
        self.config = config if config is not None else TrimConfig()
        self._rules: tuple[tuple[str, ...], ...] = tuple(
            split_rule(p) for p in self.config.blacklist
        )
        self._max_rule_len = max((len(r) for r in self._rules), default=0)

    # -- redaction helper ----------------------------------------------------

    def _redacted(self) -> Any:
        return MARKER if self.config.replace_with_marker else ABSENT

    # -- path matching -------------------------------------------------------

    def matches_any(self, path: Iterable[str]) -> bool:
        path = tuple(path)
        if not path:
            return False
        return any(matches(path, rule) for rule in self._rules)

    # -- blacklist stripping -------------------------------------------------

    def strip_blacklisted(
        self, value: JsonValue, counters: Optional[dict[str, int]] = None
    ) -> Any:
        """Remove or redact every subtree whose path matches a rule."""
        if not self._rules:
            return value
        if counters is None:
            counters = _new_counters()
        return self._strip(value, (), counters)

    def _strip(self, value: JsonValue, path: tuple[str, ...], counters: dict[str, int]) -> Any:
        if self.matches_any(path):
            counters["paths_redacted"] += 1
            logger.debug("redacting %s", ".".join(path))
            return self._redacted()
        # nothing deeper than the longest rule can match
        if len(path) >= self._max_rule_len:
            return value

        if isinstance(value, dict):
            out = {}
            for key, child in value.items():
                stripped = self._strip(child, path + (key,), counters)
                if stripped is not ABSENT:
                    out[key] = stripped
            if value and not out:
                return ABSENT
            return out
        if isinstance(value, list):
            items = []
            for i, child in enumerate(value):
                stripped = self._strip(child, path + (str(i),), counters)
                if stripped is not ABSENT:
                    items.append(stripped)
            if value and not items:
                return ABSENT
            return items
        if value is None or isinstance(value, (bool, int, float, str)):
            return value
        raise _type_error(value)

    # -- field trimming ------------------------------------------------------

    def trim_fields(
        self,
        value: JsonValue,
        depth: int = 0,
        counters: Optional[dict[str, int]] = None,
    ) -> Any:
        """
        Bound every field's serialized size to field_limit.

        The root is depth 0 and each level below adds one, so max_depth is the
        number of levels kept below the root. Anything deeper collapses to
        the marker or is dropped, without being visited.
        """
        if counters is None:
            counters = _new_counters()
        cfg = self.config

        if depth > cfg.max_depth:
            counters["depth_collapsed"] += 1
            return self._redacted()

        if isinstance(value, dict):
            out = {}
            for key, child in value.items():
                kept = self._bounded_child(child, depth, counters)
                if kept is not ABSENT:
                    out[key] = kept
            return out
        if isinstance(value, list):
            items = []
            for child in value:
                kept = self._bounded_child(child, depth, counters)
                if kept is not ABSENT:
                    items.append(kept)
            return items
        if isinstance(value, str):
            return self._trim_string(value, counters)
        if value is None or isinstance(value, (bool, int, float)):
            return value
        raise _type_error(value)

    def _bounded_child(self, child: JsonValue, depth: int, counters: dict[str, int]) -> Any:
        trimmed = self.trim_fields(child, depth + 1, counters)
        if trimmed is ABSENT:
            return ABSENT
        # null, bools and numbers are never size-checked
        if not isinstance(trimmed, (str, dict, list)):
            return trimmed
        limit = self.config.field_limit
        if estimate_size(trimmed) > limit and serialized_size(trimmed) > limit:
            if self.config.replace_with_marker:
                counters["fields_marked"] += 1
                return MARKER
            counters["fields_dropped"] += 1
            return ABSENT
        return trimmed

    def _trim_string(self, value: str, counters: dict[str, int]) -> Any:
        cfg = self.config
        encoded = value.encode("utf-8")
        if len(encoded) <= cfg.field_limit:
            # escapes can still push the serialized form over the limit
            if serialized_size(value) <= cfg.field_limit:
                return value
        else:
            keep = cfg.field_limit - TRUNCATE_RESERVE
            if cfg.truncate_strings and keep > 0:
                truncated = encoded[:keep].decode("utf-8", errors="ignore") + ELLIPSIS
                if serialized_size(truncated) <= cfg.field_limit:
                    counters["strings_truncated"] += 1
                    return truncated

        if cfg.replace_with_marker:
            counters["fields_marked"] += 1
        else:
            counters["fields_dropped"] += 1
        return self._redacted()

    # -- total enforcement ---------------------------------------------------

    def enforce_total(
        self, value: JsonValue, counters: Optional[dict[str, int]] = None
    ) -> JsonValue:
        """Remove children picked by the strategy until under total_limit."""
        if counters is None:
            counters = _new_counters()
        cfg = self.config

        # Rebuild the root so the caller's tree is never mutated.
        if isinstance(value, dict):
            value = dict(value)
        elif isinstance(value, list):
            value = list(value)

        while True:
            size = serialized_size(value)
            if size <= cfg.total_limit:
                return value

            token = cfg.strategy.select_next_to_remove(value)
            if token is None or not self._remove(value, token):
                logger.warning(
                    "no removal candidate left at %d bytes (limit %d)", size, cfg.total_limit
                )
                return value
            counters["items_removed"] += 1

    def _remove(self, container: JsonValue, token: str) -> bool:
        """Apply one removal. Returns False if the token names nothing."""
        use_marker = self.config.replace_with_marker

        if isinstance(container, dict):
            if token not in container:
                return False
            if use_marker and container[token] != MARKER:
                container[token] = MARKER
            else:
                del container[token]
            return True

        if isinstance(container, list):
            idx = parse_index_token(token)
            if idx is None or not 0 <= idx < len(container):
                return False
            if use_marker and container[idx] != MARKER:
                container[idx] = MARKER
            else:
                del container[idx]  # later elements shift left
            return True

        return False

    # -- pipeline ------------------------------------------------------------

    def _run(self, value: JsonValue, counters: dict[str, int]) -> bytes:
        cfg = self.config

        value = self.strip_blacklisted(value, counters)
        if value is ABSENT:
            value = None

        value = cfg.hooks.pre_trim(value)

        value = self.trim_fields(value, 0, counters)
        if value is ABSENT:
            value = None

        value = self.enforce_total(value, counters)

        size = serialized_size(value)
        error = CannotTrimError(size, cfg.total_limit) if size > cfg.total_limit else None
        value = cfg.hooks.post_trim(value, error)

        out = serialize(value)
        if len(out) > cfg.total_limit:
            raise CannotTrimError(len(out), cfg.total_limit)
        return out

    def trim(self, raw: Union[bytes, str]) -> bytes:
        """
        Trim JSON text to the configured budgets.

        Raises:
            MalformedInputError: If the input is not valid JSON.
            CannotTrimError: If the output cannot be brought under total_limit.
        """
        value = parse_json(raw, repair=self.config.repair_input)
        return self._run(value, _new_counters())

    def trim_value(self, value: JsonValue) -> JsonValue:
        """Trim an already-decoded value; returns the decoded result."""
        return json.loads(self._run(value, _new_counters()))

    def trim_with_report(self, raw: Union[bytes, str]) -> tuple[bytes, TrimReport]:
        """Like trim(), also returning counters for what was changed."""
        timestamp = datetime.now()
        value = parse_json(raw, repair=self.config.repair_input)
        original_bytes = len(raw.encode("utf-8") if isinstance(raw, str) else raw)
        counters = _new_counters()
        out = self._run(value, counters)
        report = TrimReport(
            timestamp=timestamp,
            original_bytes=original_bytes,
            trimmed_bytes=len(out),
            total_limit=self.config.total_limit,
            counters=counters,
        )
        return out, report


def trim(raw: Union[bytes, str], config: Optional[TrimConfig] = None) -> bytes:
    """Trim JSON text with a one-off Trimmer."""
    return Trimmer(config).trim(raw)
