from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Type
import os
import yaml

from redpen.errors import ConfigError
from redpen.store import RetryPolicy
from redpen.suggestions import Priority, SuggestionType

DEFAULT_PACK = Path(__file__).parent / "engine.yml"
CONFIG_ENV = "REDPEN_CONFIG"


class ConflictStrategy(str, Enum):
    PRIORITY = "priority"
    TIMESTAMP = "timestamp"
    TYPE = "type"


@dataclass
class AnchorConfig:
    offset_tolerance: int = 50
    context_window: int = 30


@dataclass
class CreationConfig:
    max_batch_size: int = 10
    max_concurrent: int = 4
    retention_days: int = 3


@dataclass
class ResolverConfig:
    max_context_length: int = 100
    enable_offset_validation: bool = True
    similarity_threshold: float = 0.8
    similarity_min_length: int = 20
    strategy: ConflictStrategy = ConflictStrategy.PRIORITY
    priority_weights: Dict[Priority, int] = field(default_factory=lambda: {
        Priority.LOW: 10, Priority.MEDIUM: 50, Priority.HIGH: 100,
    })
    type_weights: Dict[SuggestionType, int] = field(default_factory=lambda: {
        SuggestionType.SPELLING: 90, SuggestionType.GRAMMAR: 80, SuggestionType.FACT: 70,
        SuggestionType.BRAND: 60, SuggestionType.LLM: 50,
    })
    type_boosts: Dict[SuggestionType, int] = field(default_factory=lambda: {
        SuggestionType.SPELLING: 20, SuggestionType.GRAMMAR: 15, SuggestionType.FACT: 10,
        SuggestionType.BRAND: 5, SuggestionType.LLM: 0,
    })


@dataclass
class StoreConfig:
    page_size: int = 100
    retry: RetryPolicy = field(default_factory=RetryPolicy)


@dataclass
class MirrorConfig:
    enable_memoization: bool = True
    memoization_ttl: float = 1.0    # seconds
    batch_state_updates: bool = True
    batch_delay: float = 0.05       # seconds


@dataclass
class EngineConfig:
    """Built once and handed to every component that needs it."""
    anchor: AnchorConfig = field(default_factory=AnchorConfig)
    creation: CreationConfig = field(default_factory=CreationConfig)
    resolver: ResolverConfig = field(default_factory=ResolverConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    mirror: MirrorConfig = field(default_factory=MirrorConfig)


def load_rule_pack(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _enum_table(raw: Mapping[str, Any], enum_cls: Type[Enum], name: str) -> Dict[Any, int]:
    table: Dict[Any, int] = {}
    for key, value in (raw or {}).items():
        try:
            table[enum_cls(key)] = int(value)
        except (TypeError, ValueError):
            raise ConfigError(f"{name}: unknown key or non-integer weight {key!r}: {value!r}")
    missing = [m.value for m in enum_cls if m not in table]
    if missing:
        raise ConfigError(f"{name}: missing weights for {', '.join(missing)}")
    return table


def load_engine_config(rule_pack: Dict[str, Any]) -> EngineConfig:
    a = rule_pack.get("anchor", {}) or {}
    c = rule_pack.get("creation", {}) or {}
    r = rule_pack.get("resolver", {}) or {}
    s = rule_pack.get("store", {}) or {}
    m = rule_pack.get("mirror", {}) or {}
    defaults = ResolverConfig()

    try:
        strategy = ConflictStrategy(r.get("strategy", "priority"))
    except ValueError:
        raise ConfigError(f"resolver.strategy: unknown strategy {r.get('strategy')!r}")

    retry = s.get("retry", {}) or {}
    config = EngineConfig(
        anchor=AnchorConfig(
            offset_tolerance=int(a.get("offset_tolerance", 50)),
            context_window=int(a.get("context_window", 30)),
        ),
        creation=CreationConfig(
            max_batch_size=int(c.get("max_batch_size", 10)),
            max_concurrent=int(c.get("max_concurrent", 4)),
            retention_days=int(c.get("retention_days", 3)),
        ),
        resolver=ResolverConfig(
            max_context_length=int(r.get("max_context_length", 100)),
            enable_offset_validation=bool(r.get("enable_offset_validation", True)),
            similarity_threshold=float(r.get("similarity_threshold", 0.8)),
            similarity_min_length=int(r.get("similarity_min_length", 20)),
            strategy=strategy,
            priority_weights=(_enum_table(r["priority_weights"], Priority, "resolver.priority_weights")
                              if "priority_weights" in r else defaults.priority_weights),
            type_weights=(_enum_table(r["type_weights"], SuggestionType, "resolver.type_weights")
                          if "type_weights" in r else defaults.type_weights),
            type_boosts=(_enum_table(r["type_boosts"], SuggestionType, "resolver.type_boosts")
                         if "type_boosts" in r else defaults.type_boosts),
        ),
        store=StoreConfig(
            page_size=int(s.get("page_size", 100)),
            retry=RetryPolicy(
                max_attempts=int(retry.get("max_attempts", 3)),
                base_delay=float(retry.get("base_delay", 0.1)),
                max_delay=float(retry.get("max_delay", 2.0)),
            ),
        ),
        mirror=MirrorConfig(
            enable_memoization=bool(m.get("enable_memoization", True)),
            memoization_ttl=float(m.get("memoization_ttl", 1.0)),
            batch_state_updates=bool(m.get("batch_state_updates", True)),
            batch_delay=float(m.get("batch_delay", 0.05)),
        ),
    )
    _check(config)
    return config


def _check(config: EngineConfig) -> None:
    if config.anchor.offset_tolerance < 0 or config.anchor.context_window < 0:
        raise ConfigError("anchor: tolerance and context window must be >= 0")
    if config.creation.max_batch_size < 1:
        raise ConfigError("creation.max_batch_size must be >= 1")
    if config.creation.max_concurrent < 1:
        raise ConfigError("creation.max_concurrent must be >= 1")
    if config.store.retry.max_attempts < 1:
        raise ConfigError("store.retry.max_attempts must be >= 1")
    if not 0.0 <= config.resolver.similarity_threshold <= 1.0:
        raise ConfigError("resolver.similarity_threshold must be within [0, 1]")


def load_config(path: Optional[str] = None) -> EngineConfig:
    """Load an engine config from `path`, $REDPEN_CONFIG, or the bundled pack."""
    path = path or os.environ.get(CONFIG_ENV) or str(DEFAULT_PACK)
    return load_engine_config(load_rule_pack(path))
