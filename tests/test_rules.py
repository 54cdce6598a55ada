import pytest

from redpen.errors import ConfigError
from redpen.rules.load_rules import (
    ConflictStrategy,
    load_config,
    load_engine_config,
    load_rule_pack,
    DEFAULT_PACK,
)
from redpen.suggestions import Priority, SuggestionType


def test_bundled_pack_loads():
    config = load_config(str(DEFAULT_PACK))
    assert config.anchor.offset_tolerance == 50
    assert config.anchor.context_window == 30
    assert config.creation.max_batch_size == 10
    assert config.creation.retention_days == 3
    assert config.resolver.strategy == ConflictStrategy.PRIORITY
    assert config.resolver.priority_weights[Priority.HIGH] == 100
    assert config.resolver.type_weights[SuggestionType.SPELLING] == 90
    assert config.resolver.type_boosts[SuggestionType.LLM] == 0
    assert config.store.retry.max_attempts == 3


def test_env_var_selects_pack(tmp_path, monkeypatch):
    pack = tmp_path / "engine.yml"
    pack.write_text("resolver:\n  strategy: type\ncreation:\n  max_batch_size: 4\n", encoding="utf-8")
    monkeypatch.setenv("REDPEN_CONFIG", str(pack))
    config = load_config()
    assert config.resolver.strategy == ConflictStrategy.TYPE
    assert config.creation.max_batch_size == 4
    # untouched sections keep their defaults
    assert config.resolver.type_weights[SuggestionType.BRAND] == 60


def test_weight_tables_must_be_exhaustive():
    pack = load_rule_pack(str(DEFAULT_PACK))
    del pack["resolver"]["type_weights"]["fact"]
    with pytest.raises(ConfigError, match="fact"):
        load_engine_config(pack)


def test_unknown_weight_key_is_rejected():
    pack = load_rule_pack(str(DEFAULT_PACK))
    pack["resolver"]["priority_weights"]["urgent"] = 500
    with pytest.raises(ConfigError):
        load_engine_config(pack)


def test_unknown_strategy_is_rejected():
    with pytest.raises(ConfigError):
        load_engine_config({"resolver": {"strategy": "alphabetical"}})


def test_bounds_are_checked():
    with pytest.raises(ConfigError):
        load_engine_config({"creation": {"max_batch_size": 0}})
    with pytest.raises(ConfigError):
        load_engine_config({"resolver": {"similarity_threshold": 1.5}})


def test_empty_pack_gives_defaults():
    config = load_engine_config({})
    assert config.mirror.batch_state_updates is True
    assert config.store.page_size == 100


def test_null_weight_is_a_config_error():
    pack = load_rule_pack(str(DEFAULT_PACK))
    pack["resolver"]["priority_weights"]["low"] = None
    with pytest.raises(ConfigError, match="low"):
        load_engine_config(pack)
