"""Unit tests for the constant registry."""

import pytest

from shipwright.core.const_registry import CacheToken, ConstRegistry


@pytest.fixture
def registry():
    return ConstRegistry()


def test_register_value(registry):
    registry.register("build_root", "/builds")
    assert registry.get("build_root") == "/builds"
    assert registry.keys() == ["build_root"]


def test_register_decorator(registry):
    calls = []

    @registry.register("channel")
    def channel():
        calls.append(1)
        return "Beta"

    assert registry.get("channel") == "Beta"
    assert registry.get("channel") == "Beta"
    assert len(calls) == 2


def test_register_empty_key(registry):
    with pytest.raises(ValueError):
        registry.register("", "value")


def test_get_default(registry):
    assert registry.get("missing", "fallback") == "fallback"


def test_get_custom_none_key(registry):
    value, token = registry.get_custom(None, "default")
    assert value == "default"
    assert token.resolved
    assert not token.found


def test_get_custom_reuses_token(registry):
    registry.register("root", "/first")
    value, token = registry.get_custom("root")
    assert value == "/first"
    assert token.found

    registry.register("root", "/second")
    value, same = registry.get_custom("root", token=token)
    assert value == "/first"
    assert same is token

    value, fresh = registry.get_custom("root", token=CacheToken())
    assert value == "/second"


def test_get_custom_token_for_other_key(registry):
    registry.register("a", 1)
    registry.register("b", 2)
    _, token = registry.get_custom("a")
    value, token_b = registry.get_custom("b", token=token)
    assert value == 2
    assert token_b.key == "b"


def test_absent_key_token(registry):
    value, token = registry.get_custom("missing", 5)
    assert value == 5
    assert token.resolved
    registry.register("missing", 6)
    assert registry.get_custom("missing", 5, token)[0] == 5


def test_unregister(registry):
    registry.register("a", 1)
    registry.unregister("a")
    registry.unregister("a")
    assert registry.get("a") is None
