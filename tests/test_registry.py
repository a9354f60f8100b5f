"""Tests for the strategy registry."""

import pytest

from chain_allocator.core.models import Role
from chain_allocator.core.registry import StrategyRegistry


@pytest.fixture
def isolated_registry():
    """Snapshot and restore the registry around a test."""
    saved = dict(StrategyRegistry._strategies)
    yield StrategyRegistry
    StrategyRegistry._strategies.clear()
    StrategyRegistry._strategies.update(saved)


def test_strategy_registration():
    """Test that strategies auto-register on import."""
    # Import triggers registration
    from chain_allocator.loop import strategies  # noqa: F401

    registered = StrategyRegistry.list_strategies()

    assert "rebalance" in registered
    assert "yield_rotation" in registered
    assert "arbitrage" in registered


def test_get_strategy():
    """Test retrieving a strategy by name."""
    from chain_allocator.loop import strategies  # noqa: F401

    strategy_class = StrategyRegistry.get_strategy("arbitrage")
    assert strategy_class is not None
    assert strategy_class.role == Role.ARBITRAGE_HUNTER

    # Non-existent strategy
    assert StrategyRegistry.get_strategy("nonexistent") is None


def test_register_requires_name_and_role(isolated_registry):
    """Test that incomplete strategies are rejected."""

    class Nameless:
        role = Role.RISK_SENTINEL

    with pytest.raises(ValueError, match="must define"):
        isolated_registry.register(Nameless)


def test_register_custom_strategy(isolated_registry):
    """Test registering and clearing a custom strategy."""

    @isolated_registry.register
    class Sentinel:
        name = "sentinel"
        role = Role.RISK_SENTINEL

    assert isolated_registry.get_strategy("sentinel") is Sentinel
    assert Sentinel in isolated_registry.get_all_strategies()

    isolated_registry.clear()
    assert isolated_registry.list_strategies() == []
