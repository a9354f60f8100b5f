"""Decision strategy registry with auto-registration pattern."""

from typing import Any, Protocol

from chain_allocator.core.models import ProposedAction, Role


class StrategyInterface(Protocol):
    """
    Interface that all decision strategies must implement.

    Attributes
    ----------
    name : str
        Unique strategy identifier (e.g., 'arbitrage', 'yield_rotation')
    role : Role
        Computation role the strategy runs for

    Methods
    -------
    monitor()
        Pull the fresh state the strategy needs
    decide(state)
        Turn that state into proposals that pass the numeric gate

    """

    name: str
    role: Role

    async def monitor(self) -> Any:
        """
        Pull fresh state for this role.

        Returns
        -------
        Any
            Strategy-specific state (snapshot, price points, pools)

        """
        ...

    def decide(self, state: Any) -> list[ProposedAction]:
        """
        Score state against fixed thresholds.

        Parameters
        ----------
        state : Any
            Output of ``monitor``

        Returns
        -------
        list[ProposedAction]
            Proposals that passed the gate, best first

        """
        ...


class StrategyRegistry:
    """
    Registry for decision strategies with auto-registration.

    Strategies register themselves using the @StrategyRegistry.register decorator.
    Decision loops then look strategies up by name or by role.

    """

    _strategies: dict[str, type] = {}

    @classmethod
    def register(cls, strategy_class: type) -> type:
        """
        Decorator to register a strategy.

        Parameters
        ----------
        strategy_class : type
            Strategy class to register

        Returns
        -------
        type
            The strategy class (for decorator chaining)

        Examples
        --------
        >>> @StrategyRegistry.register
        ... class ArbitrageStrategy:
        ...     name = "arbitrage"
        ...     role = Role.ARBITRAGE_HUNTER

        """
        if not hasattr(strategy_class, "name") or not hasattr(strategy_class, "role"):
            msg = f"Strategy {strategy_class.__name__} must define 'name' and 'role' attributes"
            raise ValueError(msg)

        cls._strategies[strategy_class.name] = strategy_class
        return strategy_class

    @classmethod
    def get_strategy(cls, name: str) -> type | None:
        """
        Get strategy class by name.

        Parameters
        ----------
        name : str
            Strategy identifier

        Returns
        -------
        type | None
            Strategy class or None if not found

        """
        return cls._strategies.get(name)

    @classmethod
    def get_all_strategies(cls) -> list[type]:
        return list(cls._strategies.values())

    @classmethod
    def clear(cls) -> None:
        """Clear all registered strategies (useful for testing)."""
        cls._strategies.clear()

    @classmethod
    def list_strategies(cls) -> list[str]:
        return list(cls._strategies.keys())
