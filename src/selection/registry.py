"""Name -> strategy registry used by the orchestrator and the CLI."""

from src.selection.base import SelectionStrategy
from src.selection.forest import RandomForestStrategy
from src.selection.lasso import LassoStrategy
from src.selection.stepwise import ForwardStepwiseStrategy


STRATEGY_REGISTRY: dict[str, type[SelectionStrategy]] = {
    ForwardStepwiseStrategy.name: ForwardStepwiseStrategy,
    LassoStrategy.name: LassoStrategy,
    RandomForestStrategy.name: RandomForestStrategy,
}


def get_strategy(name: str) -> SelectionStrategy:
    """Instantiate a registered strategy by name."""
    if name not in STRATEGY_REGISTRY:
        raise KeyError(
            f"Unknown strategy '{name}'. Available: {sorted(STRATEGY_REGISTRY)}"
        )
    return STRATEGY_REGISTRY[name]()
