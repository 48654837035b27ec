"""Context manager holding elimination settings."""

from dataclasses import dataclass, replace
from typing import List, Optional

_DISCRETE_MODES = ("max", "sum")


@dataclass(frozen=True)
class EliminationSettings:
    """Numerical and strategy settings used during elimination.

    Attributes:
        rank_tolerance: Relative threshold on the diagonal of the triangular
            factor below which a Gaussian system is declared singular.
        discrete_elimination: ``"max"`` (most probable explanation, keeps the
            raw product as a lookup table) or ``"sum"`` (marginalisation into
            normalised conditionals).
    """

    rank_tolerance: float = 1e-9
    discrete_elimination: str = "max"

    def __post_init__(self) -> None:
        if self.rank_tolerance < 0:
            raise ValueError("rank_tolerance must be non-negative")
        if self.discrete_elimination not in _DISCRETE_MODES:
            raise ValueError(
                f"discrete_elimination must be one of {_DISCRETE_MODES}, "
                f"got {self.discrete_elimination!r}"
            )


class HybridFlow:
    """Context manager scoping :class:`EliminationSettings`.

    Example:
        >>> with HybridFlow(discrete_elimination="sum"):
        ...     bayes_net = graph.eliminate_sequential(ordering)
    """

    _active_context: Optional['HybridFlow'] = None
    _defaults = EliminationSettings()

    def __init__(self, **overrides):
        """Initialize a new context.

        Args:
            **overrides: Fields of :class:`EliminationSettings` to change
                relative to the enclosing context (or the defaults).
        """
        self.overrides = dict(overrides)
        self.settings_stack: List[EliminationSettings] = []
        self._parent_context: Optional['HybridFlow'] = None

    def __enter__(self) -> 'HybridFlow':
        """Enter the context.

        Returns:
            The context manager instance.
        """
        base = HybridFlow.settings()
        self.settings_stack.append(replace(base, **self.overrides))
        self._parent_context = HybridFlow._active_context
        HybridFlow._active_context = self
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        """Exit the context, restoring the enclosing settings.

        Returns:
            False to propagate any exceptions.
        """
        HybridFlow._active_context = self._parent_context
        self.settings_stack.pop()
        return False

    @property
    def current(self) -> EliminationSettings:
        """Settings in effect inside this context."""
        return self.settings_stack[-1]

    @classmethod
    def settings(cls) -> EliminationSettings:
        """Return the active settings, or the defaults outside any context."""
        if cls._active_context is None:
            return cls._defaults
        return cls._active_context.current

    @classmethod
    def get_active_context(cls) -> Optional['HybridFlow']:
        """Get the currently active context, or None."""
        return cls._active_context

    @classmethod
    def is_active(cls) -> bool:
        """Check if a context is currently active."""
        return cls._active_context is not None
