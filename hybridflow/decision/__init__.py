"""Decision trees indexed by discrete assignments."""

from .tree import DecisionTree

__all__ = ["DecisionTree"]
