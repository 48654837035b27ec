"""Exception types raised by hybridflow."""

from __future__ import annotations

from typing import Hashable, Optional


class StructuralError(ValueError):
    """A factor or conditional was built with inconsistent structure.

    Raised at construction, e.g. when a mixture component's continuous keys do
    not match the mixture's declared continuous keys, or when the number of
    leaves does not match the product of the discrete cardinalities.
    """


class OrderingError(ValueError):
    """An elimination ordering cannot be used on a factor graph.

    Raised before any numeric work: duplicate or unknown keys, an incomplete
    ordering for a full elimination, or a discrete key scheduled while a
    continuous key it depends on is still un-eliminated.
    """


class IndeterminantLinearSystemError(ArithmeticError):
    """A Gaussian system is singular in the direction of *key*."""

    def __init__(self, key: Optional[Hashable] = None) -> None:
        self.key = key
        if key is None:
            message = "Indeterminant linear system"
        else:
            message = (
                f"Indeterminant linear system detected while eliminating "
                f"variable {key!r}"
            )
        super().__init__(message)
