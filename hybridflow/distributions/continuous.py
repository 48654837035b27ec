"""Dense Gaussian factors, conditionals and QR elimination.

Provides:

* :class:`JacobianFactor` - a whitened linear measurement
  ``0.5 * ||sum_j A_j x_j - b||^2``.
* :class:`GaussianConditional` - ``p(frontals | parents)`` stored as
  ``R x_f + S x_p = d`` with ``R`` upper triangular.
* :func:`eliminate_qr` - eliminate frontal keys from a set of factors by a
  QR factorisation of the stacked augmented matrix.
* :class:`GaussianFactorGraph` / :class:`GaussianBayesNet` - ordered
  containers with sequential elimination and back-substitution.

Continuous values are passed as ``{key: numpy.ndarray}`` dictionaries.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np
import scipy.linalg

from hybridflow.core.errors import IndeterminantLinearSystemError, StructuralError

logger = logging.getLogger(__name__)

Values = Dict[Any, np.ndarray]

_LOG_2PI = math.log(2.0 * math.pi)


def _as_matrix(a) -> np.ndarray:
    return np.atleast_2d(np.asarray(a, dtype=np.float64))


# ------------------------------------------------------------------ #
#  JacobianFactor
# ------------------------------------------------------------------ #

class JacobianFactor:
    """A linear-Gaussian factor ``0.5 * ||sum_j A_j x_j - b||^2``.

    Parameters
    ----------
    terms : sequence of (key, matrix) pairs
        One block per variable; every block has ``len(b)`` rows.
    b : array_like
        Right-hand side.
    sigmas : float or array_like, optional
        Measurement standard deviations.  When given, every row of the
        blocks and of ``b`` is divided by its sigma, so the stored factor is
        whitened.

    Example
    -------
    >>> prior = JacobianFactor([("x1", [[1.0]])], [0.0], sigmas=0.1)
    >>> prior.error({"x1": np.array([0.1])})
    0.5
    """

    def __init__(
        self,
        terms: Sequence[Tuple[Any, Any]],
        b: Any,
        sigmas: Optional[Union[float, Sequence[float]]] = None,
    ) -> None:
        b = np.atleast_1d(np.asarray(b, dtype=np.float64)).copy()
        rows = b.shape[0]
        blocks: Dict[Any, np.ndarray] = {}
        for key, a in terms:
            if key in blocks:
                raise StructuralError(f"Key {key!r} appears twice in factor")
            a = _as_matrix(a)
            if rows == 0 and a.size == 0:
                a = a.reshape(0, a.shape[-1])
            if a.shape[0] != rows:
                raise StructuralError(
                    f"Block of {key!r} has {a.shape[0]} rows, expected {rows}"
                )
            blocks[key] = a.copy()
        if sigmas is not None:
            weights = 1.0 / np.broadcast_to(
                np.asarray(sigmas, dtype=np.float64), (rows,))
            b = b * weights
            for key in blocks:
                blocks[key] = blocks[key] * weights[:, None]
        self._blocks = blocks
        self._b = b

    # ----- structure ------------------------------------------------------

    @property
    def keys(self) -> List[Any]:
        """Continuous keys, in term order."""
        return list(self._blocks)

    @property
    def rows(self) -> int:
        return self._b.shape[0]

    @property
    def b(self) -> np.ndarray:
        return self._b

    def A(self, key: Any) -> np.ndarray:
        """Block of *key*; raises ``KeyError`` if the factor does not touch it."""
        try:
            return self._blocks[key]
        except KeyError:
            raise KeyError(f"Key {key!r} not in factor {self.keys}") from None

    def dim(self, key: Any) -> int:
        return self.A(key).shape[1]

    def terms(self) -> List[Tuple[Any, np.ndarray]]:
        return list(self._blocks.items())

    def empty(self) -> bool:
        return not self._blocks

    # ----- evaluation -----------------------------------------------------

    def unwhitened_error(self, values: Values) -> np.ndarray:
        """Residual vector ``sum_j A_j x_j - b``."""
        residual = -self._b.copy()
        for key, a in self._blocks.items():
            if key not in values:
                raise KeyError(f"No value given for continuous key {key!r}")
            residual = residual + a @ np.atleast_1d(values[key])
        return residual

    def error(self, values: Values) -> float:
        """``0.5 * ||A x - b||^2``."""
        residual = self.unwhitened_error(values)
        return 0.5 * float(residual @ residual)

    def equals(self, other: 'JacobianFactor', tol: float = 1e-9) -> bool:
        if self.keys != other.keys or self.rows != other.rows:
            return False
        if not np.allclose(self._b, other._b, atol=tol):
            return False
        return all(
            np.allclose(a, other._blocks[k], atol=tol)
            for k, a in self._blocks.items()
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(keys={self.keys}, rows={self.rows})"


# ------------------------------------------------------------------ #
#  GaussianConditional
# ------------------------------------------------------------------ #

class GaussianConditional(JacobianFactor):
    """``p(x_f | x_p)`` proportional to ``exp(-0.5 * ||R x_f + S x_p - d||^2)``.

    The first *nr_frontals* terms are the frontal blocks; stacked
    horizontally they form the square, upper-triangular ``R``.
    """

    def __init__(
        self,
        terms: Sequence[Tuple[Any, Any]],
        nr_frontals: int,
        d: Any,
        sigmas: Optional[Union[float, Sequence[float]]] = None,
    ) -> None:
        super().__init__(terms, d, sigmas)
        if not 0 < nr_frontals <= len(self._blocks):
            raise StructuralError(
                f"nr_frontals must be in [1, {len(self._blocks)}], "
                f"got {nr_frontals}"
            )
        self._nr_frontals = nr_frontals
        r = self.R
        if r.shape[0] != r.shape[1]:
            raise StructuralError(
                f"R must be square, got shape {r.shape} for frontals "
                f"{self.frontals}"
            )

    @classmethod
    def from_mean_and_stddev(
        cls, key: Any, mean: Any, sigma: float
    ) -> 'GaussianConditional':
        """Prior ``N(mean, sigma^2 I)`` on a single key."""
        mean = np.atleast_1d(np.asarray(mean, dtype=np.float64))
        return cls([(key, np.eye(mean.shape[0]))], 1, mean, sigmas=sigma)

    @property
    def nr_frontals(self) -> int:
        return self._nr_frontals

    @property
    def frontals(self) -> List[Any]:
        return self.keys[:self._nr_frontals]

    @property
    def parents(self) -> List[Any]:
        return self.keys[self._nr_frontals:]

    @property
    def R(self) -> np.ndarray:
        return np.hstack([self._blocks[k] for k in self.frontals])

    def S(self, key: Any) -> np.ndarray:
        if key not in self.parents:
            raise KeyError(f"Key {key!r} is not a parent of {self.frontals}")
        return self._blocks[key]

    @property
    def d(self) -> np.ndarray:
        return self._b

    def solve(self, parent_values: Values) -> Values:
        """Frontal values given the parents: ``R^-1 (d - S x_p)``."""
        rhs = self._b.copy()
        for key in self.parents:
            if key not in parent_values:
                raise KeyError(f"No value given for parent key {key!r}")
            rhs = rhs - self._blocks[key] @ np.atleast_1d(parent_values[key])
        x = scipy.linalg.solve_triangular(self.R, rhs, lower=False)
        result: Values = {}
        offset = 0
        for key in self.frontals:
            dim = self._blocks[key].shape[1]
            result[key] = x[offset:offset + dim]
            offset += dim
        return result

    def log_normalization_constant(self) -> float:
        """``log`` of the density normaliser, ``|R| / (2 pi)^(n/2)``."""
        diag = np.abs(np.diag(self.R))
        return float(np.sum(np.log(diag))) - 0.5 * diag.shape[0] * _LOG_2PI

    def log_probability(self, values: Values) -> float:
        return self.log_normalization_constant() - self.error(values)

    def evaluate(self, values: Values) -> float:
        return math.exp(self.log_probability(values))

    def equals(self, other: JacobianFactor, tol: float = 1e-9) -> bool:
        if not isinstance(other, GaussianConditional):
            return False
        return (self._nr_frontals == other._nr_frontals
                and super().equals(other, tol))


# ------------------------------------------------------------------ #
#  QR elimination
# ------------------------------------------------------------------ #

def _collect_dims(factors: Iterable[JacobianFactor]) -> Dict[Any, int]:
    dims: Dict[Any, int] = {}
    for factor in factors:
        for key, a in factor.terms():
            known = dims.setdefault(key, a.shape[1])
            if known != a.shape[1]:
                raise StructuralError(
                    f"Key {key!r} has dimension {a.shape[1]} in one factor "
                    f"and {known} in another"
                )
    return dims


def eliminate_qr(
    factors: Sequence[JacobianFactor],
    frontal_keys: Sequence[Any],
    rank_tolerance: float = 1e-9,
    separator_keys: Optional[Sequence[Any]] = None,
) -> Tuple[GaussianConditional, JacobianFactor]:
    """Eliminate *frontal_keys* from *factors*.

    The factors are stacked into one augmented matrix ``[A_f A_s | b]``
    (frontal columns first, separator columns in sorted key order) and
    triangularised with a QR factorisation.  The first rows give the
    conditional on the frontals; the remaining rows give a factor on the
    separator whose ``b`` keeps the constant residual.

    Returns
    -------
    (GaussianConditional, JacobianFactor)

    Raises
    ------
    IndeterminantLinearSystemError
        If a diagonal entry of ``R`` is below *rank_tolerance* relative to
        the largest one, naming the frontal key of that column.
    """
    factors = list(factors)
    frontal_keys = list(frontal_keys)
    dims = _collect_dims(factors)
    missing = [k for k in frontal_keys if k not in dims]
    if missing:
        raise IndeterminantLinearSystemError(missing[0])
    if separator_keys is None:
        separator_keys = sorted(k for k in dims if k not in frontal_keys)
    separator_keys = list(separator_keys)
    ordered = frontal_keys + separator_keys

    offsets: Dict[Any, int] = {}
    n = 0
    for key in ordered:
        offsets[key] = n
        n += dims[key]
    nf = sum(dims[k] for k in frontal_keys)
    m = sum(f.rows for f in factors)

    ab = np.zeros((m, n + 1))
    row = 0
    for factor in factors:
        for key, a in factor.terms():
            ab[row:row + factor.rows, offsets[key]:offsets[key] + dims[key]] = a
        ab[row:row + factor.rows, n] = factor.b
        row += factor.rows

    def frontal_at(column: int) -> Any:
        return next(k for k in frontal_keys
                    if offsets[k] <= column < offsets[k] + dims[k])

    # fewer rows than frontal columns can never be full rank
    if m < nf:
        raise IndeterminantLinearSystemError(frontal_at(m))
    (r,) = scipy.linalg.qr(ab, mode="r")
    used = min(m, n + 1)
    r = r[:used]

    diag = np.abs(np.diag(r[:nf, :nf]))
    scale = max(1.0, float(diag.max()))
    small = np.nonzero(diag <= rank_tolerance * scale)[0]
    if small.size:
        raise IndeterminantLinearSystemError(frontal_at(int(small[0])))

    signs = np.where(np.diag(r[:nf, :nf]) < 0, -1.0, 1.0)
    r[:nf] = r[:nf] * signs[:, None]

    conditional = GaussianConditional(
        [(k, r[:nf, offsets[k]:offsets[k] + dims[k]]) for k in ordered],
        len(frontal_keys),
        r[:nf, n],
    )
    remainder = JacobianFactor(
        [(k, r[nf:, offsets[k]:offsets[k] + dims[k]]) for k in separator_keys],
        r[nf:, n],
    )
    logger.debug("Eliminated %s: %d remaining rows on %s",
                 frontal_keys, remainder.rows, separator_keys)
    return conditional, remainder


# ------------------------------------------------------------------ #
#  Containers
# ------------------------------------------------------------------ #

class GaussianBayesNet:
    """Gaussian conditionals in elimination order (roots last)."""

    def __init__(self, conditionals: Iterable[GaussianConditional] = ()) -> None:
        self._conditionals: List[GaussianConditional] = list(conditionals)

    def push_back(self, conditional: GaussianConditional) -> None:
        self._conditionals.append(conditional)

    def __len__(self) -> int:
        return len(self._conditionals)

    def __iter__(self) -> Iterator[GaussianConditional]:
        return iter(self._conditionals)

    def __getitem__(self, i: int) -> GaussianConditional:
        return self._conditionals[i]

    def at(self, i: int) -> GaussianConditional:
        if not 0 <= i < len(self._conditionals):
            raise IndexError(
                f"Conditional index {i} out of range for Bayes net of size "
                f"{len(self._conditionals)}"
            )
        return self._conditionals[i]

    def optimize(self) -> Values:
        """Most probable values by back-substitution, roots first."""
        values: Values = {}
        for conditional in reversed(self._conditionals):
            values.update(conditional.solve(values))
        return values

    def error(self, values: Values) -> float:
        return sum(c.error(values) for c in self._conditionals)

    def log_probability(self, values: Values) -> float:
        return sum(c.log_probability(values) for c in self._conditionals)

    def evaluate(self, values: Values) -> float:
        return math.exp(self.log_probability(values))

    def equals(self, other: 'GaussianBayesNet', tol: float = 1e-9) -> bool:
        return len(self) == len(other) and all(
            a.equals(b, tol) for a, b in zip(self, other))


class GaussianFactorGraph:
    """An ordered list of :class:`JacobianFactor`."""

    def __init__(self, factors: Iterable[JacobianFactor] = ()) -> None:
        self._factors: List[JacobianFactor] = list(factors)

    def push_back(self, factor: JacobianFactor) -> None:
        self._factors.append(factor)

    def __len__(self) -> int:
        return len(self._factors)

    def __iter__(self) -> Iterator[JacobianFactor]:
        return iter(self._factors)

    def __getitem__(self, i: int) -> JacobianFactor:
        return self._factors[i]

    def keys(self) -> List[Any]:
        return sorted({k for f in self._factors for k in f.keys})

    def error(self, values: Values) -> float:
        return sum(f.error(values) for f in self._factors)

    def eliminate_sequential(
        self,
        ordering: Optional[Sequence[Any]] = None,
        rank_tolerance: float = 1e-9,
    ) -> GaussianBayesNet:
        """Eliminate one key at a time into a :class:`GaussianBayesNet`."""
        ordering = self.keys() if ordering is None else list(ordering)
        pool = list(self._factors)
        bayes_net = GaussianBayesNet()
        for key in ordering:
            involved = [f for f in pool if key in f.keys]
            pool = [f for f in pool if key not in f.keys]
            conditional, remainder = eliminate_qr(involved, [key], rank_tolerance)
            bayes_net.push_back(conditional)
            if not remainder.empty():
                pool.append(remainder)
        return bayes_net

    def optimize(self, ordering: Optional[Sequence[Any]] = None) -> Values:
        return self.eliminate_sequential(ordering).optimize()
