"""Factor graph construction utilities for hybridflow."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List

import numpy as np

from hybridflow.core.types import DiscreteKey, Symbol
from hybridflow.distributions.conditional import GaussianMixtureFactor
from hybridflow.distributions.continuous import JacobianFactor
from hybridflow.distributions.discrete import DiscreteConditional
from hybridflow.networks.factor_graph import HybridGaussianFactorGraph


def X(k: int) -> Symbol:
    """Continuous state key ``x<k>``."""
    return Symbol("x", k)


def M(k: int) -> Symbol:
    """Discrete mode key ``m<k>``."""
    return Symbol("m", k)


@dataclass
class SwitchingChain:
    """A linearised switching chain and its keys."""
    factor_graph: HybridGaussianFactorGraph
    linearization_point: Dict[Symbol, np.ndarray]
    continuous_keys: List[Symbol]
    modes: List[DiscreteKey]


def build_switching_chain(
    num_states: int,
    between_sigma: float = 1.0,
    prior_sigma: float = 0.1,
) -> SwitchingChain:
    """Build the linear switching chain ``x1 - x2 - ... - xK``.

    Consecutive states are linked by a two-mode motion mixture on ``m_k``:
    mode 0 ("still") measures a displacement of 0, mode 1 ("moving") a
    displacement of 1.  ``x1`` has a prior at 0 and ``x2..xK`` are measured
    at ``k - 1``.  Everything is linearised at ``x_k = k``.

    Factor order: the prior on ``x1``, the ``K - 1`` mixtures, the ``K - 1``
    measurements, ``P(m1)`` and then ``P(m_{k+1} | m_k)``.
    """
    if num_states < 2:
        raise ValueError("A switching chain needs at least 2 states")
    keys = [X(k) for k in range(1, num_states + 1)]
    modes = [DiscreteKey(M(k), 2) for k in range(1, num_states)]
    point = {X(k): np.array([float(k)]) for k in range(1, num_states + 1)}
    graph = HybridGaussianFactorGraph()

    def prior(k: int, mean: float) -> JacobianFactor:
        return JacobianFactor([(X(k), [[1.0]])], [mean - point[X(k)][0]],
                              sigmas=prior_sigma)

    graph.push_back(prior(1, 0.0))
    for k in range(1, num_states):
        predicted = point[X(k + 1)][0] - point[X(k)][0]
        components = [
            JacobianFactor([(X(k), [[-1.0]]), (X(k + 1), [[1.0]])],
                           [displacement - predicted], sigmas=between_sigma)
            for displacement in (0.0, 1.0)
        ]
        graph.push_back(GaussianMixtureFactor(
            [X(k), X(k + 1)], [modes[k - 1]], components))
    for k in range(2, num_states + 1):
        graph.push_back(prior(k, float(k - 1)))

    graph.push_back(DiscreteConditional.from_signature(modes[0], [], "1/1"))
    for k in range(1, num_states - 1):
        graph.push_back(DiscreteConditional.from_signature(
            modes[k], [modes[k - 1]], "1/2 3/2"))

    return SwitchingChain(graph, point, keys, modes)
