"""Example usage of the hybridflow package.

This example walks through a three-state switching chain:
- Building the linearised hybrid factor graph
- Batch elimination into a Bayes net and a Bayes tree
- Mode posteriors and most probable values
- Incremental updates and pruning
"""

import logging

from hybridflow import (
    HybridFlow,
    HybridGaussianFactorGraph,
    HybridGaussianISAM,
    M, X,
    build_switching_chain,
)


def batch_example():
    """Eliminate the whole chain at once."""
    print("=" * 60)
    print("Batch Elimination Example")
    print("=" * 60)

    chain = build_switching_chain(3)
    graph = chain.factor_graph
    ordering = chain.continuous_keys + [m.key for m in chain.modes]

    print("\n1. Sequential elimination")
    bayes_net, remaining = graph.eliminate_sequential(ordering)
    print(f"   Conditionals: {len(bayes_net)}, remaining factors: {len(remaining)}")

    print("\n2. Multifrontal elimination")
    tree, _ = graph.eliminate_multifrontal(ordering)
    for clique in tree.cliques():
        print(f"   {clique}")

    print("\n3. Mode weights at the root clique")
    root = tree[M(1)].conditional.as_discrete()
    for assignment, value in root.enumerate():
        print(f"   {assignment}: {value:.6f}")

    print("\n4. Most probable explanation")
    continuous, discrete = tree.optimize()
    print(f"   Modes: {discrete}")
    for key in chain.continuous_keys:
        print(f"   {key} = {continuous[key][0]:+.4f}")

    print("\n5. Sum-product elimination")
    with HybridFlow(discrete_elimination="sum"):
        tree, _ = graph.eliminate_multifrontal(ordering)
    root = tree[M(1)].conditional.as_discrete()
    print(f"   P(m1=1, m2=1) = {root({M(1): 1, M(2): 1}):.6f}")
    print()


def incremental_example():
    """Feed the chain to the incremental engine in two batches."""
    print("=" * 60)
    print("Incremental Inference Example")
    print("=" * 60)

    chain = build_switching_chain(5)
    factors = chain.factor_graph

    first = HybridGaussianFactorGraph(
        [factors[i] for i in (1, 2, 3, 0, 5, 6, 7)])
    second = HybridGaussianFactorGraph([factors[4], factors[8]])

    isam = HybridGaussianISAM()
    isam.update(first)
    isam.prune(M(3), 5)
    print(f"\n1. After the first batch: {len(isam)} cliques")
    for k in range(1, 5):
        mixture = isam[X(k)].conditional.as_mixture()
        print(f"   {X(k)}: {mixture.nr_components()} components")

    isam.update(second)
    isam.prune(M(4), 5)
    print(f"\n2. After the second batch: {len(isam)} cliques")
    mixture = isam[X(5)].conditional.as_mixture()
    print(f"   {X(5)}: {mixture.nr_components()} components")
    print()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    batch_example()
    incremental_example()
