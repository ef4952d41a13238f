"""
Node aggregation through closed zero-impedance switches.

This module merges buses connected by closed bus-bus switches without
impedance into groups, and provides the projection matrices that map
quantities between the full and the reduced coordinate systems.
"""

import logging
from dataclasses import dataclass

import numpy as np
import scipy.sparse as sp

from ..core.elements import NodeRole
from ..errors import SlackLostError
from ..sparse import cast_real_to_complex

logger = logging.getLogger(__name__)

_ROLE_PRIORITY = {NodeRole.SLACK: 0, NodeRole.PV: 1, NodeRole.PQ: 2, NodeRole.AUXILIARY: 3}


class UnionFind:
    """
    Union-Find (Disjoint Set Union) over bus ids.

    Uses path compression and union by rank. The root of a set is an
    implementation detail; representatives are chosen afterwards by role.
    """

    def __init__(self, n: int):
        self.parent = list(range(n))
        self.rank = [0] * n

    def find(self, x: int) -> int:
        """Find representative of set containing x (with path compression)."""
        root = x
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[x] != root:
            self.parent[x], x = root, self.parent[x]
        return root

    def union(self, x: int, y: int) -> None:
        """Union the sets containing x and y."""
        px, py = self.find(x), self.find(y)
        if px == py:
            return
        if self.rank[px] < self.rank[py]:
            px, py = py, px
        self.parent[py] = px
        if self.rank[px] == self.rank[py]:
            self.rank[px] += 1

    def connected(self, x: int, y: int) -> bool:
        return self.find(x) == self.find(y)


@dataclass
class NodeAggregation:
    """
    Mapping between N original buses and M merge groups.

    Attributes:
        merge: N x M real CSC, merge[i, g(i)] = 1
        merge_v: N x M real CSC with only the representative rows set
        bus_to_group: Group index of every original bus
        representatives: Representative original bus of every group
        y_bus_full: Admittance matrix in original coordinates
    """
    merge: sp.csc_matrix
    merge_v: sp.csc_matrix
    bus_to_group: np.ndarray
    representatives: np.ndarray
    y_bus_full: sp.csc_matrix | None = None

    @property
    def n_bus(self) -> int:
        return self.merge.shape[0]

    @property
    def n_groups(self) -> int:
        return self.merge.shape[1]

    @property
    def is_identity(self) -> bool:
        return self.n_groups == self.n_bus

    def members(self, group: int) -> np.ndarray:
        """Original buses in a group, ascending."""
        return np.flatnonzero(self.bus_to_group == group)

    def reduce_admittance(self, y_bus: sp.csc_matrix) -> sp.csc_matrix:
        """Y' = merge^T Y merge."""
        m = cast_real_to_complex(self.merge)
        y = sp.csc_matrix(m.T @ y_bus @ m)
        y.sort_indices()
        return y

    def reduce_injection(self, s: np.ndarray) -> np.ndarray:
        """S' = merge^T S (group sums)."""
        return self.merge.T @ np.asarray(s)

    def reduce_voltage(self, v: np.ndarray) -> np.ndarray:
        """V0' = merge_v^T V0 (representative rows of V0)."""
        return self.merge_v.T @ np.asarray(v)

    def reduce_roles(self, roles: list[NodeRole]) -> list[NodeRole]:
        return [roles[r] for r in self.representatives]

    def lift_voltage(self, v_reduced: np.ndarray) -> np.ndarray:
        """V = merge V' (every member takes its group voltage)."""
        return self.merge @ np.asarray(v_reduced)


def aggregate_nodes(
    n_bus: int,
    links: list[tuple[int, int]],
    roles: list[NodeRole],
) -> NodeAggregation:
    """
    Merge buses joined by closed zero-impedance switches.

    This function:
    1. Unions the endpoints of every link
    2. Numbers the groups in order of their smallest member
    3. Picks one representative per group: Slack > PV > smallest id
    4. Builds the merge and merge_v projections

    Args:
        n_bus: Number of original buses N
        links: (bus_a, bus_b) pairs to merge
        roles: Node role per original bus

    Returns:
        NodeAggregation (identity when there are no links)

    Raises:
        SlackLostError: if the original buses carry a Slack role but no
            representative does
    """
    uf = UnionFind(n_bus)
    for a, b in links:
        uf.union(a, b)

    # Group ids in first-seen root order over ascending bus ids
    group_of_root: dict[int, int] = {}
    bus_to_group = np.empty(n_bus, dtype=np.int64)
    for bus in range(n_bus):
        root = uf.find(bus)
        if root not in group_of_root:
            group_of_root[root] = len(group_of_root)
        bus_to_group[bus] = group_of_root[root]
    n_groups = len(group_of_root)

    representatives = np.full(n_groups, -1, dtype=np.int64)
    for bus in range(n_bus):
        g = bus_to_group[bus]
        rep = representatives[g]
        if rep < 0 or _ROLE_PRIORITY[roles[bus]] < _ROLE_PRIORITY[roles[rep]]:
            representatives[g] = bus
        elif roles[bus] is NodeRole.SLACK and roles[rep] is NodeRole.SLACK:
            logger.warning(f"Buses {rep} and {bus} are merged and both Slack, keeping bus {rep}")

    rows = np.arange(n_bus)
    ones = np.ones(n_bus)
    merge = sp.csc_matrix((ones, (rows, bus_to_group)), shape=(n_bus, n_groups))
    merge_v = sp.csc_matrix(
        (np.ones(n_groups), (representatives, np.arange(n_groups))),
        shape=(n_bus, n_groups),
    )

    has_slack = any(role is NodeRole.SLACK for role in roles)
    if has_slack and not any(roles[r] is NodeRole.SLACK for r in representatives):
        raise SlackLostError("Node aggregation removed every Slack bus")

    if n_groups < n_bus:
        logger.info(f"Topology aggregation: {n_bus} → {n_groups} buses "
                    f"({len(links)} closed switches)")
    return NodeAggregation(merge, merge_v, bus_to_group, representatives)
