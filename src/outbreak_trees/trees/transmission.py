# src/outbreak_trees/trees/transmission.py
"""
Who-infected-whom edges from an individual registry.

The edge set is a forest rooted at the index cases: every other individual
has exactly one incoming edge. Building it is a pure transform; the only
failure is malformed input (dangling or cyclic infector references, or an
infectee infected before its infector), which means the upstream record is
corrupt.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Dict, List, NamedTuple, Tuple, Union

import numpy as np
import pandas as pd

from ..errors import InconsistentTransmissionData, InvalidParameter
from ..simulate.epidemic import IndividualRegistry, Outbreak

logger = logging.getLogger(__name__)


class TransmissionEdge(NamedTuple):
    source: int
    target: int
    time: float


@dataclass(frozen=True)
class TransmissionTree:
    """Validated transmission forest.

    Attributes:
        edges: edges sorted by (time, target)
        index_cases: ids with no infector
        order: every id, parents before children
        individuals: the registry the tree was built from
    """

    edges: Tuple[TransmissionEdge, ...]
    index_cases: Tuple[int, ...]
    order: np.ndarray
    individuals: IndividualRegistry
    _children: Dict[int, List[Tuple[float, int]]] = field(repr=False, compare=False)

    @property
    def n_individuals(self) -> int:
        return len(self.individuals)

    def children(self, i: int) -> List[Tuple[float, int]]:
        """(transmission time, infectee) pairs of i in chronological order."""
        return list(self._children.get(int(i), ()))

    def out_degree(self) -> np.ndarray:
        deg = np.zeros(self.n_individuals, dtype=np.int64)
        for i, kids in self._children.items():
            deg[i] = len(kids)
        return deg

    def in_degree(self) -> np.ndarray:
        deg = np.zeros(self.n_individuals, dtype=np.int64)
        for e in self.edges:
            deg[e.target] += 1
        return deg

    def generations(self) -> np.ndarray:
        """Number of transmission steps from the index case, per individual."""
        gen = np.zeros(self.n_individuals, dtype=np.int64)
        infector = self.individuals.infector
        for i in self.order:
            if infector[i] >= 0:
                gen[i] = gen[infector[i]] + 1
        return gen

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.edges, columns=list(TransmissionEdge._fields))


def _as_registry(source) -> IndividualRegistry:
    if isinstance(source, Outbreak):
        if source.individuals is None:
            raise InvalidParameter("Outbreak has no transmission record (tracking was off)")
        return source.individuals
    if isinstance(source, pd.DataFrame):
        return IndividualRegistry.from_frame(source)
    return source


def build_transmission_tree(source: Union[IndividualRegistry, Outbreak, pd.DataFrame]) -> TransmissionTree:
    """Convert infection records into a validated transmission forest.

    Raises:
        InconsistentTransmissionData: dangling infector ids, cycles, or
            transmissions outside the infector's infectious period
    """
    reg = _as_registry(source)
    n = len(reg)
    infector = reg.infector
    t_inf = reg.infection_time
    t_rem = reg.removal_time

    # Dangling references
    bad = (infector >= n) | (infector < -1)
    if bad.any():
        first = int(np.flatnonzero(bad)[0])
        raise InconsistentTransmissionData(
            f"Individual {first} names infector {int(infector[first])}, which does not exist"
        )

    targets = np.flatnonzero(infector >= 0)
    sources = infector[targets]
    if np.any(sources == targets):
        raise InconsistentTransmissionData("An individual is recorded as its own infector")

    # Infectee must be infected no earlier than its infector, and before the
    # infector was removed
    early = t_inf[targets] < t_inf[sources]
    if early.any():
        j = int(targets[np.flatnonzero(early)[0]])
        raise InconsistentTransmissionData(
            f"Individual {j} infected at {t_inf[j]} before its infector {int(infector[j])}"
        )
    rem = t_rem[sources]
    late = ~np.isnan(rem) & (t_inf[targets] > rem)
    if late.any():
        j = int(targets[np.flatnonzero(late)[0]])
        raise InconsistentTransmissionData(
            f"Individual {j} infected after its infector {int(infector[j])} was removed"
        )

    # Children grouped by infector, chronological, ties by infectee id
    perm = np.lexsort((targets, t_inf[targets], sources))
    children: Dict[int, List[Tuple[float, int]]] = {}
    for j in targets[perm]:
        children.setdefault(int(infector[j]), []).append((float(t_inf[j]), int(j)))

    # Breadth-first from the roots; anything unreached sits on a cycle
    roots = [int(i) for i in np.flatnonzero(infector < 0)]
    order = []
    queue = deque(roots)
    while queue:
        i = queue.popleft()
        order.append(i)
        for _, c in children.get(i, ()):
            queue.append(c)
    if len(order) != n:
        raise InconsistentTransmissionData(
            f"Infector references form a cycle: {n - len(order)} individual(s) unreachable from an index case"
        )

    edge_order = np.lexsort((targets, t_inf[targets]))
    edges = tuple(
        TransmissionEdge(int(infector[j]), int(j), float(t_inf[j])) for j in targets[edge_order]
    )
    logger.debug("Transmission tree: %d individuals, %d edges, %d index case(s)", n, len(edges), len(roots))
    return TransmissionTree(
        edges=edges,
        index_cases=tuple(roots),
        order=np.asarray(order, dtype=np.int64),
        individuals=reg,
        _children=children,
    )
