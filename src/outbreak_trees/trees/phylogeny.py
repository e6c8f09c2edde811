# src/outbreak_trees/trees/phylogeny.py
"""
Time-labelled bifurcating phylogeny derived from a transmission tree.

In the transmission tree an infector is a single node with one child per
infectee. Here each transmission event gets its own internal node, placed on
the infector's lineage at the transmission time:

    infector i, infected at a, transmits to c1 at t1 and c2 at t2, removed at r

            a ---- t1 ---- t2 ---- r   (tip i)
                   |       |
                 (c1)    (c2)

so every internal node has two children, [infectee subtree, continuation of
the infector's lineage], and every individual ends as exactly one tip.

Nodes live in flat arrays (an arena). Children always have smaller indices
than their parent, so increasing index order is a post-order traversal; both
building and pruning rely on this.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Union

import numpy as np
import pandas as pd
import treeswift

from ..errors import InvalidParameter
from ..simulate.epidemic import IndividualRegistry, Outbreak
from .transmission import TransmissionTree, build_transmission_tree

logger = logging.getLogger(__name__)

NO_NODE = -1


class Phylogeny:
    """Immutable arena tree (possibly a forest, one tree per index case).

    Attributes:
        time: absolute time of each node
        left, right: child indices, NO_NODE for tips
        parent: parent index, NO_NODE for roots
        label: individual id (the infector for internal nodes)
        roots: index of each tree's root
        origin: infection time of the index case above each root
    """

    def __init__(self, time, left, right, label, roots, origin):
        self.time = np.asarray(time, dtype=float)
        self.left = np.asarray(left, dtype=np.int64)
        self.right = np.asarray(right, dtype=np.int64)
        self.label = np.asarray(label, dtype=np.int64)
        self.roots = np.asarray(roots, dtype=np.int64)
        self.origin = np.asarray(origin, dtype=float)
        n = self.time.size
        if not (self.left.size == self.right.size == self.label.size == n):
            raise InvalidParameter("Phylogeny arrays must have equal length")
        if self.roots.size != self.origin.size:
            raise InvalidParameter("Each root needs an origin time")

        idx = np.arange(n)
        internal = self.left != NO_NODE
        if np.any((self.left[internal] >= idx[internal]) | (self.right[internal] >= idx[internal])):
            raise InvalidParameter("Children must precede their parent in the node arrays")
        if np.any((self.left == NO_NODE) != (self.right == NO_NODE)):
            raise InvalidParameter("Every internal node must have exactly two children")

        self.parent = np.full(n, NO_NODE, dtype=np.int64)
        self.parent[self.left[internal]] = idx[internal]
        self.parent[self.right[internal]] = idx[internal]

        self._origin_of = np.full(n, np.nan)
        self._origin_of[self.roots] = self.origin
        for arr in (self.time, self.left, self.right, self.label, self.roots, self.origin, self.parent):
            arr.setflags(write=False)

    # ------------------------------------------------------------------ #
    # Basic accessors
    # ------------------------------------------------------------------ #
    def __len__(self) -> int:
        return int(self.time.size)

    def is_tip(self, node: int) -> bool:
        return bool(self.left[node] == NO_NODE)

    def tips(self) -> np.ndarray:
        return np.flatnonzero(self.left == NO_NODE)

    def internal_nodes(self) -> np.ndarray:
        return np.flatnonzero(self.left != NO_NODE)

    @property
    def n_tips(self) -> int:
        return int(np.count_nonzero(self.left == NO_NODE))

    @property
    def n_internal(self) -> int:
        return int(np.count_nonzero(self.left != NO_NODE))

    def children(self, node: int) -> List[int]:
        if self.is_tip(node):
            return []
        return [int(self.left[node]), int(self.right[node])]

    def tip_labels(self) -> np.ndarray:
        return self.label[self.tips()]

    def tip_times(self) -> np.ndarray:
        return self.time[self.tips()]

    def branch_lengths(self) -> np.ndarray:
        """Time since the parent node (since the origin for roots)."""
        out = np.empty(len(self))
        has_parent = self.parent != NO_NODE
        out[has_parent] = self.time[has_parent] - self.time[self.parent[has_parent]]
        out[~has_parent] = self.time[~has_parent] - self._origin_of[~has_parent]
        return out

    def total_branch_length(self) -> float:
        return float(self.branch_lengths().sum())

    def to_frame(self) -> pd.DataFrame:
        """Node table, one row per arena slot."""
        return pd.DataFrame(
            {
                "node": np.arange(len(self)),
                "label": self.label,
                "time": self.time,
                "branch_length": self.branch_lengths(),
                "parent": self.parent,
                "left": self.left,
                "right": self.right,
                "is_tip": self.left == NO_NODE,
            }
        )

    # ------------------------------------------------------------------ #
    # Restriction
    # ------------------------------------------------------------------ #
    def restrict(self, keep: Iterable[int]) -> "Phylogeny":
        """Keep only the tips whose label is in ``keep``.

        Internal nodes left with one child are spliced out; the surviving
        child keeps its absolute time, so its branch absorbs the removed
        segment. Trees left with no tips disappear.
        """
        keep_set = set(int(k) for k in _ids_of(keep))
        n = len(self)
        new_index = np.full(n, NO_NODE, dtype=np.int64)
        time: List[float] = []
        left: List[int] = []
        right: List[int] = []
        label: List[int] = []

        # Increasing index order visits children before parents
        for node in range(n):
            l, r = self.left[node], self.right[node]
            if l == NO_NODE:
                if int(self.label[node]) in keep_set:
                    new_index[node] = len(time)
                    time.append(self.time[node])
                    left.append(NO_NODE)
                    right.append(NO_NODE)
                    label.append(self.label[node])
                continue
            nl, nr = new_index[l], new_index[r]
            if nl != NO_NODE and nr != NO_NODE:
                new_index[node] = len(time)
                time.append(self.time[node])
                left.append(nl)
                right.append(nr)
                label.append(self.label[node])
            elif nl != NO_NODE:
                new_index[node] = nl
            elif nr != NO_NODE:
                new_index[node] = nr

        roots, origin = [], []
        for root, t0 in zip(self.roots, self.origin):
            if new_index[root] != NO_NODE:
                roots.append(new_index[root])
                origin.append(t0)
        pruned = Phylogeny(time, left, right, label, roots, origin)
        logger.debug("Restricted phylogeny from %d to %d tips", self.n_tips, pruned.n_tips)
        return pruned

    def prune(self, remove: Iterable[int]) -> "Phylogeny":
        """Drop the named tips (by individual id) and collapse unary nodes."""
        drop = set(int(k) for k in _ids_of(remove))
        return self.restrict(int(x) for x in self.tip_labels() if int(x) not in drop)

    # ------------------------------------------------------------------ #
    # Comparison / export
    # ------------------------------------------------------------------ #
    def equals(self, other: "Phylogeny", atol: float = 1e-9) -> bool:
        """Same topology, child order, labels, times and branch lengths."""
        if len(self) != len(other) or self.roots.size != other.roots.size:
            return False
        if not np.allclose(self.origin, other.origin, atol=atol, rtol=0.0):
            return False
        stack = list(zip(self.roots.tolist(), other.roots.tolist()))
        while stack:
            a, b = stack.pop()
            if self.is_tip(a) != other.is_tip(b) or self.label[a] != other.label[b]:
                return False
            if abs(self.time[a] - other.time[b]) > atol:
                return False
            if not self.is_tip(a):
                stack.append((int(self.left[a]), int(other.left[b])))
                stack.append((int(self.right[a]), int(other.right[b])))
        return True

    def to_treeswift(self, tree_index: int = 0) -> treeswift.Tree:
        """One tree of the forest as a treeswift.Tree (labels are individual ids)."""
        if not 0 <= tree_index < self.roots.size:
            raise InvalidParameter(f"No tree {tree_index}; phylogeny has {self.roots.size} root(s)")
        lengths = self.branch_lengths()
        root = int(self.roots[tree_index])
        tree = treeswift.Tree()
        tree.root.label = str(self.label[root])
        tree.root.edge_length = float(lengths[root])
        stack = [(root, tree.root)]
        while stack:
            node, ts_node = stack.pop()
            for child in self.children(node):
                ts_child = treeswift.Node(label=str(self.label[child]), edge_length=float(lengths[child]))
                ts_node.add_child(ts_child)
                stack.append((child, ts_child))
        return tree

    def to_newick(self) -> str:
        """Newick string, one line per tree in the forest."""
        return "\n".join(self.to_treeswift(i).newick() for i in range(self.roots.size))


def _ids_of(sample) -> Iterable[int]:
    # SampleSet or anything with an ``ids`` attribute, else a plain iterable
    return getattr(sample, "ids", sample)


def build_phylogeny(
    source: Union[TransmissionTree, IndividualRegistry, Outbreak],
    sample=None,
    end_time: Optional[float] = None,
) -> Phylogeny:
    """Build the phylogeny of an outbreak, optionally restricted to a sample.

    Args:
        source: transmission tree, registry or tracked outbreak
        sample: ids (or a SampleSet) to keep as tips; None keeps everyone
        end_time: tip time for individuals never removed (defaults to the
            registry's end_time)
    Returns:
        Phylogeny with one tip per kept individual and, for a full build,
        total_infected - n_index_cases internal nodes
    """
    tree = source if isinstance(source, TransmissionTree) else build_transmission_tree(source)
    reg = tree.individuals
    n = len(reg)

    removal = reg.removal_time.copy()
    missing = np.isnan(removal)
    if missing.any():
        stop = end_time if end_time is not None else reg.end_time
        if stop is None:
            raise InvalidParameter("Some individuals were never removed; pass end_time")
        removal[missing] = stop

    if sample is None:
        keep = np.ones(n, dtype=bool)
    else:
        keep = np.zeros(n, dtype=bool)
        ids = np.asarray(list(_ids_of(sample)), dtype=np.int64)
        if ids.size and (ids.min() < 0 or ids.max() >= n):
            raise InvalidParameter("Sample contains ids outside the outbreak")
        keep[ids] = True

    time: List[float] = []
    left: List[int] = []
    right: List[int] = []
    label: List[int] = []
    subtree = np.full(n, NO_NODE, dtype=np.int64)

    # Children before parents: walk the topological order backwards
    for i in tree.order[::-1]:
        i = int(i)
        # The lineage is assembled from its far end (the tip at removal)
        # back to the first transmission event
        cont = NO_NODE
        if keep[i]:
            cont = len(time)
            time.append(removal[i])
            left.append(NO_NODE)
            right.append(NO_NODE)
            label.append(i)
        for t, c in reversed(tree.children(i)):
            sub = subtree[c]
            if sub == NO_NODE:
                continue
            if cont == NO_NODE:
                cont = sub
                continue
            node = len(time)
            time.append(t)
            left.append(sub)
            right.append(cont)
            label.append(i)
            cont = node
        subtree[i] = cont

    roots, origin = [], []
    for r in tree.index_cases:
        if subtree[r] != NO_NODE:
            roots.append(subtree[r])
            origin.append(reg.infection_time[r])

    phylo = Phylogeny(time, left, right, label, roots, origin)
    logger.debug("Built phylogeny: %d tips, %d internal nodes, %d tree(s)", phylo.n_tips, phylo.n_internal, len(roots))
    return phylo
