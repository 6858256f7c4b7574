"""
Edge routing for automation graphs.

An automation's edges encode three routing disciplines through the edge's
``source_handle``:

  - ``None`` (or any unrecognised label) — linear: the single next node.
  - ``"true"`` / ``"false"`` — the two exits of a ``conditional`` node.
  - ``"branch-<n>"`` — one exit of a ``randomizer`` node.

``build_routes`` folds the flat edge list into lookup tables once per run.
Edges pointing at nodes that no longer exist are kept; the run loop simply
stops when a target id does not resolve.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Optional

from autoflow.types import Edge

HANDLE_TRUE = "true"
HANDLE_FALSE = "false"
BRANCH_PREFIX = "branch-"


@dataclass
class RouteTable:
    """Per-automation next-node lookups, built by :func:`build_routes`."""

    next: dict[str, str] = field(default_factory=dict)
    branch_true: dict[str, str] = field(default_factory=dict)
    branch_false: dict[str, str] = field(default_factory=dict)
    branches: dict[str, list[str]] = field(default_factory=dict)

    def linear(self, node_id: str) -> Optional[str]:
        return self.next.get(node_id)

    def conditional(self, node_id: str, result: bool) -> Optional[str]:
        table = self.branch_true if result else self.branch_false
        return table.get(node_id)

    def randomized(self, node_id: str, rng: random.Random | None = None) -> Optional[str]:
        """Uniformly pick one registered branch target, or None when there are none."""
        targets = self.branches.get(node_id)
        if not targets:
            return None
        return (rng or random).choice(targets)


def build_routes(edges: list[Edge]) -> RouteTable:
    """Build the three lookup structures in a single pass over *edges*.

    Multiple unlabeled edges from the same node are a modelling anomaly; the
    first one encountered wins and the rest are ignored.  Branch targets keep
    encounter order.
    """
    routes = RouteTable()
    for edge in edges:
        handle = edge.source_handle
        if handle == HANDLE_TRUE:
            routes.branch_true[edge.source] = edge.target
        elif handle == HANDLE_FALSE:
            routes.branch_false[edge.source] = edge.target
        elif handle and handle.startswith(BRANCH_PREFIX):
            routes.branches.setdefault(edge.source, []).append(edge.target)
        else:
            routes.next.setdefault(edge.source, edge.target)
    return routes


def get_children(node_id: str, edges: list[Edge]) -> list[tuple[str, Edge]]:
    """Return (target_id, edge) pairs for all outgoing edges of node_id."""
    return [(e.target, e) for e in edges if e.source == node_id]
