"""
AutomationValidator — structural checks for an automation graph.

The runner tolerates most modelling anomalies (orphan edges, duplicate
linear edges, dead routes); the validator reports them up front.  Soft
issues are returned with a "WARNING:" prefix so callers can choose to treat
them differently from hard errors.
"""

from __future__ import annotations

from collections import deque

from autoflow.types import ActionType, Automation, NodeKind, RandomizerAction, WaitAction

from .graph import BRANCH_PREFIX, HANDLE_FALSE, HANDLE_TRUE, build_routes, get_children


class AutomationValidator:
    """
    Validates the structural integrity of an Automation.

    Usage::

        errors = AutomationValidator().validate(automation)
        hard_errors = [e for e in errors if not e.startswith("WARNING:")]

    Every check runs even if earlier ones fail.
    """

    def validate(self, automation: Automation) -> list[str]:
        """
        Returns:
            List of error strings.  Empty list means the automation is valid.
            Items prefixed "WARNING:" are soft warnings, not hard failures.
        """
        errors: list[str] = []
        nodes = automation.nodes
        edges = automation.edges
        by_id = {}

        # ── Node ids ─────────────────────────────────────────────────────────
        for node in nodes:
            if node.id in by_id:
                errors.append(f"Duplicate node id {node.id!r}.")
            by_id[node.id] = node

        # ── Trigger ──────────────────────────────────────────────────────────
        trigger = automation.trigger_node
        if trigger is None:
            errors.append("Automation has no trigger node.")

        # ── Edge references ──────────────────────────────────────────────────
        for edge in edges:
            if edge.source not in by_id:
                errors.append(
                    f"WARNING: Edge {edge.id!r}: source {edge.source!r} references a missing node."
                )
            if edge.target not in by_id:
                errors.append(
                    f"WARNING: Edge {edge.id!r}: target {edge.target!r} references a missing node."
                )
            elif trigger is not None and edge.target == trigger.id:
                errors.append(f"WARNING: Edge {edge.id!r} points back into the trigger node.")

        # ── Handle discipline ────────────────────────────────────────────────
        for node in nodes:
            outgoing = [e for _, e in get_children(node.id, edges)]
            handles = [e.source_handle for e in outgoing]

            if node.sub_type == ActionType.CONDITIONAL.value:
                bad = [h for h in handles if h not in (HANDLE_TRUE, HANDLE_FALSE)]
                if bad:
                    errors.append(
                        f"Conditional node {node.id!r} has edges with handles {bad}; "
                        "only 'true' and 'false' are allowed."
                    )
                for label in (HANDLE_TRUE, HANDLE_FALSE):
                    if label not in handles:
                        errors.append(f"WARNING: Conditional node {node.id!r} has no {label!r} route.")

            elif node.sub_type == ActionType.RANDOMIZER.value:
                bad = [h for h in handles if not (h and h.startswith(BRANCH_PREFIX))]
                if bad:
                    errors.append(
                        f"Randomizer node {node.id!r} has edges with handles {bad}; "
                        f"only '{BRANCH_PREFIX}<n>' is allowed."
                    )
                branch_count = len(handles) - len(bad)
                if branch_count == 0:
                    errors.append(f"WARNING: Randomizer node {node.id!r} has no branches.")
                data: RandomizerAction = node.data
                if branch_count and branch_count != data.branches:
                    errors.append(
                        f"WARNING: Randomizer node {node.id!r} declares {data.branches} "
                        f"branches but has {branch_count} branch edges."
                    )

            else:
                labelled = [h for h in handles if h]
                if labelled:
                    errors.append(
                        f"Node {node.id!r} ({node.sub_type}) has labelled edges {labelled}; "
                        "only conditional and randomizer nodes may branch."
                    )
                unlabelled = len(handles) - len(labelled)
                if unlabelled > 1:
                    errors.append(
                        f"WARNING: Node {node.id!r} has {unlabelled} outgoing edges; "
                        "only the first is followed."
                    )

        # ── Node payloads ────────────────────────────────────────────────────
        for node in nodes:
            if node.sub_type == ActionType.WAIT.value:
                wait: WaitAction = node.data
                if wait.delay < 0:
                    errors.append(f"Wait node {node.id!r} has a negative delay ({wait.delay}).")
            elif node.sub_type == ActionType.FORWARD_AUTOMATION.value:
                target = node.data.automation_id
                if not target:
                    errors.append(f"WARNING: Forward node {node.id!r} has no target automation.")
                elif target == automation.id:
                    errors.append(f"WARNING: Forward node {node.id!r} forwards to its own automation.")

        # ── Reachability and cycles ──────────────────────────────────────────
        if trigger is not None:
            routes = build_routes(edges)
            adjacency: dict[str, list[str]] = {}
            for source, target in routes.next.items():
                adjacency.setdefault(source, []).append(target)
            for table in (routes.branch_true, routes.branch_false):
                for source, target in table.items():
                    adjacency.setdefault(source, []).append(target)
            for source, targets in routes.branches.items():
                adjacency.setdefault(source, []).extend(targets)

            reached: set[str] = set()
            queue: deque[str] = deque([trigger.id])
            while queue:
                current = queue.popleft()
                if current in reached or current not in by_id:
                    continue
                reached.add(current)
                queue.extend(adjacency.get(current, []))

            for node in nodes:
                if node.id not in reached and node.type != NodeKind.TRIGGER:
                    errors.append(
                        f"WARNING: Node {node.id!r} ({node.sub_type}) is not reachable from the trigger."
                    )

            if _has_cycle(trigger.id, adjacency):
                errors.append(
                    "WARNING: Graph contains a cycle reachable from the trigger; "
                    "runs will stop at the step limit."
                )

        return errors


def _has_cycle(start: str, adjacency: dict[str, list[str]]) -> bool:
    """Iterative three-colour DFS from *start*."""
    visiting, done = set(), set()
    stack: list[tuple[str, int]] = [(start, 0)]
    visiting.add(start)
    while stack:
        node, index = stack[-1]
        children = adjacency.get(node, [])
        if index < len(children):
            stack[-1] = (node, index + 1)
            child = children[index]
            if child in visiting:
                return True
            if child not in done:
                visiting.add(child)
                stack.append((child, 0))
        else:
            stack.pop()
            visiting.discard(node)
            done.add(node)
    return False
