# chat_tree/tree/consistency.py
"""
Structural diagnostics and repair planning for a conversation's forest.

Both functions are pure and take an optional step budget; when the budget
runs out they return what they have with `truncated` set.
"""

from bisect import bisect_left, insort
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from loguru import logger

from chat_tree.models import (
    BranchRecord, ConsistencyReport, MessageRecord, Violation, ViolationKind,
)
from chat_tree.tree.forest import Forest

_OK = 'ok'
_BAD = 'bad'


def check_consistency(
    forest: Forest,
    branches: list[BranchRecord],
    messages: Iterable[MessageRecord],
    conversation_id: str | None = None,
    max_steps: int | None = None,
) -> ConsistencyReport:
    """
    Scan a conversation for structural violations. Never raises.

    Checks, in order: the main-branch count, messages without a tree-edge,
    and then per edge: unknown branch, missing parent edge, parent chains
    that never reach a root, and branch points whose flag is not set.
    Each message or edge examined costs one step.
    """
    report = ConsistencyReport()
    messages = list(messages)
    budget = max_steps if max_steps is not None else len(messages) + forest.edge_count + 1

    def add(kind: ViolationKind, message_id: str | None, detail: str):
        report.violations.append(Violation(
            kind=kind, message_id=message_id, detail=detail,
            conversation_id=conversation_id,
        ))

    main_count = sum(1 for b in branches if b.is_main)
    if (messages or branches) and main_count != 1:
        add(ViolationKind.MAIN_BRANCH_COUNT, None,
            f"expected exactly one main branch, found {main_count}")

    for message in messages:
        if report.examined >= budget:
            report.truncated = True
            return report
        report.examined += 1
        if message.id not in forest.nodes:
            add(ViolationKind.ORPHANED_MESSAGE, message.id, "message has no tree-edge")

    branch_ids = {b.id for b in branches}
    forked_from: dict[str, list[str]] = {}
    for branch in branches:
        if branch.fork_message_id is not None:
            forked_from.setdefault(branch.fork_message_id, []).append(branch.id)

    reachability: dict[str, str] = {}
    limit = forest.edge_count + 1

    for node in sorted(forest.nodes.values(), key=lambda n: n.sort_key):
        if report.examined >= budget:
            report.truncated = True
            break
        report.examined += 1

        if node.branch_id not in branch_ids:
            add(ViolationKind.UNKNOWN_BRANCH, node.message_id,
                f"edge tagged with unknown branch {node.branch_id}")

        if node.parent_id is not None and node.parent_id not in forest.nodes:
            add(ViolationKind.MISSING_PARENT, node.message_id,
                f"parent {node.parent_id} has no tree-edge")

        if _reaches_root(forest, node.message_id, reachability, limit) == _BAD:
            add(ViolationKind.CYCLE, node.message_id,
                "parent chain does not terminate at a root")

        if not node.is_branch_point:
            cross = [c.message_id for c in node.children if c.branch_id != node.branch_id]
            forks = forked_from.get(node.message_id, [])
            if cross or forks:
                add(ViolationKind.UNFLAGGED_BRANCH_POINT, node.message_id,
                    "another branch diverges here but the branch-point flag is not set")

    if report.violations:
        logger.warning(
            f"Consistency check found {len(report.violations)} violations"
            f" in {conversation_id or 'forest'}"
        )
    return report


def _reaches_root(
    forest: Forest,
    message_id: str,
    reachability: dict[str, str],
    limit: int,
) -> str:
    """
    Classify whether a node's parent chain ends (at a root or a missing parent).

    Results are memoized for every node on the walked chain.
    """
    chain: list[str] = []
    seen: set[str] = set()
    current = message_id
    verdict = _OK

    while True:
        if current in reachability:
            verdict = reachability[current]
            break
        if current in seen or len(chain) > limit:
            verdict = _BAD
            break
        seen.add(current)
        chain.append(current)

        node = forest.nodes.get(current)
        if node is None or node.parent_id is None or node.parent_id not in forest.nodes:
            # Missing parents are reported separately
            break
        current = node.parent_id

    for visited in chain:
        reachability[visited] = verdict
    return verdict


@dataclass
class RepairPlan:
    """Edges to create for unplaced messages, in the order to create them."""
    placements: list[tuple[str, str | None]] = field(default_factory=list)
    remaining: int = 0

    @property
    def truncated(self) -> bool:
        return self.remaining > 0


def plan_repair(
    forest: Forest,
    main_branch_id: str,
    orphans: list[MessageRecord],
    max_steps: int | None = None,
) -> RepairPlan:
    """
    Attach each unplaced message to the latest main-branch message before it.

    Orphans are handled oldest first and join the main branch as they are
    placed, so a run of legacy messages becomes a chain. An orphan older than
    everything on the main branch becomes a root.
    """
    plan = RepairPlan()

    main_line: list[tuple[tuple[datetime, int], str]] = sorted(
        (node.sort_key, node.message_id)
        for node in forest.nodes.values()
        if node.branch_id == main_branch_id
    )

    ordered = sorted(orphans, key=lambda m: (m.created_at, m.position))
    for index, message in enumerate(ordered):
        if max_steps is not None and index >= max_steps:
            plan.remaining = len(ordered) - index
            break

        key = (message.created_at, message.position)
        slot = bisect_left(main_line, (key, ''))
        parent_id = main_line[slot - 1][1] if slot > 0 else None

        plan.placements.append((message.id, parent_id))
        insort(main_line, (key, message.id))

    return plan
