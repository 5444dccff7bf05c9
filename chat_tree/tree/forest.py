# chat_tree/tree/forest.py
"""
In-memory message forest and the walks over it.

Everything here is pure: it takes edge rows that were already fetched and
never touches the store. Ancestor walks ignore branch ids (forking does not
copy messages, so a branch's history is whatever its parent pointers reach);
only child selection looks at branches.
"""

from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from chat_tree.errors import InconsistentTree, NotFound
from chat_tree.models import BranchRecord, BranchStats, TreeEdge


@dataclass
class TreeNode:
    """In-memory representation of a placed message."""
    message_id: str
    parent_id: str | None
    branch_id: str
    is_branch_point: bool
    role: str | None
    created_at: datetime | None
    position: int
    children: list['TreeNode'] = field(default_factory=list)

    @property
    def is_leaf(self) -> bool:
        return len(self.children) == 0

    @property
    def sort_key(self) -> tuple[datetime, int]:
        # Timestamp first, insertion order on ties
        return (self.created_at or datetime.min, self.position)


@dataclass
class Forest:
    """Arena of nodes keyed by message id, plus the parent -> children index."""
    nodes: dict[str, TreeNode]
    roots: list[TreeNode]
    children_by_parent: dict[str | None, list[TreeNode]]

    @property
    def edge_count(self) -> int:
        return len(self.nodes)

    def get(self, message_id: str) -> TreeNode:
        node = self.nodes.get(message_id)
        if node is None:
            raise NotFound("Tree edge", message_id)
        return node

    def children_of(self, message_id: str, branch_id: str | None = None) -> list[TreeNode]:
        """Children in sibling order, optionally only those tagged with a branch."""
        children = self.children_by_parent.get(message_id, [])
        if branch_id is None:
            return list(children)
        return [c for c in children if c.branch_id == branch_id]

    def walk_ancestors(self, message_id: str) -> list[str]:
        """
        Ids from the root down to `message_id` (inclusive).

        Branch-agnostic. The walk is bounded at edge_count + 1 steps, so a
        cycle or a dangling parent raises InconsistentTree instead of hanging.
        """
        current = self.get(message_id)
        limit = self.edge_count + 1
        visited: set[str] = set()
        path: list[str] = []

        while True:
            if len(path) >= limit or current.message_id in visited:
                raise InconsistentTree(current.message_id, "parent chain contains a cycle")
            visited.add(current.message_id)
            path.append(current.message_id)

            if current.parent_id is None:
                break
            parent = self.nodes.get(current.parent_id)
            if parent is None:
                raise InconsistentTree(
                    current.message_id,
                    f"parent {current.parent_id} has no tree-edge",
                )
            current = parent

        path.reverse()
        return path


def build_forest(edges: Iterable[TreeEdge]) -> Forest:
    """Build the forest from edge rows. O(E)."""
    nodes: dict[str, TreeNode] = {}
    children_by_parent: dict[str | None, list[TreeNode]] = defaultdict(list)

    for edge in edges:
        node = TreeNode(
            message_id=edge.message_id,
            parent_id=edge.parent_message_id,
            branch_id=edge.branch_id,
            is_branch_point=edge.is_branch_point,
            role=edge.role,
            created_at=edge.created_at,
            position=edge.position,
        )
        nodes[edge.message_id] = node
        children_by_parent[edge.parent_message_id].append(node)

    # Link children (sorted by timestamp, then insertion order)
    for siblings in children_by_parent.values():
        siblings.sort(key=lambda n: n.sort_key)
    for node in nodes.values():
        node.children = children_by_parent.get(node.message_id, [])

    roots = list(children_by_parent.get(None, []))

    return Forest(nodes=nodes, roots=roots, children_by_parent=dict(children_by_parent))


def get_path_to_message(forest: Forest, message_id: str) -> list[str]:
    """Root-to-target ids for a message."""
    return forest.walk_ancestors(message_id)


def branch_head(forest: Forest, branch: BranchRecord) -> str | None:
    """
    Current head of a branch.

    The newest message tagged with the branch; a fork with no messages of
    its own yet is headed by the message it was forked from.
    """
    tagged = [n for n in forest.nodes.values() if n.branch_id == branch.id]
    if tagged:
        return max(tagged, key=lambda n: n.sort_key).message_id
    if branch.fork_message_id is not None and branch.fork_message_id in forest.nodes:
        return branch.fork_message_id
    return None


def find_branch_points(forest: Forest) -> list[str]:
    """
    Messages that are branch points.

    The stored flag is authoritative; a node with children on two or more
    branches counts even if the flag was never set.
    """
    points = []
    for node in sorted(forest.nodes.values(), key=lambda n: n.sort_key):
        child_branches = {c.branch_id for c in node.children}
        if node.is_branch_point or (len(node.children) >= 2 and len(child_branches) >= 2):
            points.append(node.message_id)
    return points


def find_divergence_point(forest: Forest, head_a: str | None, head_b: str | None) -> str | None:
    """Last common ancestor of two heads, or None if they share no root."""
    if head_a is None or head_b is None:
        return None

    path_a = forest.walk_ancestors(head_a)
    path_b = forest.walk_ancestors(head_b)

    divergence = None
    for left, right in zip(path_a, path_b):
        if left != right:
            break
        divergence = left
    return divergence


def get_descendants(forest: Forest, message_id: str) -> list[str]:
    """All messages below `message_id`, breadth first."""
    descendants: list[str] = []
    seen = {message_id}
    queue = deque([message_id])

    while queue:
        current = queue.popleft()
        for child in forest.children_of(current):
            if child.message_id in seen:
                continue
            seen.add(child.message_id)
            descendants.append(child.message_id)
            queue.append(child.message_id)

    return descendants


@dataclass
class DeletionPlan:
    """What deleting a branch removes and what it hands over."""
    branch_id: str
    exclusive: list[str]
    adopted: dict[str, str]   # message id -> branch taking it over


def plan_branch_deletion(
    forest: Forest,
    branch_id: str,
    branches: list[BranchRecord],
) -> DeletionPlan:
    """
    Split a branch's messages into exclusive ones and shared ancestors.

    A message tagged with the branch is shared when some descendant belongs
    to another branch or another branch was forked from it or below it.
    Shared messages go to the earliest-created dependent branch.
    """
    order = {b.id: i for i, b in enumerate(sorted(branches, key=lambda b: b.created_at))}

    forks_at: dict[str, set[str]] = defaultdict(set)
    for branch in branches:
        if branch.id != branch_id and branch.fork_message_id is not None:
            forks_at[branch.fork_message_id].add(branch.id)

    owned = sorted(
        (n for n in forest.nodes.values() if n.branch_id == branch_id),
        key=lambda n: n.sort_key,
    )

    exclusive: list[str] = []
    adopted: dict[str, str] = {}

    for node in owned:
        dependents = set(forks_at.get(node.message_id, ()))
        for descendant_id in get_descendants(forest, node.message_id):
            descendant = forest.nodes[descendant_id]
            if descendant.branch_id != branch_id:
                dependents.add(descendant.branch_id)
            dependents.update(forks_at.get(descendant_id, ()))

        if dependents:
            adopted[node.message_id] = min(dependents, key=lambda b: order.get(b, len(order)))
        else:
            exclusive.append(node.message_id)

    return DeletionPlan(branch_id=branch_id, exclusive=exclusive, adopted=adopted)


def compute_depths(forest: Forest) -> dict[str, int]:
    """Depth of every node reachable from a root (roots are depth 0)."""
    depths: dict[str, int] = {}
    queue = deque((root, 0) for root in forest.roots)

    while queue:
        node, depth = queue.popleft()
        if node.message_id in depths:
            continue
        depths[node.message_id] = depth
        for child in node.children:
            queue.append((child, depth + 1))

    return depths


def compute_stats(
    forest: Forest,
    conversation_id: str,
    branches: list[BranchRecord],
) -> BranchStats:
    """Aggregate counts for a conversation's forest."""
    depths = compute_depths(forest)

    messages_per_branch = {}
    for branch in branches:
        head = branch_head(forest, branch)
        messages_per_branch[branch.id] = len(forest.walk_ancestors(head)) if head else 0

    return BranchStats(
        conversation_id=conversation_id,
        total_branches=len(branches),
        total_messages=forest.edge_count,
        branch_points=len(find_branch_points(forest)),
        max_depth=max(depths.values()) if depths else 0,
        messages_per_branch=messages_per_branch,
    )
