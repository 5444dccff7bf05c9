# tests/unit/test_forest.py
"""Unit tests for the in-memory message forest."""

from datetime import datetime

import pytest

from chat_tree.errors import InconsistentTree, NotFound
from chat_tree.models import TreeEdge
from chat_tree.tree import (
    branch_head,
    build_forest,
    compute_depths,
    compute_stats,
    find_branch_points,
    find_divergence_point,
    get_descendants,
    get_path_to_message,
    plan_branch_deletion,
)


class TestBuildForest:
    """Tests for forest construction."""

    def test_single_root(self, linear_edges):
        """Test a linear conversation has one root."""
        forest = build_forest(linear_edges)

        assert [r.message_id for r in forest.roots] == ['U1']
        assert forest.edge_count == 4

    def test_empty(self):
        """Test no edges gives an empty forest."""
        forest = build_forest([])

        assert forest.roots == []
        assert forest.edge_count == 0

    def test_children_linked(self, forked_edges):
        """Test children are attached to their parent node."""
        forest = build_forest(forked_edges)

        assert [c.message_id for c in forest.nodes['A1'].children] == ['U2', 'U3']
        assert forest.nodes['A2'].is_leaf

    def test_sibling_ties_broken_by_position(self):
        """Test siblings with equal timestamps keep insertion order."""
        same_time = datetime(2024, 1, 1)
        edges = [
            TreeEdge('root', None, 'main', created_at=same_time, position=0),
            TreeEdge('second', 'root', 'b', created_at=same_time, position=2),
            TreeEdge('first', 'root', 'main', created_at=same_time, position=1),
        ]
        forest = build_forest(edges)

        assert [c.message_id for c in forest.children_of('root')] == ['first', 'second']

    def test_get_unknown_raises(self, linear_edges):
        """Test looking up an unplaced message raises NotFound."""
        forest = build_forest(linear_edges)

        with pytest.raises(NotFound):
            forest.get('nope')


class TestChildrenOf:
    """Tests for branch-aware child selection."""

    def test_all_children(self, forked_edges):
        forest = build_forest(forked_edges)
        assert [c.message_id for c in forest.children_of('A1')] == ['U2', 'U3']

    def test_children_on_branch(self, forked_edges):
        """Test filtering children by branch."""
        forest = build_forest(forked_edges)

        assert [c.message_id for c in forest.children_of('A1', 'alt')] == ['U3']
        assert [c.message_id for c in forest.children_of('A1', 'main')] == ['U2']

    def test_leaf_has_no_children(self, forked_edges):
        forest = build_forest(forked_edges)
        assert forest.children_of('A3') == []


class TestWalkAncestors:
    """Tests for branch-agnostic ancestor walks."""

    def test_path_to_leaf(self, linear_edges):
        """Test walking from a leaf returns root-first order."""
        forest = build_forest(linear_edges)
        assert forest.walk_ancestors('A2') == ['U1', 'A1', 'U2', 'A2']

    def test_crosses_branches(self, forked_edges):
        """Test a fork's path includes ancestors tagged with another branch."""
        forest = build_forest(forked_edges)
        assert get_path_to_message(forest, 'A3') == ['U1', 'A1', 'U3', 'A3']

    def test_root_path(self, linear_edges):
        forest = build_forest(linear_edges)
        assert forest.walk_ancestors('U1') == ['U1']

    def test_cycle_raises(self, edge):
        """Test a parent cycle raises instead of looping."""
        forest = build_forest([
            edge('X', 'Y', 'main', 0),
            edge('Y', 'X', 'main', 1),
        ])

        with pytest.raises(InconsistentTree) as exc_info:
            forest.walk_ancestors('X')

        assert "may need repair" in str(exc_info.value)

    def test_missing_parent_raises(self, edge):
        """Test a parent without a tree-edge raises InconsistentTree."""
        forest = build_forest([edge('B', 'ghost', 'main', 0)])

        with pytest.raises(InconsistentTree) as exc_info:
            forest.walk_ancestors('B')

        assert exc_info.value.message_id == 'B'

    def test_never_revisits(self, forked_edges):
        """Test every path is bounded and visits each node once."""
        forest = build_forest(forked_edges)

        for message_id in forest.nodes:
            path = forest.walk_ancestors(message_id)
            assert len(path) == len(set(path))
            assert len(path) <= forest.edge_count + 1


class TestBranchHead:
    """Tests for branch head resolution."""

    def test_newest_tagged_message(self, forked_edges, forked_branches):
        forest = build_forest(forked_edges)
        main, alt = forked_branches

        assert branch_head(forest, main) == 'A2'
        assert branch_head(forest, alt) == 'A3'

    def test_fresh_fork_headed_by_fork_point(self, linear_edges, branch):
        """Test a fork with no messages yet is headed by its fork message."""
        forest = build_forest(linear_edges)
        assert branch_head(forest, branch('alt', fork='A1')) == 'A1'

    def test_empty_branch(self, linear_edges, branch):
        forest = build_forest(linear_edges)
        assert branch_head(forest, branch('empty')) is None


class TestFindBranchPoints:
    """Tests for branch point detection."""

    def test_linear_has_none(self, linear_edges):
        forest = build_forest(linear_edges)
        assert find_branch_points(forest) == []

    def test_flagged_fork(self, forked_edges):
        forest = build_forest(forked_edges)
        assert find_branch_points(forest) == ['A1']

    def test_unflagged_fork_detected_from_children(self, linear_edges, edge):
        """Test children on two branches count even without the flag."""
        edges = linear_edges + [edge('U3', 'A1', 'alt', 4)]
        forest = build_forest(edges)

        assert find_branch_points(forest) == ['A1']

    def test_same_branch_siblings_not_a_branch_point(self, linear_edges, edge):
        """Test two children on the same branch are not a branch point."""
        edges = linear_edges + [edge('U3', 'A1', 'main', 4)]
        forest = build_forest(edges)

        assert find_branch_points(forest) == []


class TestFindDivergencePoint:
    """Tests for divergence point lookup."""

    def test_fork_point(self, forked_edges):
        forest = build_forest(forked_edges)
        assert find_divergence_point(forest, 'A2', 'A3') == 'A1'

    def test_same_head(self, linear_edges):
        """Test identical heads diverge at the head itself."""
        forest = build_forest(linear_edges)
        assert find_divergence_point(forest, 'A2', 'A2') == 'A2'

    def test_missing_head(self, linear_edges):
        forest = build_forest(linear_edges)
        assert find_divergence_point(forest, 'A2', None) is None

    def test_disjoint_roots(self, edge):
        """Test heads in separate trees share nothing."""
        forest = build_forest([
            edge('R1', None, 'main', 0),
            edge('R2', None, 'other', 1),
        ])
        assert find_divergence_point(forest, 'R1', 'R2') is None


class TestGetDescendants:
    """Tests for descendant collection."""

    def test_breadth_first(self, forked_edges):
        forest = build_forest(forked_edges)
        assert get_descendants(forest, 'A1') == ['U2', 'U3', 'A2', 'A3']

    def test_leaf(self, forked_edges):
        forest = build_forest(forked_edges)
        assert get_descendants(forest, 'A2') == []


class TestPlanBranchDeletion:
    """Tests for deciding what a branch deletion removes."""

    def test_exclusive_messages(self, forked_edges, forked_branches):
        """Test messages only the branch uses are exclusive."""
        forest = build_forest(forked_edges)
        plan = plan_branch_deletion(forest, 'alt', forked_branches)

        assert plan.exclusive == ['U3', 'A3']
        assert plan.adopted == {}

    def test_nested_fork_adopts_shared_ancestor(self, forked_edges, forked_branches, edge, branch):
        """Test an ancestor of a nested fork is handed to that fork."""
        edges = forked_edges + [edge('U4', 'U3', 'nested', 6)]
        branches = forked_branches + [branch('nested', fork='U3', order=2)]
        forest = build_forest(edges)

        plan = plan_branch_deletion(forest, 'alt', branches)

        assert plan.exclusive == ['A3']
        assert plan.adopted == {'U3': 'nested'}

    def test_fresh_fork_protects_fork_point(self, forked_edges, forked_branches, branch):
        """Test a fork with no messages still protects the message it forked from."""
        branches = forked_branches + [branch('fresh', fork='A3', order=2)]
        forest = build_forest(forked_edges)

        plan = plan_branch_deletion(forest, 'alt', branches)

        assert plan.exclusive == []
        assert plan.adopted == {'U3': 'fresh', 'A3': 'fresh'}

    def test_earliest_dependent_wins(self, forked_edges, forked_branches, edge, branch):
        """Test the earliest-created dependent branch adopts shared messages."""
        edges = forked_edges + [
            edge('U5', 'A3', 'later', 6),
            edge('U4', 'A3', 'earlier', 7),
        ]
        branches = forked_branches + [
            branch('later', fork='A3', order=3),
            branch('earlier', fork='A3', order=2),
        ]
        forest = build_forest(edges)

        plan = plan_branch_deletion(forest, 'alt', branches)

        assert plan.adopted == {'U3': 'earlier', 'A3': 'earlier'}


class TestStats:
    """Tests for depth and aggregate statistics."""

    def test_depths(self, forked_edges):
        forest = build_forest(forked_edges)
        depths = compute_depths(forest)

        assert depths['U1'] == 0
        assert depths['U3'] == 2
        assert depths['A3'] == 3

    def test_compute_stats(self, forked_edges, forked_branches):
        forest = build_forest(forked_edges)
        stats = compute_stats(forest, 'conv', forked_branches)

        assert stats.total_branches == 2
        assert stats.total_messages == 6
        assert stats.branch_points == 1
        assert stats.max_depth == 3
        assert stats.messages_per_branch == {'main': 4, 'alt': 4}

    def test_empty_stats(self):
        stats = compute_stats(build_forest([]), 'conv', [])

        assert stats.total_messages == 0
        assert stats.max_depth == 0
