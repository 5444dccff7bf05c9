"""Pure graph algorithms over message-tree edges."""

from chat_tree.tree.forest import (
    TreeNode,
    Forest,
    DeletionPlan,
    build_forest,
    get_path_to_message,
    branch_head,
    find_branch_points,
    find_divergence_point,
    get_descendants,
    plan_branch_deletion,
    compute_depths,
    compute_stats,
)
from chat_tree.tree.consistency import RepairPlan, check_consistency, plan_repair

__all__ = [
    "TreeNode",
    "Forest",
    "DeletionPlan",
    "RepairPlan",
    "build_forest",
    "get_path_to_message",
    "branch_head",
    "find_branch_points",
    "find_divergence_point",
    "get_descendants",
    "plan_branch_deletion",
    "compute_depths",
    "compute_stats",
    "check_consistency",
    "plan_repair",
]
