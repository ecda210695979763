"""Goal/task hierarchy stored as an arena of nodes keyed by id."""

from __future__ import annotations

import math
import time
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

from .types import ROOT_ID, GoalTaskNode, GoalTaskTree, UID, clamp_progress


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class TreeManager:
    """Owns the :class:`GoalTaskTree` and every structural mutation on it.

    Top-level members hang under a synthetic root goal which is never reported
    as an ancestor and never completes. Nodes are never removed: finished or
    abandoned work is transitioned to a terminal status and kept for audit.
    """

    def __init__(self, tree: GoalTaskTree | None = None, *, clock: Callable[[], float] | None = None) -> None:
        self._tree = tree or GoalTaskTree()
        self._clock = clock or time.time

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    @property
    def tree(self) -> GoalTaskTree:
        return self._tree

    @property
    def root(self) -> GoalTaskNode:
        return self._tree.root

    def add_node(self, node: GoalTaskNode, parent_id: Optional[UID] = None) -> GoalTaskNode:
        if node.id == ROOT_ID or node.id in self._tree.nodes:
            raise ValueError(f"Duplicate node id: {node.id}")
        parent = self._tree.nodes.get(parent_id) if parent_id else None
        if parent is None:
            parent = self._tree.root
        node.parent_id = None if parent is self._tree.root else parent.id
        self._tree.nodes[node.id] = node
        self._insert_child(parent, node)
        return node

    def _insert_child(self, parent: GoalTaskNode, node: GoalTaskNode) -> None:
        position = len(parent.children)
        for index, child_id in enumerate(parent.children):
            sibling = self._tree.nodes.get(child_id)
            if sibling is not None and sibling.order > node.order:
                position = index
                break
        parent.children.insert(position, node.id)
        parent.updated_at = self._clock()

    def get_node(self, node_id: Optional[UID]) -> Optional[GoalTaskNode]:
        if node_id is None:
            return None
        return self._tree.nodes.get(node_id)

    def get_parent(self, node: GoalTaskNode) -> GoalTaskNode:
        if node.parent_id is None:
            return self._tree.root
        return self._tree.nodes.get(node.parent_id, self._tree.root)

    def get_children(self, node_id: UID) -> List[GoalTaskNode]:
        node = self._tree.root if node_id == ROOT_ID else self._tree.nodes.get(node_id)
        if node is None:
            return []
        return [self._tree.nodes[child] for child in node.children if child in self._tree.nodes]

    def all_nodes(self) -> List[GoalTaskNode]:
        return list(self._tree.nodes.values())

    def get_ancestors(self, node_id: UID) -> List[GoalTaskNode]:
        """Return the parent chain ordered from the top-level ancestor down."""

        ancestors: List[GoalTaskNode] = []
        seen = {node_id}
        current = self._tree.nodes.get(node_id)
        while current is not None and current.parent_id is not None:
            parent = self._tree.nodes.get(current.parent_id)
            if parent is None or parent.id in seen:
                break
            seen.add(parent.id)
            ancestors.insert(0, parent)
            current = parent
        return ancestors

    def iter_depth_first(self, start: GoalTaskNode | None = None) -> Iterator[GoalTaskNode]:
        stack = list(reversed(self.get_children((start or self._tree.root).id)))
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(self.get_children(node.id)))

    def get_leaf_tasks(self) -> List[GoalTaskNode]:
        return [node for node in self.iter_depth_first() if node.type == "task" and not node.children]

    def get_subtree(self, node_id: UID) -> List[GoalTaskNode]:
        node = self._tree.nodes.get(node_id)
        if node is None:
            return []
        return [node, *self.iter_depth_first(node)]

    def get_nodes_by_type(self, node_type: str) -> List[GoalTaskNode]:
        return [node for node in self.iter_depth_first() if node.type == node_type]

    def find_node_by_title(self, title: str) -> Optional[GoalTaskNode]:
        needle = title.lower()
        for node in self._tree.nodes.values():
            if node.title.lower() == needle:
                return node
        return None

    # ------------------------------------------------------------------
    # Active node
    # ------------------------------------------------------------------

    def set_active_node(self, node_id: Optional[UID]) -> None:
        if node_id is not None and node_id not in self._tree.nodes:
            return
        self._tree.active_node_id = node_id

    def get_active_node(self) -> Optional[GoalTaskNode]:
        return self.get_node(self._tree.active_node_id)

    # ------------------------------------------------------------------
    # Progress and status aggregation
    # ------------------------------------------------------------------

    def calculate_progress(self, goal_id: UID) -> int:
        goal = self._tree.nodes.get(goal_id)
        if goal is None or goal.type != "goal":
            return 0
        children = self.get_children(goal_id)
        if not children:
            return 100 if goal.goal_status == "completed" else 0
        total = 0
        for child in children:
            total += self.calculate_progress(child.id) if child.type == "goal" else child.progress
        return _round_half_up(total / len(children))

    def update_node_progress(self, node_id: UID, progress: float) -> bool:
        node = self._tree.nodes.get(node_id)
        if node is None:
            return False
        node.progress = clamp_progress(progress)
        node.updated_at = self._clock()
        self._refresh_ancestor_progress(node)
        return True

    def _refresh_ancestor_progress(self, node: GoalTaskNode) -> None:
        for ancestor in reversed(self.get_ancestors(node.id)):
            if ancestor.type != "goal":
                continue
            ancestor.progress = self.calculate_progress(ancestor.id)
            ancestor.updated_at = self._clock()

    def update_node_status(self, goal_id: Optional[UID]) -> List[GoalTaskNode]:
        """Cascade completion upwards starting at ``goal_id``.

        Returns the goals that transitioned to ``completed`` on this call.
        """

        completed: List[GoalTaskNode] = []
        current = self.get_node(goal_id)
        while current is not None and current.type == "goal" and current.goal_status == "active":
            children = self.get_children(current.id)
            if not children or not all(self._is_resolved(child, children) for child in children):
                break
            now = self._clock()
            if any(child.is_completed() for child in children):
                current.goal_status = "completed"
                current.progress = 100
                completed.append(current)
            else:
                current.goal_status = "cancelled"
            current.updated_at = now
            self._refresh_ancestor_progress(current)
            current = self.get_node(current.parent_id)
        return completed

    @classmethod
    def _is_resolved(cls, child: GoalTaskNode, siblings: List[GoalTaskNode]) -> bool:
        # A failed task counts once a fallback chain derived from it completed.
        if child.status in {"completed", "cancelled"}:
            return True
        if child.status != "failed":
            return False
        return any(
            sibling.metadata.get("fallback_of") == child.id
            and sibling.status in {"completed", "failed"}
            and cls._is_resolved(sibling, siblings)
            for sibling in siblings
        )

    def complete_task(self, node_id: UID, result: Any = None) -> List[GoalTaskNode]:
        node = self._tree.nodes.get(node_id)
        if node is None or node.type != "task" or node.is_terminal():
            return []
        node.task_status = "completed"
        node.result = result
        self.update_node_progress(node.id, 100)
        if self._tree.active_node_id == node.id:
            self._tree.active_node_id = None
        return self.update_node_status(node.parent_id)

    def fail_task(self, node_id: UID, error: str) -> bool:
        node = self._tree.nodes.get(node_id)
        if node is None or node.type != "task" or node.is_terminal():
            return False
        node.task_status = "failed"
        node.error = error
        node.updated_at = self._clock()
        if self._tree.active_node_id == node.id:
            self._tree.active_node_id = None
        return True

    def set_task_status(self, node_id: UID, status: str) -> bool:
        node = self._tree.nodes.get(node_id)
        if node is None or node.type != "task" or node.is_terminal():
            return False
        node.task_status = status
        node.updated_at = self._clock()
        return True

    def cancel_node(self, node_id: UID, *, cascade: bool = True) -> List[GoalTaskNode]:
        """Cancel a node; goals also cancel their non-terminal descendants.

        Returns every node whose status changed. With ``cascade`` the parent
        chain is re-evaluated afterwards.
        """

        node = self._tree.nodes.get(node_id)
        if node is None or node.is_terminal():
            return []
        changed: List[GoalTaskNode] = []
        for member in self.get_subtree(node_id):
            if member.is_terminal():
                continue
            if member.type == "goal":
                member.goal_status = "cancelled"
            else:
                member.task_status = "cancelled"
            member.updated_at = self._clock()
            changed.append(member)
            if self._tree.active_node_id == member.id:
                self._tree.active_node_id = None
        if cascade:
            self.update_node_status(node.parent_id)
        return changed

    # ------------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root_children": list(self._tree.root.children),
            "active_node_id": self._tree.active_node_id,
            "nodes": {node_id: node.to_dict() for node_id, node in self._tree.nodes.items()},
        }

    @classmethod
    def from_dict(
        cls,
        payload: Mapping[str, Any],
        *,
        clock: Callable[[], float] | None = None,
    ) -> "TreeManager":
        tree = GoalTaskTree()
        raw_nodes = payload.get("nodes") or {}
        for node_id, raw in raw_nodes.items():
            node = GoalTaskNode.from_dict(raw)
            tree.nodes[str(node_id)] = node
        tree.root.children = [
            str(child) for child in payload.get("root_children") or [] if str(child) in tree.nodes
        ]
        active = payload.get("active_node_id")
        tree.active_node_id = active if active in tree.nodes else None
        return cls(tree, clock=clock)


__all__ = ["TreeManager"]
