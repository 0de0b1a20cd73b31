"""
In-memory dependency graph built from a task snapshot.
"""

from collections import deque
from typing import Iterable, Optional

from ..models import Dependency, Task


class DependencyGraph:
    """
    Adjacency over one snapshot: predecessor edges, a successor index and the
    parent/child tree. The graph holds structure only; dates live in the
    caller's working set.
    """

    def __init__(self, tasks: Iterable[Task]):
        self._order: list[str] = []
        self._predecessors: dict[str, list[Dependency]] = {}
        self._successors: dict[str, list[str]] = {}
        self._parent: dict[str, Optional[str]] = {}
        self._children: dict[str, list[str]] = {}

        for task in tasks:
            self._order.append(task.id)
            self._predecessors[task.id] = list(task.dependencies)
            self._parent[task.id] = task.parent_task_id

        for task_id in self._order:
            for dep in self._predecessors[task_id]:
                self._successors.setdefault(dep.predecessor_id, []).append(task_id)
            parent_id = self._parent[task_id]
            if parent_id is not None and parent_id in self._predecessors:
                self._children.setdefault(parent_id, []).append(task_id)

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._predecessors

    @property
    def task_ids(self) -> list[str]:
        return list(self._order)

    def predecessors(self, task_id: str) -> list[Dependency]:
        return self._predecessors.get(task_id, [])

    def successors(self, task_id: str) -> list[str]:
        """Tasks that list `task_id` as a predecessor, in snapshot order."""
        return self._successors.get(task_id, [])

    def parent(self, task_id: str) -> Optional[str]:
        parent_id = self._parent.get(task_id)
        return parent_id if parent_id in self._predecessors else None

    def children(self, task_id: str) -> list[str]:
        return self._children.get(task_id, [])

    def is_leaf(self, task_id: str) -> bool:
        return not self._children.get(task_id)

    def descendants(self, task_id: str) -> list[str]:
        """All tasks below `task_id` in the hierarchy, breadth-first."""
        found: list[str] = []
        seen = {task_id}
        queue = deque(self.children(task_id))
        while queue:
            current = queue.popleft()
            if current in seen:
                continue
            seen.add(current)
            found.append(current)
            queue.extend(self.children(current))
        return found

    def ancestors(self, task_id: str) -> list[str]:
        found: list[str] = []
        current = self.parent(task_id)
        while current is not None and current not in found and current != task_id:
            found.append(current)
            current = self.parent(current)
        return found

    def find_cycle(self, task_id: str, proposed_predecessor_ids: Iterable[str]) -> Optional[list[str]]:
        """
        Check whether giving `task_id` these predecessors would close a loop.

        Walks breadth-first from each proposed predecessor through its own
        dependency chain. Returns the loop as an ordered id chain starting and
        ending at `task_id`, e.g. [A, C, B, A], or None when the edit is safe.
        """
        for pred_id in proposed_predecessor_ids:
            if pred_id == task_id:
                return [task_id, task_id]

            came_from: dict[str, Optional[str]] = {pred_id: None}
            queue = deque([pred_id])
            while queue:
                current = queue.popleft()
                for dep in self.predecessors(current):
                    upstream = dep.predecessor_id
                    if upstream == task_id:
                        return [task_id] + self._path_to(current, came_from) + [task_id]
                    if upstream in came_from:
                        continue
                    came_from[upstream] = current
                    queue.append(upstream)
        return None

    @staticmethod
    def _path_to(node: str, came_from: dict[str, Optional[str]]) -> list[str]:
        path = [node]
        while came_from[path[-1]] is not None:
            path.append(came_from[path[-1]])
        path.reverse()
        return path

    def _ordering_edges(self) -> dict[str, dict[str, None]]:
        # A dependency on a parent is really a dependency on its rolled-up
        # children, so those children must be settled before the successor.
        edges: dict[str, dict[str, None]] = {task_id: {} for task_id in self._order}
        for task_id in self._order:
            for dep in self._predecessors[task_id]:
                pred_id = dep.predecessor_id
                if pred_id not in self._predecessors:
                    continue
                edges[pred_id][task_id] = None
                if pred_id == task_id or self.is_leaf(pred_id) or pred_id in self.ancestors(task_id):
                    continue
                for child_id in self.descendants(pred_id):
                    edges[child_id][task_id] = None
        return edges

    def topological_order(self) -> tuple[list[str], list[str]]:
        """
        Order tasks so predecessors come first, ties broken by snapshot order.

        Returns (order, cyclic). `cyclic` holds the tasks that sit on a
        dependency loop; they are left out of `order`. Tasks merely downstream
        of a loop are appended to `order` in snapshot order.
        """
        edges = self._ordering_edges()
        in_degree = {task_id: 0 for task_id in self._order}
        for targets in edges.values():
            for target in targets:
                in_degree[target] += 1

        ready = deque(task_id for task_id in self._order if in_degree[task_id] == 0)
        order: list[str] = []
        while ready:
            current = ready.popleft()
            order.append(current)
            for target in edges[current]:
                in_degree[target] -= 1
                if in_degree[target] == 0:
                    ready.append(target)

        placed = set(order)
        stuck = [task_id for task_id in self._order if task_id not in placed]
        cyclic: list[str] = []
        for task_id in stuck:
            if self._reaches_itself(task_id, edges, set(stuck)):
                cyclic.append(task_id)
            else:
                order.append(task_id)
        return order, cyclic

    @staticmethod
    def _reaches_itself(start: str, edges: dict[str, dict[str, None]], within: set[str]) -> bool:
        seen: set[str] = set()
        queue = deque(target for target in edges[start] if target in within)
        while queue:
            current = queue.popleft()
            if current == start:
                return True
            if current in seen:
                continue
            seen.add(current)
            queue.extend(target for target in edges[current] if target in within)
        return False
