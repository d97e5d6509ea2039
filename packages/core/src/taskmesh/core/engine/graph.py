"""DependencyGraph -- 依赖边管理、环检测与依赖链查询

边的方向为 task -> dependency。结构变更只在持有 lock 时进行，
环检测与提交之间没有其他注册可以插入。
"""

import asyncio
from collections import defaultdict, deque
from collections.abc import Callable, Iterable

import structlog

from ..errors import CyclicDependencyError, TaskNotFoundError
from ..models import ChainEntry, DependencyChain
from .task_store import TaskStore

log = structlog.get_logger()


class DependencyGraph:
    """依赖图（正向边 + 反向边）"""

    def __init__(self, store: TaskStore) -> None:
        self._store = store
        self._dependencies: dict[str, list[str]] = {}
        self._dependents: dict[str, set[str]] = defaultdict(set)
        self.lock = asyncio.Lock()

    @property
    def edge_count(self) -> int:
        return sum(len(deps) for deps in self._dependencies.values())

    def dependencies_of(self, task_id: str) -> list[str]:
        return list(self._dependencies.get(task_id, ()))

    def dependents_of(self, task_id: str) -> list[str]:
        return sorted(self._dependents.get(task_id, ()))

    def would_cycle(self, task_id: str, candidate_deps: Iterable[str]) -> list[str] | None:
        """检查添加 task_id -> candidate_deps 是否会成环

        对每个候选依赖，沿已有依赖边做 BFS，能回到 task_id 即成环。

        Returns:
            闭合的环路径（首尾为 task_id），不成环返回 None
        """
        for dep_id in candidate_deps:
            if dep_id == task_id:
                return [task_id, task_id]
            path = self._find_path(dep_id, task_id)
            if path is not None:
                return [task_id, *path]
        return None

    async def add_edges(self, task_id: str, dependency_ids: list[str]) -> None:
        """为 task_id 添加依赖边（调用方需持有 self.lock）

        先做环检测，成环时整体拒绝：不添加任何边，也不创建占位任务。
        之后为尚未注册的依赖创建占位记录，再一次性提交所有边。

        Raises:
            CyclicDependencyError: 添加后会形成环
        """
        cycle = self.would_cycle(task_id, dependency_ids)
        if cycle is not None:
            log.warning(
                "dependency_cycle_rejected",
                task_id=task_id,
                cycle=cycle,
            )
            raise CyclicDependencyError(task_id, cycle)

        for dep_id in dependency_ids:
            await self._store.upsert_placeholder(dep_id, referenced_by=task_id)

        self.restore_edges(task_id, dependency_ids)

    def restore_edges(self, task_id: str, dependency_ids: list[str]) -> None:
        """直接写入边，不做检查（用于启动恢复）"""
        self._dependencies[task_id] = list(dependency_ids)
        for dep_id in dependency_ids:
            self._dependents[dep_id].add(task_id)

    def chain(self, task_id: str) -> DependencyChain:
        """查询完整依赖链

        ancestors 为拓扑序（依赖的依赖在前），
        descendants 为逆拓扑序（最远的下游在前），
        两个列表都是离查询任务最远的节点在前。
        """
        if task_id not in self._store:
            raise TaskNotFoundError(task_id)

        ancestor_depths = self._depths(task_id, self.dependencies_of)
        descendant_depths = self._depths(task_id, self.dependents_of)

        ancestors = [
            self._entry(node, ancestor_depths[node])
            for node in self._postorder(task_id, self.dependencies_of)
            if node != task_id
        ]
        descendants = [
            self._entry(node, descendant_depths[node])
            for node in self._postorder(task_id, self.dependents_of)
            if node != task_id
        ]

        return DependencyChain(
            task_id=task_id,
            ancestors=ancestors,
            descendants=descendants,
            total_depth=max((e.depth for e in ancestors), default=0),
        )

    def _entry(self, task_id: str, depth: int) -> ChainEntry:
        task = self._store.peek(task_id)
        return ChainEntry(
            task_id=task_id,
            state=task.state,
            depth=depth,
            is_placeholder=task.is_placeholder,
        )

    def _find_path(self, start: str, target: str) -> list[str] | None:
        """沿依赖边 BFS，返回 start 到 target 的路径"""
        parents: dict[str, str | None] = {start: None}
        queue = deque([start])
        while queue:
            current = queue.popleft()
            if current == target:
                path = [current]
                while (parent := parents[path[-1]]) is not None:
                    path.append(parent)
                return list(reversed(path))
            for nxt in self._dependencies.get(current, ()):
                if nxt not in parents:
                    parents[nxt] = current
                    queue.append(nxt)
        return None

    @staticmethod
    def _depths(root: str, edges: Callable[[str], list[str]]) -> dict[str, int]:
        """BFS 最短距离"""
        depths = {root: 0}
        queue = deque([root])
        while queue:
            current = queue.popleft()
            for nxt in edges(current):
                if nxt not in depths:
                    depths[nxt] = depths[current] + 1
                    queue.append(nxt)
        return depths

    @staticmethod
    def _postorder(root: str, edges: Callable[[str], list[str]]) -> list[str]:
        """迭代式 DFS 后序遍历，root 在最后"""
        order: list[str] = []
        visited = {root}
        stack = [(root, iter(edges(root)))]
        while stack:
            node, children = stack[-1]
            for child in children:
                if child not in visited:
                    visited.add(child)
                    stack.append((child, iter(edges(child))))
                    break
            else:
                stack.pop()
                order.append(node)
        return order
